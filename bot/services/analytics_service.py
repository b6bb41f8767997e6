from __future__ import annotations

import logging
from dataclasses import asdict, replace
from datetime import timedelta
from typing import Any

from core.config import AnalyticsConfig
from database.models import (
    AnalyticsEvent,
    ChannelActivity,
    CommandEvent,
    CommandUsage,
    EngagementSummary,
    HealthSnapshot,
    HourlyBucket,
    MetricType,
    ServerOverview,
)
from database.repositories import ANALYTICS_TABLES, AnalyticsRepository
from utils.side_effects import best_effort
from utils.time import Clock, clock_time, day_bounds, day_key, to_iso, utc_now, window_start_day

LOGGER = logging.getLogger(__name__)

DAILY_STAT_COLUMNS: dict[MetricType, str] = {
    MetricType.MESSAGE_COUNT: "total_messages",
    MetricType.COMMAND_USAGE: "total_commands",
    MetricType.MEMBER_JOIN: "new_members",
    MetricType.MEMBER_LEAVE: "left_members",
    MetricType.VOICE_ACTIVITY: "voice_minutes",
    MetricType.REACTION_COUNT: "reactions_given",
}
DEFAULT_DAILY_COLUMN = "total_messages"

HOURLY_COLUMNS: dict[MetricType, str] = {
    MetricType.MESSAGE_COUNT: "message_count",
    MetricType.COMMAND_USAGE: "command_count",
}


def daily_column_for(metric_type: MetricType | str) -> str:
    try:
        return DAILY_STAT_COLUMNS[MetricType(metric_type)]
    except ValueError:
        return DEFAULT_DAILY_COLUMN


def hourly_column_for(metric_type: MetricType | str) -> str | None:
    try:
        return HOURLY_COLUMNS.get(MetricType(metric_type))
    except ValueError:
        return None


class AnalyticsService:
    """Records guild events and maintains the daily, hourly, channel and member rollups."""

    def __init__(self, config: AnalyticsConfig, repo: AnalyticsRepository, clock: Clock = utc_now) -> None:
        self.config = config
        self.repo = repo
        self.clock = clock

    async def track_activity(self, event: AnalyticsEvent) -> None:
        """Store a raw event, then bump the daily and hourly rollups.

        The raw insert propagates errors. The rollups are independent
        best-effort writes, so a failed rollup never removes the raw event.
        """
        now = self.clock()
        # Zero or missing values count as one, in the raw row and every rollup.
        event = replace(event, value=event.value or 1)
        value = event.value
        await self.repo.insert_event(event)

        day = day_key(now)
        await best_effort(
            self.repo.increment_daily(event.guild_id, day, daily_column_for(event.metric_type), value),
            "daily stats update for guild %s",
            event.guild_id,
        )
        hourly_column = hourly_column_for(event.metric_type)
        if hourly_column is None:
            return
        await best_effort(
            self.repo.increment_hourly(event.guild_id, day, now.hour, hourly_column, value),
            "hourly activity update for guild %s",
            event.guild_id,
        )

    async def track_command(self, event: CommandEvent) -> None:
        await self.repo.insert_command(event)
        await self.track_activity(
            AnalyticsEvent(
                guild_id=event.guild_id,
                metric_type=MetricType.COMMAND_USAGE,
                channel_id=event.channel_id,
                user_id=event.user_id,
                command_name=event.command_name,
                value=1,
            )
        )

    async def record_server_health(self, snapshot: HealthSnapshot) -> None:
        await self.repo.insert_health(snapshot)

    async def update_channel_analytics(
        self, guild_id: str, channel_id: str, channel_name: str, channel_type: str
    ) -> None:
        day = day_key(self.clock())
        await self.repo.upsert_channel(guild_id, channel_id, channel_name, channel_type, day)
        start, end = day_bounds(day)
        await self.repo.refresh_unique_users(guild_id, channel_id, day, start, end)

    async def record_member_engagement(
        self,
        guild_id: str,
        user_id: str,
        *,
        messages: int = 0,
        commands: int = 0,
        reactions: int = 0,
        voice_minutes: int = 0,
    ) -> None:
        now = self.clock()
        day = day_key(now)
        await self.repo.upsert_engagement(
            guild_id,
            user_id,
            day,
            messages=messages,
            commands=commands,
            reactions=reactions,
            voice_minutes=voice_minutes,
            message_time=clock_time(now) if messages else None,
        )
        if messages:
            await self.repo.refresh_active_members(guild_id, day)

    async def update_daily_member_count(self, guild_id: str, total_members: int, online_count: int) -> None:
        await self.repo.set_member_count(guild_id, day_key(self.clock()), total_members, online_count)

    async def get_server_overview(self, guild_id: str, days: int | None = None) -> ServerOverview:
        since = window_start_day(self.clock(), days or self.config.default_window_days)
        return await self.repo.overview(guild_id, since)

    async def get_hourly_activity(self, guild_id: str, days: int | None = None) -> list[HourlyBucket]:
        since = window_start_day(self.clock(), days or self.config.default_window_days)
        return await self.repo.hourly(guild_id, since)

    async def get_top_channels(
        self, guild_id: str, days: int | None = None, limit: int | None = None
    ) -> list[ChannelActivity]:
        since = window_start_day(self.clock(), days or self.config.default_window_days)
        return await self.repo.top_channels(guild_id, since, limit or self.config.top_channels_limit)

    async def get_command_stats(self, guild_id: str, days: int | None = None) -> list[CommandUsage]:
        since = self.clock() - timedelta(days=days or self.config.default_window_days)
        return await self.repo.command_stats(guild_id, since)

    async def get_member_engagement(self, guild_id: str, days: int | None = None) -> EngagementSummary:
        since = window_start_day(self.clock(), days or self.config.default_window_days)
        return await self.repo.engagement(guild_id, since)

    async def get_server_health_history(self, guild_id: str, hours: int = 24) -> list[dict[str, Any]]:
        return await self.repo.health_history(guild_id, self.clock() - timedelta(hours=hours))

    async def export_data(self, guild_id: str, days: int | None = None) -> dict[str, Any]:
        days = days or self.config.export_window_days
        overview = await self.get_server_overview(guild_id, days)
        hourly = await self.get_hourly_activity(guild_id, days)
        channels = await self.get_top_channels(guild_id, days)
        commands = await self.get_command_stats(guild_id, days)
        engagement = await self.get_member_engagement(guild_id, days)
        health = await self.get_server_health_history(guild_id, days * 24)
        return {
            "guild_id": guild_id,
            "period_days": days,
            "exported_at": to_iso(self.clock()),
            "overview": asdict(overview),
            "hourly_activity": [asdict(item) for item in hourly],
            "top_channels": [asdict(item) for item in channels],
            "command_stats": [asdict(item) for item in commands],
            "member_engagement": asdict(engagement),
            "health_history": health,
        }

    async def clean_old_data(self, days_to_keep: int | None = None) -> dict[str, int]:
        days_to_keep = days_to_keep or self.config.retention_days
        cutoff = self.clock() - timedelta(days=days_to_keep)
        deleted: dict[str, int] = {}
        for table in ANALYTICS_TABLES:
            deleted[table] = await self.repo.delete_older_than(table, cutoff)
            LOGGER.info("Cleaned %s old records from %s", deleted[table], table)
        return deleted

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config import AnalyticsConfig
from database.base import Database
from database.models import AnalyticsEvent, CommandEvent, HealthSnapshot, MetricType
from database.repositories import AnalyticsRepository
from services.analytics_service import AnalyticsService, daily_column_for, hourly_column_for
from utils.time import day_key

NOW = datetime.now(UTC).replace(hour=10, minute=30, second=0, microsecond=0)
TODAY = day_key(NOW)


def _service(db: Database, now: datetime = NOW) -> AnalyticsService:
    return AnalyticsService(AnalyticsConfig(), AnalyticsRepository(db), clock=lambda: now)


def test_metric_column_mapping() -> None:
    assert daily_column_for(MetricType.MEMBER_JOIN) == "new_members"
    assert daily_column_for("something_else") == "total_messages"
    assert hourly_column_for(MetricType.MESSAGE_COUNT) == "message_count"
    assert hourly_column_for(MetricType.COMMAND_USAGE) == "command_count"
    assert hourly_column_for(MetricType.REACTION_COUNT) is None


@pytest.mark.asyncio
async def test_three_commands_roll_up_daily_and_hourly(db: Database) -> None:
    service = _service(db)
    for _ in range(3):
        await service.track_command(
            CommandEvent(guild_id="G", command_name="ticket open", user_id="U1", channel_id="C1", execution_time=40)
        )

    daily = await service.repo.daily_row("G", TODAY)
    hourly = await service.repo.hourly_row("G", TODAY, 10)
    assert daily is not None and daily["total_commands"] == 3
    assert hourly is not None and hourly["command_count"] == 3

    stats = await service.get_command_stats("G")
    assert len(stats) == 1
    assert stats[0].command_name == "ticket open"
    assert (stats[0].usage_count, stats[0].success_count, stats[0].error_count) == (3, 3, 0)
    assert stats[0].avg_execution_time == pytest.approx(40.0)


@pytest.mark.asyncio
async def test_messages_roll_up_and_feed_channel_analytics(db: Database) -> None:
    service = _service(db, datetime.now(UTC))
    now = datetime.now(UTC)
    for user in ("U1", "U2", "U1", "U3"):
        await service.track_activity(
            AnalyticsEvent(guild_id="G", metric_type=MetricType.MESSAGE_COUNT, channel_id="C1", user_id=user)
        )
        await service.update_channel_analytics("G", "C1", "general", "text")
        await service.record_member_engagement("G", user, messages=1)

    daily = await service.repo.daily_row("G", day_key(now))
    assert daily is not None
    assert daily["total_messages"] == 4
    assert daily["active_members"] == 3

    channels = await service.get_top_channels("G")
    assert len(channels) == 1
    assert channels[0].total_messages == 4
    assert channels[0].avg_users == pytest.approx(3.0)

    engagement = await service.get_member_engagement("G")
    assert engagement.active_members == 3
    assert engagement.most_messages == 2


@pytest.mark.asyncio
async def test_non_hourly_metrics_only_touch_daily(db: Database) -> None:
    service = _service(db)
    await service.track_activity(AnalyticsEvent(guild_id="G", metric_type=MetricType.MEMBER_JOIN, user_id="U9"))
    await service.track_activity(
        AnalyticsEvent(guild_id="G", metric_type=MetricType.VOICE_ACTIVITY, user_id="U9", value=15)
    )
    await service.track_activity(AnalyticsEvent(guild_id="G", metric_type=MetricType.REACTION_COUNT, value=0))

    daily = await service.repo.daily_row("G", TODAY)
    assert daily is not None
    assert (daily["new_members"], daily["voice_minutes"], daily["reactions_given"]) == (1, 15, 1)
    assert await service.repo.hourly_row("G", TODAY, 10) is None


@pytest.mark.asyncio
async def test_rollup_failure_keeps_raw_event() -> None:
    repo = MagicMock()
    repo.insert_event = AsyncMock()
    repo.increment_daily = AsyncMock(side_effect=RuntimeError("locked"))
    repo.increment_hourly = AsyncMock()
    service = AnalyticsService(AnalyticsConfig(), repo, clock=lambda: NOW)

    await service.track_activity(AnalyticsEvent(guild_id="G", metric_type=MetricType.MESSAGE_COUNT))

    repo.insert_event.assert_awaited_once()
    repo.increment_hourly.assert_awaited_once_with("G", TODAY, 10, "message_count", 1)


@pytest.mark.asyncio
async def test_member_count_keeps_peak_online(db: Database) -> None:
    service = _service(db)
    await service.update_daily_member_count("G", 120, 40)
    await service.update_daily_member_count("G", 125, 25)

    daily = await service.repo.daily_row("G", TODAY)
    assert daily is not None
    assert (daily["total_members"], daily["peak_online"]) == (125, 40)


@pytest.mark.asyncio
async def test_overview_and_export(db: Database) -> None:
    service = _service(db)
    await service.update_daily_member_count("G", 100, 30)
    await service.track_activity(AnalyticsEvent(guild_id="G", metric_type=MetricType.MESSAGE_COUNT, channel_id="C1"))
    await service.record_server_health(HealthSnapshot(guild_id="G", member_count=100, online_count=33, memory_usage=80))

    overview = await service.get_server_overview("G")
    assert overview.total_messages == 1
    assert overview.peak_online == 30
    assert overview.avg_members == pytest.approx(100.0)
    assert (overview.current_online, overview.current_members) == (33, 100)

    exported = await service.export_data("G")
    assert exported["guild_id"] == "G"
    assert exported["period_days"] == 30
    assert exported["overview"]["total_messages"] == 1
    assert exported["hourly_activity"][0]["hour"] == 10
    assert exported["health_history"][0]["memory_usage"] == 80
    assert set(exported) == {
        "guild_id",
        "period_days",
        "exported_at",
        "overview",
        "hourly_activity",
        "top_channels",
        "command_stats",
        "member_engagement",
        "health_history",
    }


@pytest.mark.asyncio
async def test_clean_old_data_reports_per_table(db: Database) -> None:
    service = _service(db, datetime.now(UTC))
    old = db.timestamp_param(datetime.now(UTC) - timedelta(days=120))
    await db.execute(
        "INSERT INTO server_analytics(guild_id, metric_type, created_at) VALUES ('G', 'message_count', ?);",
        [old],
    )
    await db.execute(
        "INSERT INTO server_health(guild_id, member_count, timestamp) VALUES ('G', 10, ?);",
        [old],
    )
    await service.track_activity(AnalyticsEvent(guild_id="G", metric_type=MetricType.MESSAGE_COUNT))

    deleted = await service.clean_old_data()

    assert deleted["server_analytics"] == 1
    assert deleted["server_health"] == 1
    assert deleted["daily_server_stats"] == 0
    remaining = await db.fetchone("SELECT COUNT(*) AS count FROM server_analytics;")
    assert remaining is not None and remaining["count"] == 1


@pytest.mark.asyncio
async def test_zero_value_is_stored_as_one_everywhere(db: Database) -> None:
    service = _service(db)

    await service.track_activity(AnalyticsEvent(guild_id="G", metric_type=MetricType.REACTION_COUNT, value=0))

    raw = await db.fetchall("SELECT value FROM server_analytics WHERE guild_id = ?;", ["G"])
    daily = await service.repo.daily_row("G", TODAY)
    assert [row["value"] for row in raw] == [1]
    assert daily is not None and daily["reactions_given"] == 1


@pytest.mark.asyncio
async def test_message_total_ignores_interleaved_metrics(db: Database) -> None:
    service = _service(db)
    interleaved = [MetricType.COMMAND_USAGE, MetricType.REACTION_COUNT, MetricType.MEMBER_JOIN]
    for index in range(9):
        await service.track_activity(AnalyticsEvent(guild_id="G", metric_type=MetricType.MESSAGE_COUNT))
        await service.track_activity(AnalyticsEvent(guild_id="G", metric_type=interleaved[index % 3]))

    daily = await service.repo.daily_row("G", TODAY)
    hourly = await service.repo.hourly_row("G", TODAY, 10)
    assert daily is not None
    assert daily["total_messages"] == 9
    assert (daily["total_commands"], daily["reactions_given"], daily["new_members"]) == (3, 3, 3)
    assert hourly is not None and hourly["message_count"] == 9

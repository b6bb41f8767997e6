from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from database.base import Database
from database.models import (
    AnalyticsEvent,
    ChannelActivity,
    CommandEvent,
    CommandUsage,
    EngagementSummary,
    GuildSettings,
    HealthSnapshot,
    HourlyBucket,
    ServerOverview,
    TicketRecord,
    TicketStatus,
    TicketTranscript,
)

DAILY_STAT_COLUMNS = frozenset(
    {
        "total_messages",
        "total_members",
        "active_members",
        "total_commands",
        "peak_online",
        "voice_minutes",
        "reactions_given",
        "new_members",
        "left_members",
    }
)
HOURLY_COLUMNS = frozenset({"message_count", "command_count", "voice_users"})

# Retention column per analytics table.
ANALYTICS_TABLES: dict[str, str] = {
    "server_analytics": "created_at",
    "daily_server_stats": "created_at",
    "hourly_activity": "created_at",
    "channel_analytics": "created_at",
    "command_analytics": "created_at",
    "member_engagement": "created_at",
    "server_health": "timestamp",
}

_SETTINGS_COLUMNS = frozenset({"guild_name", "transcript_channel_id", "log_channel_id"})


def _json_load(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"))


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    return str(value)


def _num(value: Any, default: float = 0) -> Any:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return float(value)
    return value


def _plain(row: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, (datetime, date)):
            out[key] = _text(value)
        elif isinstance(value, Decimal):
            out[key] = float(value)
        else:
            out[key] = value
    return out


def parse_role_ids(raw: Any) -> list[str]:
    """Accept a JSON array, a comma separated string or a list."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(item).strip() for item in raw if str(item).strip()]
    text = str(raw).strip()
    if not text:
        return []
    if text.startswith("["):
        loaded = _json_load(text, None)
        if isinstance(loaded, list):
            return [str(item).strip() for item in loaded if str(item).strip()]
    return [part.strip() for part in text.split(",") if part.strip()]


class GuildSettingsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def ensure_guild(self, guild_id: str, guild_name: str | None = None) -> None:
        await self.db.execute(
            """
            INSERT INTO guild_settings(guild_id, guild_name)
            VALUES (?, ?)
            ON CONFLICT(guild_id) DO NOTHING;
            """,
            [guild_id, guild_name],
        )

    async def get_or_create(self, guild_id: str, guild_name: str | None = None) -> GuildSettings:
        await self.ensure_guild(guild_id, guild_name)
        row = await self.db.fetchone("SELECT * FROM guild_settings WHERE guild_id = ?;", [guild_id])
        assert row is not None
        return GuildSettings(
            guild_id=row["guild_id"],
            guild_name=row["guild_name"],
            staff_role_ids=parse_role_ids(row["staff_role_ids"]),
            ticket_counter=int(row["ticket_counter"]),
            transcript_channel_id=row["transcript_channel_id"],
            log_channel_id=row["log_channel_id"],
            values=dict(_json_load(row["settings_json"], {})),
            updated_at=_text(row["updated_at"]),
        )

    async def update(self, guild_id: str, **fields: str | None) -> None:
        unknown = set(fields) - _SETTINGS_COLUMNS
        if unknown:
            raise ValueError(f"Unknown guild settings fields: {sorted(unknown)}")
        if not fields:
            return
        await self.ensure_guild(guild_id)
        assignments = ", ".join(f"{column} = ?" for column in fields)
        await self.db.execute(
            f"""
            UPDATE guild_settings
            SET {assignments}, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?;
            """,
            [*fields.values(), guild_id],
        )

    async def staff_role_ids(self, guild_id: str) -> list[str]:
        row = await self.db.fetchone(
            "SELECT staff_role_ids FROM guild_settings WHERE guild_id = ?;",
            [guild_id],
        )
        if not row:
            return []
        return parse_role_ids(row["staff_role_ids"])

    async def set_staff_roles(self, guild_id: str, role_ids: Sequence[str]) -> None:
        await self.ensure_guild(guild_id)
        await self.db.execute(
            """
            UPDATE guild_settings
            SET staff_role_ids = ?, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?;
            """,
            [_json_dump([str(role_id) for role_id in role_ids]), guild_id],
        )

    async def get_value(self, guild_id: str, key: str, default: Any = None) -> Any:
        settings = await self.get_or_create(guild_id)
        return settings.values.get(key, default)

    async def set_value(self, guild_id: str, key: str, value: Any) -> None:
        settings = await self.get_or_create(guild_id)
        settings.values[key] = value
        await self.db.execute(
            """
            UPDATE guild_settings
            SET settings_json = ?, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?;
            """,
            [_json_dump(settings.values), guild_id],
        )

    async def next_ticket_number(self, guild_id: str) -> int:
        row = await self.db.execute_returning(
            """
            INSERT INTO guild_settings(guild_id, ticket_counter)
            VALUES (?, 1)
            ON CONFLICT(guild_id) DO UPDATE SET
                ticket_counter = guild_settings.ticket_counter + 1,
                updated_at = CURRENT_TIMESTAMP
            RETURNING ticket_counter;
            """,
            [guild_id],
        )
        assert row is not None
        return int(row["ticket_counter"])


class TicketRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        guild_id: str,
        user_id: str,
        ticket_number: int,
        channel_id: str | None = None,
        subject: str | None = None,
    ) -> TicketRecord:
        row = await self.db.execute_returning(
            """
            INSERT INTO tickets(guild_id, channel_id, user_id, ticket_number, subject, status)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING *;
            """,
            [guild_id, channel_id, user_id, ticket_number, subject, TicketStatus.OPEN.value],
        )
        assert row is not None
        return self._row_to_ticket(row)

    async def get_by_id(self, ticket_id: int) -> TicketRecord | None:
        row = await self.db.fetchone("SELECT * FROM tickets WHERE id = ?;", [ticket_id])
        if not row:
            return None
        return self._row_to_ticket(row)

    async def get_by_number(self, guild_id: str, ticket_number: int) -> TicketRecord | None:
        row = await self.db.fetchone(
            "SELECT * FROM tickets WHERE guild_id = ? AND ticket_number = ?;",
            [guild_id, ticket_number],
        )
        if not row:
            return None
        return self._row_to_ticket(row)

    async def get_by_channel(self, guild_id: str, channel_id: str) -> TicketRecord | None:
        row = await self.db.fetchone(
            "SELECT * FROM tickets WHERE guild_id = ? AND channel_id = ?;",
            [guild_id, channel_id],
        )
        if not row:
            return None
        return self._row_to_ticket(row)

    async def list_by_guild(
        self, guild_id: str, status: str | None = None, limit: int = 100
    ) -> list[TicketRecord]:
        if status:
            rows = await self.db.fetchall(
                """
                SELECT * FROM tickets
                WHERE guild_id = ? AND status = ?
                ORDER BY ticket_number DESC
                LIMIT ?;
                """,
                [guild_id, status, limit],
            )
        else:
            rows = await self.db.fetchall(
                """
                SELECT * FROM tickets
                WHERE guild_id = ?
                ORDER BY ticket_number DESC
                LIMIT ?;
                """,
                [guild_id, limit],
            )
        return [self._row_to_ticket(row) for row in rows]

    async def status_counts(self, guild_id: str) -> dict[str, int]:
        rows = await self.db.fetchall(
            """
            SELECT status, COUNT(*) AS count
            FROM tickets
            WHERE guild_id = ?
            GROUP BY status;
            """,
            [guild_id],
        )
        return {row["status"]: int(row["count"]) for row in rows}

    async def set_status(self, ticket_id: int, status: TicketStatus) -> int:
        if status in (TicketStatus.CLOSED, TicketStatus.DELETED):
            return await self.db.execute(
                """
                UPDATE tickets
                SET status = ?, closed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?;
                """,
                [status.value, ticket_id],
            )
        return await self.db.execute(
            """
            UPDATE tickets
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?;
            """,
            [status.value, ticket_id],
        )

    async def set_channel(self, ticket_id: int, channel_id: str) -> int:
        return await self.db.execute(
            """
            UPDATE tickets
            SET channel_id = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?;
            """,
            [channel_id, ticket_id],
        )

    async def set_rating(self, ticket_id: int, rating: int) -> int:
        return await self.db.execute(
            """
            UPDATE tickets
            SET rating = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?;
            """,
            [rating, ticket_id],
        )

    async def list_missing_transcripts(self, guild_id: str) -> list[TicketRecord]:
        rows = await self.db.fetchall(
            """
            SELECT t.* FROM tickets t
            LEFT JOIN ticket_transcripts tt ON tt.ticket_id = t.id
            WHERE t.guild_id = ? AND t.status IN ('closed', 'deleted') AND tt.id IS NULL
            ORDER BY t.ticket_number ASC;
            """,
            [guild_id],
        )
        return [self._row_to_ticket(row) for row in rows]

    def _row_to_ticket(self, row: dict[str, Any]) -> TicketRecord:
        return TicketRecord(
            id=int(row["id"]),
            guild_id=str(row["guild_id"]),
            user_id=str(row["user_id"]),
            ticket_number=int(row["ticket_number"]),
            status=row["status"],
            channel_id=row["channel_id"],
            subject=row["subject"],
            rating=row["rating"],
            created_at=_text(row["created_at"]),
            last_message_at=_text(row["last_message_at"]),
            last_activity_at=_text(row["last_activity_at"]),
            updated_at=_text(row["updated_at"]),
            closed_at=_text(row["closed_at"]),
        )


class TranscriptRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def upsert(self, ticket_id: int, messages: list[dict[str, Any]]) -> None:
        await self.db.execute(
            """
            INSERT INTO ticket_transcripts(ticket_id, transcript, message_count)
            VALUES (?, ?, ?)
            ON CONFLICT(ticket_id) DO UPDATE SET
                transcript = excluded.transcript,
                message_count = excluded.message_count,
                updated_at = CURRENT_TIMESTAMP;
            """,
            [ticket_id, json.dumps(messages, ensure_ascii=False), len(messages)],
        )

    async def get(self, ticket_id: int) -> TicketTranscript | None:
        row = await self.db.fetchone(
            "SELECT * FROM ticket_transcripts WHERE ticket_id = ?;",
            [ticket_id],
        )
        if not row:
            return None
        return TicketTranscript(
            ticket_id=int(row["ticket_id"]),
            messages=list(_json_load(row["transcript"], [])),
            created_at=_text(row["created_at"]),
            updated_at=_text(row["updated_at"]),
        )

    async def exists(self, ticket_id: int) -> bool:
        row = await self.db.fetchone(
            "SELECT 1 AS present FROM ticket_transcripts WHERE ticket_id = ?;",
            [ticket_id],
        )
        return row is not None

    async def count_for_guild(self, guild_id: str) -> int:
        row = await self.db.fetchone(
            """
            SELECT COUNT(*) AS count
            FROM ticket_transcripts tt
            JOIN tickets t ON t.id = tt.ticket_id
            WHERE t.guild_id = ?;
            """,
            [guild_id],
        )
        return int(row["count"]) if row else 0


class StaffActivityRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def touch(self, ticket_id: int, guild_id: str, staff_id: str) -> bool:
        """Return True when a new row was inserted."""
        updated = await self.db.execute(
            """
            UPDATE ticket_staff_activity
            SET last_activity = CURRENT_TIMESTAMP
            WHERE ticket_id = ? AND staff_id = ?;
            """,
            [ticket_id, staff_id],
        )
        if updated:
            return False
        await self.db.execute(
            """
            INSERT INTO ticket_staff_activity(ticket_id, guild_id, staff_id, last_activity)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP);
            """,
            [ticket_id, guild_id, staff_id],
        )
        return True

    async def list_for_ticket(self, ticket_id: int) -> list[dict[str, Any]]:
        rows = await self.db.fetchall(
            """
            SELECT staff_id, last_activity
            FROM ticket_staff_activity
            WHERE ticket_id = ?
            ORDER BY last_activity DESC;
            """,
            [ticket_id],
        )
        return [_plain(row) for row in rows]


class EventRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def log(
        self,
        ticket_id: int,
        guild_id: str,
        actor_id: str | None,
        event_type: str,
        payload: dict[str, Any],
    ) -> None:
        await self.db.execute(
            """
            INSERT INTO ticket_events(id, ticket_id, guild_id, actor_id, event_type, payload_json)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            [str(uuid4()), ticket_id, guild_id, actor_id, event_type, _json_dump(payload)],
        )

    async def list_recent(self, ticket_id: int, limit: int = 25) -> list[dict[str, Any]]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM ticket_events
            WHERE ticket_id = ?
            ORDER BY created_at DESC
            LIMIT ?;
            """,
            [ticket_id, limit],
        )
        result: list[dict[str, Any]] = []
        for row in rows:
            item = _plain(row)
            item["payload"] = _json_load(row.get("payload_json"), {})
            result.append(item)
        return result


class AnalyticsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def insert_event(self, event: AnalyticsEvent) -> None:
        await self.db.execute(
            """
            INSERT INTO server_analytics(
                guild_id, metric_type, channel_id, user_id, command_name, value, metadata
            )
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            [
                event.guild_id,
                str(event.metric_type),
                event.channel_id,
                event.user_id,
                event.command_name,
                event.value,
                event.metadata,
            ],
        )

    async def increment_daily(self, guild_id: str, day: str, column: str, value: int) -> None:
        if column not in DAILY_STAT_COLUMNS:
            raise ValueError(f"Unknown daily stats column: {column}")
        await self.db.execute(
            f"""
            INSERT INTO daily_server_stats(guild_id, date, {column})
            VALUES (?, ?, ?)
            ON CONFLICT(guild_id, date) DO UPDATE SET
                {column} = daily_server_stats.{column} + excluded.{column},
                updated_at = CURRENT_TIMESTAMP;
            """,
            [guild_id, day, value],
        )

    async def increment_hourly(self, guild_id: str, day: str, hour: int, column: str, value: int) -> None:
        if column not in HOURLY_COLUMNS:
            raise ValueError(f"Unknown hourly activity column: {column}")
        await self.db.execute(
            f"""
            INSERT INTO hourly_activity(guild_id, hour, date, {column})
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, date, hour) DO UPDATE SET
                {column} = hourly_activity.{column} + excluded.{column},
                updated_at = CURRENT_TIMESTAMP;
            """,
            [guild_id, hour, day, value],
        )

    async def insert_command(self, event: CommandEvent) -> None:
        await self.db.execute(
            """
            INSERT INTO command_analytics(
                guild_id, command_name, user_id, channel_id, success, execution_time, error_message
            )
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            [
                event.guild_id,
                event.command_name,
                event.user_id,
                event.channel_id,
                event.success,
                event.execution_time,
                event.error_message,
            ],
        )

    async def insert_health(self, snapshot: HealthSnapshot) -> None:
        await self.db.execute(
            """
            INSERT INTO server_health(
                guild_id, member_count, online_count, bot_latency, api_response_time,
                memory_usage, cpu_usage, uptime, error_count
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                snapshot.guild_id,
                snapshot.member_count,
                snapshot.online_count,
                snapshot.bot_latency,
                snapshot.api_response_time,
                snapshot.memory_usage,
                snapshot.cpu_usage,
                snapshot.uptime,
                snapshot.error_count,
            ],
        )

    async def upsert_channel(
        self, guild_id: str, channel_id: str, channel_name: str, channel_type: str, day: str
    ) -> None:
        await self.db.execute(
            """
            INSERT INTO channel_analytics(
                guild_id, channel_id, channel_name, channel_type, date, message_count, unique_users
            )
            VALUES (?, ?, ?, ?, ?, 1, 1)
            ON CONFLICT(guild_id, channel_id, date) DO UPDATE SET
                channel_name = excluded.channel_name,
                channel_type = excluded.channel_type,
                message_count = channel_analytics.message_count + 1,
                updated_at = CURRENT_TIMESTAMP;
            """,
            [guild_id, channel_id, channel_name, channel_type, day],
        )

    async def refresh_unique_users(
        self, guild_id: str, channel_id: str, day: str, start: datetime, end: datetime
    ) -> None:
        await self.db.execute(
            """
            UPDATE channel_analytics
            SET unique_users = (
                SELECT COUNT(DISTINCT user_id)
                FROM server_analytics
                WHERE guild_id = ? AND channel_id = ? AND metric_type = 'message_count'
                    AND user_id IS NOT NULL AND created_at >= ? AND created_at < ?
            )
            WHERE guild_id = ? AND channel_id = ? AND date = ?;
            """,
            [
                guild_id,
                channel_id,
                self.db.timestamp_param(start),
                self.db.timestamp_param(end),
                guild_id,
                channel_id,
                day,
            ],
        )

    async def upsert_engagement(
        self,
        guild_id: str,
        user_id: str,
        day: str,
        messages: int,
        commands: int,
        reactions: int,
        voice_minutes: int,
        message_time: str | None,
    ) -> None:
        await self.db.execute(
            """
            INSERT INTO member_engagement(
                guild_id, user_id, date, messages_sent, commands_used, reactions_given,
                voice_minutes, first_message_time, last_message_time
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id, user_id, date) DO UPDATE SET
                messages_sent = member_engagement.messages_sent + excluded.messages_sent,
                commands_used = member_engagement.commands_used + excluded.commands_used,
                reactions_given = member_engagement.reactions_given + excluded.reactions_given,
                voice_minutes = member_engagement.voice_minutes + excluded.voice_minutes,
                first_message_time = COALESCE(member_engagement.first_message_time, excluded.first_message_time),
                last_message_time = COALESCE(excluded.last_message_time, member_engagement.last_message_time),
                updated_at = CURRENT_TIMESTAMP;
            """,
            [
                guild_id,
                user_id,
                day,
                messages,
                commands,
                reactions,
                voice_minutes,
                message_time,
                message_time,
            ],
        )

    async def refresh_active_members(self, guild_id: str, day: str) -> None:
        await self.db.execute(
            """
            INSERT INTO daily_server_stats(guild_id, date, active_members)
            VALUES (?, ?, (
                SELECT COUNT(*) FROM member_engagement
                WHERE guild_id = ? AND date = ? AND messages_sent > 0
            ))
            ON CONFLICT(guild_id, date) DO UPDATE SET
                active_members = excluded.active_members,
                updated_at = CURRENT_TIMESTAMP;
            """,
            [guild_id, day, guild_id, day],
        )

    async def set_member_count(self, guild_id: str, day: str, total_members: int, online_count: int) -> None:
        peak = "MAX" if self.db.driver == "sqlite" else "GREATEST"
        await self.db.execute(
            f"""
            INSERT INTO daily_server_stats(guild_id, date, total_members, peak_online)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, date) DO UPDATE SET
                total_members = excluded.total_members,
                peak_online = {peak}(daily_server_stats.peak_online, excluded.peak_online),
                updated_at = CURRENT_TIMESTAMP;
            """,
            [guild_id, day, total_members, online_count],
        )

    async def daily_row(self, guild_id: str, day: str) -> dict[str, Any] | None:
        row = await self.db.fetchone(
            "SELECT * FROM daily_server_stats WHERE guild_id = ? AND date = ?;",
            [guild_id, day],
        )
        return _plain(row) if row else None

    async def hourly_row(self, guild_id: str, day: str, hour: int) -> dict[str, Any] | None:
        row = await self.db.fetchone(
            "SELECT * FROM hourly_activity WHERE guild_id = ? AND date = ? AND hour = ?;",
            [guild_id, day, hour],
        )
        return _plain(row) if row else None

    async def overview(self, guild_id: str, since_day: str) -> ServerOverview:
        row = await self.db.fetchone(
            """
            SELECT
                SUM(total_messages) AS total_messages,
                AVG(total_members) AS avg_members,
                SUM(total_commands) AS total_commands,
                MAX(peak_online) AS peak_online,
                SUM(new_members) AS new_members,
                SUM(left_members) AS left_members,
                SUM(voice_minutes) AS voice_minutes,
                SUM(reactions_given) AS reactions_given
            FROM daily_server_stats
            WHERE guild_id = ? AND date >= ?;
            """,
            [guild_id, since_day],
        )
        health = await self.db.fetchone(
            """
            SELECT online_count, member_count
            FROM server_health
            WHERE guild_id = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT 1;
            """,
            [guild_id],
        )
        row = row or {}
        return ServerOverview(
            total_messages=int(_num(row.get("total_messages"))),
            avg_members=float(_num(row.get("avg_members"), 0.0)),
            total_commands=int(_num(row.get("total_commands"))),
            peak_online=int(_num(row.get("peak_online"))),
            new_members=int(_num(row.get("new_members"))),
            left_members=int(_num(row.get("left_members"))),
            voice_minutes=int(_num(row.get("voice_minutes"))),
            reactions_given=int(_num(row.get("reactions_given"))),
            current_online=int(health["online_count"] or 0) if health else 0,
            current_members=int(health["member_count"] or 0) if health else 0,
        )

    async def hourly(self, guild_id: str, since_day: str) -> list[HourlyBucket]:
        rows = await self.db.fetchall(
            """
            SELECT
                hour,
                AVG(message_count) AS avg_messages,
                AVG(command_count) AS avg_commands,
                AVG(voice_users) AS avg_voice_users
            FROM hourly_activity
            WHERE guild_id = ? AND date >= ?
            GROUP BY hour
            ORDER BY hour;
            """,
            [guild_id, since_day],
        )
        return [
            HourlyBucket(
                hour=int(row["hour"]),
                avg_messages=float(_num(row["avg_messages"], 0.0)),
                avg_commands=float(_num(row["avg_commands"], 0.0)),
                avg_voice_users=float(_num(row["avg_voice_users"], 0.0)),
            )
            for row in rows
        ]

    async def top_channels(self, guild_id: str, since_day: str, limit: int) -> list[ChannelActivity]:
        rows = await self.db.fetchall(
            """
            SELECT
                channel_id,
                channel_name,
                channel_type,
                SUM(message_count) AS total_messages,
                COUNT(DISTINCT date) AS active_days,
                AVG(unique_users) AS avg_users
            FROM channel_analytics
            WHERE guild_id = ? AND date >= ?
            GROUP BY channel_id, channel_name, channel_type
            ORDER BY total_messages DESC
            LIMIT ?;
            """,
            [guild_id, since_day, limit],
        )
        return [
            ChannelActivity(
                channel_id=str(row["channel_id"]),
                channel_name=row["channel_name"],
                channel_type=row["channel_type"],
                total_messages=int(_num(row["total_messages"])),
                active_days=int(row["active_days"]),
                avg_users=float(_num(row["avg_users"], 0.0)),
            )
            for row in rows
        ]

    async def command_stats(self, guild_id: str, since: datetime) -> list[CommandUsage]:
        rows = await self.db.fetchall(
            """
            SELECT
                command_name,
                COUNT(*) AS usage_count,
                AVG(execution_time) AS avg_execution_time,
                SUM(CASE WHEN success THEN 1 ELSE 0 END) AS success_count,
                SUM(CASE WHEN success THEN 0 ELSE 1 END) AS error_count
            FROM command_analytics
            WHERE guild_id = ? AND created_at >= ?
            GROUP BY command_name
            ORDER BY usage_count DESC;
            """,
            [guild_id, self.db.timestamp_param(since)],
        )
        return [
            CommandUsage(
                command_name=row["command_name"],
                usage_count=int(row["usage_count"]),
                avg_execution_time=(
                    float(_num(row["avg_execution_time"])) if row["avg_execution_time"] is not None else None
                ),
                success_count=int(_num(row["success_count"])),
                error_count=int(_num(row["error_count"])),
            )
            for row in rows
        ]

    async def engagement(self, guild_id: str, since_day: str) -> EngagementSummary:
        row = await self.db.fetchone(
            """
            SELECT
                COUNT(DISTINCT user_id) AS active_members,
                AVG(messages_sent) AS avg_messages_per_member,
                AVG(commands_used) AS avg_commands_per_member,
                AVG(voice_minutes) AS avg_voice_per_member,
                MAX(messages_sent) AS most_messages,
                MAX(voice_minutes) AS most_voice_time
            FROM member_engagement
            WHERE guild_id = ? AND date >= ?;
            """,
            [guild_id, since_day],
        )
        row = row or {}
        return EngagementSummary(
            active_members=int(_num(row.get("active_members"))),
            avg_messages_per_member=float(_num(row.get("avg_messages_per_member"), 0.0)),
            avg_commands_per_member=float(_num(row.get("avg_commands_per_member"), 0.0)),
            avg_voice_per_member=float(_num(row.get("avg_voice_per_member"), 0.0)),
            most_messages=int(_num(row.get("most_messages"))),
            most_voice_time=int(_num(row.get("most_voice_time"))),
        )

    async def health_history(self, guild_id: str, since: datetime) -> list[dict[str, Any]]:
        rows = await self.db.fetchall(
            """
            SELECT *
            FROM server_health
            WHERE guild_id = ? AND timestamp >= ?
            ORDER BY timestamp DESC, id DESC;
            """,
            [guild_id, self.db.timestamp_param(since)],
        )
        return [_plain(row) for row in rows]

    async def delete_older_than(self, table: str, cutoff: datetime) -> int:
        column = ANALYTICS_TABLES.get(table)
        if column is None:
            raise ValueError(f"Unknown analytics table: {table}")
        return await self.db.execute(
            f"DELETE FROM {table} WHERE {column} < ?;",
            [self.db.timestamp_param(cutoff)],
        )

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.config import AnalyticsConfig
from database.models import MetricType, TicketRecord, TicketTranscript
from services.health_monitor import HealthMonitor
from services.transcript_service import DiscordHistorySource, message_from_discord, render_text
from utils.side_effects import drain_side_effects


def _message(message_id: int, content: str, minute: int) -> SimpleNamespace:
    return SimpleNamespace(
        id=message_id,
        author=SimpleNamespace(id=999, name="Test User", bot=False),
        content=content,
        created_at=datetime(2024, 5, 1, 12, minute, tzinfo=UTC),
        attachments=[SimpleNamespace(url="https://cdn.example/log.txt", filename="log.txt", content_type="text/plain")],
        embeds=[],
    )


class _History:
    def __init__(self, messages: list[SimpleNamespace]) -> None:
        self._messages = messages

    def __aiter__(self):
        self._iter = iter(self._messages)
        return self

    async def __anext__(self) -> SimpleNamespace:
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration from None


def test_message_conversion_keeps_author_and_attachments() -> None:
    converted = message_from_discord(_message(1, "hello", 0)).to_dict()

    assert converted["author"] == {"id": "999", "username": "Test User", "bot": False}
    assert converted["attachments"][0]["name"] == "log.txt"
    assert converted["timestamp"].startswith("2024-05-01T12:00:00")

    text = render_text(TicketTranscript(ticket_id=5, messages=[converted]))
    assert "Test User (999): hello" in text
    assert "attachment: log.txt" in text


@pytest.mark.asyncio
async def test_history_source_returns_oldest_first() -> None:
    channel = MagicMock(spec=discord.TextChannel)
    # Discord yields newest first when oldest_first is False.
    channel.history = MagicMock(return_value=_History([_message(2, "second", 1), _message(1, "first", 0)]))
    client = MagicMock()
    client.get_channel = MagicMock(return_value=channel)
    ticket = TicketRecord(id=5, guild_id="G1", user_id="U1", ticket_number=42, status="open", channel_id="123")

    messages = await DiscordHistorySource(client).fetch_messages(ticket, limit=100)

    assert messages is not None
    assert [item.content for item in messages] == ["first", "second"]
    channel.history.assert_called_once_with(limit=100, oldest_first=False)


@pytest.mark.asyncio
async def test_history_source_reports_missing_channel() -> None:
    client = MagicMock()
    client.get_channel = MagicMock(return_value=None)
    client.fetch_channel = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404, reason="Not Found"), "gone"))
    ticket = TicketRecord(id=5, guild_id="G1", user_id="U1", ticket_number=42, status="open", channel_id="123")

    assert await DiscordHistorySource(client).fetch_messages(ticket, limit=100) is None


def test_health_snapshot_uses_process_numbers() -> None:
    started = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    now = {"value": started}
    monitor = HealthMonitor(clock=lambda: now["value"])
    monitor.record_error()
    now["value"] = started + timedelta(minutes=10)

    snapshot = monitor.snapshot("G1", member_count=50, online_count=12, latency_seconds=0.0424)

    assert snapshot.uptime == 600
    assert snapshot.bot_latency == 42
    assert snapshot.error_count == 1
    assert snapshot.memory_usage is not None and snapshot.memory_usage > 0
    assert monitor.snapshot("G1", 50, 12, float("inf")).bot_latency is None


@pytest.mark.asyncio
async def test_events_cog_routes_guild_message() -> None:
    from cogs.events import EventsCog

    bot = SimpleNamespace(
        config=SimpleNamespace(analytics=AnalyticsConfig()),
        activity_tracker=SimpleNamespace(record_activity=AsyncMock()),
        analytics_service=SimpleNamespace(
            track_activity=AsyncMock(),
            update_channel_analytics=AsyncMock(),
            record_member_engagement=AsyncMock(),
        ),
    )
    cog = EventsCog(bot)  # type: ignore[arg-type]
    message = SimpleNamespace(
        id=77,
        guild=SimpleNamespace(id=123),
        channel=SimpleNamespace(id=456, name="ticket-42", type=discord.ChannelType.text),
        author=SimpleNamespace(id=999, bot=False, roles=[SimpleNamespace(id=1)]),
    )

    await cog.on_message(message)  # type: ignore[arg-type]
    await drain_side_effects(timeout=1)

    bot.activity_tracker.record_activity.assert_awaited_once_with(
        "ticket-42", "123", "999", author_role_ids=[1], author_is_bot=False
    )
    event = bot.analytics_service.track_activity.await_args.args[0]
    assert event.metric_type == MetricType.MESSAGE_COUNT
    assert (event.guild_id, event.channel_id, event.user_id) == ("123", "456", "999")
    bot.analytics_service.update_channel_analytics.assert_awaited_once_with("123", "456", "ticket-42", "text")
    bot.analytics_service.record_member_engagement.assert_awaited_once_with("123", "999", messages=1)

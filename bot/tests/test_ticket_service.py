from __future__ import annotations

import pytest
from conftest import FakeHistorySource, build_ticket_service, make_message

from core.config import TicketConfig
from core.errors import (
    InvalidStateError,
    NotFoundError,
    TranscriptUnavailableError,
    ValidationError,
)
from database.base import Database
from database.models import TicketStatus
from database.repositories import GuildSettingsRepository, TicketRepository, TranscriptRepository


async def _ticket_number_42(db: Database, service) -> int:
    # Earlier tickets in the guild so the next one is #42.
    await GuildSettingsRepository(db).get_or_create("G1")
    await db.execute("UPDATE guild_settings SET ticket_counter = 41 WHERE guild_id = ?;", ["G1"])
    ticket = await service.create_ticket("G1", "U1", "Billing question", channel_id="C42")
    assert ticket.ticket_number == 42
    return ticket.id


@pytest.mark.asyncio
async def test_close_then_reopen_ticket_42(db: Database) -> None:
    source = FakeHistorySource([make_message("1", "hello"), make_message("2", "need help")])
    service = build_ticket_service(db, source)
    ticket_id = await _ticket_number_42(db, service)

    closed = await service.close_ticket(ticket_id, "Issue resolved", actor_id="S1")
    assert closed.status == TicketStatus.CLOSED
    assert closed.closed_at is not None

    transcript = await service.get_transcript(ticket_id)
    assert [msg["content"] for msg in transcript.messages] == ["hello", "need help"]

    reopened = await service.reopen_ticket(ticket_id, "Customer replied", actor_id="S1")
    assert reopened.status == TicketStatus.OPEN
    assert reopened.closed_at == closed.closed_at

    by_number = await service.get_ticket_by_number("G1", 42)
    assert by_number.id == ticket_id
    events = [item["event_type"] for item in await service.history(ticket_id)]
    assert sorted(events) == ["close", "create", "reopen"]


@pytest.mark.asyncio
async def test_short_reason_is_rejected_without_writes(db: Database) -> None:
    service = build_ticket_service(db, FakeHistorySource([]))
    ticket = await service.create_ticket("G1", "U1", channel_id="C1")

    with pytest.raises(ValidationError):
        await service.close_ticket(ticket.id, "ok")
    with pytest.raises(ValidationError):
        await service.delete_ticket(ticket.id, "   ")
    with pytest.raises(ValidationError):
        await service.reopen_ticket(ticket.id, "123")

    stored = await TicketRepository(db).get_by_id(ticket.id)
    assert stored is not None
    assert stored.status == TicketStatus.OPEN
    assert await TranscriptRepository(db).exists(ticket.id) is False


@pytest.mark.asyncio
async def test_delete_refused_when_transcript_capture_fails(db: Database) -> None:
    source = FakeHistorySource(error=RuntimeError("gateway unavailable"))
    service = build_ticket_service(db, source)
    ticket = await service.create_ticket("G1", "U1", channel_id="C1")

    with pytest.raises(TranscriptUnavailableError):
        await service.delete_ticket(ticket.id, "Spam ticket")

    stored = await TicketRepository(db).get_by_id(ticket.id)
    assert stored is not None
    assert stored.status == TicketStatus.OPEN


@pytest.mark.asyncio
async def test_close_survives_transcript_failure(db: Database) -> None:
    source = FakeHistorySource(error=RuntimeError("gateway unavailable"))
    service = build_ticket_service(db, source)
    ticket = await service.create_ticket("G1", "U1", channel_id="C1")

    closed = await service.close_ticket(ticket.id, "Done here")
    assert closed.status == TicketStatus.CLOSED
    assert await TranscriptRepository(db).exists(ticket.id) is False


@pytest.mark.asyncio
async def test_delete_with_missing_channel_saves_placeholder(db: Database) -> None:
    service = build_ticket_service(db, FakeHistorySource(None))
    ticket = await service.create_ticket("G1", "U1", channel_id="C404")

    deleted = await service.delete_ticket(ticket.id, "Channel removed by hand")
    assert deleted.status == TicketStatus.DELETED

    transcript = await service.get_transcript(ticket.id)
    assert transcript.message_count == 1
    assert transcript.messages[0]["id"] == "placeholder"
    assert "no longer exists" in transcript.messages[0]["content"]

    with pytest.raises(InvalidStateError):
        await service.delete_ticket(ticket.id, "Second attempt")
    with pytest.raises(InvalidStateError):
        await service.reopen_ticket(ticket.id, "Bring it back")


@pytest.mark.asyncio
async def test_empty_channel_saves_no_messages_marker(db: Database) -> None:
    service = build_ticket_service(db, FakeHistorySource([]))
    ticket = await service.create_ticket("G1", "U1", channel_id="C1")

    await service.close_ticket(ticket.id, "Nothing said")
    transcript = await service.get_transcript(ticket.id)
    assert transcript.messages[0]["id"] == "no-messages"


@pytest.mark.asyncio
async def test_save_transcript_overwrites_previous(db: Database) -> None:
    service = build_ticket_service(db, FakeHistorySource([]))
    ticket = await service.create_ticket("G1", "U1", channel_id="C1")

    await service.save_transcript(ticket.id, [make_message("1", "first")])
    await service.save_transcript(ticket.id, [make_message("2", "second"), make_message("3", "third")])

    transcript = await service.get_transcript(ticket.id)
    assert transcript.message_count == 2
    assert transcript.messages[0]["author"] == {"id": "alice-id", "username": "alice", "bot": False}
    assert [msg["content"] for msg in transcript.messages] == ["second", "third"]


@pytest.mark.asyncio
async def test_strict_transitions_reject_repeated_close(db: Database) -> None:
    service = build_ticket_service(db, FakeHistorySource([]))
    ticket = await service.create_ticket("G1", "U1", channel_id="C1")
    await service.close_ticket(ticket.id, "First close")

    with pytest.raises(InvalidStateError):
        await service.close_ticket(ticket.id, "Second close")

    await service.reopen_ticket(ticket.id, "Reopening")
    with pytest.raises(InvalidStateError):
        await service.reopen_ticket(ticket.id, "Again")


@pytest.mark.asyncio
async def test_lenient_transitions_repeat_status_update(db: Database) -> None:
    service = build_ticket_service(db, FakeHistorySource([]), TicketConfig(strict_transitions=False))
    ticket = await service.create_ticket("G1", "U1", channel_id="C1")

    await service.close_ticket(ticket.id, "First close")
    again = await service.close_ticket(ticket.id, "Second close")
    assert again.status == TicketStatus.CLOSED
    reopened = await service.reopen_ticket(ticket.id, "Reopen once")
    reopened = await service.reopen_ticket(reopened.id, "Reopen twice")
    assert reopened.status == TicketStatus.OPEN


@pytest.mark.asyncio
async def test_unknown_ticket_and_rating_bounds(db: Database) -> None:
    service = build_ticket_service(db, FakeHistorySource([]))
    with pytest.raises(NotFoundError):
        await service.close_ticket(999, "Valid reason")

    ticket = await service.create_ticket("G1", "U1", channel_id="C1")
    with pytest.raises(ValidationError):
        await service.rate_ticket(ticket.id, 6)
    rated = await service.rate_ticket(ticket.id, 5, user_id="U1")
    assert rated.rating == 5


@pytest.mark.asyncio
async def test_ticket_numbers_are_per_guild(db: Database) -> None:
    service = build_ticket_service(db, FakeHistorySource([]))
    first = await service.create_ticket("G1", "U1")
    second = await service.create_ticket("G1", "U2")
    other = await service.create_ticket("G2", "U3")
    assert (first.ticket_number, second.ticket_number, other.ticket_number) == (1, 2, 1)

    attached = await service.attach_channel(first.id, "C77")
    assert attached.channel_name == "ticket-1"
    found = await service.get_ticket_for_channel("G1", "C77")
    assert found.id == first.id


@pytest.mark.asyncio
async def test_regenerate_missing_transcripts(db: Database) -> None:
    source = FakeHistorySource(error=RuntimeError("offline"))
    service = build_ticket_service(db, source)
    first = await service.create_ticket("G1", "U1", channel_id="C1")
    second = await service.create_ticket("G1", "U2", channel_id="C2")
    await service.close_ticket(first.id, "Closing while offline")
    await service.close_ticket(second.id, "Closing while offline")

    stats = await service.deps.transcripts.stats("G1")
    assert (stats.total_tickets, stats.with_transcript, stats.missing) == (2, 0, 2)

    source.error = None
    source.messages = None
    summary = await service.deps.transcripts.regenerate_missing("G1")
    assert (summary.processed, summary.generated, summary.errors) == (2, 2, 0)
    assert await service.deps.transcripts.exists(first.id)

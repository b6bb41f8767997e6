from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from database.base import Database
from database.repositories import GuildSettingsRepository, StaffActivityRepository, TicketRepository
from services.activity_tracker import ActivityTracker, parse_ticket_number, touch_ticket_activity
from services.settings_service import SettingsService


def _tracker(db: Database) -> ActivityTracker:
    return ActivityTracker(
        db,
        SettingsService(GuildSettingsRepository(db)),
        TicketRepository(db),
        StaffActivityRepository(db),
    )


def test_parse_ticket_number() -> None:
    assert parse_ticket_number("ticket-7") == 7
    assert parse_ticket_number("closed-TICKET-12") == 12
    assert parse_ticket_number("general") is None
    assert parse_ticket_number(None) is None


@pytest.mark.asyncio
async def test_non_ticket_channel_is_a_noop() -> None:
    db = MagicMock()
    db.execute = AsyncMock()
    db.fetchone = AsyncMock()
    tracker = ActivityTracker(db, MagicMock(), MagicMock(), MagicMock())

    outcome = await tracker.record_activity("general", "G1", "U1", author_is_staff=True)

    assert outcome is None
    db.execute.assert_not_awaited()
    db.fetchone.assert_not_awaited()


@pytest.mark.asyncio
async def test_message_bumps_last_activity(db: Database) -> None:
    repo = TicketRepository(db)
    await repo.create(guild_id="G1", user_id="U1", ticket_number=3, channel_id="C3")

    outcome = await _tracker(db).record_activity("ticket-3", "G1", "U1", author_is_staff=False)

    assert outcome is not None
    assert outcome.column == "last_activity_at"
    assert outcome.staff_recorded is False
    ticket = await repo.get_by_number("G1", 3)
    assert ticket is not None and ticket.last_activity_at is not None


@pytest.mark.asyncio
async def test_custom_channel_prefix_is_tracked(db: Database) -> None:
    repo = TicketRepository(db)
    await repo.create(guild_id="G1", user_id="U1", ticket_number=7, channel_id="C7")
    tracker = ActivityTracker(
        db,
        SettingsService(GuildSettingsRepository(db)),
        repo,
        StaffActivityRepository(db),
        channel_prefix="support",
    )

    outcome = await tracker.record_activity("support-7", "G1", "U1", author_is_staff=False)

    assert outcome is not None and outcome.ticket_number == 7
    ticket = await repo.get_by_number("G1", 7)
    assert ticket is not None and ticket.last_activity_at is not None
    assert await tracker.record_activity("ticket-7", "G1", "U1", author_is_staff=False) is None


@pytest.mark.asyncio
async def test_legacy_schema_falls_back_to_updated_at(tmp_path) -> None:
    db = Database(url=f"sqlite:///{tmp_path / 'legacy.db'}")
    await db.connect()
    await db.executescript(
        """
        CREATE TABLE tickets (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            guild_id TEXT NOT NULL,
            ticket_number INTEGER NOT NULL,
            updated_at TIMESTAMP
        );
        INSERT INTO tickets(guild_id, ticket_number) VALUES ('G1', 5);
        """
    )

    column = await touch_ticket_activity(db, "G1", 5)

    assert column == "updated_at"
    row = await db.fetchone("SELECT updated_at FROM tickets WHERE ticket_number = 5;")
    assert row is not None and row["updated_at"] is not None
    await db.close()


@pytest.mark.asyncio
async def test_staff_activity_inserts_then_updates(db: Database) -> None:
    repo = TicketRepository(db)
    ticket = await repo.create(guild_id="G1", user_id="U1", ticket_number=9, channel_id="C9")
    await GuildSettingsRepository(db).set_staff_roles("G1", ["R-staff"])
    tracker = _tracker(db)

    first = await tracker.record_activity("ticket-9", "G1", "S1", author_role_ids=["R-staff"])
    second = await tracker.record_activity("ticket-9", "G1", "S1", author_role_ids=["R-staff"])
    member = await tracker.record_activity("ticket-9", "G1", "U1", author_role_ids=["R-member"])

    assert first is not None and first.staff_recorded
    assert second is not None and second.staff_recorded
    assert member is not None and not member.staff_recorded
    rows = await StaffActivityRepository(db).list_for_ticket(ticket.id)
    assert [row["staff_id"] for row in rows] == ["S1"]


@pytest.mark.asyncio
async def test_database_failure_is_swallowed() -> None:
    db = MagicMock()
    db.execute = AsyncMock(side_effect=RuntimeError("disk full"))
    tracker = ActivityTracker(db, MagicMock(), MagicMock(), MagicMock())

    outcome = await tracker.record_activity("ticket-1", "G1", "U1", author_is_staff=False)

    assert outcome is None

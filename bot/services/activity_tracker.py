from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from database.base import DATABASE_ERRORS, Database, is_missing_column_error
from database.repositories import StaffActivityRepository, TicketRepository
from services.settings_service import SettingsService
from utils.side_effects import best_effort

LOGGER = logging.getLogger(__name__)

DEFAULT_CHANNEL_PREFIX = "ticket"


def ticket_channel_pattern(prefix: str = DEFAULT_CHANNEL_PREFIX) -> re.Pattern[str]:
    return re.compile(rf"{re.escape(prefix)}-(\d+)", re.IGNORECASE)


TICKET_CHANNEL_PATTERN = ticket_channel_pattern()

# Tried in order; older schemas may lack the first two columns.
ACTIVITY_COLUMN_UPDATES: tuple[tuple[str, str], ...] = (
    (
        "last_activity_at",
        """
        UPDATE tickets
        SET last_activity_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
        WHERE guild_id = ? AND ticket_number = ?;
        """,
    ),
    (
        "last_message_at",
        """
        UPDATE tickets
        SET last_message_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
        WHERE guild_id = ? AND ticket_number = ?;
        """,
    ),
    (
        "updated_at",
        """
        UPDATE tickets
        SET updated_at = CURRENT_TIMESTAMP
        WHERE guild_id = ? AND ticket_number = ?;
        """,
    ),
)


@dataclass(slots=True)
class ActivityOutcome:
    ticket_number: int
    column: str | None
    staff_recorded: bool = False


def parse_ticket_number(
    channel_name: str | None, pattern: re.Pattern[str] = TICKET_CHANNEL_PATTERN
) -> int | None:
    if not channel_name:
        return None
    match = pattern.search(channel_name)
    if not match:
        return None
    return int(match.group(1))


async def touch_ticket_activity(
    db: Database,
    guild_id: str,
    ticket_number: int,
    candidates: Sequence[tuple[str, str]] = ACTIVITY_COLUMN_UPDATES,
) -> str | None:
    """Bump the first activity column the schema supports and return its name."""
    for column, query in candidates:
        try:
            await db.execute(query, [guild_id, ticket_number])
        except DATABASE_ERRORS as exc:
            if not is_missing_column_error(exc):
                raise
            LOGGER.debug("tickets.%s is missing, falling back to the next activity column", column)
            continue
        return column
    return None


class ActivityTracker:
    def __init__(
        self,
        db: Database,
        settings: SettingsService,
        ticket_repo: TicketRepository,
        staff_repo: StaffActivityRepository,
        channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
    ) -> None:
        self.db = db
        self.channel_pattern = ticket_channel_pattern(channel_prefix)
        self.settings = settings
        self.ticket_repo = ticket_repo
        self.staff_repo = staff_repo

    async def record_activity(
        self,
        channel_name: str | None,
        guild_id: str,
        author_id: str,
        *,
        author_is_staff: bool | None = None,
        author_role_ids: Iterable[str | int] = (),
        author_is_bot: bool = False,
    ) -> ActivityOutcome | None:
        """Record message activity in a ticket channel. Never raises.

        Channels whose name does not carry a ``<prefix>-<number>`` marker are
        ignored without touching the database. When ``author_is_staff`` is not
        given it is resolved from the guild's configured staff roles.
        """
        ticket_number = parse_ticket_number(channel_name, self.channel_pattern)
        if ticket_number is None:
            return None
        return await best_effort(
            self._record(ticket_number, guild_id, author_id, author_is_staff, list(author_role_ids), author_is_bot),
            "activity tracking for %s in guild %s",
            channel_name,
            guild_id,
        )

    async def _record(
        self,
        ticket_number: int,
        guild_id: str,
        author_id: str,
        author_is_staff: bool | None,
        author_role_ids: list[str | int],
        author_is_bot: bool,
    ) -> ActivityOutcome:
        column = await touch_ticket_activity(self.db, guild_id, ticket_number)
        outcome = ActivityOutcome(ticket_number=ticket_number, column=column)
        if author_is_bot:
            return outcome

        if author_is_staff is None:
            author_is_staff = await self.settings.is_staff(guild_id, author_role_ids)
        if not author_is_staff:
            return outcome

        ticket = await self.ticket_repo.get_by_number(guild_id, ticket_number)
        if not ticket:
            LOGGER.warning("Could not find ticket #%s in guild %s for staff activity", ticket_number, guild_id)
            return outcome
        await self.staff_repo.touch(ticket.id, guild_id, author_id)
        outcome.staff_recorded = True
        return outcome

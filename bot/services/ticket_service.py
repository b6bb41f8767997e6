from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from core.config import TicketConfig
from core.errors import (
    InvalidStateError,
    NotFoundError,
    TranscriptUnavailableError,
    ValidationError,
)
from database.models import TicketRecord, TicketStatus, TicketTranscript, TranscriptMessage
from database.repositories import EventRepository, GuildSettingsRepository, TicketRepository
from services.transcript_service import TranscriptService
from utils.side_effects import best_effort

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TicketServiceDeps:
    settings_repo: GuildSettingsRepository
    ticket_repo: TicketRepository
    event_repo: EventRepository
    transcripts: TranscriptService


class TicketService:
    """Owns ticket state transitions and transcript persistence.

    States are ``open``, ``closed`` and ``deleted``. Close and reopen move a
    ticket between the first two; delete is terminal and is refused unless a
    transcript was saved first.
    """

    def __init__(self, config: TicketConfig, deps: TicketServiceDeps) -> None:
        self.config = config
        self.deps = deps

    def validate_reason(self, reason: str | None) -> str:
        cleaned = (reason or "").strip()
        if len(cleaned) < self.config.reason_min_length:
            raise ValidationError(
                f"Please provide a reason of at least {self.config.reason_min_length} characters."
            )
        if not any(char.isalpha() for char in cleaned):
            raise ValidationError("The reason must contain at least one letter.")
        return cleaned

    async def create_ticket(
        self,
        guild_id: str,
        user_id: str,
        subject: str | None = None,
        channel_id: str | None = None,
    ) -> TicketRecord:
        number = await self.deps.settings_repo.next_ticket_number(guild_id)
        ticket = await self.deps.ticket_repo.create(
            guild_id=guild_id,
            user_id=user_id,
            ticket_number=number,
            channel_id=channel_id,
            subject=subject.strip() if subject else None,
        )
        await self._log_event(ticket, user_id, "create", {"subject": ticket.subject})
        LOGGER.info("Created ticket #%s (%s) in guild %s", number, ticket.id, guild_id)
        return ticket

    async def attach_channel(self, ticket_id: int, channel_id: str) -> TicketRecord:
        ticket = await self.get_ticket(ticket_id)
        await self.deps.ticket_repo.set_channel(ticket.id, channel_id)
        return await self.get_ticket(ticket.id)

    async def get_ticket(self, ticket_id: int) -> TicketRecord:
        ticket = await self.deps.ticket_repo.get_by_id(ticket_id)
        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} was not found.")
        return ticket

    async def get_ticket_for_channel(self, guild_id: str, channel_id: str) -> TicketRecord:
        ticket = await self.deps.ticket_repo.get_by_channel(guild_id, channel_id)
        if not ticket:
            raise NotFoundError("This channel is not a ticket.")
        return ticket

    async def get_ticket_by_number(self, guild_id: str, ticket_number: int) -> TicketRecord:
        ticket = await self.deps.ticket_repo.get_by_number(guild_id, ticket_number)
        if not ticket:
            raise NotFoundError(f"Ticket #{ticket_number} was not found.")
        return ticket

    async def list_tickets(
        self, guild_id: str, status: TicketStatus | None = None, limit: int = 100
    ) -> list[TicketRecord]:
        return await self.deps.ticket_repo.list_by_guild(
            guild_id, status=status.value if status else None, limit=limit
        )

    async def close_ticket(self, ticket_id: int, reason: str, actor_id: str | None = None) -> TicketRecord:
        reason = self.validate_reason(reason)
        ticket = await self.get_ticket(ticket_id)
        if ticket.status == TicketStatus.DELETED:
            raise InvalidStateError("Deleted tickets cannot be closed.")
        if ticket.status == TicketStatus.CLOSED and self.config.strict_transitions:
            raise InvalidStateError(f"Ticket #{ticket.ticket_number} is already closed.")

        await best_effort(
            self.deps.transcripts.capture_and_save(ticket),
            "transcript capture on close for ticket %s",
            ticket.id,
        )
        await self.deps.ticket_repo.set_status(ticket.id, TicketStatus.CLOSED)
        await self._log_event(ticket, actor_id, "close", {"reason": reason})
        LOGGER.info("Closed ticket %s by %s", ticket.id, actor_id)
        return await self.get_ticket(ticket.id)

    async def reopen_ticket(self, ticket_id: int, reason: str, actor_id: str | None = None) -> TicketRecord:
        reason = self.validate_reason(reason)
        ticket = await self.get_ticket(ticket_id)
        if ticket.status == TicketStatus.DELETED:
            raise InvalidStateError("Deleted tickets cannot be reopened.")
        if ticket.status == TicketStatus.OPEN and self.config.strict_transitions:
            raise InvalidStateError(f"Ticket #{ticket.ticket_number} is already open.")

        # closed_at keeps the last close time.
        await self.deps.ticket_repo.set_status(ticket.id, TicketStatus.OPEN)
        await self._log_event(ticket, actor_id, "reopen", {"reason": reason})
        LOGGER.info("Reopened ticket %s by %s", ticket.id, actor_id)
        return await self.get_ticket(ticket.id)

    async def delete_ticket(self, ticket_id: int, reason: str, actor_id: str | None = None) -> TicketRecord:
        reason = self.validate_reason(reason)
        ticket = await self.get_ticket(ticket_id)
        if ticket.status == TicketStatus.DELETED:
            raise InvalidStateError(f"Ticket #{ticket.ticket_number} is already deleted.")

        try:
            await self.deps.transcripts.capture_and_save(ticket)
        except Exception as exc:
            LOGGER.warning("Refusing to delete ticket %s: transcript capture failed (%s)", ticket.id, exc)
            raise TranscriptUnavailableError() from exc

        await self.deps.ticket_repo.set_status(ticket.id, TicketStatus.DELETED)
        await self._log_event(ticket, actor_id, "delete", {"reason": reason})
        LOGGER.info("Deleted ticket %s by %s", ticket.id, actor_id)
        return await self.get_ticket(ticket.id)

    async def get_transcript(self, ticket_id: int) -> TicketTranscript:
        await self.get_ticket(ticket_id)
        return await self.deps.transcripts.get(ticket_id)

    async def save_transcript(
        self, ticket_id: int, messages: list[dict[str, Any]] | list[TranscriptMessage]
    ) -> None:
        await self.get_ticket(ticket_id)
        await self.deps.transcripts.save(ticket_id, messages)

    async def rate_ticket(self, ticket_id: int, rating: int, user_id: str | None = None) -> TicketRecord:
        if rating < 1 or rating > 5:
            raise ValidationError("Rating must be between 1 and 5.")
        ticket = await self.get_ticket(ticket_id)
        await self.deps.ticket_repo.set_rating(ticket.id, rating)
        await self._log_event(ticket, user_id, "rate", {"rating": rating})
        return await self.get_ticket(ticket.id)

    async def history(self, ticket_id: int, limit: int = 25) -> list[dict[str, Any]]:
        await self.get_ticket(ticket_id)
        return await self.deps.event_repo.list_recent(ticket_id, limit=limit)

    async def _log_event(
        self, ticket: TicketRecord, actor_id: str | None, event_type: str, payload: dict[str, Any]
    ) -> None:
        await best_effort(
            self.deps.event_repo.log(
                ticket_id=ticket.id,
                guild_id=ticket.guild_id,
                actor_id=actor_id,
                event_type=event_type,
                payload=payload,
            ),
            "event log %s for ticket %s",
            event_type,
            ticket.id,
        )

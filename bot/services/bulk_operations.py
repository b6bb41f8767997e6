from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from core.errors import BotError
from database.models import TicketRecord, TicketStatus
from services.ticket_service import TicketService

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BulkFailure:
    ticket_id: int
    error: str


@dataclass(slots=True)
class BulkResult:
    action: str
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    processed_ids: list[int] = field(default_factory=list)
    failures: list[BulkFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error_count == 0

    @property
    def total(self) -> int:
        return self.success_count + self.error_count + self.skipped_count

    @property
    def message(self) -> str:
        if self.total and self.skipped_count == self.total:
            return f"All selected tickets are already {self.past_tense}."
        parts = [f"Successfully {self.past_tense} {self.success_count} tickets."]
        if self.error_count:
            parts.append(f"{self.error_count} failed to {self.action}.")
        if self.skipped_count:
            parts.append(f"{self.skipped_count} were already {self.past_tense}.")
        return " ".join(parts)

    @property
    def past_tense(self) -> str:
        return {"delete": "deleted", "close": "closed"}.get(self.action, f"{self.action}d")

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "processed_ids": list(self.processed_ids),
            "failures": [{"ticket_id": item.ticket_id, "error": item.error} for item in self.failures],
            "message": self.message,
        }


@dataclass(slots=True)
class BulkDeleteResult(BulkResult):
    action: str = "delete"

    @property
    def already_deleted_count(self) -> int:
        return self.skipped_count

    def to_dict(self) -> dict[str, object]:
        payload = BulkResult.to_dict(self)
        payload["already_deleted_count"] = self.skipped_count
        return payload


def dedupe_ids(ticket_ids: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for ticket_id in ticket_ids:
        ticket_id = int(ticket_id)
        if ticket_id in seen:
            continue
        seen.add(ticket_id)
        ordered.append(ticket_id)
    return ordered


class BulkOperationCoordinator:
    """Applies one ticket action to many tickets and tallies the outcome.

    Items are attempted one after another and never rolled back together; a
    failure on one ticket is recorded and the loop moves on.
    """

    def __init__(self, tickets: TicketService) -> None:
        self.tickets = tickets

    async def bulk_delete(
        self, ticket_ids: Iterable[int], reason: str, actor_id: str | None = None
    ) -> BulkDeleteResult:
        reason = self.tickets.validate_reason(reason)
        result = BulkDeleteResult()
        await self._apply(
            result,
            dedupe_ids(ticket_ids),
            skip_status=TicketStatus.DELETED,
            action=lambda ticket_id: self.tickets.delete_ticket(ticket_id, reason, actor_id),
        )
        LOGGER.info("Bulk delete by %s: %s", actor_id, result.message)
        return result

    async def bulk_close(
        self, ticket_ids: Iterable[int], reason: str, actor_id: str | None = None
    ) -> BulkResult:
        reason = self.tickets.validate_reason(reason)
        result = BulkResult(action="close")
        await self._apply(
            result,
            dedupe_ids(ticket_ids),
            skip_status=TicketStatus.CLOSED,
            action=lambda ticket_id: self.tickets.close_ticket(ticket_id, reason, actor_id),
        )
        LOGGER.info("Bulk close by %s: %s", actor_id, result.message)
        return result

    async def _apply(
        self,
        result: BulkResult,
        ticket_ids: list[int],
        skip_status: TicketStatus,
        action: Callable[[int], Awaitable[TicketRecord]],
    ) -> None:
        pending: list[int] = []
        for ticket_id in ticket_ids:
            ticket = await self.tickets.deps.ticket_repo.get_by_id(ticket_id)
            if ticket is None:
                result.error_count += 1
                result.failures.append(BulkFailure(ticket_id, f"Ticket {ticket_id} was not found."))
            elif ticket.status == skip_status:
                result.skipped_count += 1
            else:
                pending.append(ticket_id)

        for ticket_id in pending:
            try:
                await action(ticket_id)
            except BotError as exc:
                result.error_count += 1
                result.failures.append(BulkFailure(ticket_id, exc.user_message))
            except Exception:
                LOGGER.exception("Bulk %s failed for ticket %s", result.action, ticket_id)
                result.error_count += 1
                result.failures.append(BulkFailure(ticket_id, "Unexpected error."))
            else:
                result.success_count += 1
                result.processed_ids.append(ticket_id)

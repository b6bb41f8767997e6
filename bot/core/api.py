from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.bot import CommunityBot
from core.errors import (
    BotError,
    InvalidStateError,
    NotFoundError,
    OperationResult,
    TranscriptUnavailableError,
    ValidationError,
)
from database.models import TicketStatus

LOGGER = logging.getLogger(__name__)

WINDOW_DAYS = Query(default=None, ge=1, le=365)

_ERROR_STATUS: tuple[tuple[type[BotError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (TranscriptUnavailableError, 409),
)


class ReasonBody(BaseModel):
    reason: str
    actor_id: str | None = None


class BulkDeleteBody(BaseModel):
    ticket_ids: list[int] = Field(min_length=1)
    reason: str
    actor_id: str | None = None


def _status_for(error: BotError) -> int:
    for error_type, status in _ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 400


async def _respond(call: Awaitable[Any]) -> JSONResponse:
    try:
        data = await call
    except BotError as exc:
        return JSONResponse(OperationResult.fail(exc).to_dict(), status_code=_status_for(exc))
    except Exception:
        LOGGER.exception("Dashboard request failed")
        return JSONResponse(OperationResult.fail("Internal server error").to_dict(), status_code=500)
    return JSONResponse(OperationResult.ok(data).to_dict())


def create_api_app(bot: CommunityBot) -> FastAPI:
    app = FastAPI(title="Community Bot API", version="1.0.0")

    async def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        expected = bot.config.fastapi.api_key
        if not expected:
            return
        if x_api_key != expected:
            raise HTTPException(status_code=401, detail="Unauthorized")

    auth = [Depends(require_api_key)]

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/guilds/{guild_id}/tickets", dependencies=auth)
    async def list_tickets(guild_id: str, status: TicketStatus | None = None, limit: int = 100) -> JSONResponse:
        async def load() -> list[dict[str, Any]]:
            rows = await bot.ticket_service.list_tickets(guild_id, status=status, limit=min(limit, 500))
            return [row.to_dict() for row in rows]

        return await _respond(load())

    @app.get("/tickets/{ticket_id}", dependencies=auth)
    async def get_ticket(ticket_id: int) -> JSONResponse:
        async def load() -> dict[str, Any]:
            return (await bot.ticket_service.get_ticket(ticket_id)).to_dict()

        return await _respond(load())

    @app.post("/tickets/{ticket_id}/close", dependencies=auth)
    async def close_ticket(ticket_id: int, body: ReasonBody) -> JSONResponse:
        async def run() -> dict[str, Any]:
            ticket = await bot.ticket_service.close_ticket(ticket_id, body.reason, body.actor_id)
            return ticket.to_dict()

        return await _respond(run())

    @app.post("/tickets/{ticket_id}/reopen", dependencies=auth)
    async def reopen_ticket(ticket_id: int, body: ReasonBody) -> JSONResponse:
        async def run() -> dict[str, Any]:
            ticket = await bot.ticket_service.reopen_ticket(ticket_id, body.reason, body.actor_id)
            return ticket.to_dict()

        return await _respond(run())

    @app.post("/tickets/{ticket_id}/delete", dependencies=auth)
    async def delete_ticket(ticket_id: int, body: ReasonBody) -> JSONResponse:
        async def run() -> dict[str, Any]:
            ticket = await bot.ticket_service.delete_ticket(ticket_id, body.reason, body.actor_id)
            return ticket.to_dict()

        return await _respond(run())

    @app.post("/tickets/bulk-delete", dependencies=auth)
    async def bulk_delete(body: BulkDeleteBody) -> JSONResponse:
        try:
            result = await bot.bulk_operations.bulk_delete(body.ticket_ids, body.reason, body.actor_id)
        except BotError as exc:
            return JSONResponse(OperationResult.fail(exc).to_dict(), status_code=_status_for(exc))
        outcome = OperationResult(
            success=result.success,
            data=result.to_dict(),
            error=None if result.success else result.message,
        )
        return JSONResponse(outcome.to_dict())

    @app.get("/tickets/{ticket_id}/transcript", dependencies=auth)
    async def transcript(ticket_id: int) -> JSONResponse:
        async def load() -> dict[str, Any]:
            item = await bot.ticket_service.get_transcript(ticket_id)
            return {
                "ticket_id": item.ticket_id,
                "message_count": item.message_count,
                "messages": item.messages,
                "created_at": item.created_at,
                "updated_at": item.updated_at,
            }

        return await _respond(load())

    @app.get("/guilds/{guild_id}/analytics/overview", dependencies=auth)
    async def analytics_overview(guild_id: str, days: int | None = WINDOW_DAYS) -> JSONResponse:
        async def load() -> dict[str, Any]:
            return asdict(await bot.analytics_service.get_server_overview(guild_id, days))

        return await _respond(load())

    @app.get("/guilds/{guild_id}/analytics/export", dependencies=auth)
    async def analytics_export(guild_id: str, days: int | None = WINDOW_DAYS) -> JSONResponse:
        return await _respond(bot.analytics_service.export_data(guild_id, days))

    return app

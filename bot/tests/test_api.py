from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from core.api import create_api_app
from core.config import FastApiConfig
from core.errors import InvalidStateError, ValidationError
from database.models import ServerOverview, TicketRecord
from services.bulk_operations import BulkDeleteResult


def _bot(api_key: str = "secret") -> SimpleNamespace:
    return SimpleNamespace(
        config=SimpleNamespace(fastapi=FastApiConfig(api_key=api_key)),
        ticket_service=MagicMock(),
        bulk_operations=MagicMock(),
        analytics_service=MagicMock(),
    )


def _ticket(status: str = "closed") -> TicketRecord:
    return TicketRecord(id=5, guild_id="G1", user_id="U1", ticket_number=42, status=status, channel_id="C1")


def test_health_needs_no_key() -> None:
    client = TestClient(create_api_app(_bot()))
    assert client.get("/health").json() == {"status": "ok"}


def test_api_key_is_enforced() -> None:
    client = TestClient(create_api_app(_bot()))
    response = client.get("/guilds/G1/tickets")
    assert response.status_code == 401


def test_close_returns_operation_result() -> None:
    bot = _bot()
    bot.ticket_service.close_ticket = AsyncMock(return_value=_ticket())
    client = TestClient(create_api_app(bot))

    response = client.post(
        "/tickets/5/close",
        json={"reason": "Resolved by staff", "actor_id": "S1"},
        headers={"x-api-key": "secret"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["ticket_number"] == 42
    bot.ticket_service.close_ticket.assert_awaited_once_with(5, "Resolved by staff", "S1")


def test_errors_map_to_failure_shape() -> None:
    bot = _bot()
    bot.ticket_service.close_ticket = AsyncMock(side_effect=ValidationError("Reason is too short."))
    bot.ticket_service.reopen_ticket = AsyncMock(side_effect=InvalidStateError())
    client = TestClient(create_api_app(bot))
    headers = {"x-api-key": "secret"}

    invalid = client.post("/tickets/5/close", json={"reason": "ok"}, headers=headers)
    assert invalid.status_code == 400
    assert invalid.json() == {"success": False, "error": "Reason is too short."}

    conflict = client.post("/tickets/5/reopen", json={"reason": "again"}, headers=headers)
    assert conflict.status_code == 409
    assert conflict.json()["success"] is False


def test_bulk_delete_mixed_result_is_failure() -> None:
    bot = _bot()
    bot.bulk_operations.bulk_delete = AsyncMock(
        return_value=BulkDeleteResult(success_count=1, error_count=1, skipped_count=1)
    )
    client = TestClient(create_api_app(bot))

    response = client.post(
        "/tickets/bulk-delete",
        json={"ticket_ids": [1, 2, 3], "reason": "Cleanup sweep"},
        headers={"x-api-key": "secret"},
    )

    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Successfully deleted 1 tickets. 1 failed to delete. 1 were already deleted."
    assert body["data"]["already_deleted_count"] == 1


def test_analytics_overview_without_key_configured() -> None:
    bot = _bot(api_key="")
    bot.analytics_service.get_server_overview = AsyncMock(return_value=ServerOverview(total_messages=12))
    client = TestClient(create_api_app(bot))

    response = client.get("/guilds/G1/analytics/overview?days=7")

    assert response.status_code == 200
    assert response.json()["data"]["total_messages"] == 12
    bot.analytics_service.get_server_overview.assert_awaited_once_with("G1", 7)


def test_analytics_window_is_bounded() -> None:
    bot = _bot(api_key="")
    bot.analytics_service.get_server_overview = AsyncMock(return_value=ServerOverview())
    bot.analytics_service.export_data = AsyncMock(return_value={})
    client = TestClient(create_api_app(bot))

    assert client.get("/guilds/G1/analytics/overview?days=-3").status_code == 422
    assert client.get("/guilds/G1/analytics/export?days=366").status_code == 422
    bot.analytics_service.get_server_overview.assert_not_awaited()
    bot.analytics_service.export_data.assert_not_awaited()

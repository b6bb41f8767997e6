from __future__ import annotations

import pytest

from database.base import Database
from database.repositories import GuildSettingsRepository, parse_role_ids
from services.settings_service import SettingsService


def test_parse_role_ids_accepts_both_storage_forms() -> None:
    assert parse_role_ids('["1", 2]') == ["1", "2"]
    assert parse_role_ids("10, 20,,30") == ["10", "20", "30"]
    assert parse_role_ids("") == []
    assert parse_role_ids(None) == []


@pytest.mark.asyncio
async def test_ticket_numbers_are_per_guild(db: Database) -> None:
    repo = GuildSettingsRepository(db)

    assert [await repo.next_ticket_number("G1") for _ in range(3)] == [1, 2, 3]
    assert await repo.next_ticket_number("G2") == 1
    assert (await repo.get_or_create("G1")).ticket_counter == 3


@pytest.mark.asyncio
async def test_staff_roles_and_legacy_csv(db: Database) -> None:
    service = SettingsService(GuildSettingsRepository(db))

    assert await service.is_staff("G1", [1]) is False
    assert await service.set_staff_roles("G1", [20, 10, 20]) == ["10", "20"]
    assert await service.is_staff("G1", [99, 10]) is True

    await db.execute("UPDATE guild_settings SET staff_role_ids = ? WHERE guild_id = ?;", ["5,6", "G1"])
    assert await service.is_staff("G1", ["6"]) is True


@pytest.mark.asyncio
async def test_key_value_settings_and_category(db: Database) -> None:
    repo = GuildSettingsRepository(db)
    service = SettingsService(repo)

    assert await repo.get_value("G1", "missing", default="fallback") == "fallback"
    await repo.set_value("G1", "greeting", {"text": "hi"})
    assert await repo.get_value("G1", "greeting") == {"text": "hi"}

    assert await service.ticket_category_id("G1") is None
    await service.set_ticket_category("G1", 555)
    assert await service.ticket_category_id("G1") == 555
    await service.set_ticket_category("G1", None)
    assert await service.ticket_category_id("G1") is None
    assert await repo.get_value("G1", "greeting") == {"text": "hi"}


@pytest.mark.asyncio
async def test_unknown_settings_field_is_rejected(db: Database) -> None:
    with pytest.raises(ValueError):
        await GuildSettingsRepository(db).update("G1", nickname="x")

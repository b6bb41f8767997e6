from __future__ import annotations

import logging
from collections.abc import Iterable

from database.models import GuildSettings
from database.repositories import GuildSettingsRepository

LOGGER = logging.getLogger(__name__)

TICKET_CATEGORY_KEY = "ticket_category_id"


class SettingsService:
    def __init__(self, repo: GuildSettingsRepository) -> None:
        self.repo = repo

    async def get(self, guild_id: str, guild_name: str | None = None) -> GuildSettings:
        return await self.repo.get_or_create(guild_id, guild_name)

    async def is_staff(self, guild_id: str, role_ids: Iterable[str | int]) -> bool:
        staff_roles = set(await self.repo.staff_role_ids(guild_id))
        if not staff_roles:
            return False
        return any(str(role_id) in staff_roles for role_id in role_ids)

    async def set_staff_roles(self, guild_id: str, role_ids: Iterable[str | int]) -> list[str]:
        cleaned = sorted({str(role_id) for role_id in role_ids})
        await self.repo.set_staff_roles(guild_id, cleaned)
        LOGGER.info("Updated staff roles for guild %s: %s", guild_id, cleaned)
        return cleaned

    async def set_transcript_channel(self, guild_id: str, channel_id: str | None) -> None:
        await self.repo.update(guild_id, transcript_channel_id=channel_id)

    async def ticket_category_id(self, guild_id: str) -> int | None:
        value = await self.repo.get_value(guild_id, TICKET_CATEGORY_KEY)
        return int(value) if value else None

    async def set_ticket_category(self, guild_id: str, category_id: int | None) -> None:
        await self.repo.set_value(guild_id, TICKET_CATEGORY_KEY, str(category_id) if category_id else None)

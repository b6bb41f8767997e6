from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import discord
from discord.ext import commands

F = TypeVar("F", bound=Callable[..., Any])


async def member_is_staff(bot: Any, member: discord.Member) -> bool:
    """Administrators and Manage Channels holders always count as staff."""
    if member.guild_permissions.administrator or member.guild_permissions.manage_channels:
        return True
    return await bot.settings_service.is_staff(str(member.guild.id), [role.id for role in member.roles])


def staff_only() -> Callable[[F], F]:
    async def predicate(ctx: commands.Context[Any]) -> bool:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise commands.NoPrivateMessage()
        if await member_is_staff(ctx.bot, ctx.author):
            return True
        raise commands.CheckFailure("Staff permission required.")

    return commands.check(predicate)


def guild_admin_only() -> Callable[[F], F]:
    async def predicate(ctx: commands.Context[Any]) -> bool:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise commands.NoPrivateMessage()
        if ctx.author.guild_permissions.administrator or ctx.author.guild_permissions.manage_guild:
            return True
        raise commands.CheckFailure("Manage Server permission required.")

    return commands.check(predicate)

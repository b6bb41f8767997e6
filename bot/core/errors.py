from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import discord
from discord import app_commands
from discord.ext import commands

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class NotFoundError(BotError):
    user_message: str = "The requested ticket could not be found."


@dataclass(slots=True)
class InvalidStateError(BotError):
    user_message: str = "The ticket is not in a valid state for this action."


@dataclass(slots=True)
class TranscriptUnavailableError(BotError):
    user_message: str = "The ticket transcript could not be saved, so the ticket was not deleted."


@dataclass(slots=True)
class ValidationError(BotError):
    user_message: str = "The provided input is not valid."


@dataclass(slots=True)
class OperationResult:
    """Outcome handed to the dashboard layer."""

    success: bool
    data: Any = None
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **meta: Any) -> OperationResult:
        return cls(success=True, data=data, meta=meta)

    @classmethod
    def fail(cls, error: str | BaseException, data: Any = None) -> OperationResult:
        if isinstance(error, BotError):
            message = error.user_message
        else:
            message = str(error)
        return cls(success=False, data=data, error=message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        payload.update(self.meta)
        return payload


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    embed = discord.Embed(title="Error", description=message, color=discord.Color.red())
    if isinstance(target, commands.Context):
        await target.reply(embed=embed, mention_author=False)
        return
    if target.response.is_done():
        await target.followup.send(embed=embed, ephemeral=True)
    else:
        await target.response.send_message(embed=embed, ephemeral=True)


def _unwrap(error: BaseException) -> BaseException:
    original = getattr(error, "original", None)
    return original if isinstance(original, BaseException) else error


def humanize_command_error(error: BaseException) -> str:
    error = _unwrap(error)
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, (commands.CommandOnCooldown, app_commands.CommandOnCooldown)):
        return f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    if isinstance(error, commands.MissingPermissions):
        return "You are missing required Discord permissions."
    if isinstance(error, (commands.CheckFailure, app_commands.CheckFailure)):
        return "You are not authorized for this command."
    if isinstance(error, commands.BadArgument):
        return "Command argument was invalid."
    return "An unexpected command error occurred."


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    message = humanize_command_error(error)
    if isinstance(_unwrap(error), (ValidationError, NotFoundError, InvalidStateError)):
        LOGGER.info(
            "Command rejected. command=%s guild=%s user=%s reason=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            message,
        )
    else:
        LOGGER.exception(
            "Prefix command failed. command=%s guild=%s user=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            exc_info=error,
        )
    await send_error_response(ctx, message)


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    message = humanize_command_error(error)
    if isinstance(_unwrap(error), (ValidationError, NotFoundError, InvalidStateError)):
        LOGGER.info(
            "Slash command rejected. command=%s guild=%s reason=%s",
            getattr(interaction.command, "qualified_name", None),
            getattr(interaction.guild, "id", None),
            message,
        )
    else:
        LOGGER.exception(
            "Slash command failed. command=%s guild=%s user=%s",
            getattr(interaction.command, "qualified_name", None),
            getattr(interaction.guild, "id", None),
            interaction.user.id if interaction.user else None,
            exc_info=error,
        )
    await send_error_response(interaction, message)

from __future__ import annotations

import asyncio
import io
import logging
from typing import TYPE_CHECKING

import discord

from core.errors import BotError, send_error_response
from database.models import TicketRecord
from services.transcript_service import render_text
from utils.constants import (
    CONTROL_CLOSE_ID,
    CONTROL_DELETE_ID,
    CONTROL_REOPEN_ID,
    TRANSCRIPT_FILE_TEMPLATE,
)
from utils.decorators import member_is_staff
from utils.side_effects import best_effort
from utils.embeds import error_embed, success_embed, ticket_embed

if TYPE_CHECKING:
    from core.bot import CommunityBot

LOGGER = logging.getLogger(__name__)

CHANNEL_DELETE_DELAY_SECONDS = 5


class TicketReasonModal(discord.ui.Modal):
    reason = discord.ui.TextInput(
        label="Reason",
        placeholder="Explain why (at least a few characters)",
        style=discord.TextStyle.long,
        max_length=1024,
        required=True,
    )

    def __init__(self, bot: CommunityBot, action: str) -> None:
        super().__init__(title=f"{action.capitalize()} Ticket", timeout=300)
        self.bot = bot
        self.action = action

    async def on_submit(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.channel, discord.TextChannel):
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return
        channel = interaction.channel
        tickets = self.bot.ticket_service
        ticket = await tickets.get_ticket_for_channel(str(interaction.guild.id), str(channel.id))
        actor_id = str(interaction.user.id)
        reason = str(self.reason)

        if self.action == "close":
            await interaction.response.defer(thinking=True)
            updated = await tickets.close_ticket(ticket.id, reason, actor_id)
            await best_effort(
                send_transcript_to_log_channel(self.bot, interaction.guild, updated),
                "transcript post for ticket %s",
                updated.id,
            )
            await channel.set_permissions(interaction.guild.default_role, send_messages=False)
            await interaction.followup.send(
                embed=ticket_embed(updated, f"Ticket #{updated.ticket_number} closed"),
                view=TicketControlsView(self.bot),
            )
        elif self.action == "reopen":
            updated = await tickets.reopen_ticket(ticket.id, reason, actor_id)
            await channel.set_permissions(interaction.guild.default_role, overwrite=None)
            await interaction.response.send_message(
                embed=success_embed(f"Ticket #{updated.ticket_number} reopened by {interaction.user.mention}.")
            )
        else:
            await interaction.response.defer(thinking=True)
            await tickets.delete_ticket(ticket.id, reason, actor_id)
            await interaction.followup.send(
                embed=success_embed(
                    f"Transcript saved. This channel will be deleted in {CHANNEL_DELETE_DELAY_SECONDS} seconds."
                )
            )
            await asyncio.sleep(CHANNEL_DELETE_DELAY_SECONDS)
            await channel.delete(reason=f"Ticket #{ticket.ticket_number} deleted by {interaction.user} ({actor_id})")

    async def on_error(self, interaction: discord.Interaction, error: Exception) -> None:
        await _report_error(interaction, error)


class TicketControlsView(discord.ui.View):
    """Persistent Close / Reopen / Delete buttons posted in every ticket channel."""

    def __init__(self, bot: CommunityBot) -> None:
        super().__init__(timeout=None)
        self.bot = bot

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return False
        if not await member_is_staff(self.bot, interaction.user):
            await interaction.response.send_message(
                embed=error_embed("You must be staff to manage tickets."), ephemeral=True
            )
            return False
        return True

    @discord.ui.button(label="Close", style=discord.ButtonStyle.secondary, emoji="🔒", custom_id=CONTROL_CLOSE_ID)
    async def close_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await interaction.response.send_modal(TicketReasonModal(self.bot, "close"))

    @discord.ui.button(label="Reopen", style=discord.ButtonStyle.success, emoji="♻️", custom_id=CONTROL_REOPEN_ID)
    async def reopen_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await interaction.response.send_modal(TicketReasonModal(self.bot, "reopen"))

    @discord.ui.button(label="Delete", style=discord.ButtonStyle.danger, emoji="🗑️", custom_id=CONTROL_DELETE_ID)
    async def delete_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await interaction.response.send_modal(TicketReasonModal(self.bot, "delete"))

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[discord.ui.View]
    ) -> None:
        await _report_error(interaction, error)


async def send_transcript_to_log_channel(bot: CommunityBot, guild: discord.Guild, ticket: TicketRecord) -> bool:
    """Post the stored transcript as a text file to the guild's transcript channel."""
    settings = await bot.settings_service.get(str(guild.id), guild.name)
    if not settings.transcript_channel_id:
        return False
    log_channel = guild.get_channel(int(settings.transcript_channel_id))
    if not isinstance(log_channel, discord.TextChannel):
        LOGGER.warning("Transcript channel %s missing in guild %s", settings.transcript_channel_id, guild.id)
        return False
    transcript = await bot.ticket_service.get_transcript(ticket.id)
    payload = io.BytesIO(render_text(transcript).encode("utf-8"))
    await log_channel.send(
        content=f"Transcript for ticket #{ticket.ticket_number} ({transcript.message_count} messages)",
        file=discord.File(payload, filename=TRANSCRIPT_FILE_TEMPLATE.format(number=ticket.ticket_number)),
    )
    return True


async def _report_error(interaction: discord.Interaction, error: Exception) -> None:
    if isinstance(error, BotError):
        await send_error_response(interaction, error.user_message)
        return
    LOGGER.exception("Ticket control failed in channel %s", interaction.channel_id, exc_info=error)
    await send_error_response(interaction, "Action failed due to an unexpected error.")

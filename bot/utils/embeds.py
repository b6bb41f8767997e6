from __future__ import annotations

from datetime import UTC, datetime

import discord

from database.models import ServerOverview, TicketRecord
from utils.constants import STATUS_COLORS


def make_embed(
    title: str,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def success_embed(message: str) -> discord.Embed:
    return make_embed(title="Success", description=message, color=discord.Color.green())


def error_embed(message: str) -> discord.Embed:
    return make_embed(title="Error", description=message, color=discord.Color.red())


def ticket_embed(ticket: TicketRecord, title: str | None = None) -> discord.Embed:
    embed = make_embed(
        title=title or f"Ticket #{ticket.ticket_number}",
        description=ticket.subject or "No subject provided.",
        color=STATUS_COLORS.get(ticket.status, discord.Color.blurple()),
        footer=f"Ticket ID {ticket.id}",
    )
    embed.add_field(name="Status", value=ticket.status, inline=True)
    embed.add_field(name="Owner", value=f"<@{ticket.user_id}>", inline=True)
    if ticket.rating:
        embed.add_field(name="Rating", value="⭐" * ticket.rating, inline=True)
    if ticket.closed_at:
        embed.add_field(name="Last Closed", value=ticket.closed_at, inline=False)
    return embed


def overview_embed(guild_name: str, days: int, overview: ServerOverview) -> discord.Embed:
    embed = make_embed("Server Overview", f"**{guild_name}**, last {days} days")
    embed.add_field(name="Messages", value=str(overview.total_messages), inline=True)
    embed.add_field(name="Commands", value=str(overview.total_commands), inline=True)
    embed.add_field(name="Voice Minutes", value=str(overview.voice_minutes), inline=True)
    embed.add_field(name="Joined", value=str(overview.new_members), inline=True)
    embed.add_field(name="Left", value=str(overview.left_members), inline=True)
    embed.add_field(name="Reactions", value=str(overview.reactions_given), inline=True)
    embed.add_field(name="Avg Members", value=f"{overview.avg_members:.0f}", inline=True)
    embed.add_field(name="Peak Online", value=str(overview.peak_online), inline=True)
    embed.add_field(
        name="Now",
        value=f"{overview.current_online} online of {overview.current_members}",
        inline=True,
    )
    return embed

from __future__ import annotations

import asyncio
import io
import logging

import discord
from discord.ext import commands

from core.bot import CommunityBot
from core.errors import PermissionDeniedError, ValidationError
from database.models import TicketRecord, TicketStatus
from services.transcript_service import render_text
from utils.constants import MAX_BULK_TICKETS, TRANSCRIPT_FILE_TEMPLATE
from utils.decorators import guild_admin_only, member_is_staff, staff_only
from utils.embeds import make_embed, success_embed, ticket_embed
from utils.side_effects import best_effort
from views.ticket_controls import (
    CHANNEL_DELETE_DELAY_SECONDS,
    TicketControlsView,
    send_transcript_to_log_channel,
)

LOGGER = logging.getLogger(__name__)


def parse_ticket_numbers(raw: str) -> list[int]:
    """Parse ``"1, 2 #3"`` style input into ticket numbers."""
    numbers: list[int] = []
    for part in raw.replace(",", " ").split():
        cleaned = part.lstrip("#")
        if not cleaned.isdigit():
            raise ValidationError(f"`{part}` is not a ticket number.")
        numbers.append(int(cleaned))
    if not numbers:
        raise ValidationError("Provide at least one ticket number.")
    if len(numbers) > MAX_BULK_TICKETS:
        raise ValidationError(f"At most {MAX_BULK_TICKETS} tickets can be processed at once.")
    return numbers


class TicketsCog(commands.Cog):
    def __init__(self, bot: CommunityBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.bot.add_view(TicketControlsView(self.bot))

    async def _current_ticket(self, ctx: commands.Context[CommunityBot]) -> tuple[discord.TextChannel, TicketRecord]:
        if not ctx.guild:
            raise ValidationError("Guild context is required.")
        channel = ctx.channel
        if not isinstance(channel, discord.TextChannel):
            raise ValidationError("Ticket commands require a text channel.")
        ticket = await self.bot.ticket_service.get_ticket_for_channel(str(ctx.guild.id), str(channel.id))
        return channel, ticket

    async def _resolve_ticket(self, ctx: commands.Context[CommunityBot], number: int | None) -> TicketRecord:
        if number is None:
            _, ticket = await self._current_ticket(ctx)
            return ticket
        assert ctx.guild is not None
        return await self.bot.ticket_service.get_ticket_by_number(str(ctx.guild.id), number)

    async def _staff_overwrites(
        self, guild: discord.Guild, opener: discord.Member
    ) -> dict[discord.Role | discord.Member, discord.PermissionOverwrite]:
        overwrites: dict[discord.Role | discord.Member, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
            opener: discord.PermissionOverwrite(view_channel=True, send_messages=True, read_message_history=True),
        }
        if guild.me:
            overwrites[guild.me] = discord.PermissionOverwrite(
                view_channel=True, send_messages=True, manage_channels=True, read_message_history=True
            )
        settings = await self.bot.settings_service.get(str(guild.id), guild.name)
        for role_id in settings.staff_role_ids:
            role = guild.get_role(int(role_id))
            if role:
                overwrites[role] = discord.PermissionOverwrite(
                    view_channel=True, send_messages=True, read_message_history=True
                )
        return overwrites

    @commands.hybrid_group(name="ticket", with_app_command=True, description="Ticket command group.")
    @commands.guild_only()
    async def ticket(self, ctx: commands.Context[CommunityBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Ticket Commands",
                    "`/ticket open [subject]` to open\n"
                    "`/ticket close <reason>` and `/ticket reopen <reason>`\n"
                    "`/ticket delete <reason>` saves the transcript and removes the channel\n"
                    "`/ticket transcript [number]` to download\n"
                    "`/ticket bulkdelete <numbers> <reason>` for staff",
                ),
                mention_author=False,
            )

    @ticket.command(name="open", description="Open a new support ticket.")
    async def ticket_open(self, ctx: commands.Context[CommunityBot], *, subject: str | None = None) -> None:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("Guild context is required.")
        guild = ctx.guild
        record = await self.bot.ticket_service.create_ticket(str(guild.id), str(ctx.author.id), subject)
        category_id = await self.bot.settings_service.ticket_category_id(str(guild.id))
        category = guild.get_channel(category_id) if category_id else None
        if not isinstance(category, discord.CategoryChannel):
            category = ctx.channel.category if isinstance(ctx.channel, discord.TextChannel) else None
        channel = await guild.create_text_channel(
            name=f"{self.bot.config.tickets.channel_prefix}-{record.ticket_number}",
            category=category,
            overwrites=await self._staff_overwrites(guild, ctx.author),
            topic=f"Ticket #{record.ticket_number} opened by {ctx.author} ({ctx.author.id})",
            reason=f"Ticket #{record.ticket_number} opened",
        )
        record = await self.bot.ticket_service.attach_channel(record.id, str(channel.id))
        await channel.send(
            content=ctx.author.mention,
            embed=ticket_embed(record),
            view=TicketControlsView(self.bot),
        )
        await ctx.reply(embed=success_embed(f"Ticket created: {channel.mention}"), mention_author=False)

    @ticket.command(name="close", description="Close the current ticket.")
    @staff_only()
    async def ticket_close(self, ctx: commands.Context[CommunityBot], *, reason: str) -> None:
        channel, ticket = await self._current_ticket(ctx)
        updated = await self.bot.ticket_service.close_ticket(ticket.id, reason, str(ctx.author.id))
        await best_effort(
            send_transcript_to_log_channel(self.bot, channel.guild, updated),
            "transcript post for ticket %s",
            updated.id,
        )
        await channel.set_permissions(channel.guild.default_role, send_messages=False)
        await ctx.reply(
            embed=ticket_embed(updated, f"Ticket #{updated.ticket_number} closed"),
            view=TicketControlsView(self.bot),
            mention_author=False,
        )

    @ticket.command(name="reopen", description="Reopen the current ticket.")
    @staff_only()
    async def ticket_reopen(self, ctx: commands.Context[CommunityBot], *, reason: str) -> None:
        channel, ticket = await self._current_ticket(ctx)
        updated = await self.bot.ticket_service.reopen_ticket(ticket.id, reason, str(ctx.author.id))
        await channel.set_permissions(channel.guild.default_role, overwrite=None)
        await ctx.reply(
            embed=success_embed(f"Ticket #{updated.ticket_number} reopened by {ctx.author.mention}."),
            mention_author=False,
        )

    @ticket.command(name="delete", description="Save the transcript and delete the current ticket.")
    @staff_only()
    async def ticket_delete(self, ctx: commands.Context[CommunityBot], *, reason: str) -> None:
        channel, ticket = await self._current_ticket(ctx)
        await self.bot.ticket_service.delete_ticket(ticket.id, reason, str(ctx.author.id))
        await best_effort(
            send_transcript_to_log_channel(self.bot, channel.guild, ticket),
            "transcript post for ticket %s",
            ticket.id,
        )
        await ctx.reply(
            embed=success_embed(
                f"Transcript saved. This channel will be deleted in {CHANNEL_DELETE_DELAY_SECONDS} seconds."
            ),
            mention_author=False,
        )
        await asyncio.sleep(CHANNEL_DELETE_DELAY_SECONDS)
        await channel.delete(reason=f"Ticket #{ticket.ticket_number} deleted by {ctx.author} ({ctx.author.id})")

    @ticket.command(name="transcript", description="Download a ticket transcript.")
    async def ticket_transcript(self, ctx: commands.Context[CommunityBot], number: int | None = None) -> None:
        ticket = await self._resolve_ticket(ctx, number)
        assert isinstance(ctx.author, discord.Member)
        if str(ctx.author.id) != ticket.user_id and not await member_is_staff(self.bot, ctx.author):
            raise PermissionDeniedError("Only the ticket owner or staff can download the transcript.")
        if number is None and ticket.status == TicketStatus.OPEN:
            # Open tickets have no stored transcript yet; capture the channel as it is now.
            await self.bot.transcript_service.capture_and_save(ticket)
        transcript = await self.bot.ticket_service.get_transcript(ticket.id)
        payload = io.BytesIO(render_text(transcript).encode("utf-8"))
        await ctx.reply(
            content=f"Transcript for ticket #{ticket.ticket_number} ({transcript.message_count} messages)",
            file=discord.File(payload, filename=TRANSCRIPT_FILE_TEMPLATE.format(number=ticket.ticket_number)),
            mention_author=False,
        )

    @ticket.command(name="rate", description="Rate the support you received (1 to 5).")
    async def ticket_rate(self, ctx: commands.Context[CommunityBot], stars: int) -> None:
        _, ticket = await self._current_ticket(ctx)
        if str(ctx.author.id) != ticket.user_id:
            raise PermissionDeniedError("Only the ticket owner can rate this ticket.")
        await self.bot.ticket_service.rate_ticket(ticket.id, stars, str(ctx.author.id))
        await ctx.reply(embed=success_embed("Thanks for the feedback!"), mention_author=False)

    @ticket.command(name="info", description="Show ticket details and recent history.")
    @staff_only()
    async def ticket_info(self, ctx: commands.Context[CommunityBot], number: int | None = None) -> None:
        ticket = await self._resolve_ticket(ctx, number)
        embed = ticket_embed(ticket)
        history = await self.bot.ticket_service.history(ticket.id, limit=10)
        lines = [
            f"`{item['created_at']}` {item['event_type']} by "
            f"{'<@' + str(item['actor_id']) + '>' if item.get('actor_id') else 'system'}"
            for item in history
        ]
        embed.add_field(name="History", value="\n".join(lines) or "No events recorded.", inline=False)
        await ctx.reply(embed=embed, mention_author=False)

    @ticket.command(name="list", description="List tickets in this server.")
    @staff_only()
    async def ticket_list(self, ctx: commands.Context[CommunityBot], status: str = "open") -> None:
        assert ctx.guild is not None
        try:
            wanted = TicketStatus(status.lower())
        except ValueError as exc:
            raise ValidationError("Status must be open, closed or deleted.") from exc
        tickets = await self.bot.ticket_service.list_tickets(str(ctx.guild.id), status=wanted, limit=25)
        if not tickets:
            await ctx.reply(embed=success_embed(f"No {wanted} tickets found."), mention_author=False)
            return
        lines = [
            f"`#{ticket.ticket_number}` {'<#' + ticket.channel_id + '>' if ticket.channel_id else 'no channel'}"
            f" | <@{ticket.user_id}> | {ticket.subject or 'no subject'}"
            for ticket in tickets
        ]
        await ctx.reply(
            embed=make_embed(f"{wanted.capitalize()} Tickets", "\n".join(lines), color=discord.Color.blurple()),
            mention_author=False,
        )

    @ticket.command(name="bulkdelete", description="Delete several tickets by number.")
    @staff_only()
    async def ticket_bulk_delete(self, ctx: commands.Context[CommunityBot], numbers: str, *, reason: str) -> None:
        assert ctx.guild is not None
        guild_id = str(ctx.guild.id)
        ticket_ids: list[int] = []
        unknown: list[int] = []
        for number in parse_ticket_numbers(numbers):
            ticket = await self.bot.ticket_repo.get_by_number(guild_id, number)
            if ticket:
                ticket_ids.append(ticket.id)
            else:
                unknown.append(number)
        if ctx.interaction:
            await ctx.defer()

        result = await self.bot.bulk_operations.bulk_delete(ticket_ids, reason, str(ctx.author.id))
        for ticket_id in result.processed_ids:
            ticket = await self.bot.ticket_repo.get_by_id(ticket_id)
            channel = ctx.guild.get_channel(int(ticket.channel_id)) if ticket and ticket.channel_id else None
            if isinstance(channel, discord.TextChannel) and channel != ctx.channel:
                await best_effort(
                    channel.delete(reason=f"Bulk delete by {ctx.author} ({ctx.author.id})"),
                    "channel removal for ticket %s",
                    ticket_id,
                )

        description = result.message
        if unknown:
            description += f"\nUnknown ticket numbers: {', '.join(f'#{n}' for n in unknown)}"
        color = discord.Color.green() if result.success and not unknown else discord.Color.orange()
        await ctx.reply(embed=make_embed("Bulk Delete", description, color=color), mention_author=False)

    @ticket.command(name="transcripts", description="Show transcript coverage and backfill missing ones.")
    @guild_admin_only()
    async def ticket_transcripts(self, ctx: commands.Context[CommunityBot], regenerate: bool = False) -> None:
        assert ctx.guild is not None
        guild_id = str(ctx.guild.id)
        if regenerate:
            summary = await self.bot.transcript_service.regenerate_missing(guild_id)
            await ctx.reply(
                embed=success_embed(
                    f"Processed {summary.processed} tickets: {summary.generated} transcripts generated, "
                    f"{summary.errors} errors."
                ),
                mention_author=False,
            )
            return
        stats = await self.bot.transcript_service.stats(guild_id)
        embed = make_embed("Transcript Coverage", f"Tickets: **{stats.total_tickets}**")
        embed.add_field(name="With Transcript", value=str(stats.with_transcript), inline=True)
        embed.add_field(name="Missing", value=str(stats.missing), inline=True)
        await ctx.reply(embed=embed, mention_author=False)

    @commands.hybrid_group(name="settings", with_app_command=True, description="Ticket settings.")
    @commands.guild_only()
    async def settings(self, ctx: commands.Context[CommunityBot]) -> None:
        if ctx.invoked_subcommand is None:
            assert ctx.guild is not None
            current = await self.bot.settings_service.get(str(ctx.guild.id), ctx.guild.name)
            roles = ", ".join(f"<@&{role_id}>" for role_id in current.staff_role_ids) or "None"
            channel = f"<#{current.transcript_channel_id}>" if current.transcript_channel_id else "None"
            embed = make_embed("Ticket Settings", f"Tickets opened so far: **{current.ticket_counter}**")
            embed.add_field(name="Staff Roles", value=roles, inline=False)
            embed.add_field(name="Transcript Channel", value=channel, inline=False)
            await ctx.reply(embed=embed, mention_author=False)

    @settings.command(name="staffroles", description="Set the roles that count as ticket staff.")
    @guild_admin_only()
    async def settings_staff_roles(
        self,
        ctx: commands.Context[CommunityBot],
        role: discord.Role,
        second: discord.Role | None = None,
        third: discord.Role | None = None,
    ) -> None:
        assert ctx.guild is not None
        roles = [item for item in (role, second, third) if item is not None]
        saved = await self.bot.settings_service.set_staff_roles(str(ctx.guild.id), [item.id for item in roles])
        await ctx.reply(
            embed=success_embed("Staff roles: " + ", ".join(f"<@&{role_id}>" for role_id in saved)),
            mention_author=False,
        )

    @settings.command(name="transcripts", description="Set the channel that receives ticket transcripts.")
    @guild_admin_only()
    async def settings_transcripts(
        self, ctx: commands.Context[CommunityBot], channel: discord.TextChannel | None = None
    ) -> None:
        assert ctx.guild is not None
        await self.bot.settings_service.set_transcript_channel(
            str(ctx.guild.id), str(channel.id) if channel else None
        )
        message = f"Transcripts will be posted in {channel.mention}." if channel else "Transcript posting disabled."
        await ctx.reply(embed=success_embed(message), mention_author=False)

    @settings.command(name="category", description="Set the category new ticket channels are created in.")
    @guild_admin_only()
    async def settings_category(
        self, ctx: commands.Context[CommunityBot], category: discord.CategoryChannel | None = None
    ) -> None:
        assert ctx.guild is not None
        await self.bot.settings_service.set_ticket_category(str(ctx.guild.id), category.id if category else None)
        message = (
            f"New tickets will be created under **{category.name}**."
            if category
            else "New tickets will be created next to the channel they were opened from."
        )
        await ctx.reply(embed=success_embed(message), mention_author=False)


async def setup(bot: CommunityBot) -> None:
    await bot.add_cog(TicketsCog(bot))

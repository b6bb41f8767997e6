from __future__ import annotations

import io
import json
import logging

import discord
from discord.ext import commands, tasks

from core.bot import CommunityBot
from core.errors import ValidationError
from utils.constants import EXPORT_FILE_TEMPLATE
from utils.decorators import guild_admin_only, staff_only
from utils.embeds import make_embed, overview_embed, success_embed
from utils.side_effects import best_effort

LOGGER = logging.getLogger(__name__)

MAX_WINDOW_DAYS = 365


def _online_count(guild: discord.Guild) -> int:
    return sum(1 for member in guild.members if member.status != discord.Status.offline)


def _window(days: int | None) -> int | None:
    if days is None:
        return None
    if days < 1 or days > MAX_WINDOW_DAYS:
        raise ValidationError(f"Days must be between 1 and {MAX_WINDOW_DAYS}.")
    return days


class AnalyticsCog(commands.Cog):
    def __init__(self, bot: CommunityBot) -> None:
        self.bot = bot
        config = bot.config.analytics
        self.health_snapshots.change_interval(seconds=config.health_interval_seconds)
        self.retention_cleanup.change_interval(hours=config.cleanup_interval_hours)
        if config.enabled:
            self.health_snapshots.start()
            self.retention_cleanup.start()

    def cog_unload(self) -> None:
        self.health_snapshots.cancel()
        self.retention_cleanup.cancel()

    async def collect_guild_health(self, guild: discord.Guild) -> None:
        guild_id = str(guild.id)
        member_count = guild.member_count or len(guild.members)
        online = _online_count(guild)
        snapshot = self.bot.health_monitor.snapshot(guild_id, member_count, online, self.bot.latency)
        await self.bot.analytics_service.record_server_health(snapshot)
        await self.bot.analytics_service.update_daily_member_count(guild_id, member_count, online)

    @tasks.loop(seconds=300)
    async def health_snapshots(self) -> None:
        for guild in self.bot.guilds:
            await best_effort(self.collect_guild_health(guild), "health snapshot for guild %s", guild.id)

    @health_snapshots.before_loop
    async def before_health_snapshots(self) -> None:
        await self.bot.wait_until_ready()

    @tasks.loop(hours=24)
    async def retention_cleanup(self) -> None:
        await best_effort(self.bot.analytics_service.clean_old_data(), "analytics retention cleanup")

    @retention_cleanup.before_loop
    async def before_retention_cleanup(self) -> None:
        await self.bot.wait_until_ready()

    @commands.hybrid_group(name="analytics", with_app_command=True, description="Server analytics.")
    @commands.guild_only()
    async def analytics(self, ctx: commands.Context[CommunityBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Analytics Commands",
                    "`/analytics overview [days]`\n"
                    "`/analytics channels [days]`\n"
                    "`/analytics commands [days]`\n"
                    "`/analytics engagement [days]`\n"
                    "`/analytics health [hours]`\n"
                    "`/analytics export [days]`",
                ),
                mention_author=False,
            )

    @analytics.command(name="overview", description="Server activity summary.")
    @staff_only()
    async def analytics_overview(self, ctx: commands.Context[CommunityBot], days: int | None = None) -> None:
        assert ctx.guild is not None
        days = _window(days) or self.bot.config.analytics.default_window_days
        overview = await self.bot.analytics_service.get_server_overview(str(ctx.guild.id), days)
        embed = overview_embed(ctx.guild.name, days, overview)
        hourly = await self.bot.analytics_service.get_hourly_activity(str(ctx.guild.id), days)
        if hourly:
            busiest = max(hourly, key=lambda bucket: bucket.avg_messages)
            embed.add_field(
                name="Busiest Hour (UTC)",
                value=f"{busiest.hour:02}:00 with {busiest.avg_messages:.1f} messages on average",
                inline=False,
            )
        await ctx.reply(embed=embed, mention_author=False)

    @analytics.command(name="channels", description="Most active channels.")
    @staff_only()
    async def analytics_channels(self, ctx: commands.Context[CommunityBot], days: int | None = None) -> None:
        assert ctx.guild is not None
        rows = await self.bot.analytics_service.get_top_channels(str(ctx.guild.id), _window(days))
        if not rows:
            await ctx.reply(embed=success_embed("No channel activity recorded yet."), mention_author=False)
            return
        lines = [
            f"`{idx + 1:02}` <#{row.channel_id}> | {row.total_messages} messages | "
            f"{row.active_days} days | {row.avg_users:.1f} users/day"
            for idx, row in enumerate(rows)
        ]
        await ctx.reply(embed=make_embed("Top Channels", "\n".join(lines)), mention_author=False)

    @analytics.command(name="commands", description="Command usage statistics.")
    @staff_only()
    async def analytics_commands(self, ctx: commands.Context[CommunityBot], days: int | None = None) -> None:
        assert ctx.guild is not None
        rows = await self.bot.analytics_service.get_command_stats(str(ctx.guild.id), _window(days))
        if not rows:
            await ctx.reply(embed=success_embed("No command usage recorded yet."), mention_author=False)
            return
        lines = [
            f"`/{row.command_name}` {row.usage_count} uses | {row.error_count} errors"
            + (f" | {row.avg_execution_time:.0f}ms avg" if row.avg_execution_time is not None else "")
            for row in rows[:20]
        ]
        await ctx.reply(embed=make_embed("Command Usage", "\n".join(lines)), mention_author=False)

    @analytics.command(name="engagement", description="Member engagement summary.")
    @staff_only()
    async def analytics_engagement(self, ctx: commands.Context[CommunityBot], days: int | None = None) -> None:
        assert ctx.guild is not None
        summary = await self.bot.analytics_service.get_member_engagement(str(ctx.guild.id), _window(days))
        embed = make_embed("Member Engagement", f"Active members: **{summary.active_members}**")
        embed.add_field(name="Messages / Member", value=f"{summary.avg_messages_per_member:.1f}", inline=True)
        embed.add_field(name="Commands / Member", value=f"{summary.avg_commands_per_member:.1f}", inline=True)
        embed.add_field(name="Voice Min / Member", value=f"{summary.avg_voice_per_member:.1f}", inline=True)
        embed.add_field(name="Most Messages", value=str(summary.most_messages), inline=True)
        embed.add_field(name="Most Voice Minutes", value=str(summary.most_voice_time), inline=True)
        await ctx.reply(embed=embed, mention_author=False)

    @analytics.command(name="health", description="Recent bot health snapshots.")
    @staff_only()
    async def analytics_health(self, ctx: commands.Context[CommunityBot], hours: int = 24) -> None:
        assert ctx.guild is not None
        if hours < 1 or hours > MAX_WINDOW_DAYS * 24:
            raise ValidationError("Hours must be between 1 and 8760.")
        rows = await self.bot.analytics_service.get_server_health_history(str(ctx.guild.id), hours)
        if not rows:
            await ctx.reply(embed=success_embed("No health snapshots recorded yet."), mention_author=False)
            return
        latest = rows[0]
        embed = make_embed("Bot Health", f"{len(rows)} snapshots in the last {hours} hours")
        embed.add_field(name="Members", value=f"{latest['member_count']} ({latest['online_count']} online)", inline=True)
        embed.add_field(name="Latency", value=f"{latest['bot_latency'] or 0}ms", inline=True)
        embed.add_field(name="Memory", value=f"{latest['memory_usage'] or 0} MB", inline=True)
        embed.add_field(name="CPU", value=f"{latest['cpu_usage'] or 0}%", inline=True)
        embed.add_field(name="Uptime", value=f"{(latest['uptime'] or 0) // 3600}h", inline=True)
        embed.add_field(name="Errors", value=str(latest["error_count"]), inline=True)
        await ctx.reply(embed=embed, mention_author=False)

    @analytics.command(name="export", description="Export analytics as JSON.")
    @guild_admin_only()
    async def analytics_export(self, ctx: commands.Context[CommunityBot], days: int | None = None) -> None:
        assert ctx.guild is not None
        if ctx.interaction:
            await ctx.defer()
        data = await self.bot.analytics_service.export_data(str(ctx.guild.id), _window(days))
        payload = io.BytesIO(json.dumps(data, indent=2).encode("utf-8"))
        filename = EXPORT_FILE_TEMPLATE.format(guild_id=ctx.guild.id, days=data["period_days"])
        await ctx.reply(
            content="Analytics export generated.",
            file=discord.File(payload, filename=filename),
            mention_author=False,
        )

    @analytics.command(name="cleanup", description="Delete analytics older than the retention window.")
    @commands.is_owner()
    async def analytics_cleanup(self, ctx: commands.Context[CommunityBot], days: int | None = None) -> None:
        deleted = await self.bot.analytics_service.clean_old_data(days)
        lines = [f"`{table}`: {count}" for table, count in deleted.items()]
        await ctx.reply(embed=make_embed("Analytics Cleanup", "\n".join(lines)), mention_author=False)


async def setup(bot: CommunityBot) -> None:
    await bot.add_cog(AnalyticsCog(bot))

from __future__ import annotations

import logging
from datetime import datetime

import discord
from discord import app_commands
from discord.ext import commands

from core.bot import CommunityBot
from database.models import AnalyticsEvent, CommandEvent, MetricType
from utils.side_effects import fire_and_forget
from utils.time import utc_now

LOGGER = logging.getLogger(__name__)


def _elapsed_ms(started: datetime) -> int:
    return max(int((utc_now() - started).total_seconds() * 1000), 0)


class EventsCog(commands.Cog):
    """Feeds gateway events into ticket activity tracking and the analytics rollups."""

    def __init__(self, bot: CommunityBot) -> None:
        self.bot = bot
        self._voice_sessions: dict[tuple[int, int], datetime] = {}

    @property
    def analytics_enabled(self) -> bool:
        return self.bot.config.analytics.enabled

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        for guild in self.bot.guilds:
            await self.bot.settings_repo.ensure_guild(str(guild.id), guild.name)
            for channel in guild.voice_channels:
                for member in channel.members:
                    self._voice_sessions.setdefault((guild.id, member.id), utc_now())

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.bot.settings_repo.ensure_guild(str(guild.id), guild.name)
        LOGGER.info("Registered settings for new guild %s", guild.id)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if not message.guild:
            return
        guild_id = str(message.guild.id)
        role_ids = [role.id for role in getattr(message.author, "roles", [])]
        fire_and_forget(
            self.bot.activity_tracker.record_activity(
                getattr(message.channel, "name", None),
                guild_id,
                str(message.author.id),
                author_role_ids=role_ids,
                author_is_bot=message.author.bot,
            ),
            "ticket activity for message %s",
            message.id,
        )
        if message.author.bot or not self.analytics_enabled:
            return
        fire_and_forget(self._track_message(message), "message analytics for %s", message.id)

    async def _track_message(self, message: discord.Message) -> None:
        assert message.guild is not None
        guild_id = str(message.guild.id)
        channel_id = str(message.channel.id)
        user_id = str(message.author.id)
        analytics = self.bot.analytics_service
        await analytics.track_activity(
            AnalyticsEvent(
                guild_id=guild_id,
                metric_type=MetricType.MESSAGE_COUNT,
                channel_id=channel_id,
                user_id=user_id,
            )
        )
        await analytics.update_channel_analytics(
            guild_id,
            channel_id,
            getattr(message.channel, "name", None) or channel_id,
            str(message.channel.type),
        )
        await analytics.record_member_engagement(guild_id, user_id, messages=1)

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        self._track_member(member, MetricType.MEMBER_JOIN)

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        self._track_member(member, MetricType.MEMBER_LEAVE)

    def _track_member(self, member: discord.Member, metric_type: MetricType) -> None:
        if member.bot or not self.analytics_enabled:
            return
        fire_and_forget(
            self.bot.analytics_service.track_activity(
                AnalyticsEvent(guild_id=str(member.guild.id), metric_type=metric_type, user_id=str(member.id))
            ),
            "%s analytics for %s",
            metric_type,
            member.id,
        )

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        if payload.guild_id is None or not self.analytics_enabled:
            return
        if payload.member is not None and payload.member.bot:
            return
        fire_and_forget(
            self._track_reaction(str(payload.guild_id), str(payload.channel_id), str(payload.user_id)),
            "reaction analytics for %s",
            payload.message_id,
        )

    async def _track_reaction(self, guild_id: str, channel_id: str, user_id: str) -> None:
        await self.bot.analytics_service.track_activity(
            AnalyticsEvent(
                guild_id=guild_id,
                metric_type=MetricType.REACTION_COUNT,
                channel_id=channel_id,
                user_id=user_id,
            )
        )
        await self.bot.analytics_service.record_member_engagement(guild_id, user_id, reactions=1)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState
    ) -> None:
        if member.bot:
            return
        key = (member.guild.id, member.id)
        if before.channel is None and after.channel is not None:
            self._voice_sessions[key] = utc_now()
            return
        if before.channel is None or after.channel is not None:
            return
        started = self._voice_sessions.pop(key, None)
        if started is None or not self.analytics_enabled:
            return
        minutes = int((utc_now() - started).total_seconds() // 60)
        if minutes < 1:
            return
        fire_and_forget(
            self._track_voice(str(member.guild.id), str(before.channel.id), str(member.id), minutes),
            "voice analytics for %s",
            member.id,
        )

    async def _track_voice(self, guild_id: str, channel_id: str, user_id: str, minutes: int) -> None:
        await self.bot.analytics_service.track_activity(
            AnalyticsEvent(
                guild_id=guild_id,
                metric_type=MetricType.VOICE_ACTIVITY,
                channel_id=channel_id,
                user_id=user_id,
                value=minutes,
            )
        )
        await self.bot.analytics_service.record_member_engagement(guild_id, user_id, voice_minutes=minutes)

    @commands.Cog.listener()
    async def on_app_command_completion(
        self,
        interaction: discord.Interaction,
        command: app_commands.Command | app_commands.ContextMenu,
    ) -> None:
        if not interaction.guild or not self.analytics_enabled:
            return
        self.track_command(
            CommandEvent(
                guild_id=str(interaction.guild.id),
                command_name=command.qualified_name,
                user_id=str(interaction.user.id),
                channel_id=str(interaction.channel_id),
                execution_time=_elapsed_ms(interaction.created_at),
            )
        )

    @commands.Cog.listener()
    async def on_command_completion(self, ctx: commands.Context[CommunityBot]) -> None:
        # Hybrid commands invoked as slash commands are reported by on_app_command_completion.
        if not ctx.guild or ctx.interaction or not ctx.command or not self.analytics_enabled:
            return
        self.track_command(
            CommandEvent(
                guild_id=str(ctx.guild.id),
                command_name=ctx.command.qualified_name,
                user_id=str(ctx.author.id),
                channel_id=str(ctx.channel.id),
                execution_time=_elapsed_ms(ctx.message.created_at),
            )
        )

    def track_command(self, event: CommandEvent) -> None:
        fire_and_forget(
            self._track_command(event),
            "command analytics for %s",
            event.command_name,
        )

    async def _track_command(self, event: CommandEvent) -> None:
        await self.bot.analytics_service.track_command(event)
        await self.bot.analytics_service.record_member_engagement(event.guild_id, event.user_id, commands=1)


async def setup(bot: CommunityBot) -> None:
    await bot.add_cog(EventsCog(bot))

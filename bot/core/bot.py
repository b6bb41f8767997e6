from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord import app_commands
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from core.extensions import load_extensions
from database.base import Database
from database.migrations.runner import run_migrations
from database.models import CommandEvent
from database.repositories import (
    AnalyticsRepository,
    EventRepository,
    GuildSettingsRepository,
    StaffActivityRepository,
    TicketRepository,
    TranscriptRepository,
)
from services.activity_tracker import ActivityTracker
from services.analytics_service import AnalyticsService
from services.bulk_operations import BulkOperationCoordinator
from services.health_monitor import HealthMonitor
from services.settings_service import SettingsService
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import DiscordHistorySource, TranscriptService
from utils.side_effects import drain_side_effects, fire_and_forget

LOGGER = logging.getLogger(__name__)


class CommunityBot(commands.Bot):
    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True
        intents.reactions = True
        intents.voice_states = True
        intents.presences = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(
                everyone=config.discord.allowed_mentions_everyone,
                roles=True,
                users=True,
                replied_user=False,
            ),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )
        self.health_monitor = HealthMonitor()

        # Repositories and services are initialized during setup_hook.
        self.settings_repo: GuildSettingsRepository
        self.ticket_repo: TicketRepository
        self.transcript_repo: TranscriptRepository
        self.staff_activity_repo: StaffActivityRepository
        self.event_repo: EventRepository
        self.analytics_repo: AnalyticsRepository

        self.settings_service: SettingsService
        self.transcript_service: TranscriptService
        self.ticket_service: TicketService
        self.activity_tracker: ActivityTracker
        self.analytics_service: AnalyticsService
        self.bulk_operations: BulkOperationCoordinator

    async def setup_hook(self) -> None:
        await self.database.connect()
        applied = await run_migrations(self.database, self.root_dir / "database" / "migrations")
        if applied:
            LOGGER.info("Applied migrations: %s", ", ".join(applied))

        self.settings_repo = GuildSettingsRepository(self.database)
        self.ticket_repo = TicketRepository(self.database)
        self.transcript_repo = TranscriptRepository(self.database)
        self.staff_activity_repo = StaffActivityRepository(self.database)
        self.event_repo = EventRepository(self.database)
        self.analytics_repo = AnalyticsRepository(self.database)

        self.settings_service = SettingsService(self.settings_repo)
        self.transcript_service = TranscriptService(
            self.config.tickets,
            self.transcript_repo,
            self.ticket_repo,
            DiscordHistorySource(self),
        )
        self.ticket_service = TicketService(
            self.config.tickets,
            TicketServiceDeps(
                settings_repo=self.settings_repo,
                ticket_repo=self.ticket_repo,
                event_repo=self.event_repo,
                transcripts=self.transcript_service,
            ),
        )
        self.activity_tracker = ActivityTracker(
            self.database,
            self.settings_service,
            self.ticket_repo,
            self.staff_activity_repo,
            channel_prefix=self.config.tickets.channel_prefix,
        )
        self.analytics_service = AnalyticsService(self.config.analytics, self.analytics_repo)
        self.bulk_operations = BulkOperationCoordinator(self.ticket_service)

        await load_extensions(self, self.config.enabled_extensions)

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = self.on_app_command_error  # type: ignore[assignment]

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        self.health_monitor.record_error()
        if ctx.guild and ctx.command and not ctx.interaction:
            self._track_failed_command(
                CommandEvent(
                    guild_id=str(ctx.guild.id),
                    command_name=ctx.command.qualified_name,
                    user_id=str(ctx.author.id),
                    channel_id=str(ctx.channel.id),
                    success=False,
                    error_message=str(error)[:500],
                )
            )
        await handle_prefix_command_error(ctx, error)

    async def on_app_command_error(
        self, interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
    ) -> None:
        self.health_monitor.record_error()
        if interaction.guild and interaction.command:
            self._track_failed_command(
                CommandEvent(
                    guild_id=str(interaction.guild.id),
                    command_name=interaction.command.qualified_name,
                    user_id=str(interaction.user.id),
                    channel_id=str(interaction.channel_id),
                    success=False,
                    error_message=str(error)[:500],
                )
            )
        await handle_app_command_error(interaction, error)

    def _track_failed_command(self, event: CommandEvent) -> None:
        if not self.config.analytics.enabled:
            return
        fire_and_forget(
            self.analytics_service.track_command(event),
            "failed command analytics for %s",
            event.command_name,
        )

    async def close(self) -> None:
        await drain_side_effects()
        await super().close()
        await self.database.close()

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import discord

from core.config import TicketConfig
from core.errors import NotFoundError
from database.models import (
    TicketRecord,
    TicketTranscript,
    TranscriptAttachment,
    TranscriptEmbed,
    TranscriptMessage,
)
from database.repositories import TicketRepository, TranscriptRepository
from utils.time import to_iso, utc_now

LOGGER = logging.getLogger(__name__)


class MessageHistorySource(Protocol):
    async def fetch_messages(self, ticket: TicketRecord, limit: int) -> list[TranscriptMessage] | None:
        """Return messages oldest first, or None when the channel no longer exists."""
        ...


@dataclass(slots=True)
class TranscriptStats:
    total_tickets: int
    with_transcript: int
    missing: int


@dataclass(slots=True)
class RegenerationSummary:
    processed: int = 0
    generated: int = 0
    errors: int = 0


def message_from_discord(message: discord.Message) -> TranscriptMessage:
    return TranscriptMessage(
        id=str(message.id),
        author_id=str(message.author.id),
        author_name=message.author.name,
        author_bot=message.author.bot,
        content=message.content or "",
        timestamp=to_iso(message.created_at) or "",
        attachments=[
            TranscriptAttachment(url=item.url, name=item.filename, content_type=item.content_type)
            for item in message.attachments
        ],
        embeds=[
            TranscriptEmbed(
                title=embed.title,
                description=embed.description,
                color=embed.color.value if embed.color else None,
                fields=[
                    {"name": fld.name, "value": fld.value, "inline": fld.inline} for fld in embed.fields
                ],
            )
            for embed in message.embeds
        ],
    )


class DiscordHistorySource:
    """Reads ticket channel history through the bot's gateway client."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def fetch_messages(self, ticket: TicketRecord, limit: int) -> list[TranscriptMessage] | None:
        if not ticket.channel_id:
            return None
        channel_id = int(ticket.channel_id)
        channel = self.client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(channel_id)
            except discord.NotFound:
                LOGGER.info("Channel %s for ticket %s no longer exists", channel_id, ticket.id)
                return None
        if not isinstance(channel, discord.abc.Messageable):
            return None
        messages: list[TranscriptMessage] = []
        async for message in channel.history(limit=limit, oldest_first=False):
            messages.append(message_from_discord(message))
        messages.reverse()
        return messages


def _system_message(message_id: str, content: str) -> dict[str, Any]:
    return TranscriptMessage(
        id=message_id,
        author_id="system",
        author_name="System",
        author_bot=True,
        content=content,
        timestamp=to_iso(utc_now()) or "",
    ).to_dict()


def placeholder_transcript(ticket: TicketRecord) -> list[dict[str, Any]]:
    return [
        _system_message(
            "placeholder",
            f"This ticket channel ({ticket.channel_id}) no longer exists. "
            "The transcript was not saved when the ticket was closed.",
        )
    ]


def empty_transcript() -> list[dict[str, Any]]:
    return [_system_message("no-messages", "No messages found in this ticket channel.")]


def render_text(transcript: TicketTranscript) -> str:
    lines: list[str] = [f"Transcript for ticket {transcript.ticket_id}"]
    for msg in transcript.messages:
        author = msg.get("author") or {}
        name = author.get("username", "unknown")
        lines.append(f"[{msg.get('timestamp', '')}] {name} ({author.get('id', '?')}): {msg.get('content', '')}")
        for attach in msg.get("attachments") or []:
            lines.append(f"  attachment: {attach.get('name')} {attach.get('url')}")
        for embed in msg.get("embeds") or []:
            title = embed.get("title") or ""
            description = embed.get("description") or ""
            lines.append(f"  embed: {title} {description}".rstrip())
    return "\n".join(lines)


class TranscriptService:
    def __init__(
        self,
        config: TicketConfig,
        transcript_repo: TranscriptRepository,
        ticket_repo: TicketRepository,
        source: MessageHistorySource,
    ) -> None:
        self.config = config
        self.transcript_repo = transcript_repo
        self.ticket_repo = ticket_repo
        self.source = source

    async def capture(self, ticket: TicketRecord) -> list[dict[str, Any]]:
        """Fetch channel history for a ticket, falling back to a placeholder."""
        messages = await self.source.fetch_messages(ticket, self.config.transcript_message_limit)
        if messages is None:
            return placeholder_transcript(ticket)
        if not messages:
            return empty_transcript()
        return [item.to_dict() for item in messages]

    async def capture_and_save(self, ticket: TicketRecord) -> int:
        messages = await self.capture(ticket)
        await self.save(ticket.id, messages)
        LOGGER.info("Saved transcript for ticket %s (%s messages)", ticket.id, len(messages))
        return len(messages)

    async def save(self, ticket_id: int, messages: list[dict[str, Any]] | list[TranscriptMessage]) -> None:
        normalized = [item.to_dict() if isinstance(item, TranscriptMessage) else dict(item) for item in messages]
        await self.transcript_repo.upsert(ticket_id, normalized)

    async def get(self, ticket_id: int) -> TicketTranscript:
        transcript = await self.transcript_repo.get(ticket_id)
        if transcript is None:
            raise NotFoundError("No transcript is stored for this ticket.")
        return transcript

    async def exists(self, ticket_id: int) -> bool:
        return await self.transcript_repo.exists(ticket_id)

    async def stats(self, guild_id: str) -> TranscriptStats:
        counts = await self.ticket_repo.status_counts(guild_id)
        stored = await self.transcript_repo.count_for_guild(guild_id)
        missing = await self.ticket_repo.list_missing_transcripts(guild_id)
        return TranscriptStats(
            total_tickets=sum(counts.values()),
            with_transcript=stored,
            missing=len(missing),
        )

    async def regenerate_missing(self, guild_id: str) -> RegenerationSummary:
        summary = RegenerationSummary()
        for ticket in await self.ticket_repo.list_missing_transcripts(guild_id):
            summary.processed += 1
            try:
                await self.capture_and_save(ticket)
                summary.generated += 1
            except Exception:
                LOGGER.exception("Failed to regenerate transcript for ticket %s", ticket.id)
                summary.errors += 1
        LOGGER.info(
            "Transcript regeneration for guild %s: processed=%s generated=%s errors=%s",
            guild_id,
            summary.processed,
            summary.generated,
            summary.errors,
        )
        return summary

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest_asyncio

from core.config import TicketConfig
from database.base import Database
from database.migrations.runner import run_migrations
from database.models import TicketRecord, TranscriptMessage
from database.repositories import (
    EventRepository,
    GuildSettingsRepository,
    TicketRepository,
    TranscriptRepository,
)
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import TranscriptService

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "database" / "migrations"


class FakeHistorySource:
    """Stands in for channel history. ``messages=None`` means the channel is gone."""

    def __init__(self, messages: list[TranscriptMessage] | None = None, error: Exception | None = None) -> None:
        self.messages = messages
        self.error = error
        self.calls: list[int] = []

    async def fetch_messages(self, ticket: TicketRecord, limit: int) -> list[TranscriptMessage] | None:
        self.calls.append(ticket.id)
        if self.error is not None:
            raise self.error
        if self.messages is None:
            return None
        return self.messages[-limit:]


def make_message(message_id: str, content: str, author: str = "alice") -> TranscriptMessage:
    return TranscriptMessage(
        id=message_id,
        author_id=f"{author}-id",
        author_name=author,
        content=content,
        timestamp="2024-05-01T12:00:00+00:00",
    )


def build_ticket_service(
    db: Database, source: FakeHistorySource, config: TicketConfig | None = None
) -> TicketService:
    config = config or TicketConfig()
    ticket_repo = TicketRepository(db)
    transcripts = TranscriptService(config, TranscriptRepository(db), ticket_repo, source)
    return TicketService(
        config,
        TicketServiceDeps(
            settings_repo=GuildSettingsRepository(db),
            ticket_repo=ticket_repo,
            event_repo=EventRepository(db),
            transcripts=transcripts,
        ),
    )


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(url=f"sqlite:///{tmp_path / 'community.db'}")
    await database.connect()
    await run_migrations(database, MIGRATIONS_DIR)
    yield database
    await database.close()

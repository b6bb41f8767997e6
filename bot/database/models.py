from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class TicketStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    DELETED = "deleted"


class MetricType(StrEnum):
    MESSAGE_COUNT = "message_count"
    COMMAND_USAGE = "command_usage"
    MEMBER_JOIN = "member_join"
    MEMBER_LEAVE = "member_leave"
    VOICE_ACTIVITY = "voice_activity"
    REACTION_COUNT = "reaction_count"


@dataclass(slots=True)
class GuildSettings:
    guild_id: str
    guild_name: str | None = None
    staff_role_ids: list[str] = field(default_factory=list)
    ticket_counter: int = 0
    transcript_channel_id: str | None = None
    log_channel_id: str | None = None
    values: dict[str, Any] = field(default_factory=dict)
    updated_at: str | None = None


@dataclass(slots=True)
class TicketRecord:
    id: int
    guild_id: str
    user_id: str
    ticket_number: int
    status: str
    channel_id: str | None = None
    subject: str | None = None
    rating: int | None = None
    created_at: str | None = None
    last_message_at: str | None = None
    last_activity_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None

    @property
    def channel_name(self) -> str:
        return f"ticket-{self.ticket_number}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class TranscriptAttachment:
    url: str
    name: str
    content_type: str | None = None


@dataclass(slots=True)
class TranscriptEmbed:
    title: str | None = None
    description: str | None = None
    color: int | None = None
    fields: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class TranscriptMessage:
    id: str
    author_id: str
    author_name: str
    content: str
    timestamp: str
    author_bot: bool = False
    attachments: list[TranscriptAttachment] = field(default_factory=list)
    embeds: list[TranscriptEmbed] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "author": {"id": self.author_id, "username": self.author_name, "bot": self.author_bot},
            "content": self.content,
            "timestamp": self.timestamp,
            "attachments": [asdict(item) for item in self.attachments],
            "embeds": [asdict(item) for item in self.embeds],
        }


@dataclass(slots=True)
class TicketTranscript:
    ticket_id: int
    messages: list[dict[str, Any]]
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def message_count(self) -> int:
        return len(self.messages)


@dataclass(slots=True)
class AnalyticsEvent:
    guild_id: str
    metric_type: MetricType | str
    channel_id: str | None = None
    user_id: str | None = None
    command_name: str | None = None
    value: int = 1
    metadata: str | None = None


@dataclass(slots=True)
class CommandEvent:
    guild_id: str
    command_name: str
    user_id: str
    channel_id: str
    success: bool = True
    execution_time: int | None = None
    error_message: str | None = None


@dataclass(slots=True)
class HealthSnapshot:
    guild_id: str
    member_count: int
    online_count: int = 0
    bot_latency: int | None = None
    api_response_time: int | None = None
    memory_usage: int | None = None
    cpu_usage: float | None = None
    uptime: int | None = None
    error_count: int = 0


@dataclass(slots=True)
class ServerOverview:
    total_messages: int = 0
    avg_members: float = 0.0
    total_commands: int = 0
    peak_online: int = 0
    new_members: int = 0
    left_members: int = 0
    voice_minutes: int = 0
    reactions_given: int = 0
    current_online: int = 0
    current_members: int = 0


@dataclass(slots=True)
class HourlyBucket:
    hour: int
    avg_messages: float
    avg_commands: float
    avg_voice_users: float


@dataclass(slots=True)
class ChannelActivity:
    channel_id: str
    channel_name: str
    channel_type: str
    total_messages: int
    active_days: int
    avg_users: float


@dataclass(slots=True)
class CommandUsage:
    command_name: str
    usage_count: int
    avg_execution_time: float | None
    success_count: int
    error_count: int


@dataclass(slots=True)
class EngagementSummary:
    active_members: int = 0
    avg_messages_per_member: float = 0.0
    avg_commands_per_member: float = 0.0
    avg_voice_per_member: float = 0.0
    most_messages: int = 0
    most_voice_time: int = 0

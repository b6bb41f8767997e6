from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

DEFAULT_EXTENSIONS = [
    "cogs.events",
    "cogs.tickets",
    "cogs.analytics",
]


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class DiscordConfig:
    token: str
    prefix: str = "!"
    application_id: int | None = None
    sync_commands_on_start: bool = True
    status_text: str = "Watching over the community"
    activity_type: str = "watching"
    allowed_mentions_everyone: bool = False


@dataclass(slots=True)
class DatabaseConfig:
    url: str = "sqlite:///./data/community.db"
    pool_min_size: int = 2
    pool_max_size: int = 10
    timeout_seconds: int = 30


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "bot.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False


@dataclass(slots=True)
class TicketConfig:
    strict_transitions: bool = True
    reason_min_length: int = 3
    transcript_message_limit: int = 100
    channel_prefix: str = "ticket"


@dataclass(slots=True)
class AnalyticsConfig:
    enabled: bool = True
    retention_days: int = 90
    health_interval_seconds: int = 300
    cleanup_interval_hours: int = 24
    default_window_days: int = 7
    export_window_days: int = 30
    top_channels_limit: int = 10


@dataclass(slots=True)
class FastApiConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str = ""


@dataclass(slots=True)
class AppConfig:
    discord: DiscordConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tickets: TicketConfig = field(default_factory=TicketConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    fastapi: FastApiConfig = field(default_factory=FastApiConfig)
    enabled_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def _load_ticket_config(raw: dict[str, Any]) -> TicketConfig:
    min_length = _as_int(_deep_get(raw, "tickets", "reason_min_length"), 3)
    message_limit = _as_int(_deep_get(raw, "tickets", "transcript_message_limit"), 100)
    if min_length < 1:
        raise ConfigError("tickets.reason_min_length must be at least 1")
    if message_limit < 1:
        raise ConfigError("tickets.transcript_message_limit must be at least 1")
    return TicketConfig(
        strict_transitions=_as_bool(_deep_get(raw, "tickets", "strict_transitions"), True),
        reason_min_length=min_length,
        transcript_message_limit=message_limit,
        channel_prefix=str(_deep_get(raw, "tickets", "channel_prefix", default="ticket")),
    )


def _load_analytics_config(raw: dict[str, Any]) -> AnalyticsConfig:
    cfg = AnalyticsConfig(
        enabled=_as_bool(_deep_get(raw, "analytics", "enabled"), True),
        retention_days=_as_int(_deep_get(raw, "analytics", "retention_days"), 90),
        health_interval_seconds=_as_int(_deep_get(raw, "analytics", "health_interval_seconds"), 300),
        cleanup_interval_hours=_as_int(_deep_get(raw, "analytics", "cleanup_interval_hours"), 24),
        default_window_days=_as_int(_deep_get(raw, "analytics", "default_window_days"), 7),
        export_window_days=_as_int(_deep_get(raw, "analytics", "export_window_days"), 30),
        top_channels_limit=_as_int(_deep_get(raw, "analytics", "top_channels_limit"), 10),
    )
    if cfg.retention_days < 1:
        raise ConfigError("analytics.retention_days must be at least 1")
    if cfg.health_interval_seconds < 10:
        raise ConfigError("analytics.health_interval_seconds must be at least 10")
    return cfg


def load_config(config_path: Path) -> AppConfig:
    env_path = config_path.parent.parent / ".env"
    load_dotenv(env_path)
    raw = _load_yaml(config_path)

    discord_token = _get_env_str("DISCORD_TOKEN", _deep_get(raw, "discord", "token"))
    if not discord_token or "${" in discord_token:
        raise ConfigError("DISCORD_TOKEN is required")

    discord_cfg = DiscordConfig(
        token=discord_token,
        prefix=str(_get_env_str("BOT_PREFIX", _deep_get(raw, "discord", "prefix", default="!"))),
        application_id=(
            int(_get_env_str("DISCORD_APPLICATION_ID"))
            if _get_env_str("DISCORD_APPLICATION_ID")
            else _deep_get(raw, "discord", "application_id")
        ),
        sync_commands_on_start=_as_bool(
            _get_env_str("SYNC_COMMANDS"),
            _as_bool(_deep_get(raw, "discord", "sync_commands_on_start"), True),
        ),
        status_text=str(_deep_get(raw, "discord", "status_text", default="Watching over the community")),
        activity_type=str(_deep_get(raw, "discord", "activity_type", default="watching")),
        allowed_mentions_everyone=_as_bool(
            _deep_get(raw, "discord", "allowed_mentions_everyone"), False
        ),
    )

    database_cfg = DatabaseConfig(
        url=str(
            _get_env_str(
                "DATABASE_URL",
                _deep_get(raw, "database", "url", default="sqlite:///./data/community.db"),
            )
        ),
        pool_min_size=_as_int(
            _get_env_str("DB_POOL_MIN", None),
            _as_int(_deep_get(raw, "database", "pool_min_size"), 2),
        ),
        pool_max_size=_as_int(
            _get_env_str("DB_POOL_MAX", None),
            _as_int(_deep_get(raw, "database", "pool_max_size"), 10),
        ),
        timeout_seconds=_as_int(
            _get_env_str("DB_TIMEOUT_SECONDS", None),
            _as_int(_deep_get(raw, "database", "timeout_seconds"), 30),
        ),
    )

    logging_cfg = LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="bot.log")),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
    )

    fastapi_cfg = FastApiConfig(
        enabled=_as_bool(_deep_get(raw, "fastapi", "enabled"), False),
        host=str(_deep_get(raw, "fastapi", "host", default="0.0.0.0")),
        port=_as_int(_deep_get(raw, "fastapi", "port"), 8000),
        api_key=str(_get_env_str("DASHBOARD_API_KEY", _deep_get(raw, "fastapi", "api_key", default=""))),
    )

    enabled_extensions = [
        str(ext) for ext in list(_deep_get(raw, "enabled_extensions", default=DEFAULT_EXTENSIONS))
    ]

    return AppConfig(
        discord=discord_cfg,
        database=database_cfg,
        logging=logging_cfg,
        tickets=_load_ticket_config(raw),
        analytics=_load_analytics_config(raw),
        fastapi=fastapi_cfg,
        enabled_extensions=enabled_extensions,
    )

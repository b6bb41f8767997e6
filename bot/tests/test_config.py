from __future__ import annotations

from pathlib import Path

import pytest

from core.config import ConfigError, load_config


def _write(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"
    config_path.write_text(body.strip(), encoding="utf-8")
    return config_path


def test_load_config_reads_yaml(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: test-token
  prefix: "?"
database:
  url: "sqlite:///./data/test.db"
tickets:
  strict_transitions: false
  reason_min_length: 5
analytics:
  retention_days: 30
""",
    )

    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    cfg = load_config(config_path)

    assert cfg.discord.token == "test-token"
    assert cfg.discord.prefix == "?"
    assert cfg.database.url.startswith("sqlite:///")
    assert cfg.tickets.strict_transitions is False
    assert cfg.tickets.reason_min_length == 5
    assert cfg.tickets.transcript_message_limit == 100
    assert cfg.analytics.retention_days == 30
    assert cfg.analytics.health_interval_seconds == 300
    assert cfg.enabled_extensions == ["cogs.events", "cogs.tickets", "cogs.analytics"]


def test_env_overrides_token_and_api_key(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: yaml-token
fastapi:
  api_key: yaml-key
""",
    )
    monkeypatch.setenv("DISCORD_TOKEN", "env-token")
    monkeypatch.setenv("DASHBOARD_API_KEY", "env-key")
    cfg = load_config(config_path)
    assert cfg.discord.token == "env-token"
    assert cfg.fastapi.api_key == "env-key"


def test_placeholder_token_is_rejected(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(tmp_path, "discord:\n  token: ${DISCORD_TOKEN}\n")
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_missing_file_and_bad_analytics_values(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    with pytest.raises(ConfigError):
        load_config(tmp_path / "config" / "missing.yaml")

    config_path = _write(tmp_path, "discord:\n  token: t\nanalytics:\n  health_interval_seconds: 1\n")
    with pytest.raises(ConfigError):
        load_config(config_path)

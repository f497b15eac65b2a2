"""Daemon settings loader and path resolver."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from mailgate.approval.queue import DEFAULT_APPROVAL_TIMEOUT_SECONDS
from mailgate.notify.approval import DEFAULT_POLL_INTERVAL_SECONDS
from mailgate.notify.ntfy import DEFAULT_BROKER_URL

DEFAULT_DASHBOARD_HOST = "127.0.0.1"
DEFAULT_DASHBOARD_PORT = 8787
# Requester I/O deadline = approval timeout + this margin.
CLIENT_DEADLINE_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class SettingsPaths:
    config_dir: Path
    socket_path: Path
    bootstrap_path: Path
    events_db_path: Path
    secrets_dir: Path
    settings_path: Path


@dataclass(frozen=True)
class Settings:
    broker_url: str
    approval_timeout_seconds: int
    poll_interval_seconds: float
    dashboard_enabled: bool
    dashboard_host: str
    dashboard_port: int
    paths: SettingsPaths

    @property
    def client_timeout_seconds(self) -> int:
        return self.approval_timeout_seconds + CLIENT_DEADLINE_MARGIN_SECONDS


class SettingsError(ValueError):
    """Raised when the settings file is invalid."""


def default_config_dir() -> Path:
    return Path.home() / ".config" / "mailgate"


def resolve_paths(config_dir: Path) -> SettingsPaths:
    return SettingsPaths(
        config_dir=config_dir,
        socket_path=config_dir / "approval.sock",
        bootstrap_path=config_dir / "bootstrap.yaml",
        events_db_path=config_dir / "events.db",
        secrets_dir=config_dir / "secrets",
        settings_path=config_dir / "settings.yaml",
    )


def _positive_number(raw: dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise SettingsError(f"{key} must be a positive number, got {value!r}")
    return float(value)


def load_settings(config_dir: Path | None = None) -> Settings:
    """Load ``settings.yaml`` from the config dir; a missing file means all defaults."""
    if config_dir is None:
        config_dir = default_config_dir()
    paths = resolve_paths(config_dir)

    raw: Any = {}
    if paths.settings_path.exists():
        with paths.settings_path.open("r", encoding="utf-8") as fh:
            try:
                raw = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise SettingsError(f"Settings file is not valid YAML: {paths.settings_path}") from exc
    if not isinstance(raw, dict):
        raise SettingsError(f"Settings file must contain a mapping: {paths.settings_path}")

    broker_url = str(raw.get("broker_url", DEFAULT_BROKER_URL)).strip().rstrip("/")
    if not broker_url.startswith(("https://", "http://")):
        raise SettingsError(f"broker_url must be an http(s) URL, got {broker_url!r}")

    port = raw.get("dashboard_port", DEFAULT_DASHBOARD_PORT)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65535:
        raise SettingsError(f"dashboard_port must be a TCP port, got {port!r}")

    return Settings(
        broker_url=broker_url,
        approval_timeout_seconds=int(
            _positive_number(raw, "approval_timeout_seconds", DEFAULT_APPROVAL_TIMEOUT_SECONDS)
        ),
        poll_interval_seconds=_positive_number(raw, "poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS),
        dashboard_enabled=bool(raw.get("dashboard_enabled", True)),
        dashboard_host=str(raw.get("dashboard_host", DEFAULT_DASHBOARD_HOST)).strip() or DEFAULT_DASHBOARD_HOST,
        dashboard_port=port,
        paths=paths,
    )


def ensure_directories(settings: Settings) -> None:
    """Create owner-only config directories without touching existing data."""
    for directory in (settings.paths.config_dir, settings.paths.secrets_dir):
        directory.mkdir(parents=True, exist_ok=True)
        directory.chmod(0o700)


def read_secret(secrets_dir: Path, filename: str) -> str | None:
    """Read first line of a secret file; return None if missing or empty."""
    path = secrets_dir / filename
    if not path.exists():
        return None
    raw = path.read_text(encoding="utf-8").strip()
    return raw if raw else None

"""One-time broker topic and signing secret, persisted owner-only."""

from __future__ import annotations

import os
import secrets
from dataclasses import asdict, dataclass
from pathlib import Path

import yaml

TOPIC_PREFIX = "mailgate-"
RANDOM_FIELD_LEN = 32


class BootstrapError(RuntimeError):
    """Raised when the bootstrap file cannot be read or written."""


@dataclass
class BootstrapConfig:
    ntfy_topic: str
    signing_secret: str
    setup_complete: bool = False


def generate_random_string(length: int = RANDOM_FIELD_LEN) -> str:
    return secrets.token_urlsafe(length)[:length]


def create_bootstrap_config() -> BootstrapConfig:
    return BootstrapConfig(
        ntfy_topic=TOPIC_PREFIX + generate_random_string(),
        signing_secret=generate_random_string(),
        setup_complete=False,
    )


class BootstrapStore:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> BootstrapConfig | None:
        if not self._path.exists():
            return None
        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise BootstrapError(f"failed to read config: {exc}") from exc
        if not isinstance(raw, dict):
            raise BootstrapError(f"Bootstrap file must contain a mapping: {self._path}")
        topic = str(raw.get("ntfy_topic", "")).strip()
        secret = str(raw.get("signing_secret", "")).strip()
        if not topic or not secret:
            raise BootstrapError(f"Bootstrap file is missing ntfy_topic or signing_secret: {self._path}")
        return BootstrapConfig(
            ntfy_topic=topic,
            signing_secret=secret,
            setup_complete=bool(raw.get("setup_complete", False)),
        )

    def save(self, config: BootstrapConfig) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.parent.chmod(0o700)
            fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(yaml.safe_dump(asdict(config), sort_keys=False))
            self._path.chmod(0o600)
        except OSError as exc:
            raise BootstrapError(f"failed to write config: {exc}") from exc

    def load_or_create(self) -> BootstrapConfig:
        config = self.load()
        if config is None:
            config = create_bootstrap_config()
            self.save(config)
        return config

    def mark_complete(self, config: BootstrapConfig) -> None:
        config.setup_complete = True
        self.save(config)

    def reset(self) -> bool:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        return True

"""Requester-side client for the approval daemon socket."""

from __future__ import annotations

import json
import socket
from pathlib import Path
from typing import Any

from mailgate.approval.queue import DEFAULT_APPROVAL_TIMEOUT_SECONDS
from mailgate.settings import CLIENT_DEADLINE_MARGIN_SECONDS, Settings

DAEMON_COMMAND = "mailgate-daemon"


class DaemonUnreachableError(RuntimeError):
    """Raised when nothing is listening on the daemon socket."""


class DaemonProtocolError(RuntimeError):
    """Raised when the daemon connection breaks or answers with garbage."""


class DaemonClient:
    def __init__(
        self,
        socket_path: Path,
        *,
        timeout: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS + CLIENT_DEADLINE_MARGIN_SECONDS,
    ) -> None:
        self._socket_path = socket_path
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> DaemonClient:
        """Client whose deadline outlasts the daemon's configured approval timeout."""
        return cls(settings.paths.socket_path, timeout=settings.client_timeout_seconds)

    @property
    def timeout(self) -> float:
        return self._timeout

    def request(self, payload: dict[str, Any]) -> dict[str, Any]:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(self._timeout)
            try:
                sock.connect(str(self._socket_path))
            except (FileNotFoundError, ConnectionRefusedError) as exc:
                raise DaemonUnreachableError(
                    f"approval daemon not running. Start it with: {DAEMON_COMMAND}"
                ) from exc
            with sock.makefile("rwb") as stream:
                stream.write(json.dumps(payload, ensure_ascii=True).encode("utf-8") + b"\n")
                stream.flush()
                line = stream.readline()
        except socket.timeout as exc:
            raise DaemonProtocolError("timed out waiting for the approval daemon") from exc
        except OSError as exc:
            raise DaemonProtocolError(f"failed to talk to the approval daemon: {exc}") from exc
        finally:
            sock.close()

        if not line:
            raise DaemonProtocolError("approval daemon closed the connection without answering")
        try:
            response = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DaemonProtocolError(f"failed to read daemon response: {exc}") from exc
        if not isinstance(response, dict):
            raise DaemonProtocolError("daemon response is not an object")
        return response

    def queue_email(self, *, to: str, subject: str, body: str, draft_id: str = "") -> dict[str, Any]:
        return self.request(
            {
                "action": "queue_email",
                "to": to,
                "subject": subject,
                "body": body,
                "draft_id": draft_id,
            }
        )

    def status(self) -> dict[str, Any]:
        return self.request({"action": "status"})

"""Owner-only Unix socket endpoint exposing the approval queue to requesters."""

from __future__ import annotations

import json
import logging
import os
import socketserver
import threading
from pathlib import Path
from typing import Any

from mailgate.approval.queue import ApprovalQueue, ApprovalResult, Outcome
from mailgate.events.store import ApprovalEventLog

MAX_REQUEST_BYTES = 1024 * 1024
REQUEST_READ_TIMEOUT_SECONDS = 10.0
PAYLOAD_FIELDS = ("to", "subject", "body", "draft_id")

logger = logging.getLogger(__name__)


class InvalidRequest(ValueError):
    """Raised when an IPC request cannot be decoded into a known shape."""


def decode_request(line: bytes) -> dict[str, Any]:
    if not line.strip() or len(line) > MAX_REQUEST_BYTES:
        raise InvalidRequest("request must be one JSON line")
    try:
        data = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidRequest(str(exc)) from exc
    if not isinstance(data, dict):
        raise InvalidRequest("request must be a JSON object")
    if not isinstance(data.get("action"), str):
        raise InvalidRequest("action must be a string")
    for name in PAYLOAD_FIELDS:
        if name in data and data[name] is not None and not isinstance(data[name], str):
            raise InvalidRequest(f"{name} must be a string")
    return data


def result_to_response(result: ApprovalResult) -> dict[str, Any]:
    if result.outcome == Outcome.APPROVED:
        return {"success": True, "status": "approved"}
    if result.outcome == Outcome.REJECTED:
        return {"success": False, "error": "rejected by user", "status": "rejected"}
    return {
        "success": False,
        "error": result.error or result.outcome.value,
        "status": result.outcome.value,
    }


class IpcServer:
    def __init__(
        self,
        *,
        socket_path: Path,
        queue: ApprovalQueue,
        event_log: ApprovalEventLog | None = None,
        read_timeout: float = REQUEST_READ_TIMEOUT_SECONDS,
    ) -> None:
        self._socket_path = socket_path
        self._read_timeout = read_timeout
        self._queue = queue
        self._event_log = event_log
        self._server: socketserver.ThreadingUnixStreamServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    def bind(self) -> socketserver.ThreadingUnixStreamServer:
        """Recreate the socket with owner-only permissions; raises OSError on failure."""
        self._socket_path.parent.mkdir(parents=True, exist_ok=True)
        self._socket_path.parent.chmod(0o700)
        try:
            self._socket_path.unlink()
        except FileNotFoundError:
            pass
        old_umask = os.umask(0o177)
        try:
            server = socketserver.ThreadingUnixStreamServer(str(self._socket_path), self._build_handler())
        finally:
            os.umask(old_umask)
        server.daemon_threads = True
        try:
            os.chmod(self._socket_path, 0o600)
        except OSError:
            server.server_close()
            raise
        self._server = server
        return server

    def start(self) -> None:
        server = self._server if self._server is not None else self.bind()
        self._thread = threading.Thread(target=server.serve_forever, name="ipc-server", daemon=True)
        self._thread.start()
        logger.info("Socket server listening on %s", self._socket_path)

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._server = None
        self._thread = None
        try:
            self._socket_path.unlink()
        except FileNotFoundError:
            pass

    def handle(self, line: bytes) -> dict[str, Any]:
        """Turn one raw request line into one response object."""
        try:
            data = decode_request(line)
        except InvalidRequest as exc:
            logger.warning("Invalid IPC request: %s", exc)
            if self._event_log is not None:
                self._event_log.record("ipc_invalid_request", {"error": str(exc)})
            return {"success": False, "error": "invalid request"}

        action = data["action"]
        if action == "status":
            return {"success": True, "status": "running"}
        if action == "queue_email":
            payload = {name: str(data.get(name) or "") for name in PAYLOAD_FIELDS}
            return result_to_response(self._queue.enqueue(payload))
        return {"success": False, "error": "unknown action"}

    def _build_handler(self) -> type[socketserver.StreamRequestHandler]:
        ipc = self

        class Handler(socketserver.StreamRequestHandler):
            # Idle connections that never send a request line are dropped after this.
            timeout = ipc._read_timeout

            def handle(self) -> None:
                try:
                    line = self.rfile.readline(MAX_REQUEST_BYTES + 1)
                except OSError as exc:
                    logger.warning("Dropped IPC connection without a request: %s", exc)
                    return
                response = ipc.handle(line)
                encoded = json.dumps(response, ensure_ascii=True).encode("utf-8") + b"\n"
                try:
                    self.wfile.write(encoded)
                    self.wfile.flush()
                except (BrokenPipeError, ConnectionResetError):
                    logger.info("Requester disconnected before the response was written")

        return Handler

"""Out-of-band approval dashboard served on an unguessable local URL."""

from __future__ import annotations

import json
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from queue import Empty
from typing import Any

from mailgate.approval.queue import ApprovalQueue, Verdict
from mailgate.web.pages import render_dashboard
from mailgate.web.session import DashboardSession

KEEPALIVE_SECONDS = 15.0

logger = logging.getLogger(__name__)


class DashboardServer:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        queue: ApprovalQueue,
        session: DashboardSession | None = None,
        keepalive_seconds: float = KEEPALIVE_SECONDS,
    ) -> None:
        self._host = host
        self._port = port
        self._queue = queue
        self._session = session or DashboardSession()
        self._keepalive_seconds = keepalive_seconds
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._httpd: ThreadingHTTPServer | None = None

    @property
    def session(self) -> DashboardSession:
        return self._session

    @property
    def port(self) -> int:
        if self._httpd is not None:
            return int(self._httpd.server_address[1])
        return self._port

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}/outbox/{self._session.id}"

    def start(self) -> None:
        self._stopping.clear()
        self._queue.add_listener(self._session.on_transition)
        self._httpd = ThreadingHTTPServer((self._host, self._port), self._build_handler())
        self._httpd.daemon_threads = True
        self._thread = threading.Thread(target=self._httpd.serve_forever, name="dashboard", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopping.set()
        self._session.broadcast(None)
        self._queue.remove_listener(self._session.on_transition)
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._httpd = None
        self._thread = None

    def pending_view(self) -> dict[str, Any]:
        history = self._session.history()
        pending = self._queue.snapshot()
        if pending is None:
            return {"pending": False, "history": history}
        return {
            "pending": True,
            "id": pending.id,
            "draftId": pending.payload.get("draft_id", ""),
            "to": pending.payload.get("to", ""),
            "subject": pending.payload.get("subject", ""),
            "body": pending.payload.get("body", ""),
            "queuedAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(pending.queued_at)),
            "expiresIn": self._queue.remaining_seconds(pending),
            "history": history,
        }

    def _build_handler(self) -> type[BaseHTTPRequestHandler]:
        queue = self._queue
        session = self._session
        stopping = self._stopping
        keepalive_seconds = self._keepalive_seconds
        pending_view = self.pending_view

        class Handler(BaseHTTPRequestHandler):
            def _route(self) -> tuple[str, str | None]:
                parts = [part for part in self.path.split("?")[0].split("/") if part]
                if len(parts) >= 2 and parts[0] == "api":
                    return "/api/" + parts[1], parts[2] if len(parts) > 2 else None
                if parts:
                    return "/" + parts[0], parts[1] if len(parts) > 1 else None
                return "/", None

            def _authorize(self, session_id: str | None) -> bool:
                if not session_id:
                    self._write_json(400, {"error": "Invalid session URL"})
                    return False
                if not session.matches(session_id):
                    self._write_json(403, {"error": "Invalid session"})
                    return False
                return True

            def do_GET(self) -> None:  # noqa: N802
                route, session_id = self._route()
                if route in ("/api/approve", "/api/reject"):
                    self._write_json(405, {"error": "Method not allowed"})
                    return
                if route not in ("/outbox", "/api/pending", "/events"):
                    self._write_json(404, {"error": "Not found"})
                    return
                if not self._authorize(session_id):
                    return
                if route == "/outbox":
                    self._write_html(200, render_dashboard(session.id))
                    return
                if route == "/api/pending":
                    self._write_json(200, pending_view())
                    return
                self._stream_events()

            def do_POST(self) -> None:  # noqa: N802
                route, session_id = self._route()
                if route in ("/outbox", "/api/pending", "/events"):
                    self._write_json(405, {"error": "Method not allowed"})
                    return
                if route not in ("/api/approve", "/api/reject"):
                    self._write_json(404, {"error": "Not found"})
                    return
                if not self._authorize(session_id):
                    return
                verdict = Verdict.APPROVE if route == "/api/approve" else Verdict.REJECT
                resolved = queue.resolve_current(verdict, source="dashboard")
                if resolved is None:
                    self._write_json(409, {"success": False, "error": "no email pending approval"})
                    return
                message = "Email approved" if verdict == Verdict.APPROVE else "Email rejected"
                logger.info("Approval %s resolved via dashboard: %s", resolved.id, verdict.value)
                self._write_json(200, {"success": True, "message": message, "id": resolved.id})

            def _stream_events(self) -> None:
                self.send_response(200)
                self.send_header("Content-Type", "text/event-stream")
                self.send_header("Cache-Control", "no-cache")
                self.send_header("Connection", "keep-alive")
                self.end_headers()
                self.close_connection = True
                viewer = session.add_viewer()
                try:
                    self._write_event(b"data: connected\n\n")
                    while not stopping.is_set():
                        try:
                            message = viewer.get(timeout=keepalive_seconds)
                        except Empty:
                            self._write_event(b": keep-alive\n\n")
                            continue
                        if message is None:
                            break
                        self._write_event(f"data: {message}\n\n".encode("utf-8"))
                except (BrokenPipeError, ConnectionResetError):
                    pass
                finally:
                    session.remove_viewer(viewer)

            def _write_event(self, chunk: bytes) -> None:
                self.wfile.write(chunk)
                self.wfile.flush()

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
                # Request lines would leak the session id into the console.
                _ = (format, args)
                return

            def _write_html(self, status_code: int, body: str) -> None:
                encoded = body.encode("utf-8")
                self.send_response(status_code)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                self.wfile.write(encoded)

            def _write_json(self, status_code: int, payload: dict[str, Any]) -> None:
                encoded = json.dumps(payload, ensure_ascii=True).encode("utf-8")
                self.send_response(status_code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                self.wfile.write(encoded)

        return Handler

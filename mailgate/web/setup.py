"""First-run setup page: subscribe to the topic, send a test, mark setup complete."""

from __future__ import annotations

import json
import logging
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from mailgate.bootstrap import BootstrapConfig, BootstrapError, BootstrapStore
from mailgate.notify.approval import ApprovalNotifier
from mailgate.notify.ntfy import NotificationError
from mailgate.web.pages import render_setup

logger = logging.getLogger(__name__)


class SetupServer:
    def __init__(
        self,
        *,
        config: BootstrapConfig,
        store: BootstrapStore,
        notifier: ApprovalNotifier,
        subscribe_url: str,
        host: str = "127.0.0.1",
        port: int = 0,
    ) -> None:
        self._config = config
        self._store = store
        self._notifier = notifier
        self._subscribe_url = subscribe_url
        self._done = threading.Event()
        self._httpd = ThreadingHTTPServer((host, port), self._build_handler())
        self._httpd.daemon_threads = True
        self._thread: threading.Thread | None = None

    @property
    def url(self) -> str:
        host, port = self._httpd.server_address[:2]
        return f"http://{host}:{port}"

    def start(self) -> None:
        self._thread = threading.Thread(target=self._httpd.serve_forever, name="setup", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._thread = None

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def run(self, *, open_browser: bool = True) -> None:
        """Serve until the human completes setup."""
        self.start()
        logger.info("Open this URL to complete setup: %s", self.url)
        if open_browser:
            webbrowser.open(self.url)
        try:
            self._done.wait()
        finally:
            self.stop()

    def _build_handler(self) -> type[BaseHTTPRequestHandler]:
        config = self._config
        store = self._store
        notifier = self._notifier
        subscribe_url = self._subscribe_url
        done = self._done

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                if self.path.split("?")[0] != "/":
                    self._write_json(404, {"error": "Not found"})
                    return
                encoded = render_setup(config.ntfy_topic, subscribe_url).encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                self.wfile.write(encoded)

            def do_POST(self) -> None:  # noqa: N802
                path = self.path.split("?")[0]
                if path == "/test":
                    try:
                        notifier.send_test()
                    except NotificationError as exc:
                        self._write_json(200, {"success": False, "error": str(exc)})
                        return
                    self._write_json(200, {"success": True})
                    return
                if path == "/complete":
                    try:
                        store.mark_complete(config)
                    except BootstrapError as exc:
                        self._write_json(500, {"success": False, "error": str(exc)})
                        return
                    self._write_json(200, {"success": True})
                    done.set()
                    return
                self._write_json(404, {"error": "Not found"})

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
                _ = (format, args)
                return

            def _write_json(self, status_code: int, payload: dict[str, Any]) -> None:
                encoded = json.dumps(payload, ensure_ascii=True).encode("utf-8")
                self.send_response(status_code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                self.wfile.write(encoded)

        return Handler

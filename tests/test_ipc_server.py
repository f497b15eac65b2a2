from __future__ import annotations

import json
import socket
import stat
import tempfile
import threading
import time
import unittest
from pathlib import Path

from mailgate.approval.queue import ApprovalQueue, PendingApproval, Verdict
from mailgate.events.store import ApprovalEventLog, EventStore
from mailgate.ipc.client import DaemonClient, DaemonUnreachableError
from mailgate.ipc.server import InvalidRequest, IpcServer, decode_request
from mailgate.settings import load_settings
from mailgate.tools.send_email_tool import SendEmailTool


class DecodeRequestTests(unittest.TestCase):
    def test_rejects_structurally_invalid_requests(self) -> None:
        for line in (
            b"",
            b"\n",
            b"not json\n",
            b"[1, 2]\n",
            b'{"to": "a@x.com"}\n',
            b'{"action": 5}\n',
            b'{"action": "queue_email", "to": ["a@x.com"]}\n',
            b"\xff\xfe\n",
        ):
            with self.subTest(line=line):
                with self.assertRaises(InvalidRequest):
                    decode_request(line)

    def test_accepts_request_without_trailing_newline(self) -> None:
        self.assertEqual(decode_request(b'{"action": "status"}'), {"action": "status"})


class IpcServerTests(unittest.TestCase):
    def setUp(self) -> None:
        # Short path: AF_UNIX paths are limited to ~100 bytes.
        self._tmp = tempfile.TemporaryDirectory(dir="/tmp")
        root = Path(self._tmp.name)
        self.socket_path = root / "approval.sock"
        self.dispatched: list[PendingApproval] = []
        self.queue = ApprovalQueue(self.dispatched.append, timeout_seconds=5, wait_step=0.01)
        self.event_store = EventStore(root / "events.db")
        self.event_store.initialize()
        self.event_log = ApprovalEventLog(self.event_store.connect())
        self.server = IpcServer(socket_path=self.socket_path, queue=self.queue, event_log=self.event_log)
        self.server.start()
        self.client = DaemonClient(self.socket_path, timeout=10)

    def tearDown(self) -> None:
        self.server.stop()
        self.event_store.close()
        self._tmp.cleanup()

    def _raw_request(self, data: bytes) -> dict[str, object]:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(5)
            sock.connect(str(self.socket_path))
            sock.sendall(data)
            with sock.makefile("rb") as stream:
                return json.loads(stream.readline().decode("utf-8"))

    def _wait_for_dispatch(self, count: int) -> PendingApproval:
        deadline = time.monotonic() + 2
        while len(self.dispatched) < count and time.monotonic() < deadline:
            time.sleep(0.005)
        self.assertEqual(len(self.dispatched), count)
        return self.dispatched[count - 1]

    def test_socket_is_owner_only(self) -> None:
        mode = stat.S_IMODE(self.socket_path.stat().st_mode)
        self.assertEqual(mode, 0o600)

    def test_status_does_not_touch_queue(self) -> None:
        self.assertEqual(self.client.status(), {"success": True, "status": "running"})
        self.assertEqual(self.dispatched, [])

    def test_unknown_action(self) -> None:
        response = self.client.request({"action": "send_now"})
        self.assertEqual(response, {"success": False, "error": "unknown action"})
        self.assertFalse(self.queue.has_pending())

    def test_malformed_request_gets_error_and_server_stays_healthy(self) -> None:
        response = self._raw_request(b"{this is not json\n")
        self.assertEqual(response, {"success": False, "error": "invalid request"})
        self.assertEqual(self.event_log.latest(limit=1)[0]["event_type"], "ipc_invalid_request")

        self.assertEqual(self.client.status()["status"], "running")

    def test_queue_email_blocks_until_approved(self) -> None:
        box: dict[str, dict[str, object]] = {}

        def requester() -> None:
            box["response"] = self.client.queue_email(
                to="a@x.com", subject="S1", body="hello", draft_id="d-1"
            )

        thread = threading.Thread(target=requester, daemon=True)
        thread.start()
        pending = self._wait_for_dispatch(1)
        self.assertEqual(pending.payload, {"to": "a@x.com", "subject": "S1", "body": "hello", "draft_id": "d-1"})
        self.assertTrue(thread.is_alive())

        busy = self.client.queue_email(to="b@x.com", subject="S2", body="")
        self.assertFalse(busy["success"])
        self.assertEqual(busy["status"], "busy")

        self.assertTrue(self.queue.resolve(pending.approve_token, Verdict.APPROVE))
        thread.join(timeout=5)

        self.assertEqual(box["response"], {"success": True, "status": "approved"})

    def test_queue_email_rejected(self) -> None:
        box: dict[str, dict[str, object]] = {}
        thread = threading.Thread(
            target=lambda: box.setdefault("response", self.client.queue_email(to="a@x.com", subject="S", body="")),
            daemon=True,
        )
        thread.start()
        pending = self._wait_for_dispatch(1)
        self.queue.resolve(pending.reject_token, Verdict.REJECT)
        thread.join(timeout=5)

        self.assertEqual(
            box["response"],
            {"success": False, "error": "rejected by user", "status": "rejected"},
        )

    def test_idle_connection_is_dropped(self) -> None:
        self.server.stop()
        self.server = IpcServer(socket_path=self.socket_path, queue=self.queue, read_timeout=0.2)
        self.server.start()

        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(5)
            sock.connect(str(self.socket_path))
            self.assertEqual(sock.recv(1), b"")

        self.assertEqual(self.client.status()["status"], "running")

    def test_dispatch_failure_reported(self) -> None:
        def failing(pending: PendingApproval) -> None:
            raise RuntimeError("broker down")

        self.server.stop()
        queue = ApprovalQueue(failing, timeout_seconds=5)
        self.server = IpcServer(socket_path=self.socket_path, queue=queue)
        self.server.start()

        response = self.client.queue_email(to="a@x.com", subject="S", body="")

        self.assertFalse(response["success"])
        self.assertEqual(response["status"], "dispatch_failed")
        self.assertIn("failed to send notification: broker down", str(response["error"]))
        self.assertFalse(queue.has_pending())


class DaemonClientTests(unittest.TestCase):
    def test_deadline_follows_configured_approval_timeout(self) -> None:
        with tempfile.TemporaryDirectory(dir="/tmp") as tmpdir:
            config_dir = Path(tmpdir)
            (config_dir / "settings.yaml").write_text("approval_timeout_seconds: 600\n", encoding="utf-8")
            settings = load_settings(config_dir)

        client = DaemonClient.from_settings(settings)

        self.assertEqual(client.timeout, 660)
        self.assertGreater(client.timeout, settings.approval_timeout_seconds)
        tool = SendEmailTool.from_settings(settings, lambda draft_id: None)
        self.assertEqual(tool._client.timeout, 660)  # type: ignore[attr-defined]

    def test_missing_socket_is_reported_as_unreachable(self) -> None:
        with tempfile.TemporaryDirectory(dir="/tmp") as tmpdir:
            client = DaemonClient(Path(tmpdir) / "nothing.sock", timeout=1)
            with self.assertRaises(DaemonUnreachableError) as ctx:
                client.status()
        self.assertIn("mailgate-daemon", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()

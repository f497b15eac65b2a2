"""Approval requests over the broker: outbound prompt and the reply poll loop."""

from __future__ import annotations

import logging
import threading
from typing import Any

from mailgate.approval.queue import ApprovalQueue, PendingApproval, Verdict
from mailgate.notify.ntfy import BrokerEventStream, NotificationError, NtfyAction, NtfyClient, NtfyEvent

MAX_PREVIEW_LEN = 200
APPROVE_PREFIX = "APPROVE:"
REJECT_PREFIX = "REJECT:"
APPROVAL_PRIORITY = 4
APPROVAL_TAGS = ("email", "outgoing_envelope")
DEFAULT_POLL_INTERVAL_SECONDS = 1.0

logger = logging.getLogger(__name__)


def truncate_preview(text: str, limit: int = MAX_PREVIEW_LEN) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_approval_message(payload: dict[str, Any]) -> str:
    return (
        f"To: {payload.get('to', '')}\n"
        f"Subject: {payload.get('subject', '')}\n\n"
        f"{truncate_preview(str(payload.get('body', '')))}"
    )


def parse_reply(message: str) -> tuple[Verdict, str] | None:
    """Split an ``APPROVE:<token>`` / ``REJECT:<token>`` reply body."""
    text = message.strip()
    if text.startswith(APPROVE_PREFIX):
        return Verdict.APPROVE, text[len(APPROVE_PREFIX):]
    if text.startswith(REJECT_PREFIX):
        return Verdict.REJECT, text[len(REJECT_PREFIX):]
    return None


class ApprovalNotifier:
    """Dispatch callable for the queue: pushes the prompt with both token actions."""

    def __init__(self, client: NtfyClient, topic: str) -> None:
        self._client = client
        self._topic = topic

    def __call__(self, pending: PendingApproval) -> None:
        self.dispatch(pending)

    def dispatch(self, pending: PendingApproval) -> None:
        reply_url = self._client.topic_url(self._topic)
        actions = [
            NtfyAction(label="Approve", url=reply_url, body=APPROVE_PREFIX + pending.approve_token),
            NtfyAction(label="Reject", url=reply_url, body=REJECT_PREFIX + pending.reject_token),
        ]
        self._client.send(
            self._topic,
            "Approve email?",
            build_approval_message(pending.payload),
            actions=actions,
            priority=APPROVAL_PRIORITY,
            tags=APPROVAL_TAGS,
        )

    def send_test(self) -> None:
        self._client.send(self._topic, "Test Notification", "If you see this, setup is working!")


class BrokerPollLoop:
    """Background thread feeding broker replies into ``ApprovalQueue.resolve``.

    Polls only while something is pending; idle ticks cost nothing.
    """

    def __init__(
        self,
        queue: ApprovalQueue,
        stream: BrokerEventStream,
        *,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._queue = queue
        self._stream = stream
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="broker-poll", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.tick()

    def tick(self) -> int:
        """Run one poll cycle; returns how many replies resolved the pending approval."""
        if not self._queue.has_pending():
            return 0
        resolved = 0
        try:
            for event in self._stream.events():
                if self.handle_event(event):
                    resolved += 1
        except NotificationError as exc:
            logger.warning("Poll error: %s", exc)
        return resolved

    def handle_event(self, event: NtfyEvent) -> bool:
        reply = parse_reply(event.message)
        if reply is None:
            return False
        verdict, token = reply
        return self._queue.resolve(token, verdict, source="broker")

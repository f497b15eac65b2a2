"""Dashboard session: unguessable URL id, resolution history and live viewers."""

from __future__ import annotations

import hmac
import secrets
import threading
import time
from dataclasses import asdict, dataclass
from queue import Full, Queue
from typing import Any

from mailgate.approval.queue import PendingApproval

VIEWER_QUEUE_SIZE = 10
TERMINAL_TRANSITIONS = {"approved", "rejected", "timed_out"}


@dataclass(frozen=True)
class HistoryEntry:
    approval_id: str
    to: str
    subject: str
    outcome: str
    source: str
    timestamp: float


class DashboardSession:
    def __init__(self, session_id: str | None = None) -> None:
        self.id = session_id or secrets.token_urlsafe(32)
        self.created_at = time.time()
        self._history: list[HistoryEntry] = []
        self._viewers: set[Queue[str | None]] = set()
        self._lock = threading.Lock()

    def matches(self, candidate: str) -> bool:
        return bool(candidate) and hmac.compare_digest(self.id.encode("utf-8"), candidate.encode("utf-8"))

    def history(self) -> list[dict[str, Any]]:
        with self._lock:
            return [asdict(entry) for entry in self._history]

    def add_viewer(self) -> Queue[str | None]:
        viewer: Queue[str | None] = Queue(maxsize=VIEWER_QUEUE_SIZE)
        with self._lock:
            self._viewers.add(viewer)
        return viewer

    def remove_viewer(self, viewer: Queue[str | None]) -> None:
        with self._lock:
            self._viewers.discard(viewer)

    def viewer_count(self) -> int:
        with self._lock:
            return len(self._viewers)

    def broadcast(self, message: str | None) -> None:
        """Push to every viewer; a viewer whose queue is full misses this one."""
        with self._lock:
            viewers = list(self._viewers)
        for viewer in viewers:
            try:
                viewer.put_nowait(message)
            except Full:
                continue

    def on_transition(self, transition: str, pending: PendingApproval) -> None:
        """Queue listener: record outcomes and wake viewers on every transition."""
        if transition in TERMINAL_TRANSITIONS:
            result = pending.slot.value
            entry = HistoryEntry(
                approval_id=pending.id,
                to=pending.payload.get("to", ""),
                subject=pending.payload.get("subject", ""),
                outcome=transition,
                source=(result.source if result is not None else None) or "unknown",
                timestamp=time.time(),
            )
            with self._lock:
                self._history.append(entry)
        self.broadcast("update")

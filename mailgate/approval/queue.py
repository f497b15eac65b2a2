"""Single-slot approval queue with one-time tokens and a bounded wait."""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

DEFAULT_APPROVAL_TIMEOUT_SECONDS = 300
DEFAULT_WAIT_STEP_SECONDS = 0.25

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class Outcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    BUSY = "busy"
    DISPATCH_FAILED = "dispatch_failed"


@dataclass(frozen=True)
class ApprovalResult:
    outcome: Outcome
    approval_id: str | None = None
    error: str | None = None
    source: str | None = None

    @property
    def approved(self) -> bool:
        return self.outcome == Outcome.APPROVED


class ResultSlot:
    """Write-once holder; the first writer wins and wakes the single reader."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._value: ApprovalResult | None = None
        self._lock = threading.Lock()

    def put(self, value: ApprovalResult) -> bool:
        with self._lock:
            if self._value is not None:
                return False
            self._value = value
        self._event.set()
        return True

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    @property
    def value(self) -> ApprovalResult | None:
        return self._value


@dataclass
class PendingApproval:
    id: str
    payload: dict[str, str]
    approve_token: str
    reject_token: str
    queued_at: float
    created_tick: float
    deadline: float
    slot: ResultSlot = field(default_factory=ResultSlot, repr=False)

    def token_for(self, verdict: Verdict) -> str:
        return self.approve_token if verdict == Verdict.APPROVE else self.reject_token

    def summary(self) -> dict[str, Any]:
        """Display fields only; tokens never leave the queue through here."""
        return {
            "id": self.id,
            "to": self.payload.get("to", ""),
            "subject": self.payload.get("subject", ""),
            "draft_id": self.payload.get("draft_id", ""),
            "queued_at": self.queued_at,
        }


def generate_token() -> str:
    return secrets.token_hex(16)


def generate_approval_id() -> str:
    return secrets.token_urlsafe(8)


Dispatcher = Callable[[PendingApproval], None]
Listener = Callable[[str, PendingApproval], None]


class ApprovalQueue:
    """Holds at most one pending approval and blocks its requester until resolved.

    ``dispatch`` is called outside the lock with the freshly reserved instance and
    must raise to signal that the human could not be notified. ``clock`` is a
    monotonic seconds source used for the deadline; tests inject a fake one.
    """

    def __init__(
        self,
        dispatch: Dispatcher,
        *,
        timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        wait_step: float = DEFAULT_WAIT_STEP_SECONDS,
    ) -> None:
        self._dispatch = dispatch
        self._timeout_seconds = float(timeout_seconds)
        self._clock = clock
        self._wait_step = wait_step
        self._lock = threading.Lock()
        self._pending: PendingApproval | None = None
        self._listeners: list[Listener] = []

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def snapshot(self) -> PendingApproval | None:
        with self._lock:
            return self._pending

    def remaining_seconds(self, pending: PendingApproval) -> int:
        return max(0, int(round(pending.deadline - self._clock())))

    def enqueue(self, payload: dict[str, str]) -> ApprovalResult:
        now = self._clock()
        with self._lock:
            if self._pending is not None:
                return ApprovalResult(
                    outcome=Outcome.BUSY,
                    error="another email is pending approval - only one at a time",
                )
            pending = PendingApproval(
                id=generate_approval_id(),
                payload=dict(payload),
                approve_token=generate_token(),
                reject_token=generate_token(),
                queued_at=time.time(),
                created_tick=now,
                deadline=now + self._timeout_seconds,
            )
            self._pending = pending

        try:
            self._dispatch(pending)
        except Exception as exc:  # noqa: BLE001
            failed = ApprovalResult(
                outcome=Outcome.DISPATCH_FAILED,
                approval_id=pending.id,
                error=f"failed to send notification: {exc}",
            )
            with self._lock:
                retracted = pending.slot.put(failed)
                if self._pending is pending:
                    self._pending = None
            if not retracted:
                # Resolved from the dashboard while the send was in flight.
                logger.warning("Notification for %s failed after it was resolved: %s", pending.id, exc)
                return self._settled(pending, failed)
            logger.warning("Approval %s retracted, notification failed: %s", pending.id, exc)
            self._notify("dispatch_failed", pending)
            return failed

        logger.info(
            "Email queued for approval: id=%s to=%s subject=%s",
            pending.id,
            pending.payload.get("to", ""),
            pending.payload.get("subject", ""),
        )
        self._notify("queued", pending)
        return self._wait(pending)

    def resolve(self, token: str, verdict: Verdict, *, source: str = "broker") -> bool:
        """Resolve the pending instance if ``token`` matches its ``verdict`` token.

        Unknown, stale, mismatched or duplicate tokens are ignored.
        """
        if not token:
            return False
        with self._lock:
            pending = self._pending
            if pending is None:
                return False
            if not hmac.compare_digest(pending.token_for(verdict), token):
                return False
            outcome = Outcome.APPROVED if verdict == Verdict.APPROVE else Outcome.REJECTED
            written = pending.slot.put(
                ApprovalResult(outcome=outcome, approval_id=pending.id, source=source)
            )
            if not written:
                return False
            self._pending = None
        logger.info("Approval %s %s via %s", pending.id, outcome.value, source)
        self._notify(outcome.value, pending)
        return True

    def resolve_current(self, verdict: Verdict, *, source: str = "dashboard") -> PendingApproval | None:
        """Resolve whatever is pending now; returns the resolved instance or None."""
        pending = self.snapshot()
        if pending is None:
            return None
        if self.resolve(pending.token_for(verdict), verdict, source=source):
            return pending
        return None

    def _wait(self, pending: PendingApproval) -> ApprovalResult:
        timed_out = ApprovalResult(
            outcome=Outcome.TIMED_OUT,
            approval_id=pending.id,
            error="approval timed out",
            source="timeout",
        )
        while True:
            remaining = pending.deadline - self._clock()
            if remaining <= 0:
                break
            if pending.slot.wait(min(remaining, self._wait_step)):
                return self._settled(pending, timed_out)

        with self._lock:
            written = pending.slot.put(timed_out)
            if self._pending is pending:
                self._pending = None
        if written:
            logger.info("Approval %s timed out", pending.id)
            self._notify("timed_out", pending)
        return self._settled(pending, timed_out)

    @staticmethod
    def _settled(pending: PendingApproval, fallback: ApprovalResult) -> ApprovalResult:
        """Whatever the slot holds; ``fallback`` only if it was never written."""
        result = pending.slot.value
        return result if result is not None else fallback

    def _notify(self, transition: str, pending: PendingApproval) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(transition, pending)
            except Exception:  # noqa: BLE001
                logger.exception("Approval listener failed on %s", transition)

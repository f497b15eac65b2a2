"""ntfy push-notification broker client: publish with actions, poll replies."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Iterator, Sequence
from urllib import error, parse, request

DEFAULT_BROKER_URL = "https://ntfy.sh"
DEFAULT_HTTP_TIMEOUT_SECONDS = 10


class NotificationError(RuntimeError):
    """Raised when the broker cannot be reached or refuses a request."""


@dataclass(frozen=True)
class NtfyAction:
    label: str
    url: str
    body: str
    action: str = "http"
    method: str = "POST"


@dataclass(frozen=True)
class NtfyEvent:
    id: str
    time: int
    event: str
    topic: str
    message: str


def parse_poll_body(raw: str) -> list[NtfyEvent]:
    """Decode newline-delimited JSON records, keeping only ``message`` events.

    Lines that are not JSON objects or miss required fields are skipped.
    """
    events: list[NtfyEvent] = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(record, dict) or record.get("event") != "message":
            continue
        try:
            events.append(
                NtfyEvent(
                    id=str(record["id"]),
                    time=int(record["time"]),
                    event="message",
                    topic=str(record.get("topic", "")),
                    message=str(record.get("message", "")),
                )
            )
        except (KeyError, TypeError, ValueError):
            continue
    return events


class NtfyClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BROKER_URL,
        *,
        access_token: str | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def topic_url(self, topic: str) -> str:
        return f"{self._base_url}/{parse.quote(topic, safe='')}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    def send(
        self,
        topic: str,
        title: str,
        message: str,
        *,
        actions: Sequence[NtfyAction] = (),
        priority: int | None = None,
        tags: Sequence[str] = (),
    ) -> None:
        body: dict[str, Any] = {"topic": topic, "title": title, "message": message}
        if priority is not None:
            body["priority"] = priority
        if tags:
            body["tags"] = list(tags)
        if actions:
            body["actions"] = [asdict(action) for action in actions]
        req = request.Request(
            self._base_url,
            data=json.dumps(body).encode("utf-8"),
            headers=self._headers(),
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                status = resp.status
                resp.read()
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise NotificationError(f"ntfy returned status {exc.code}: {detail}") from exc
        except (error.URLError, TimeoutError, OSError) as exc:
            raise NotificationError(f"failed to send notification: {exc}") from exc
        if status != 200:
            raise NotificationError(f"ntfy returned status {status}")

    def poll(self, topic: str, since: int) -> list[NtfyEvent]:
        query = parse.urlencode({"poll": "1", "since": str(int(since))})
        url = f"{self.topic_url(topic)}/json?{query}"
        headers = self._headers()
        headers.pop("Content-Type")
        req = request.Request(url, headers=headers, method="GET")
        try:
            with request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                raw = resp.read().decode("utf-8", errors="replace")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise NotificationError(f"ntfy poll returned status {exc.code}: {detail}") from exc
        except (error.URLError, TimeoutError, OSError) as exc:
            raise NotificationError(f"failed to poll: {exc}") from exc
        return parse_poll_body(raw)


class BrokerEventStream:
    """Restartable sequence of broker events after a monotonic cursor.

    ``since`` only has one-second resolution, so events sharing the cursor
    second are returned again by the broker and filtered here by id.
    """

    def __init__(self, client: NtfyClient, topic: str, since: int) -> None:
        self._client = client
        self._topic = topic
        self._cursor = int(since)
        self._seen_at_cursor: set[str] = set()

    @property
    def cursor(self) -> int:
        return self._cursor

    def events(self) -> Iterator[NtfyEvent]:
        batch = self._client.poll(self._topic, self._cursor)
        for event in sorted(batch, key=lambda item: item.time):
            if event.time < self._cursor:
                continue
            if event.time == self._cursor and event.id in self._seen_at_cursor:
                continue
            if event.time > self._cursor:
                self._cursor = event.time
                self._seen_at_cursor = set()
            self._seen_at_cursor.add(event.id)
            yield event

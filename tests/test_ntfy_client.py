from __future__ import annotations

import io
import json
import unittest
from unittest.mock import MagicMock, patch
from urllib import error

from mailgate.notify.ntfy import (
    BrokerEventStream,
    NotificationError,
    NtfyAction,
    NtfyClient,
    NtfyEvent,
    parse_poll_body,
)


def _fake_response(body: bytes = b"{}", status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.read.return_value = body
    cm = MagicMock()
    cm.__enter__.return_value = resp
    cm.__exit__.return_value = False
    return cm


class ParsePollBodyTests(unittest.TestCase):
    def test_keeps_message_events_and_skips_malformed_lines(self) -> None:
        raw = "\n".join(
            [
                json.dumps({"id": "a1", "time": 100, "event": "open", "topic": "t"}),
                json.dumps({"id": "a2", "time": 101, "event": "message", "topic": "t", "message": "APPROVE:abc"}),
                "{not json",
                "",
                json.dumps(["not", "an", "object"]),
                json.dumps({"id": "a3", "event": "message", "topic": "t", "message": "no time"}),
                json.dumps({"id": "a4", "time": 102, "event": "keepalive", "topic": "t"}),
                json.dumps({"id": "a5", "time": 103, "event": "message", "topic": "t", "message": "REJECT:def"}),
            ]
        )

        events = parse_poll_body(raw)

        self.assertEqual([event.id for event in events], ["a2", "a5"])
        self.assertEqual(events[0].message, "APPROVE:abc")
        self.assertEqual(events[1].time, 103)


class NtfyClientTests(unittest.TestCase):
    def test_send_posts_json_with_actions_and_auth(self) -> None:
        client = NtfyClient("https://broker.example/", access_token="tk_secret")
        actions = [NtfyAction(label="Approve", url=client.topic_url("topic-1"), body="APPROVE:xyz")]

        with patch("mailgate.notify.ntfy.request.urlopen", return_value=_fake_response()) as urlopen:
            client.send("topic-1", "Approve email?", "hello", actions=actions, priority=4, tags=["email"])

        req = urlopen.call_args.args[0]
        self.assertEqual(req.full_url, "https://broker.example")
        self.assertEqual(req.get_method(), "POST")
        self.assertEqual(req.get_header("Authorization"), "Bearer tk_secret")
        body = json.loads(req.data.decode("utf-8"))
        self.assertEqual(body["topic"], "topic-1")
        self.assertEqual(body["priority"], 4)
        self.assertEqual(body["tags"], ["email"])
        self.assertEqual(
            body["actions"],
            [
                {
                    "label": "Approve",
                    "url": "https://broker.example/topic-1",
                    "body": "APPROVE:xyz",
                    "action": "http",
                    "method": "POST",
                }
            ],
        )

    def test_send_reports_http_error(self) -> None:
        client = NtfyClient("https://broker.example")
        http_error = error.HTTPError(
            "https://broker.example", 429, "Too Many Requests", hdrs=None, fp=io.BytesIO(b"slow down")
        )
        with patch("mailgate.notify.ntfy.request.urlopen", side_effect=http_error):
            with self.assertRaises(NotificationError) as ctx:
                client.send("t", "title", "msg")
        self.assertIn("429", str(ctx.exception))
        self.assertIn("slow down", str(ctx.exception))

    def test_send_reports_transport_error(self) -> None:
        client = NtfyClient("https://broker.example")
        with patch("mailgate.notify.ntfy.request.urlopen", side_effect=error.URLError("no route")):
            with self.assertRaises(NotificationError):
                client.send("t", "title", "msg")

    def test_poll_builds_query_and_filters_events(self) -> None:
        client = NtfyClient("https://broker.example")
        body = (
            json.dumps({"id": "e1", "time": 1700000001, "event": "message", "topic": "t", "message": "hi"})
            + "\n"
            + json.dumps({"id": "e2", "time": 1700000002, "event": "open", "topic": "t"})
            + "\n"
        ).encode("utf-8")

        with patch("mailgate.notify.ntfy.request.urlopen", return_value=_fake_response(body)) as urlopen:
            events = client.poll("my topic", 1700000000)

        req = urlopen.call_args.args[0]
        self.assertEqual(req.get_method(), "GET")
        self.assertTrue(req.full_url.startswith("https://broker.example/my%20topic/json?"))
        self.assertIn("poll=1", req.full_url)
        self.assertIn("since=1700000000", req.full_url)
        self.assertEqual([event.id for event in events], ["e1"])

    def test_poll_reports_errors(self) -> None:
        client = NtfyClient("https://broker.example")
        with patch("mailgate.notify.ntfy.request.urlopen", side_effect=OSError("reset")):
            with self.assertRaises(NotificationError):
                client.poll("t", 0)


class BrokerEventStreamTests(unittest.TestCase):
    def test_cursor_advances_and_same_second_events_are_not_repeated(self) -> None:
        client = MagicMock(spec=NtfyClient)
        client.poll.side_effect = [
            [
                NtfyEvent(id="b", time=101, event="message", topic="t", message="2"),
                NtfyEvent(id="a", time=100, event="message", topic="t", message="1"),
            ],
            [
                NtfyEvent(id="b", time=101, event="message", topic="t", message="2"),
                NtfyEvent(id="c", time=101, event="message", topic="t", message="3"),
            ],
            [
                NtfyEvent(id="old", time=90, event="message", topic="t", message="stale"),
            ],
        ]
        stream = BrokerEventStream(client, "t", since=100)

        first = [event.id for event in stream.events()]
        second = [event.id for event in stream.events()]
        third = [event.id for event in stream.events()]

        self.assertEqual(first, ["a", "b"])
        self.assertEqual(second, ["c"])
        self.assertEqual(third, [])
        self.assertEqual(stream.cursor, 101)
        self.assertEqual([call.args for call in client.poll.call_args_list], [("t", 100), ("t", 101), ("t", 101)])


if __name__ == "__main__":
    unittest.main()

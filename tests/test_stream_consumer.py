from __future__ import annotations

import json
import signal
import threading
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gexc

from bulknews.common.errors import ConstructionError
from bulknews.stream.listener import StreamConsumer, decode_record, subscription_id_to_stream_id

SUB_ID = "abc-def-STREAM1-filtered-xyz"


def _payload(n: int) -> bytes:
    record = {"an": f"DOC{n}", "action": "add", "title": f"title {n}"}
    return json.dumps({"data": [{"id": f"DOC{n}", "type": "stream_message", "attributes": record}]}).encode()


class _FakeSubscriber:
    """
    `script` items: "full" (as many messages as requested), an int, or an exception.
    """

    def __init__(self, script, counter):
        self.script = script
        self.counter = counter
        self.pull_requests: list[dict] = []
        self.acks: list[str] = []
        self.closed = False

    def subscription_path(self, project, subscription):
        return f"projects/{project}/subscriptions/{subscription}"

    def pull(self, request):
        self.pull_requests.append(dict(request))
        item = self.script.pop(0) if self.script else "full"
        if isinstance(item, Exception):
            raise item
        n = request["max_messages"] if item == "full" else item
        out = []
        for _ in range(n):
            self.counter["n"] += 1
            i = self.counter["n"]
            out.append(SimpleNamespace(ack_id=f"ack-{i}", message=SimpleNamespace(data=_payload(i))))
        return SimpleNamespace(received_messages=out)

    def acknowledge(self, request):
        self.acks.extend(request["ack_ids"])

    def close(self):
        self.closed = True


class _FakeUser:
    def __init__(self, config):
        self.config = config
        self.project_id = "proj"


class _Harness:
    def __init__(self, config, script):
        self.script = list(script)
        self.counter = {"n": 0}
        self.clients: list[_FakeSubscriber] = []
        self.consumer = StreamConsumer(
            SUB_ID,
            _FakeUser(config),
            pull_backoff_s=0,
            subscriber_factory=self._factory,
        )

    def _factory(self):
        c = _FakeSubscriber(self.script, self.counter)
        self.clients.append(c)
        return c

    @property
    def pull_sizes(self) -> list[int]:
        return [r["max_messages"] for c in self.clients for r in c.pull_requests]

    @property
    def acks(self) -> list[str]:
        return [a for c in self.clients for a in c.acks]


def test_subscription_id_to_stream_id() -> None:
    assert subscription_id_to_stream_id(SUB_ID) == "abc-def-STREAM1"


def test_decode_record_extracts_first_attributes() -> None:
    assert decode_record(_payload(7)) == {"an": "DOC7", "action": "add", "title": "title 7"}
    assert decode_record(b'{"data": []}') is None
    assert decode_record(b"not json") is None


def test_listen_caps_batches_to_remaining_budget(config) -> None:
    h = _Harness(config, [])
    saved = []

    result = h.consumer.listen(lambda rec, sub: saved.append(rec["an"]) or True, maximum_messages=25, monitor_quota=False)

    assert result.messages_count == 25
    assert result.stop_reason == "budget"
    assert h.pull_sizes == [10, 10, 5]
    assert saved == [f"DOC{i}" for i in range(1, 26)]


def test_listen_slices_oversized_batches(config) -> None:
    h = _Harness(config, [12])
    saved = []

    result = h.consumer.listen(lambda rec, sub: saved.append(rec) or True, maximum_messages=5, monitor_quota=False)

    assert result.messages_count == 5
    assert len(saved) == 5


def test_listen_survives_pull_failures_and_keeps_budget(config) -> None:
    h = _Harness(config, ["full", RuntimeError("socket closed"), gexc.ServiceUnavailable("try later"), "full", "full"])

    result = h.consumer.listen(lambda rec, sub: True, maximum_messages=25, monitor_quota=False)

    assert result.messages_count == 25
    assert result.pull_failures == 2
    assert result.stop_reason == "budget"
    # one client per failure, old ones closed
    assert len(h.clients) == 3
    assert all(c.closed for c in h.clients[:-1])


def test_sink_false_stops_and_abandons_rest_of_batch(config) -> None:
    h = _Harness(config, [])
    seen = []

    def sink(rec, sub):
        seen.append(rec["an"])
        return len(seen) < 3

    result = h.consumer.listen(sink, maximum_messages=100, ack_enabled=True, monitor_quota=False)

    assert result.messages_count == 3
    assert result.stop_reason == "sink"
    assert seen == ["DOC1", "DOC2", "DOC3"]
    assert h.acks == ["ack-1", "ack-2", "ack-3"]


def test_ack_only_when_enabled(config) -> None:
    h = _Harness(config, [])
    h.consumer.listen(lambda rec, sub: True, maximum_messages=4, monitor_quota=False)
    assert h.acks == []


def test_sink_object_with_save_method(config) -> None:
    class _Sink:
        def __init__(self):
            self.calls = []

        def save(self, message, subscription_id):
            self.calls.append((message["an"], subscription_id))
            return True

    h = _Harness(config, [])
    sink = _Sink()
    h.consumer.listen(sink, maximum_messages=2, monitor_quota=False)

    assert sink.calls == [("DOC1", SUB_ID), ("DOC2", SUB_ID)]


def test_sink_error_is_retried_without_ack(config) -> None:
    h = _Harness(config, [])
    attempts = {"n": 0}

    def flaky(rec, sub):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise OSError("disk full")
        return True

    result = h.consumer.listen(flaky, maximum_messages=3, ack_enabled=True, batch_size=1, monitor_quota=False)

    assert result.messages_count == 3
    assert result.pull_failures == 1
    assert "ack-1" not in h.acks


def test_listen_rejects_unbounded_consumption(config) -> None:
    h = _Harness(config, [])
    with pytest.raises(ValueError):
        h.consumer.listen(lambda rec, sub: True, maximum_messages=0)
    assert h.clients == []


def test_listen_requires_project_id(config) -> None:
    user = _FakeUser(config)
    user.project_id = None
    consumer = StreamConsumer(SUB_ID, user, subscriber_factory=lambda: None)
    with pytest.raises(ConstructionError):
        consumer.listen(lambda rec, sub: True, maximum_messages=1, monitor_quota=False)


def test_cancel_ends_session_after_current_batch(config) -> None:
    h = _Harness(config, [])
    cancel = threading.Event()

    def sink(rec, sub):
        cancel.set()
        return True

    result = h.consumer.listen(sink, maximum_messages=100, cancel=cancel, monitor_quota=False)

    assert result.stop_reason == "cancelled"
    assert result.messages_count == 10


def test_unexpected_payload_is_counted_not_sunk(config) -> None:
    h = _Harness(config, [])
    bad = SimpleNamespace(ack_id="bad", message=SimpleNamespace(data=b'{"errors": []}'))

    def factory():
        c = _FakeSubscriber([], h.counter)
        c.pull = lambda request: SimpleNamespace(received_messages=[bad])
        h.clients.append(c)
        return c

    h.consumer._subscriber_factory = factory
    saved = []
    result = h.consumer.listen(lambda rec, sub: saved.append(rec) or True, maximum_messages=1, monitor_quota=False)

    assert result.messages_count == 1
    assert saved == []


def test_subscription_id_falls_back_to_config(config) -> None:
    consumer = StreamConsumer(None, _FakeUser(config), subscriber_factory=lambda: None)
    assert consumer.subscription_id == config.subscription_id
    assert consumer.stream_id == "abc-def-STREAM1"


@pytest.mark.parametrize("sub_id", ["filtered-xyz", "STREAM1"])
def test_subscription_id_without_stream_id_is_rejected(config, sub_id) -> None:
    with pytest.raises(ConstructionError):
        StreamConsumer(sub_id, _FakeUser(config), subscriber_factory=lambda: None)


def test_handled_interrupt_does_not_cancel_later_sessions(config) -> None:
    previous = signal.signal(signal.SIGINT, signal.default_int_handler)
    try:
        h = _Harness(config, [])
        assert h.consumer.listen(lambda rec, sub: True, maximum_messages=3, monitor_quota=False).stop_reason == "budget"

        with pytest.raises(KeyboardInterrupt):
            signal.raise_signal(signal.SIGINT)

        result = h.consumer.listen(lambda rec, sub: True, maximum_messages=3, monitor_quota=False)
        assert result.stop_reason == "budget"
        assert result.messages_count == 3
    finally:
        signal.signal(signal.SIGINT, previous)


def test_handle_signals_stops_listen_and_restores_handler(config) -> None:
    host_handler = lambda signum, frame: None  # noqa: E731
    previous = signal.signal(signal.SIGINT, host_handler)
    try:
        h = _Harness(config, [])

        def sink(rec, sub):
            signal.raise_signal(signal.SIGINT)
            return True

        result = h.consumer.listen(sink, maximum_messages=100, monitor_quota=False, handle_signals=True)

        assert result.stop_reason == "cancelled"
        assert result.messages_count == 10
        assert signal.getsignal(signal.SIGINT) is host_handler
    finally:
        signal.signal(signal.SIGINT, previous)

"""
Pull-based consumer for one stream subscription.

- Messages are pulled in bounded batches and handed to a sink one by one.
- Acknowledgement (optional) happens only after the sink returned.
- A falsy sink result stops the session.
- Pull/ack failures never end the session: the consumer waits a fixed
  backoff, rebuilds the Pub/Sub client and carries on.
- The session ends when `maximum_messages` have been processed.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Union

from bulknews.common.cancellation import is_cancelled, signal_stop_scope, wait_or_cancelled
from bulknews.common.config import DEFAULT_BATCH_SIZE
from bulknews.common.errors import ConstructionError
from bulknews.common.logging import bind_correlation_id, log_event
from bulknews.common.retry import is_transient
from bulknews.stream.quota import QuotaMonitor
from bulknews.stream.user import StreamUser


class MessageSink(Protocol):
    def save(self, message: Mapping[str, Any], subscription_id: str) -> bool: ...


SinkCallable = Callable[[Mapping[str, Any], str], Any]
Sink = Union[MessageSink, SinkCallable]

STOP_BUDGET = "budget"
STOP_SINK = "sink"
STOP_CANCELLED = "cancelled"


@dataclass(frozen=True)
class ListenResult:
    messages_count: int
    stop_reason: str
    pull_failures: int = 0


def subscription_id_to_stream_id(subscription_id: str) -> str:
    """
    `{stream_id}-filtered-{suffix}` -> `{stream_id}`.
    """
    if not subscription_id:
        raise ConstructionError("subscription_id undefined")
    return "-".join(subscription_id.split("-")[:-2])


def decode_record(data: bytes | str) -> Optional[Mapping[str, Any]]:
    """
    Extract the news record from a stream message payload.

    Payload shape: `{"data": [{"id": ..., "attributes": {...}}]}`.
    Returns None when the payload does not carry a record.
    """
    try:
        payload = json.loads(data)
    except ValueError:
        return None
    if not isinstance(payload, Mapping):
        return None
    items = payload.get("data")
    if not isinstance(items, list) or not items:
        return None
    first = items[0]
    if not isinstance(first, Mapping):
        return None
    attrs = first.get("attributes")
    return attrs if isinstance(attrs, Mapping) else None


class StreamConsumer:
    def __init__(
        self,
        subscription_id: Optional[str],
        stream_user: StreamUser,
        *,
        pull_backoff_s: Optional[float] = None,
        quota_check_interval_s: Optional[float] = None,
        subscriber_factory: Optional[Callable[[], Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        sub_id = subscription_id or stream_user.config.subscription_id
        if not sub_id:
            raise ConstructionError("Undefined subscription id (FACTIVA_STREAM_SUBSCRIPTION_ID)")
        if not subscription_id_to_stream_id(sub_id):
            raise ConstructionError(f"Cannot derive a stream id from subscription id {sub_id!r}")
        self.subscription_id: str = sub_id
        self.stream_user = stream_user
        self.pull_backoff_s = float(
            stream_user.config.pull_backoff_s if pull_backoff_s is None else pull_backoff_s
        )
        self.quota_check_interval_s = float(
            stream_user.config.quota_check_interval_s if quota_check_interval_s is None else quota_check_interval_s
        )
        self.logger = logger or logging.getLogger(__name__)
        self._subscriber_factory = subscriber_factory or stream_user.subscriber_client

        self.messages_count = 0
        self.project_id: Optional[str] = None
        self._client: Any = None

    @property
    def stream_id(self) -> str:
        return subscription_id_to_stream_id(self.subscription_id)

    def connect(self) -> None:
        """
        Resolve the Pub/Sub project and open the subscriber client.
        """
        if self.project_id is None:
            self.project_id = self.stream_user.project_id
        if self._client is None:
            self._client = self._subscriber_factory()

    def _reconnect(self) -> None:
        old, self._client = self._client, None
        close = getattr(old, "close", None)
        if callable(close):
            try:
                close()
            except Exception as e:
                self.logger.debug("stream.client_close_failed: %s", e)
        self._client = self._subscriber_factory()

    def _log(self, event_type: str, *, severity: str = "INFO", **fields: Any) -> None:
        log_event(
            self.logger,
            event_type,
            severity=severity,
            subscription_id=self.subscription_id,
            messages_count=self.messages_count,
            **fields,
        )

    def listen(
        self,
        sink: Sink,
        *,
        maximum_messages: int,
        ack_enabled: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel: Optional[threading.Event] = None,
        monitor_quota: bool = True,
        handle_signals: bool = False,
    ) -> ListenResult:
        """
        Pull until `maximum_messages` were handled, the sink asks to stop or
        `cancel` is set. With `handle_signals=True` a SIGTERM/SIGINT received
        during this call also stops it; the host's handlers are restored
        afterwards.
        """
        if maximum_messages is None or int(maximum_messages) <= 0:
            raise ValueError("maximum_messages must be a positive number")
        if int(batch_size) <= 0:
            raise ValueError("batch_size must be a positive number")
        maximum_messages = int(maximum_messages)
        batch_size = int(batch_size)
        save = getattr(sink, "save", sink)
        self.messages_count = 0

        with signal_stop_scope(enabled=handle_signals) as stop, bind_correlation_id():
            self.connect()
            if not self.project_id:
                raise ConstructionError("project_id undefined")

            monitor: Optional[QuotaMonitor] = None
            if monitor_quota:
                monitor = QuotaMonitor(
                    self.stream_user,
                    self.stream_id,
                    interval_s=self.quota_check_interval_s,
                    logger=self.logger,
                ).start()

            self._log("stream.listen_started", maximum_messages=maximum_messages, batch_size=batch_size, ack_enabled=ack_enabled)
            try:
                result = self._pull_loop(save, maximum_messages, batch_size, ack_enabled, cancel, stop)
            finally:
                if monitor is not None:
                    monitor.stop()
            self._log("stream.listen_finished", stop_reason=result.stop_reason, pull_failures=result.pull_failures)
            return result

    def _pull_loop(
        self,
        save: SinkCallable,
        maximum_messages: int,
        batch_size: int,
        ack_enabled: bool,
        cancel: Optional[threading.Event],
        stop: Optional[threading.Event] = None,
    ) -> ListenResult:
        failures = 0
        while self.messages_count < maximum_messages:
            if is_cancelled(cancel, stop):
                return ListenResult(self.messages_count, STOP_CANCELLED, failures)
            try:
                if self._client is None:
                    self._client = self._subscriber_factory()
                path = self._client.subscription_path(self.project_id, self.subscription_id)
                max_batch = min(batch_size, maximum_messages - self.messages_count)
                response = self._client.pull(request={"subscription": path, "max_messages": max_batch})

                for received in list(response.received_messages)[:max_batch]:
                    record = decode_record(received.message.data)
                    if record is None:
                        self._log("stream.unexpected_message", severity="WARNING", ack_id=received.ack_id)
                        keep_going = True
                    else:
                        keep_going = save(record, self.subscription_id)
                    if ack_enabled:
                        self._client.acknowledge(request={"subscription": path, "ack_ids": [received.ack_id]})
                    self.messages_count += 1
                    if not keep_going:
                        self._log("stream.sink_stop")
                        return ListenResult(self.messages_count, STOP_SINK, failures)
            except Exception as e:
                failures += 1
                extra = {
                    "event_type": "stream.pull_failed",
                    "subscription_id": self.subscription_id,
                    "attempt": failures,
                    "transient": is_transient(e),
                }
                if is_transient(e):
                    self.logger.warning("stream.pull_failed: %s", e, extra=extra)
                else:
                    self.logger.exception("stream.pull_failed: %s", e, extra=extra)
                if wait_or_cancelled(self.pull_backoff_s, cancel, stop):
                    return ListenResult(self.messages_count, STOP_CANCELLED, failures)
                try:
                    self._reconnect()
                except Exception as re:
                    # Retried on the next iteration.
                    self._client = None
                    self.logger.exception("stream.reconnect_failed: %s", re, extra={"event_type": "stream.reconnect_failed"})

        return ListenResult(self.messages_count, STOP_BUDGET, failures)

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional

from bulknews.common.config import DEFAULT_BATCH_SIZE, STREAMS_BASEPATH
from bulknews.common.errors import ConstructionError
from bulknews.common.logging import log_event
from bulknews.stream.listener import ListenResult, Sink, StreamConsumer, subscription_id_to_stream_id
from bulknews.stream.user import StreamUser


class Subscription:
    """
    One Pub/Sub subscription attached to a stream.

    A subscription either already exists server-side (`id` set) or is
    created with `create()`. Messages are consumed through a
    `StreamConsumer` built by `create_listener()`.
    """

    def __init__(
        self,
        stream_user: StreamUser,
        *,
        id: Optional[str] = None,  # noqa: A002 (server field name)
        stream_id: Optional[str] = None,
        subscription_type: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.stream_user = stream_user
        self.id = id or None
        if not stream_id:
            # Streams own their subscriptions: `{stream_id}-filtered-{suffix}`.
            sub_id = self.id or stream_user.config.subscription_id
            stream_id = subscription_id_to_stream_id(sub_id) if sub_id else None
        self.stream_id = stream_id
        if not self.stream_id:
            raise ConstructionError("Undefined stream id")
        self.subscription_type = subscription_type
        self.logger = logger or logging.getLogger(__name__)
        self.listener: Optional[StreamConsumer] = None

    @property
    def url(self) -> str:
        return self.stream_user.config.url(f"{STREAMS_BASEPATH}/{self.stream_id}/subscriptions")

    def create(self) -> Mapping[str, Any]:
        if self.id:
            raise ConstructionError("Subscription already initialized")

        body = self.stream_user.client.send_request(
            "POST",
            self.url,
            headers=self.stream_user.get_authentication_headers(),
        )
        first = (body.get("data") or [{}])[0]
        self.id = first.get("id")
        self.subscription_type = first.get("type")
        log_event(self.logger, "subscription.created", stream_id=self.stream_id, subscription_id=self.id)
        return body

    def delete(self) -> bool:
        if not self.id:
            raise ConstructionError("Undefined subscription")

        self.stream_user.client.send_request(
            "DELETE",
            f"{self.url}/{self.id}",
            headers=self.stream_user.get_authentication_headers(),
        )
        log_event(self.logger, "subscription.deleted", stream_id=self.stream_id, subscription_id=self.id)
        return True

    def create_listener(self, **kwargs: Any) -> StreamConsumer:
        if not self.id:
            raise ConstructionError("Undefined subscription")
        kwargs.setdefault("logger", self.logger)
        self.listener = StreamConsumer(self.id, self.stream_user, **kwargs)
        return self.listener

    def consume_messages(
        self,
        sink: Sink,
        *,
        maximum_messages: int,
        ack_enabled: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel: Optional[threading.Event] = None,
    ) -> ListenResult:
        if self.listener is None:
            raise ConstructionError("Uninitialized listener")
        return self.listener.listen(
            sink,
            maximum_messages=maximum_messages,
            ack_enabled=ack_enabled,
            batch_size=batch_size,
            cancel=cancel,
        )

    def __str__(self) -> str:
        return f"Subscription(id={self.id}, type={self.subscription_type})"

    __repr__ = __str__

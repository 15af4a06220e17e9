"""
Stream CRUD and subscription bookkeeping.

A stream is a server-side filter (a query, or the query of an existing
snapshot) that pushes matching documents into Pub/Sub subscriptions.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from bulknews.common.config import DEFAULT_BATCH_SIZE, SNAPSHOTS_BASEPATH, STREAMS_BASEPATH, BulkNewsConfig
from bulknews.common.errors import ConstructionError
from bulknews.common.logging import log_event
from bulknews.jobs.query import SnapshotQuery
from bulknews.stream.listener import ListenResult, Sink
from bulknews.stream.subscription import Subscription
from bulknews.stream.user import StreamUser


class StreamResponse(BaseModel):
    """
    `data` item of a streams API response (extra fields preserved).
    """

    model_config = ConfigDict(extra="allow")

    id: str = ""
    type: str = ""
    attributes: Dict[str, Any] = Field(default_factory=dict)
    relationships: Dict[str, Any] = Field(default_factory=dict)
    links: Dict[str, Any] = Field(default_factory=dict)

    @property
    def job_status(self) -> Optional[str]:
        return self.attributes.get("job_status")

    @property
    def subscriptions(self) -> List[Mapping[str, Any]]:
        return list(((self.relationships.get("subscriptions") or {}).get("data")) or [])

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> "StreamResponse":
        data = dict(body.get("data") or {})
        if body.get("links"):
            data["links"] = body["links"]
        return cls.model_validate(data)


class Stream:
    """
    Example:
        stream = Stream(query="LOWER(language_code) = 'en'")
        stream.create()
        sub_id = stream.get_subscription_by_index(0).id
        stream.consume_messages(print_sink, subscription_id=sub_id, maximum_messages=100)
    """

    def __init__(
        self,
        stream_user: Optional[StreamUser] = None,
        *,
        stream_id: Optional[str] = None,
        snapshot_id: Optional[str] = None,
        query: Optional[SnapshotQuery | str] = None,
        api_key: Optional[str] = None,
        config: Optional[BulkNewsConfig] = None,
        listener_options: Optional[Mapping[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.stream_user = stream_user or StreamUser(api_key, config=config)
        self.stream_id = stream_id or None
        self.snapshot_id = snapshot_id or None
        if isinstance(query, str):
            query = SnapshotQuery(query) if query else None
        self.query: Optional[SnapshotQuery] = query
        self.listener_options = dict(listener_options or {})
        self.logger = logger or logging.getLogger(__name__)
        self.subscriptions: Dict[str, Subscription] = {}

    @classmethod
    def open(cls, stream_user: Optional[StreamUser] = None, **kwargs: Any) -> "Stream":
        """
        Build a stream and, when `stream_id` is given, load its subscriptions.
        """
        stream = cls(stream_user, **kwargs)
        if stream.stream_id:
            stream.set_all_subscriptions()
        return stream

    @property
    def stream_url(self) -> str:
        return self.stream_user.config.url(STREAMS_BASEPATH)

    @property
    def all_subscriptions(self) -> List[str]:
        return [str(s) for s in self.subscriptions.values()]

    def _send(self, method: str, url: str, payload: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
        return self.stream_user.client.send_request(
            method,
            url,
            headers=self.stream_user.get_authentication_headers(),
            payload=payload,
        )

    def _require_stream_id(self) -> str:
        if not self.stream_id:
            raise ConstructionError("Undefined stream id")
        return self.stream_id

    def _add_subscription(self, subscription: Subscription) -> Subscription:
        subscription.create_listener(**self.listener_options)
        self.subscriptions[str(subscription.id)] = subscription
        return subscription

    def _load_subscriptions(self, info: StreamResponse) -> None:
        for item in info.subscriptions:
            self._add_subscription(
                Subscription(
                    self.stream_user,
                    id=item.get("id"),
                    stream_id=info.id,
                    subscription_type=item.get("type"),
                    logger=self.logger,
                )
            )

    # --- Stream CRUD ---

    def create(self) -> StreamResponse:
        """
        Create the stream from the snapshot id when set, else from the query.
        """
        if self.snapshot_id:
            return self.create_by_snapshot_id()
        if self.query is not None:
            return self.create_by_query()
        raise ConstructionError("Snapshot id and query not found")

    def create_by_query(self) -> StreamResponse:
        if self.query is None:
            raise ConstructionError("Query undefined")
        payload = {"data": {"attributes": self.query.stream_attributes(), "type": "stream"}}
        return self._created(self._send("POST", self.stream_url, payload))

    def create_by_snapshot_id(self) -> StreamResponse:
        if not self.snapshot_id:
            raise ConstructionError("Snapshot id undefined")
        url = self.stream_user.config.url(f"{SNAPSHOTS_BASEPATH}/{self.snapshot_id}/streams")
        return self._created(self._send("POST", url))

    def _created(self, body: Mapping[str, Any]) -> StreamResponse:
        info = StreamResponse.from_body(body)
        self.stream_id = info.id
        self._load_subscriptions(info)
        log_event(
            self.logger,
            "stream.created",
            stream_id=self.stream_id,
            snapshot_id=self.snapshot_id,
            subscriptions_count=len(self.subscriptions),
        )
        return info

    def get_info(self) -> StreamResponse:
        stream_id = self._require_stream_id()
        return StreamResponse.from_body(self._send("GET", f"{self.stream_url}/{stream_id}"))

    def get_all_streams(self) -> List[StreamResponse]:
        body = self._send("GET", self.stream_url)
        return [StreamResponse.model_validate(item) for item in (body.get("data") or [])]

    def delete(self) -> StreamResponse:
        stream_id = self._require_stream_id()
        info = StreamResponse.from_body(self._send("DELETE", f"{self.stream_url}/{stream_id}"))
        log_event(self.logger, "stream.deleted", stream_id=stream_id, job_status=info.job_status)
        return info

    # --- Subscriptions ---

    def set_all_subscriptions(self) -> None:
        self._load_subscriptions(self.get_info())

    def create_subscription(self) -> str:
        subscription = Subscription(self.stream_user, stream_id=self._require_stream_id(), logger=self.logger)
        subscription.create()
        self._add_subscription(subscription)
        return str(subscription.id)

    def delete_subscription(self, subscription_id: str) -> bool:
        subscription = self.get_subscription_by_id(subscription_id)
        subscription.delete()
        del self.subscriptions[subscription_id]
        return True

    def get_subscription_by_id(self, subscription_id: str) -> Subscription:
        try:
            return self.subscriptions[subscription_id]
        except KeyError:
            raise LookupError(f"Subscription not found: {subscription_id}") from None

    def get_subscription_by_index(self, index: int) -> Subscription:
        try:
            return list(self.subscriptions.values())[index]
        except IndexError:
            raise LookupError(f"No subscription at index {index}") from None

    def consume_messages(
        self,
        sink: Sink,
        *,
        subscription_id: str,
        maximum_messages: int,
        ack_enabled: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel: Optional[threading.Event] = None,
    ) -> ListenResult:
        return self.get_subscription_by_id(subscription_id).consume_messages(
            sink,
            maximum_messages=maximum_messages,
            ack_enabled=ack_enabled,
            batch_size=batch_size,
            cancel=cancel,
        )

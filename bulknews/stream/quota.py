from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bulknews.common.config import DEFAULT_QUOTA_CHECK_INTERVAL_S, STREAMS_BASEPATH
from bulknews.common.logging import log_event
from bulknews.stream.user import StreamUser

DOC_COUNT_EXCEEDED = "DOC_COUNT_EXCEEDED"

_STREAM_DISABLED_MSG = (
    "OOPS! Looks like you've exceeded the maximum number of documents received for your account "
    "({max_allowed}). As such, no new documents will be added to your stream's queue. "
    "However, you won't lose access to any documents that have already been added to the queue. "
    "These will continue to be streamed to you. "
    "Contact your account administrator with any questions or to upgrade your account limits."
)


@dataclass(frozen=True)
class QuotaState:
    max_allowed_extractions: Optional[int]
    total_extractions: Optional[int]
    is_disabled: bool
    checked_at: datetime


class QuotaMonitor:
    """
    Background check of the account quota and the stream's disabled flag.

    Runs on its own daemon thread and never interrupts message delivery:
    a disabled stream only stops *new* documents from being queued.
    Errors are logged and the check is rescheduled.
    """

    def __init__(
        self,
        stream_user: StreamUser,
        stream_id: str,
        *,
        interval_s: float = DEFAULT_QUOTA_CHECK_INTERVAL_S,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.stream_user = stream_user
        self.stream_id = stream_id
        self.interval_s = max(0.0, float(interval_s))
        self.logger = logger or logging.getLogger(__name__)
        self.latest: Optional[QuotaState] = None
        self.checks = 0
        self.failures = 0

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_stream_disabled(self) -> bool:
        body = self.stream_user.client.send_request(
            "GET",
            self.stream_user.config.url(f"{STREAMS_BASEPATH}/{self.stream_id}"),
            headers=self.stream_user.get_authentication_headers(),
        )
        attrs = (body.get("data") or {}).get("attributes") or {}
        return attrs.get("job_status") == DOC_COUNT_EXCEEDED

    def check_once(self) -> QuotaState:
        # Read-only: the consumer thread shares `stream_user`.
        info = self.stream_user.fetch_info()
        max_allowed = info.max_allowed_extractions
        disabled = self.is_stream_disabled()

        state = QuotaState(
            max_allowed_extractions=max_allowed,
            total_extractions=info.total_extractions,
            is_disabled=disabled,
            checked_at=datetime.now(timezone.utc),
        )
        self.latest = state
        self.checks += 1
        if disabled:
            log_event(
                self.logger,
                "quota.stream_disabled",
                severity="WARNING",
                message=_STREAM_DISABLED_MSG.format(max_allowed=max_allowed),
                stream_id=self.stream_id,
                max_allowed_extractions=max_allowed,
            )
        return state

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.check_once()
            except Exception as e:
                # Best-effort signal: log and try again on the next cycle.
                self.failures += 1
                self.logger.exception("quota.check_failed: %s", e, extra={"event_type": "quota.check_failed"})
            if self._stop.wait(timeout=self.interval_s):
                return

    def start(self) -> "QuotaMonitor":
        if self._thread is not None and self._thread.is_alive():
            return self
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"bulknews-quota-{self.stream_id}",
            daemon=True,
        )
        self._thread.start()
        return self

    def stop(self, *, timeout_s: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout_s)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Optional, TypeVar

from google.api_core import exceptions as gexc

from bulknews.common.cancellation import is_cancelled, wait_or_cancelled

T = TypeVar("T")
logger = logging.getLogger(__name__)

TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    gexc.Aborted,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.ResourceExhausted,
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TRANSIENT_EXCEPTIONS)


def with_google_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int = 6,
    base_delay_s: float = 0.2,
    max_delay_s: float = 5.0,
    cancel: Optional[threading.Event] = None,
) -> T:
    """
    Retry transient Google API errors with exponential backoff + full jitter.

    Intended for single writes (Firestore set/commit). Non-transient errors
    and the last failed attempt propagate. Setting `cancel` aborts the
    backoff with `InterruptedError`.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if (not is_transient(e)) or attempt >= (max_attempts - 1):
                raise

            sleep_s = min(max_delay_s, base_delay_s * (2**attempt))
            logger.info("google_retry iteration=%d sleep_s=%.3f", attempt + 1, float(sleep_s))
            if is_cancelled(cancel) or wait_or_cancelled(random.random() * float(sleep_s), cancel):
                raise InterruptedError("retry cancelled") from e
            attempt += 1

"""
Cooperative cancellation for the long-running loops (job polling, stream
pulls, retry backoff).

- Callers pass their own `threading.Event` to `process()`/`listen()`; that is
  the only stop signal unless the call opts into signal handling.
- `signal_stop_scope(enabled=True)` turns SIGTERM/SIGINT into a stop request
  for one call only. A fresh event is used per call and the previous
  handlers are restored on exit, so a handled Ctrl-C never leaks into the
  next job or listen session.
"""

from __future__ import annotations

import signal
import threading
import time
from contextlib import contextmanager
from types import FrameType
from typing import Any, Iterator, Optional

# Upper bound on a single blocking wait so every watched event is re-checked
# even while blocked on the first one.
_WAIT_STEP_S = 1.0

_STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def _watched(events: tuple[Optional[threading.Event], ...]) -> list[threading.Event]:
    return [e for e in events if e is not None]


def is_cancelled(*events: Optional[threading.Event]) -> bool:
    return any(e.is_set() for e in _watched(events))


def wait_or_cancelled(timeout_s: float, *events: Optional[threading.Event]) -> bool:
    """
    Interruptible wait.

    Returns:
    - True if any of `events` was set
    - False if the timeout elapsed without a stop request
    """
    watched = _watched(events)
    deadline = time.monotonic() + max(0.0, float(timeout_s))
    while not any(e.is_set() for e in watched):
        remaining = deadline - time.monotonic()
        if remaining <= 0.0:
            return False
        step = min(_WAIT_STEP_S, remaining)
        if watched:
            watched[0].wait(timeout=step)
        else:
            time.sleep(step)
    return True


@contextmanager
def signal_stop_scope(*, enabled: bool = True) -> Iterator[threading.Event]:
    """
    Yield a stop event that SIGTERM/SIGINT set while the block runs.

    With `enabled=False`, or off the main thread (where handlers cannot be
    installed), the event is only set programmatically.
    """
    stop = threading.Event()
    if not enabled or threading.current_thread() is not threading.main_thread():
        yield stop
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        stop.set()

    previous: dict[int, Any] = {}
    try:
        for s in _STOP_SIGNALS:
            previous[s] = signal.getsignal(s)
            signal.signal(s, _handler)
        yield stop
    finally:
        for s, prev in previous.items():
            signal.signal(s, prev if prev is not None else signal.SIG_DFL)

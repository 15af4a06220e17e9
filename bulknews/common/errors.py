from __future__ import annotations

from typing import Sequence


class BulkNewsError(RuntimeError):
    """
    Root of every error raised by the bulk news client.
    """


class TransportError(BulkNewsError):
    """
    Raised when an HTTP call fails (connection error or non-2xx response).
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SubmissionError(BulkNewsError):
    """
    Raised when a job creation request fails; the job stays unsubmitted.
    """


class NotSubmittedError(BulkNewsError):
    """
    Raised when a job is polled before it has a result link.
    """


class UnexpectedStateError(BulkNewsError):
    def __init__(self, state: str) -> None:
        super().__init__(f"Unexpected job state: {state}")
        self.state = state


class JobFailedError(BulkNewsError):
    """
    Raised when the server reports a failed job.

    `errors` keeps the (title, detail) pairs in response order.
    """

    def __init__(self, errors: Sequence[tuple[str, str]], *, state: str | None = None) -> None:
        self.errors = list(errors)
        self.state = state
        joined = ",".join(f"{title}: {detail}" for title, detail in self.errors)
        super().__init__(f"Job failed with error: {joined}")


class NoFilesAvailableError(BulkNewsError):
    pass


class ConstructionError(BulkNewsError, ValueError):
    """
    Raised when mutually exclusive constructor parameters are combined,
    or when not enough parameters are supplied.
    """

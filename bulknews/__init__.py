"""
Bulk news client: snapshot jobs (explain, analytics, extraction, update)
and stream consumption over Pub/Sub.
"""

from bulknews.common.config import BulkNewsConfig, from_env
from bulknews.common.errors import (
    BulkNewsError,
    ConstructionError,
    JobFailedError,
    NoFilesAvailableError,
    NotSubmittedError,
    SubmissionError,
    TransportError,
    UnexpectedStateError,
)
from bulknews.jobs import JobLifecycle, JobOutcome, JobState, Snapshot, SnapshotQuery
from bulknews.stream import ListenResult, QuotaMonitor, Stream, StreamConsumer, StreamUser, Subscription

__version__ = "0.1.0"

__all__ = [
    "BulkNewsConfig",
    "BulkNewsError",
    "ConstructionError",
    "JobFailedError",
    "JobLifecycle",
    "JobOutcome",
    "JobState",
    "ListenResult",
    "NoFilesAvailableError",
    "NotSubmittedError",
    "QuotaMonitor",
    "Snapshot",
    "SnapshotQuery",
    "Stream",
    "StreamConsumer",
    "StreamUser",
    "SubmissionError",
    "Subscription",
    "TransportError",
    "UnexpectedStateError",
    "from_env",
]

"""
Snapshot jobs (explain, analytics, extraction, update) and their lifecycle.
"""

from .files import FileRetrievalManager, get_file_name
from .lifecycle import JobLifecycle
from .models import ExtractionResult, Job, JobOutcome, JobState
from .query import SnapshotQuery
from .snapshot import Snapshot
from .variants import (
    AnalyticsVariant,
    ExplainVariant,
    ExtractionVariant,
    JobVariant,
    UpdateIdentity,
    UpdateVariant,
)

__all__ = [
    "AnalyticsVariant",
    "ExplainVariant",
    "ExtractionResult",
    "ExtractionVariant",
    "FileRetrievalManager",
    "Job",
    "JobLifecycle",
    "JobOutcome",
    "JobState",
    "JobVariant",
    "Snapshot",
    "SnapshotQuery",
    "UpdateIdentity",
    "UpdateVariant",
    "get_file_name",
]

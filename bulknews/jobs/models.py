from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobState(str, Enum):
    CREATED = "JOB_CREATED"
    QUEUED = "JOB_QUEUED"
    VALIDATING = "JOB_VALIDATING"
    PENDING = "JOB_STATE_PENDING"
    STATE_QUEUED = "JOB_STATE_QUEUED"
    STATE_VALIDATING = "JOB_STATE_VALIDATING"
    RUNNING = "JOB_STATE_RUNNING"
    DONE = "JOB_STATE_DONE"
    FAILED = "JOB_STATE_FAILED"
    CANCELLED = "JOB_STATE_CANCELLED"


KNOWN_STATES: frozenset[str] = frozenset(s.value for s in JobState)
FAILURE_STATES: frozenset[str] = frozenset({JobState.FAILED.value, JobState.CANCELLED.value})


class JobOutcome(str, Enum):
    """
    How `JobLifecycle.process()` ended when it did not raise.
    """

    DONE = "done"
    CANCELLED = "cancelled"


@dataclass
class Job:
    """
    One server-side unit of work.

    `result_link` is empty until the job has been submitted (or attached to
    an existing server job) and never changes afterwards.
    """

    id: str = ""
    state: Optional[str] = None
    result_link: str = ""
    submitted_at: Optional[datetime] = None
    result: Any = None

    @property
    def is_submitted(self) -> bool:
        return bool(self.result_link)

    @property
    def is_done(self) -> bool:
        return self.state == JobState.DONE.value


@dataclass(frozen=True)
class ExtractionResult:
    file_format: str
    files: List[str] = field(default_factory=list)


# --- Response envelopes ---


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class JobAttributes(_Envelope):
    current_state: str


class JobData(_Envelope):
    id: str
    attributes: JobAttributes


class JobLinks(_Envelope):
    self_link: str = Field(default="", alias="self")


class JobErrorItem(_Envelope):
    title: Optional[str] = ""
    detail: Optional[str] = ""


class JobEnvelope(_Envelope):
    """
    `{data: {id, attributes: {current_state}}, links: {self}, errors: [...]}`
    """

    data: JobData
    links: Optional[JobLinks] = None
    errors: List[JobErrorItem] = Field(default_factory=list)

    @property
    def state(self) -> str:
        return self.data.attributes.current_state

    @property
    def self_link(self) -> str:
        return self.links.self_link if self.links is not None else ""

    def error_pairs(self) -> list[tuple[str, str]]:
        return [(e.title or "", e.detail or "") for e in self.errors]

"""
Job variants: the variant-specific half of the job lifecycle.

Each variant tells `JobLifecycle` where to create the job, how to read the
job id out of the creation response, and how to shape the final result.
The lifecycle only talks to the `JobVariant` protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

from bulknews.common.config import (
    ANALYTICS_BASEPATH,
    DEFAULT_API_HOST,
    EXPLAIN_SUFFIX,
    EXTRACTION_ID_PREFIX,
    EXTRACTIONS_BASEPATH,
    SAMPLES_SUFFIX,
    SNAPSHOTS_BASEPATH,
)
from bulknews.common.errors import ConstructionError
from bulknews.jobs.models import ExtractionResult

UPDATE_TYPES = ("additions", "replacements", "deletes")

DOCUMENTS_EXTRACTION_TYPE = "documents"
SAMPLES_EXTRACTION_TYPE = "samples"


class JobVariant(Protocol):
    kind: str
    produces_files: bool

    def endpoint_for(self) -> str: ...

    def extract_id(self, body: Mapping[str, Any]) -> str: ...

    def extract_result(self, body: Mapping[str, Any]) -> Any: ...

    def existing_reference(self) -> Optional[tuple[str, str]]:
        """
        (job_id, result_link) for a job that already exists server-side.
        """
        ...


def _data(body: Mapping[str, Any]) -> Mapping[str, Any]:
    return body.get("data") or {}


def _attributes(body: Mapping[str, Any]) -> Mapping[str, Any]:
    return _data(body).get("attributes") or {}


class _BaseVariant:
    kind = "job"
    produces_files = False

    def __init__(self, *, host: str = DEFAULT_API_HOST) -> None:
        self.host = host.rstrip("/")

    def extract_id(self, body: Mapping[str, Any]) -> str:
        return str(_data(body).get("id") or "")

    def existing_reference(self) -> Optional[tuple[str, str]]:
        return None


class ExplainVariant(_BaseVariant):
    """
    Estimates how many documents a query matches.

    `request_samples()` switches the next `endpoint_for()` call to the
    samples endpoint; the switch is consumed by that call.
    """

    kind = "explain"

    def __init__(self, *, host: str = DEFAULT_API_HOST) -> None:
        super().__init__(host=host)
        self.extraction_type = DOCUMENTS_EXTRACTION_TYPE

    def request_samples(self) -> None:
        self.extraction_type = SAMPLES_EXTRACTION_TYPE

    def endpoint_for(self) -> str:
        if self.extraction_type == SAMPLES_EXTRACTION_TYPE:
            endpoint = f"{self.host}{EXTRACTIONS_BASEPATH}{SAMPLES_SUFFIX}"
        else:
            endpoint = f"{self.host}{SNAPSHOTS_BASEPATH}{EXPLAIN_SUFFIX}"
        self.extraction_type = DOCUMENTS_EXTRACTION_TYPE
        return endpoint

    def samples_url(self, job_id: str) -> str:
        self.request_samples()
        return f"{self.endpoint_for()}/{job_id}"

    def extract_result(self, body: Mapping[str, Any]) -> int:
        return int(_attributes(body).get("counts") or 0)


class AnalyticsVariant(_BaseVariant):
    kind = "analytics"

    def endpoint_for(self) -> str:
        return f"{self.host}{ANALYTICS_BASEPATH}"

    def extract_result(self, body: Mapping[str, Any]) -> list[Any]:
        return list(_attributes(body).get("results") or [])


class ExtractionVariant(_BaseVariant):
    """
    Bulk extraction of the documents matched by a query (a "snapshot").

    Passing `snapshot_id` attaches to an extraction created earlier.
    """

    kind = "extraction"
    produces_files = True

    def __init__(self, *, api_key: str, host: str = DEFAULT_API_HOST, snapshot_id: Optional[str] = None) -> None:
        super().__init__(host=host)
        self.api_key = api_key
        self.snapshot_id = snapshot_id or None

    def _server_link(self, job_id: str) -> str:
        return f"{self.host}{SNAPSHOTS_BASEPATH}/{EXTRACTION_ID_PREFIX}-{self.api_key}-{job_id}"

    def endpoint_for(self) -> str:
        return f"{self.host}{SNAPSHOTS_BASEPATH}"

    def extract_id(self, body: Mapping[str, Any]) -> str:
        # dj-synhub-extraction-{KEY}-{SNAPSHOT_ID}
        return super().extract_id(body).split("-")[-1]

    def extract_result(self, body: Mapping[str, Any]) -> ExtractionResult:
        attrs = _attributes(body)
        files = [str(item.get("uri")) for item in (attrs.get("files") or []) if item.get("uri")]
        return ExtractionResult(file_format=str(attrs.get("format") or ""), files=files)

    def existing_reference(self) -> Optional[tuple[str, str]]:
        if not self.snapshot_id:
            return None
        return self.snapshot_id, self._server_link(self.snapshot_id)


@dataclass(frozen=True)
class UpdateIdentity:
    """
    Which snapshot an update job belongs to and which kind of update it is.

    Build it either from an existing update id (`SNAPSHOT-TYPE-DATETIME`)
    or from an explicit snapshot id + update type, never both.
    """

    snapshot_id: str
    update_type: str
    update_id: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.snapshot_id:
            raise ConstructionError("snapshot_id is required for an update job")
        if self.update_type not in UPDATE_TYPES:
            raise ConstructionError(f"Invalid update type: {self.update_type!r} (expected one of {', '.join(UPDATE_TYPES)})")

    @classmethod
    def from_update_id(cls, update_id: str) -> "UpdateIdentity":
        tokens = str(update_id or "").split("-")
        if len(tokens) < 2 or not tokens[0] or not tokens[1]:
            raise ConstructionError(f"Malformed update id: {update_id!r}")
        return cls(snapshot_id=tokens[0], update_type=tokens[1], update_id=update_id)

    @classmethod
    def resolve(
        cls,
        *,
        update_id: Optional[str] = None,
        snapshot_id: Optional[str] = None,
        update_type: Optional[str] = None,
    ) -> "UpdateIdentity":
        if update_id and (update_type or snapshot_id):
            raise ConstructionError("update_id is not compatible with update_type and snapshot_id")
        if update_id:
            return cls.from_update_id(update_id)
        if snapshot_id and update_type:
            return cls(snapshot_id=snapshot_id, update_type=update_type)
        raise ConstructionError("Not enough parameters to create an update job")


class UpdateVariant(ExtractionVariant):
    """
    Additions, replacements or deletes produced for an existing snapshot.
    """

    kind = "update"

    def __init__(self, *, api_key: str, identity: UpdateIdentity, host: str = DEFAULT_API_HOST) -> None:
        super().__init__(api_key=api_key, host=host)
        self.identity = identity

    @classmethod
    def create(
        cls,
        *,
        api_key: str,
        host: str = DEFAULT_API_HOST,
        update_id: Optional[str] = None,
        snapshot_id: Optional[str] = None,
        update_type: Optional[str] = None,
    ) -> "UpdateVariant":
        identity = UpdateIdentity.resolve(update_id=update_id, snapshot_id=snapshot_id, update_type=update_type)
        return cls(api_key=api_key, identity=identity, host=host)

    @property
    def update_type(self) -> str:
        return self.identity.update_type

    def endpoint_for(self) -> str:
        return (
            f"{self.host}{EXTRACTIONS_BASEPATH}/{EXTRACTION_ID_PREFIX}-{self.api_key}-"
            f"{self.identity.snapshot_id}/{self.identity.update_type}"
        )

    def extract_id(self, body: Mapping[str, Any]) -> str:
        # dj-synhub-extraction-{KEY}-{SNAPSHOT_ID}-{UPDATE_TYPE}-{DATETIME}
        raw = _BaseVariant.extract_id(self, body)
        return "-".join(raw.split("-")[-3:])

    def existing_reference(self) -> Optional[tuple[str, str]]:
        if not self.identity.update_id:
            return None
        return self.identity.update_id, self._server_link(self.identity.update_id)

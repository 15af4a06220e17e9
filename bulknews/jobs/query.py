from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

FILE_FORMATS = ("avro", "csv", "json")
DATETIME_PERIODS = ("DAY", "WEEK", "MONTH", "YEAR")
DATETIME_FIELDS = ("publication_datetime", "modification_datetime", "ingestion_datetime")
GROUP_DIMENSIONS_FIELDS = (
    "source_code",
    "subject_codes",
    "region_codes",
    "industry_codes",
    "company_codes",
    "person_codes",
    "company_codes_about",
    "company_codes_relevance",
    "company_codes_occur",
    "language_code",
    "region_of_origin",
)
MAX_GROUP_DIMENSIONS = 4


def _validate_option(value: str, options: Sequence[str], *, name: str) -> str:
    if value not in options:
        raise ValueError(f"Invalid {name}: {value!r} (expected one of {', '.join(options)})")
    return value


def _parse_parameter(value: Any, *, name: str) -> Any:
    """
    JSON strings are decoded; mappings/lists are kept as they are.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return json.loads(value)
    if isinstance(value, (Mapping, list, tuple)):
        return value
    raise TypeError(f"Unexpected value for {name}")


@dataclass
class SnapshotQuery:
    """
    Builds the `{"query": {...}}` payloads sent when creating explain,
    analytics and extraction jobs.

    The `where` clause is passed through untouched.
    """

    where: str
    includes: Optional[Any] = None
    excludes: Optional[Any] = None
    select_fields: Optional[Any] = None
    limit: int = 0
    file_format: str = "avro"
    frequency: str = "MONTH"
    date_field: str = "publication_datetime"
    group_by_source_code: Optional[bool] = None
    group_dimensions: Optional[list[str]] = field(default=None)
    top: int = 10

    def __post_init__(self) -> None:
        if not isinstance(self.where, str):
            raise TypeError("where must be a string")
        self.includes = _parse_parameter(self.includes, name="includes")
        self.excludes = _parse_parameter(self.excludes, name="excludes")
        self.select_fields = _parse_parameter(self.select_fields, name="select_fields")

        if isinstance(self.limit, bool) or not isinstance(self.limit, int):
            raise TypeError("limit must be an integer")
        if self.limit < 0:
            raise ValueError("Limit value is not valid or not positive")

        self.file_format = _validate_option(str(self.file_format).lower(), FILE_FORMATS, name="file_format")
        self.frequency = _validate_option(str(self.frequency).upper(), DATETIME_PERIODS, name="frequency")
        self.date_field = _validate_option(str(self.date_field), DATETIME_FIELDS, name="date_field")
        self._validate_group_options()

        if isinstance(self.top, bool) or not isinstance(self.top, int):
            raise TypeError("top must be an integer")
        if self.top <= 0:
            raise ValueError("Top value is not valid or not positive")

    def _validate_group_options(self) -> None:
        if self.group_by_source_code is not None and self.group_dimensions is not None:
            raise TypeError("group_by_source_code and group_dimensions are not compatible with each other")
        if self.group_dimensions is not None:
            if len(self.group_dimensions) > MAX_GROUP_DIMENSIONS:
                raise ValueError(f"The maximum number of group_dimensions is {MAX_GROUP_DIMENSIONS}")
            for option in self.group_dimensions:
                _validate_option(option, GROUP_DIMENSIONS_FIELDS, name="group dimension")

    def base_query(self) -> dict[str, Any]:
        query: dict[str, Any] = {"where": self.where}
        if self.includes:
            query["includes"] = self.includes
        if self.excludes:
            query["excludes"] = self.excludes
        if self.select_fields:
            query["select"] = self.select_fields
        return {"query": query}

    def explain_query(self) -> dict[str, Any]:
        return self.base_query()

    def analytics_query(self) -> dict[str, Any]:
        self._validate_group_options()
        payload = self.base_query()
        query = payload["query"]
        query["frequency"] = self.frequency
        query["date_field"] = self.date_field
        query["top"] = self.top
        if self.group_by_source_code is not None:
            query["group_by_source_code"] = bool(self.group_by_source_code)
        else:
            query["group_dimensions"] = list(self.group_dimensions or [])
        return payload

    def extraction_query(self) -> dict[str, Any]:
        payload = self.base_query()
        if self.limit > 0:
            payload["query"]["limit"] = self.limit
        payload["query"]["format"] = self.file_format
        return payload

    def stream_attributes(self) -> dict[str, Any]:
        """
        Query body used when a stream is created directly from a query.
        """
        return dict(self.base_query()["query"])

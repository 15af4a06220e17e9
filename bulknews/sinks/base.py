"""
Shared record handling for the stream sinks.

Each sink implements `save(message, subscription_id) -> bool`:
- True: keep consuming
- False: stop the consumer (the message had no `action`)

Messages with an action outside `ALLOWED_ACTIONS` are written to
`errors.log` and skipped. Storage failures are logged the same way and
re-raised so the consumer backs off without acknowledging the message.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from bulknews.common.config import BulkNewsConfig, from_env
from bulknews.common.logging import log_event

ALLOWED_ACTIONS = ("add", "rep", "del")

TIMESTAMP_FIELDS = (
    "publication_datetime",
    "modification_datetime",
    "ingestion_datetime",
    "delivery_datetime",
    "publication_date",
    "modification_date",
    "availability_datetime",
)

MULTIVALUE_FIELDS = (
    "company_codes",
    "company_codes_about",
    "company_codes_association",
    "company_codes_lineage",
    "company_codes_occur",
    "company_codes_relevance",
    "company_codes_ticker_exchange",
    "company_codes_about_ticker_exchange",
    "company_codes_association_ticker_exchange",
    "company_codes_lineage_ticker_exchange",
    "company_codes_occur_ticker_exchange",
    "company_codes_relevance_ticker_exchange",
    "currency_codes",
    "industry_codes",
    "market_index_codes",
    "person_codes",
    "region_codes",
    "subject_codes",
)

# Columns of the warehouse table; other record fields are dropped.
COLUMN_NAMES = (
    "action",
    "an",
    "art",
    "body",
    "byline",
    "company_codes",
    "company_codes_about",
    "company_codes_about_ticker_exchange",
    "company_codes_association",
    "company_codes_association_ticker_exchange",
    "company_codes_lineage",
    "company_codes_lineage_ticker_exchange",
    "company_codes_occur",
    "company_codes_occur_ticker_exchange",
    "company_codes_relevance",
    "company_codes_relevance_ticker_exchange",
    "company_codes_ticker_exchange",
    "copyright",
    "credit",
    "currency_codes",
    "delivery_datetime",
    "document_type",
    "industry_codes",
    "ingestion_datetime",
    "language_code",
    "market_index_codes",
    "modification_date",
    "modification_datetime",
    "person_codes",
    "publication_date",
    "publication_datetime",
    "publisher_name",
    "region_codes",
    "region_of_origin",
    "section",
    "snippet",
    "source_code",
    "source_name",
    "subject_codes",
    "title",
    "word_count",
)

ERRORS_FILE = "errors.log"


def _epoch_ms_to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def format_timestamps(message: Mapping[str, Any], *, as_datetime: bool = False) -> dict[str, Any]:
    """
    Epoch-millisecond timestamp fields -> ISO-8601 strings (or datetimes).

    Values that are not epoch numbers are left untouched.
    """
    out = dict(message)
    for key in TIMESTAMP_FIELDS:
        if key not in out:
            continue
        dt = _epoch_ms_to_datetime(out[key])
        if dt is not None:
            out[key] = dt if as_datetime else dt.isoformat()
    return out


def format_multivalues(message: Mapping[str, Any]) -> dict[str, Any]:
    """
    `",c1,c2,"` -> `["c1", "c2"]` for the code fields.
    """
    out = dict(message)
    for key in MULTIVALUE_FIELDS:
        value = out.get(key)
        if isinstance(value, str):
            out[key] = [v.strip() for v in value.split(",") if v.strip()]
    return out


def filter_columns(message: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in message.items() if k in COLUMN_NAMES}


def current_hour() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d%H")


def stream_short_id(subscription_id: str) -> str:
    parts = str(subscription_id).split("-")
    return parts[-3] if len(parts) >= 3 else parts[0]


def _json_line(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False, default=str)


class BaseSink:
    """
    Validates the action, formats the record and delegates to `_store()`.
    """

    kind = "sink"
    as_datetime = False

    def __init__(
        self,
        *,
        files_dir: Optional[str | Path] = None,
        config: Optional[BulkNewsConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if files_dir is None:
            files_dir = (config or from_env()).listener_files_dir
        self.files_dir = Path(files_dir)
        self.logger = logger or logging.getLogger(__name__)
        self.counter = 0
        self._lock = threading.Lock()

    @property
    def errors_path(self) -> Path:
        return self.files_dir / ERRORS_FILE

    def write_error(self, kind: str, payload: Any) -> None:
        self.files_dir.mkdir(parents=True, exist_ok=True)
        body = payload if isinstance(payload, str) else _json_line(payload)
        line = f"{int(time.time() * 1000)}\tERR\t{kind}\t{body}\n"
        with self._lock:
            with self.errors_path.open("a", encoding="utf-8") as f:
                f.write(line)

    def format(self, message: Mapping[str, Any]) -> dict[str, Any]:
        return format_multivalues(format_timestamps(message, as_datetime=self.as_datetime))

    def save(self, message: Mapping[str, Any], subscription_id: str) -> bool:
        if "action" not in message:
            self.write_error("InvalidMessage", dict(message))
            log_event(self.logger, "sink.invalid_message", severity="WARNING", sink=self.kind, subscription_id=subscription_id)
            return False

        record = self.format(message)
        action = record.get("action")
        if action not in ALLOWED_ACTIONS:
            self.write_error("InvalidAction", record)
            log_event(self.logger, "sink.invalid_action", severity="WARNING", sink=self.kind, action=action)
            self.counter += 1
            return True

        try:
            self._store(record, subscription_id)
        except Exception as e:
            self.write_error("StoreFailed", {"error": str(e), "an": record.get("an")})
            raise

        self.counter += 1
        if self.counter % 100 == 0:
            log_event(self.logger, "sink.progress", sink=self.kind, saved_count=self.counter)
        return True

    def _store(self, record: dict[str, Any], subscription_id: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

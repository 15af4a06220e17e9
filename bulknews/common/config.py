from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_API_HOST = "https://api.dowjones.com"

SNAPSHOTS_BASEPATH = "/alpha/extractions/documents"
EXTRACTIONS_BASEPATH = "/alpha/extractions"
EXPLAIN_SUFFIX = "/_explain"
SAMPLES_SUFFIX = "/samples"
ANALYTICS_BASEPATH = "/alpha/analytics"
STREAMS_BASEPATH = "/alpha/streams"
ACCOUNT_BASEPATH = "/alpha/accounts"
STREAM_CREDENTIALS_BASEPATH = "/alpha/accounts/streaming-credentials"

# Prefix the server puts in front of extraction/update ids.
EXTRACTION_ID_PREFIX = "dj-synhub-extraction"

DEFAULT_POLL_INTERVAL_S = 10.0
DEFAULT_QUOTA_CHECK_INTERVAL_S = 300.0
DEFAULT_PULL_BACKOFF_S = 10.0
DEFAULT_HTTP_TIMEOUT_S = 60.0
DEFAULT_DOWNLOAD_WORKERS = 8
DEFAULT_BATCH_SIZE = 10


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env(name, str(default)) or default)
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name, str(default)) or default)
    except (TypeError, ValueError):
        return default

@dataclass(frozen=True)
class BulkNewsConfig:
    """
    Runtime configuration for the bulk news client.

    Everything is env-driven; callers may also build one directly in tests.
    """

    api_key: str | None
    api_host: str = DEFAULT_API_HOST
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    quota_check_interval_s: float = DEFAULT_QUOTA_CHECK_INTERVAL_S
    pull_backoff_s: float = DEFAULT_PULL_BACKOFF_S
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S
    download_workers: int = DEFAULT_DOWNLOAD_WORKERS
    listener_files_dir: Path = Path("listener")
    subscription_id: str | None = None

    def url(self, path: str) -> str:
        return f"{self.api_host.rstrip('/')}{path}"

def from_env() -> BulkNewsConfig:
    return BulkNewsConfig(
        api_key=_env("FACTIVA_APIKEY"),
        api_host=_env("FACTIVA_API_HOST", DEFAULT_API_HOST) or DEFAULT_API_HOST,
        poll_interval_s=max(0.0, _env_float("BULKNEWS_POLL_INTERVAL_S", DEFAULT_POLL_INTERVAL_S)),
        quota_check_interval_s=max(1.0, _env_float("BULKNEWS_QUOTA_CHECK_INTERVAL_S", DEFAULT_QUOTA_CHECK_INTERVAL_S)),
        pull_backoff_s=max(0.0, _env_float("BULKNEWS_PULL_BACKOFF_S", DEFAULT_PULL_BACKOFF_S)),
        http_timeout_s=max(0.1, _env_float("BULKNEWS_HTTP_TIMEOUT_S", DEFAULT_HTTP_TIMEOUT_S)),
        download_workers=max(1, _env_int("BULKNEWS_DOWNLOAD_WORKERS", DEFAULT_DOWNLOAD_WORKERS)),
        listener_files_dir=Path(_env("BULKNEWS_LISTENER_FILES_DIR", "listener") or "listener"),
        subscription_id=_env("FACTIVA_STREAM_SUBSCRIPTION_ID"),
    )

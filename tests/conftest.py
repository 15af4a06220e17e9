from __future__ import annotations

from pathlib import Path

import pytest

from bulknews.common.config import BulkNewsConfig


@pytest.fixture
def config(tmp_path: Path) -> BulkNewsConfig:
    return BulkNewsConfig(
        api_key="KEY",
        api_host="https://api.test",
        poll_interval_s=0.0,
        quota_check_interval_s=300.0,
        pull_backoff_s=0.0,
        http_timeout_s=5.0,
        download_workers=4,
        listener_files_dir=tmp_path / "listener",
        subscription_id="abc-def-STREAM1-filtered-xyz",
    )

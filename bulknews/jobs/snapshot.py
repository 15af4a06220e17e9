from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Optional

from bulknews.common.config import BulkNewsConfig, from_env
from bulknews.common.errors import ConstructionError, NotSubmittedError
from bulknews.jobs.files import FileRetrievalManager
from bulknews.jobs.lifecycle import JobLifecycle
from bulknews.jobs.models import JobOutcome
from bulknews.jobs.query import SnapshotQuery
from bulknews.jobs.variants import AnalyticsVariant, ExplainVariant, ExtractionVariant, UpdateVariant
from bulknews.transport.http import ApiClient


class Snapshot:
    """
    One query (or one existing snapshot) and the jobs run against it.

    The latest explain, analytics, extraction and update jobs are kept on
    the instance (`last_explain_job`, ...).

    Example:
        snapshot = Snapshot(query="publication_datetime >= '2020-01-01 00:00:00' AND LOWER(language_code) = 'en'")
        snapshot.process_explain()
        snapshot.last_explain_job.job.result  # document count estimate
    """

    def __init__(
        self,
        *,
        query: Optional[SnapshotQuery | str] = None,
        snapshot_id: Optional[str] = None,
        config: Optional[BulkNewsConfig] = None,
        client: Optional[ApiClient] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if query and snapshot_id:
            raise ConstructionError("The query and snapshot_id parameters cannot be set simultaneously")

        self.config = config or from_env()
        if not self.config.api_key:
            raise ConstructionError("An API key is required (FACTIVA_APIKEY)")
        self.api_key: str = self.config.api_key
        self.client = client or ApiClient(timeout_s=self.config.http_timeout_s)
        self.logger = logger or logging.getLogger(__name__)
        self.files = FileRetrievalManager(
            self.client,
            api_key=self.api_key,
            max_workers=self.config.download_workers,
            logger=self.logger,
        )

        if isinstance(query, SnapshotQuery):
            self.query = query
        elif isinstance(query, str):
            self.query = SnapshotQuery(query)
        elif query is None:
            self.query = SnapshotQuery("")
        else:
            raise TypeError("Unexpected value for the query-where clause")

        self.snapshot_id = snapshot_id or None
        self.last_explain_job = self._lifecycle(ExplainVariant(host=self.config.api_host))
        self.last_analytics_job = self._lifecycle(AnalyticsVariant(host=self.config.api_host))
        self.last_extraction_job = self._lifecycle(
            ExtractionVariant(api_key=self.api_key, host=self.config.api_host, snapshot_id=self.snapshot_id)
        )
        self.last_update_job: Optional[JobLifecycle] = None

    def _lifecycle(self, variant: Any) -> JobLifecycle:
        return JobLifecycle(
            variant,
            api_key=self.api_key,
            client=self.client,
            files=self.files,
            poll_interval_s=self.config.poll_interval_s,
            logger=self.logger,
        )

    # --- Explain ---

    def submit_explain_job(self) -> None:
        self.last_explain_job = self._lifecycle(ExplainVariant(host=self.config.api_host))
        self.last_explain_job.submit(self.query.explain_query())

    def get_explain_job_results(self) -> str:
        return self.last_explain_job.poll()

    def process_explain(self, *, cancel: Optional[threading.Event] = None) -> JobOutcome:
        self.last_explain_job = self._lifecycle(ExplainVariant(host=self.config.api_host))
        return self.last_explain_job.process(self.query.explain_query(), cancel=cancel)

    def get_explain_samples(self, num_samples: int = 10) -> list[Any]:
        return self.last_explain_job.get_samples(num_samples)

    # --- Analytics ---

    def submit_analytics_job(self) -> None:
        self.last_analytics_job = self._lifecycle(AnalyticsVariant(host=self.config.api_host))
        self.last_analytics_job.submit(self.query.analytics_query())

    def get_analytics_job_results(self) -> str:
        return self.last_analytics_job.poll()

    def process_analytics(self, *, cancel: Optional[threading.Event] = None) -> JobOutcome:
        self.last_analytics_job = self._lifecycle(AnalyticsVariant(host=self.config.api_host))
        return self.last_analytics_job.process(self.query.analytics_query(), cancel=cancel)

    # --- Extraction ---

    def _new_extraction(self) -> JobLifecycle:
        return self._lifecycle(ExtractionVariant(api_key=self.api_key, host=self.config.api_host))

    def submit_extraction_job(self) -> None:
        self.last_extraction_job = self._new_extraction()
        self.last_extraction_job.submit(self.query.extraction_query())
        self.snapshot_id = self.last_extraction_job.job.id

    def get_extraction_job_results(self) -> str:
        return self.last_extraction_job.poll()

    def download_extraction_files(self, download_path: Optional[str | Path] = None) -> list[Path]:
        if not self.last_extraction_job.job.is_done:
            self.last_extraction_job.poll()
        return self.last_extraction_job.download_files(download_path)

    def process_extraction(
        self,
        download_path: Optional[str | Path] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> JobOutcome:
        """
        Submit an extraction, wait for it and download every file.

        Expect this to take minutes or hours.
        """
        self.last_extraction_job = self._new_extraction()
        outcome = self.last_extraction_job.process(
            self.query.extraction_query(),
            download_path=download_path,
            cancel=cancel,
        )
        self.snapshot_id = self.last_extraction_job.job.id
        return outcome

    # --- Updates ---

    def _new_update(self, update_type: str) -> JobLifecycle:
        snapshot_id = self.last_extraction_job.job.id or self.snapshot_id
        variant = UpdateVariant.create(
            api_key=self.api_key,
            host=self.config.api_host,
            snapshot_id=snapshot_id,
            update_type=update_type,
        )
        return self._lifecycle(variant)

    def submit_update_job(self, update_type: str) -> None:
        self.last_update_job = self._new_update(update_type)
        self.last_update_job.submit()

    def get_update_job_results(self) -> str:
        if self.last_update_job is None:
            raise NotSubmittedError("Update job has not been set")
        return self.last_update_job.poll()

    def download_update_files(self, download_path: Optional[str | Path] = None) -> list[Path]:
        if self.last_update_job is None:
            raise NotSubmittedError("Update job has not been set")
        return self.last_update_job.download_files(download_path)

    def process_update(
        self,
        update_type: str,
        download_path: Optional[str | Path] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> JobOutcome:
        self.last_update_job = self._new_update(update_type)
        return self.last_update_job.process(download_path=download_path, cancel=cancel)

"""
Asynchronous job lifecycle: submit -> poll -> terminal resolution.

The server runs explain, analytics, extraction and update jobs in the
background. A job is created with one POST and then polled on its
`links.self` URL until it reports `JOB_STATE_DONE` or a failure state.
Polling has no attempt cap (extractions can legitimately take hours);
callers stop it with a cancellation event instead.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from bulknews.common.cancellation import is_cancelled, signal_stop_scope, wait_or_cancelled
from bulknews.common.config import DEFAULT_POLL_INTERVAL_S
from bulknews.common.errors import (
    JobFailedError,
    NoFilesAvailableError,
    NotSubmittedError,
    SubmissionError,
    TransportError,
    UnexpectedStateError,
)
from bulknews.common.logging import bind_correlation_id, log_event
from bulknews.jobs.files import FileRetrievalManager
from bulknews.jobs.models import FAILURE_STATES, KNOWN_STATES, Job, JobEnvelope, JobOutcome, JobState
from bulknews.jobs.variants import JobVariant
from bulknews.transport.http import ApiClient, auth_headers


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobLifecycle:
    def __init__(
        self,
        variant: JobVariant,
        *,
        api_key: str,
        client: Optional[ApiClient] = None,
        files: Optional[FileRetrievalManager] = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.variant = variant
        self.api_key = api_key
        self.client = client or ApiClient()
        self.logger = logger or logging.getLogger(__name__)
        self.files = files or FileRetrievalManager(self.client, api_key=api_key, logger=self.logger)
        self.poll_interval_s = max(0.0, float(poll_interval_s))
        self._clock = clock

        self.job = Job()
        ref = variant.existing_reference()
        if ref is not None:
            self.job.id, self.job.result_link = ref

    def _log(self, event_type: str, *, severity: str = "INFO", **fields: Any) -> None:
        log_event(
            self.logger,
            event_type,
            severity=severity,
            job_kind=self.variant.kind,
            job_id=self.job.id,
            job_state=self.job.state,
            **fields,
        )

    def submit(self, payload: Optional[Mapping[str, Any]] = None) -> Job:
        if self.job.is_submitted:
            raise SubmissionError("Job has already been submitted; create a new job to submit again")

        self.job.submitted_at = self._clock()
        url = self.variant.endpoint_for()
        try:
            body = self.client.send_request(
                "POST",
                url,
                headers=auth_headers(self.api_key, json_body=True),
                payload=payload,
            )
        except TransportError as e:
            self._log("job.submit_failed", severity="ERROR", url=url, status_code=e.status_code)
            raise SubmissionError(f"Job submission failed: {e}") from e

        try:
            envelope = JobEnvelope.model_validate(body)
        except ValidationError as e:
            raise SubmissionError(f"Unexpected job creation response: {e}") from e
        if not envelope.self_link:
            raise SubmissionError("Job creation response has no links.self")

        job_id = self.variant.extract_id(body)
        self.job.id = job_id
        self.job.state = envelope.state
        self.job.result_link = envelope.self_link
        self._log("job.submitted", result_link=self.job.result_link)
        return self.job

    def poll(self) -> str:
        """
        Read the job status once and apply it.

        Returns the new state. Raises on unknown or failed states.
        """
        if not self.job.result_link:
            raise NotSubmittedError("Job has not yet been submitted or Job ID was not set")

        body = self.client.send_request("GET", self.job.result_link, headers=auth_headers(self.api_key, json_body=True))
        try:
            envelope = JobEnvelope.model_validate(body)
        except ValidationError as e:
            raise TransportError(f"Unexpected job status response from {self.job.result_link}: {e}") from e

        state = envelope.state
        self.job.state = state
        self._log("job.polled", severity="DEBUG")

        if state not in KNOWN_STATES:
            raise UnexpectedStateError(state)

        if state in FAILURE_STATES:
            self._log("job.failed", severity="ERROR", errors=envelope.error_pairs())
            raise JobFailedError(envelope.error_pairs(), state=state)

        if state == JobState.DONE.value:
            self.job.result = self.variant.extract_result(body)
            self._log("job.done")
        return state

    def process(
        self,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        download_path: Optional[str | Path] = None,
        cancel: Optional[threading.Event] = None,
        handle_signals: bool = False,
    ) -> JobOutcome:
        """
        Submit the job, poll it at a fixed interval until it is done and,
        for file-producing jobs, download the result files.

        Setting `cancel` stops the wait between polls and returns
        `JobOutcome.CANCELLED`; the server-side job keeps running. With
        `handle_signals=True` a SIGTERM/SIGINT received during this call
        does the same; the host's handlers are restored afterwards.
        """
        with signal_stop_scope(enabled=handle_signals) as stop, bind_correlation_id():
            if is_cancelled(cancel, stop):
                return JobOutcome.CANCELLED

            self.submit(payload)
            self.poll()
            self._log("job.link", result_link=self.job.result_link)

            while not self.job.is_done:
                if wait_or_cancelled(self.poll_interval_s, cancel, stop):
                    self._log("job.cancelled", severity="WARNING")
                    return JobOutcome.CANCELLED
                self.poll()

            if self.variant.produces_files:
                self.download_files(download_path)
            return JobOutcome.DONE

    def get_samples(self, num_samples: int = 10) -> list[Any]:
        """
        Sample documents for an explain job (title + metadata, at most 100).
        """
        if not self.job.id:
            raise NotSubmittedError("Job has not yet been submitted or Job ID was not set")
        samples_url = getattr(self.variant, "samples_url", None)
        if samples_url is None:
            raise TypeError(f"{self.variant.kind} jobs have no samples")

        body = self.client.send_request(
            "GET",
            samples_url(self.job.id),
            headers=auth_headers(self.api_key),
            params={"num_samples": int(num_samples)},
        )
        samples = list(((body.get("data") or {}).get("attributes") or {}).get("sample") or [])
        self._log("job.samples", samples_count=len(samples))
        return samples

    def download_files(self, download_path: Optional[str | Path] = None) -> list[Path]:
        result = self.job.result
        files = list(getattr(result, "files", None) or [])
        if not files:
            raise NoFilesAvailableError("No files available for download")
        return self.files.retrieve_all(files, download_path, job_id=self.job.id)

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Sequence

from bulknews.common.config import DEFAULT_DOWNLOAD_WORKERS
from bulknews.common.errors import NoFilesAvailableError
from bulknews.common.logging import log_event
from bulknews.transport.http import ApiClient, auth_headers

_UPDATE_FILE_PREFIXES = ("deletes", "additions", "replacements")


def get_file_name(file_uri: str) -> str:
    """
    Local file name for a result file URI.

    Update files are prefixed with their update type because parts of
    different update types share the same last path segment.
    """
    part_name = file_uri.split("/")[-1]
    for prefix in _UPDATE_FILE_PREFIXES:
        if prefix in file_uri:
            return f"{prefix}-{part_name}"
    return part_name


class FileRetrievalManager:
    """
    Downloads every file of a finished extraction/update job in parallel.

    All downloads are joined; the first failure is re-raised once the batch
    has finished. Files already written are left on disk.
    """

    def __init__(
        self,
        client: ApiClient,
        *,
        api_key: str,
        max_workers: int = DEFAULT_DOWNLOAD_WORKERS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.max_workers = max(1, int(max_workers))
        self.logger = logger or logging.getLogger(__name__)

    def resolve_folder(self, destination_folder: Optional[str | Path], *, job_id: str) -> Path:
        if destination_folder:
            return Path(destination_folder)
        return Path.cwd() / job_id

    def retrieve_all(
        self,
        files: Sequence[str],
        destination_folder: Optional[str | Path] = None,
        *,
        job_id: str,
    ) -> list[Path]:
        if not files:
            raise NoFilesAvailableError("No files available for download")

        folder = self.resolve_folder(destination_folder, job_id=job_id)
        folder.mkdir(parents=True, exist_ok=True)
        headers = auth_headers(self.api_key)

        log_event(
            self.logger,
            "job.files.download_started",
            job_id=job_id,
            file_count=len(files),
            folder=str(folder),
        )
        workers = min(self.max_workers, len(files))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulknews-download") as ex:
            futures = [
                ex.submit(self.client.download, uri, folder / get_file_name(uri), headers=headers)
                for uri in files
            ]
        # Leaving the executor joins every download; result() re-raises failures in file order.
        paths = [f.result() for f in futures]

        log_event(self.logger, "job.files.download_finished", job_id=job_id, file_count=len(paths), folder=str(folder))
        return paths

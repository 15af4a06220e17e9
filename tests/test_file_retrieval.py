from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from bulknews.common.errors import NoFilesAvailableError, TransportError
from bulknews.jobs.files import FileRetrievalManager, get_file_name


class _RecordingClient:
    def __init__(self, fail_on: str | None = None):
        self.fail_on = fail_on
        self.seen: list[str] = []
        self.headers: list[dict] = []
        self._lock = threading.Lock()

    def download(self, url, destination, *, headers):
        with self._lock:
            self.seen.append(url)
            self.headers.append(dict(headers))
        if url == self.fail_on:
            raise TransportError(f"Download failed: {url}", status_code=500)
        Path(destination).write_text(url, encoding="utf-8")
        return Path(destination)


@pytest.mark.parametrize(
    "uri, expected",
    [
        ("gs://bucket/snap/part-0001.avro", "part-0001.avro"),
        ("gs://bucket/snap/deletes/part-0001.avro", "deletes-part-0001.avro"),
        ("gs://bucket/snap/additions/part-0001.avro", "additions-part-0001.avro"),
        ("gs://bucket/snap/replacements/part-0001.avro", "replacements-part-0001.avro"),
        # deletes wins over the other prefixes
        ("gs://bucket/additions/deletes/x.avro", "deletes-x.avro"),
    ],
)
def test_get_file_name(uri: str, expected: str) -> None:
    assert get_file_name(uri) == expected


def test_retrieve_all_without_files_raises() -> None:
    mgr = FileRetrievalManager(_RecordingClient(), api_key="KEY")
    with pytest.raises(NoFilesAvailableError):
        mgr.retrieve_all([], job_id="job1")


def test_retrieve_all_downloads_every_file_in_order(tmp_path) -> None:
    client = _RecordingClient()
    mgr = FileRetrievalManager(client, api_key="KEY", max_workers=3, logger=logging.getLogger("test"))
    files = [f"gs://bucket/additions/part-{i}.avro" for i in range(6)]

    paths = mgr.retrieve_all(files, tmp_path / "nested" / "dir", job_id="job1")

    assert [p.name for p in paths] == [f"additions-part-{i}.avro" for i in range(6)]
    assert sorted(client.seen) == sorted(files)
    assert all(h["user-key"] == "KEY" for h in client.headers)


def test_retrieve_all_defaults_to_job_folder(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    mgr = FileRetrievalManager(_RecordingClient(), api_key="KEY")

    paths = mgr.retrieve_all(["gs://bucket/part-1.avro"], job_id="job42")

    assert paths == [tmp_path / "job42" / "part-1.avro"]


def test_retrieve_all_joins_then_raises_first_failure(tmp_path) -> None:
    files = ["gs://b/part-1.avro", "gs://b/part-2.avro", "gs://b/part-3.avro"]
    client = _RecordingClient(fail_on="gs://b/part-2.avro")
    mgr = FileRetrievalManager(client, api_key="KEY", max_workers=3)

    with pytest.raises(TransportError):
        mgr.retrieve_all(files, tmp_path, job_id="job1")

    # every download was attempted; the successful ones stay on disk
    assert sorted(client.seen) == sorted(files)
    assert (tmp_path / "part-1.avro").exists()
    assert (tmp_path / "part-3.avro").exists()

from __future__ import annotations

import json
from datetime import datetime, timezone

import psycopg2.extras
import pytest

from bulknews.sinks.base import COLUMN_NAMES, filter_columns, format_multivalues, format_timestamps, stream_short_id
from bulknews.sinks.firestore import FirestoreSink
from bulknews.sinks.jsonl import JSONLFileSink
from bulknews.sinks.postgres import PostgresTableSink

SUB_ID = "abc-def-STREAM1-filtered-xyz"
TS_MS = 1672531200000  # 2023-01-01T00:00:00Z


def _record(**over):
    rec = {
        "an": "DOC1",
        "action": "add",
        "title": "hello",
        "publication_datetime": TS_MS,
        "company_codes": ",abc,def,",
        "not_a_column": 1,
    }
    rec.update(over)
    return rec


def test_format_timestamps_epoch_ms_to_iso() -> None:
    out = format_timestamps({"publication_datetime": TS_MS, "modification_datetime": "already text"})
    assert out["publication_datetime"] == "2023-01-01T00:00:00+00:00"
    assert out["modification_datetime"] == "already text"

    native = format_timestamps({"publication_datetime": TS_MS}, as_datetime=True)
    assert native["publication_datetime"] == datetime(2023, 1, 1, tzinfo=timezone.utc)


def test_format_multivalues_splits_codes() -> None:
    out = format_multivalues({"company_codes": ",abc,def,", "region_codes": "", "title": "a,b"})
    assert out["company_codes"] == ["abc", "def"]
    assert out["region_codes"] == []
    assert out["title"] == "a,b"


def test_filter_columns_keeps_table_columns_only() -> None:
    out = filter_columns(_record())
    assert "not_a_column" not in out
    assert set(out) <= set(COLUMN_NAMES)


def test_stream_short_id() -> None:
    assert stream_short_id(SUB_ID) == "STREAM1"


def test_jsonl_sink_writes_per_action_file(tmp_path) -> None:
    sink = JSONLFileSink(files_dir=tmp_path)

    assert sink.save(_record(), SUB_ID) is True
    assert sink.save(_record(an="DOC2", action="del"), SUB_ID) is True

    adds = list(tmp_path.glob("STREAM1_add_*.jsonl"))
    dels = list(tmp_path.glob("STREAM1_del_*.jsonl"))
    assert len(adds) == 1 and len(dels) == 1
    line = json.loads(adds[0].read_text(encoding="utf-8").strip())
    assert line["an"] == "DOC1"
    assert line["company_codes"] == ["abc", "def"]
    assert line["publication_datetime"] == "2023-01-01T00:00:00+00:00"
    assert sink.counter == 2


def test_message_without_action_stops_and_is_logged(tmp_path) -> None:
    sink = JSONLFileSink(files_dir=tmp_path)

    assert sink.save({"an": "DOC1"}, SUB_ID) is False

    ts, level, kind, body = (tmp_path / "errors.log").read_text(encoding="utf-8").rstrip("\n").split("\t")
    assert ts.isdigit()
    assert (level, kind) == ("ERR", "InvalidMessage")
    assert json.loads(body) == {"an": "DOC1"}
    assert list(tmp_path.glob("*.jsonl")) == []


def test_unknown_action_is_logged_and_skipped(tmp_path) -> None:
    sink = JSONLFileSink(files_dir=tmp_path)

    assert sink.save(_record(action="upd"), SUB_ID) is True

    assert "\tInvalidAction\t" in (tmp_path / "errors.log").read_text(encoding="utf-8")
    assert list(tmp_path.glob("*.jsonl")) == []


class _FakeDocRef:
    def __init__(self, store, doc_id):
        self.store = store
        self.doc_id = doc_id

    def set(self, payload, merge=False):
        self.store[self.doc_id] = (payload, merge)


class _FakeCollection:
    def __init__(self, store):
        self.store = store

    def document(self, doc_id):
        return _FakeDocRef(self.store, doc_id)


class _FakeFirestore:
    def __init__(self):
        self.collections: dict[str, dict] = {}

    def collection(self, name):
        return _FakeCollection(self.collections.setdefault(name, {}))


def test_firestore_sink_stores_native_timestamps(tmp_path) -> None:
    db = _FakeFirestore()
    sink = FirestoreSink(client=db, collection="news", files_dir=tmp_path)

    assert sink.save(_record(), SUB_ID) is True
    assert sink.save(_record(), SUB_ID) is True  # redelivery overwrites

    docs = db.collections["news"]
    assert len(docs) == 1
    payload, merge = next(iter(docs.values()))
    assert merge is True
    assert payload["publication_datetime"] == datetime(2023, 1, 1, tzinfo=timezone.utc)
    assert payload["subscription_id"] == SUB_ID


def test_firestore_sink_store_failure_propagates(tmp_path) -> None:
    class _Broken(_FakeFirestore):
        def collection(self, name):
            raise PermissionError("denied")

    sink = FirestoreSink(client=_Broken(), files_dir=tmp_path)
    with pytest.raises(PermissionError):
        sink.save(_record(), SUB_ID)
    assert "\tStoreFailed\t" in (tmp_path / "errors.log").read_text(encoding="utf-8")


class _FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _FakeConn:
    closed = 0

    def __init__(self):
        self.commits = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        if exc[0] is None:
            self.commits += 1
        return False

    def cursor(self):
        return _FakeCursor(self)

    def close(self):
        self.closed = 1


def test_postgres_sink_inserts_filtered_row(tmp_path, monkeypatch) -> None:
    conn = _FakeConn()
    captured = {}

    def fake_execute_values(cur, sql, rows, template=None, page_size=100):
        captured["sql"] = sql
        captured["rows"] = rows
        captured["template"] = template

    monkeypatch.setattr(psycopg2.extras, "execute_values", fake_execute_values)
    sink = PostgresTableSink(db_url="postgresql://x", table="public.news", files_dir=tmp_path, connect=lambda url: conn)

    assert sink.save(_record(), SUB_ID) is True

    assert captured["sql"].startswith("INSERT INTO public.news (action, an, ")
    (row,) = captured["rows"]
    assert len(row) == len(COLUMN_NAMES)
    by_name = dict(zip(COLUMN_NAMES, row))
    assert by_name["an"] == "DOC1"
    assert by_name["company_codes"] == '["abc", "def"]'
    assert by_name["publication_datetime"] == "2023-01-01T00:00:00+00:00"
    assert by_name["body"] is None
    assert captured["template"].count("%s") == len(COLUMN_NAMES)
    assert conn.commits == 1


def test_postgres_sink_rejects_bad_table_and_missing_url(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("BULKNEWS_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValueError):
        PostgresTableSink(files_dir=tmp_path)
    with pytest.raises(ValueError):
        PostgresTableSink(db_url="postgresql://x", table="news; drop table x", files_dir=tmp_path)

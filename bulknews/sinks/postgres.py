from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import psycopg2
import psycopg2.extras

from bulknews.common.config import BulkNewsConfig
from bulknews.sinks.base import COLUMN_NAMES, BaseSink, filter_columns

DEFAULT_TABLE = "public.news_records"

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def _adapt(value: Any) -> Any:
    # list/dict columns are stored as JSON text (jsonb on the server side)
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


class PostgresTableSink(BaseSink):
    """
    Appends every stream message as one row of a warehouse table.

    Only the columns in `COLUMN_NAMES` are written; missing columns are NULL.
    The table is expected to exist with one column per name.
    """

    kind = "postgres"

    def __init__(
        self,
        *,
        db_url: Optional[str] = None,
        table: Optional[str] = None,
        files_dir: Optional[str | Path] = None,
        config: Optional[BulkNewsConfig] = None,
        connect: Any = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(files_dir=files_dir, config=config, logger=logger)
        self.db_url = (db_url or os.getenv("BULKNEWS_DATABASE_URL") or os.getenv("DATABASE_URL") or "").strip()
        if not self.db_url:
            raise ValueError("db_url is required (BULKNEWS_DATABASE_URL)")
        self.table = table or os.getenv("BULKNEWS_PG_TABLE") or DEFAULT_TABLE
        if not _TABLE_RE.match(self.table):
            raise ValueError(f"Invalid table name: {self.table!r}")
        self._connect = connect or psycopg2.connect
        self._conn: Any = None

    def _connection(self) -> Any:
        if self._conn is None or getattr(self._conn, "closed", 0):
            self._conn = self._connect(self.db_url)
        return self._conn

    @property
    def insert_sql(self) -> str:
        return f"INSERT INTO {self.table} ({', '.join(COLUMN_NAMES)}) VALUES %s"

    def row_for(self, record: dict[str, Any]) -> tuple[Any, ...]:
        cols = filter_columns(record)
        return tuple(_adapt(cols.get(name)) for name in COLUMN_NAMES)

    def insert_rows(self, records: list[dict[str, Any]]) -> int:
        rows = [self.row_for(r) for r in records]
        if not rows:
            return 0
        conn = self._connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    psycopg2.extras.execute_values(
                        cur,
                        self.insert_sql,
                        rows,
                        template="(" + ",".join(["%s"] * len(COLUMN_NAMES)) + ")",
                        page_size=500,
                    )
        except psycopg2.Error:
            # Drop the connection; the next insert reconnects.
            self.close()
            raise
        return len(rows)

    def _store(self, record: dict[str, Any], subscription_id: str) -> None:
        self.insert_rows([record])

    def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

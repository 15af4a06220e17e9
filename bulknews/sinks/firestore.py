from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Any, Optional

from bulknews.common.config import BulkNewsConfig
from bulknews.common.retry import with_google_retry
from bulknews.sinks.base import BaseSink

DEFAULT_COLLECTION = "news_records"


def _stable_id(*parts: Any) -> str:
    s = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.sha1(s.encode("utf-8")).hexdigest()


class FirestoreSink(BaseSink):
    """
    One Firestore document per stream message.

    Timestamps are stored as native datetimes. The document id is derived
    from (an, action, modification_datetime) so a redelivered message
    overwrites its own document.

    Auth:
    - Uses Application Default Credentials (Cloud Run / GCE / local gcloud).
    """

    kind = "firestore"
    as_datetime = True

    def __init__(
        self,
        *,
        client: Any = None,
        project_id: Optional[str] = None,
        collection: Optional[str] = None,
        files_dir: Optional[str | Path] = None,
        config: Optional[BulkNewsConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(files_dir=files_dir, config=config, logger=logger)
        self.collection = collection or os.getenv("BULKNEWS_FIRESTORE_COLLECTION") or DEFAULT_COLLECTION
        if client is None:
            from google.cloud import firestore  # type: ignore

            client = firestore.Client(project=project_id or os.getenv("GOOGLE_CLOUD_PROJECT") or None)
        self._db = client

    def document_id(self, record: dict[str, Any]) -> str:
        return _stable_id(record.get("an"), record.get("action"), record.get("modification_datetime"))

    def _store(self, record: dict[str, Any], subscription_id: str) -> None:
        payload = dict(record)
        payload["subscription_id"] = subscription_id
        ref = self._db.collection(self.collection).document(self.document_id(record))
        with_google_retry(lambda: ref.set(payload, merge=True))

    def close(self) -> None:
        close = getattr(self._db, "close", None)
        if callable(close):
            close()

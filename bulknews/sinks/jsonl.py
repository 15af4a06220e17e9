from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from bulknews.sinks.base import BaseSink, current_hour, stream_short_id


class JSONLFileSink(BaseSink):
    """
    Append-only JSONL files, one per stream/action/hour.

    Layout:
      ${BULKNEWS_LISTENER_FILES_DIR:-listener}/{stream_short_id}_{action}_{YYYYMMDDHH}.jsonl
    """

    kind = "jsonl"

    def path_for(self, subscription_id: str, action: str) -> Path:
        return self.files_dir / f"{stream_short_id(subscription_id)}_{action}_{current_hour()}.jsonl"

    def _store(self, record: dict[str, Any], subscription_id: str) -> None:
        p = self.path_for(subscription_id, str(record["action"]))
        p.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, ensure_ascii=False, default=str)
        with self._lock:
            with p.open("a", encoding="utf-8") as f:
                f.write(line)
                f.write("\n")

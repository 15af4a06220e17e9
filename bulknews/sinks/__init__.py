"""
Message sinks for `StreamConsumer.listen()`.
"""

from .base import ALLOWED_ACTIONS, COLUMN_NAMES, BaseSink, filter_columns, format_multivalues, format_timestamps
from .firestore import FirestoreSink
from .jsonl import JSONLFileSink
from .postgres import PostgresTableSink

__all__ = [
    "ALLOWED_ACTIONS",
    "COLUMN_NAMES",
    "BaseSink",
    "FirestoreSink",
    "JSONLFileSink",
    "PostgresTableSink",
    "filter_columns",
    "format_multivalues",
    "format_timestamps",
]

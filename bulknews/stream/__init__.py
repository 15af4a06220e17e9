"""
Streams: Pub/Sub-delivered news records, consumed with a pull loop.
"""

from .listener import ListenResult, StreamConsumer, decode_record, subscription_id_to_stream_id
from .quota import DOC_COUNT_EXCEEDED, QuotaMonitor, QuotaState
from .stream import Stream, StreamResponse
from .subscription import Subscription
from .user import AccountInfo, StreamUser

__all__ = [
    "AccountInfo",
    "DOC_COUNT_EXCEEDED",
    "ListenResult",
    "QuotaMonitor",
    "QuotaState",
    "Stream",
    "StreamConsumer",
    "StreamResponse",
    "StreamUser",
    "Subscription",
    "decode_record",
    "subscription_id_to_stream_id",
]

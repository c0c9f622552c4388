"""
Ingestion package: event source client, decoder, materializer and polling loop.

Data flows source -> decoder -> merge -> materializer -> checkpoint, driven by
`Ingester`.
"""

from escrow_mirror.ingestion.decoder import decode_event, event_topic
from escrow_mirror.ingestion.ingester import Ingester, block_windows, merge_events
from escrow_mirror.ingestion.materializer import ApplyResult, Materializer
from escrow_mirror.ingestion.source import EventSource, JsonRpcEventSource, RawEvent

__all__ = [
    "ApplyResult",
    "EventSource",
    "Ingester",
    "JsonRpcEventSource",
    "Materializer",
    "RawEvent",
    "block_windows",
    "decode_event",
    "event_topic",
    "merge_events",
]

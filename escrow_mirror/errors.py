"""
Exception hierarchy for the ingestion engine.

The ingestion loop retries `EventSourceError` and `StorageError` indefinitely;
`DecodeError` is fatal and is never retried.
"""

from __future__ import annotations


class MirrorError(Exception):
    """Base class for all escrow mirror errors."""


class EventSourceError(MirrorError):
    """Transient failure talking to the ledger (network, HTTP, JSON-RPC error)."""


class DecodeError(MirrorError):
    """A log entry does not match the expected event schema."""

    def __init__(self, message: str, kind: str | None = None, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.tx_hash = tx_hash


class StorageError(MirrorError):
    """The aggregate store rejected a write; the whole batch was rolled back."""


__all__ = ["MirrorError", "EventSourceError", "DecodeError", "StorageError"]

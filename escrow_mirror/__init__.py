"""
Escrow Mirror - materialized view of an on-chain escrow marketplace.

This package consumes the escrow contract's event log and keeps a PostgreSQL
mirror of jobs, participants and ingestion progress:

- Event source client (JSON-RPC `eth_getLogs`) and strict event decoding
- Idempotent materialization of job lifecycles and agent counters
- A polling ingestion loop with backfill, checkpointing and retry/backoff
- Read-only snapshot queries, a rich console summary and JSON export
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from escrow_mirror.config import Settings, get_settings
from escrow_mirror.domain.models import DomainEvent, EventKind, Job, Settlement
from escrow_mirror.errors import DecodeError, EventSourceError, MirrorError, StorageError
from escrow_mirror.ingestion.ingester import Ingester, merge_events
from escrow_mirror.ingestion.materializer import ApplyResult, Materializer
from escrow_mirror.reporting.read_surface import ReadSurface, Snapshot, derive_status
from escrow_mirror.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "DomainEvent",
    "EventKind",
    "Job",
    "Settlement",
    # Errors
    "DecodeError",
    "EventSourceError",
    "MirrorError",
    "StorageError",
    # Ingestion
    "ApplyResult",
    "Ingester",
    "Materializer",
    "merge_events",
    # Read surface
    "ReadSurface",
    "Snapshot",
    "derive_status",
    # Logging
    "configure_logging",
    "get_logger",
]

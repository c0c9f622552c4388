"""
Storage package for the escrow marketplace mirror.

Centralizes database concerns (connection factory, schema, checkpoint and the
PostgreSQL aggregate store). Keep this layer focused on I/O and transactions,
decoupled from the transition rules in the materializer.
"""

from escrow_mirror.storage.base import AbstractAggregateStore, AggregateStore, UnitOfWork
from escrow_mirror.storage.checkpoint import CheckpointStore
from escrow_mirror.storage.db_factory import build_dsn, get_sync_connection, get_sync_pool
from escrow_mirror.storage.repository import PostgresAggregateStore
from escrow_mirror.storage.schema import init_schema

__all__ = [
    "AbstractAggregateStore",
    "AggregateStore",
    "CheckpointStore",
    "PostgresAggregateStore",
    "UnitOfWork",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
    "init_schema",
]

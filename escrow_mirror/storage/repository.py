"""
PostgreSQL implementation of the aggregate store.

Each unit of work borrows one pooled connection and wraps it in a single
transaction. Any driver error rolls the transaction back and is re-raised as
`StorageError`, so a batch is either fully materialized (checkpoint included)
or not at all.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from escrow_mirror.domain.models import AGENT_COUNTERS, AgentCounter, Job, Settlement
from escrow_mirror.errors import StorageError
from escrow_mirror.storage.base import AbstractAggregateStore
from escrow_mirror.storage.checkpoint import CheckpointStore

_JOB_COLUMNS = (
    "job_id, client, provider, amount, deadline, created_block, created_log_index, "
    "accepted, completed, settlement, created_tx, accepted_tx, completed_tx, "
    "released_tx, refunded_tx"
)


def _job_from_row(row: Dict[str, Any]) -> Job:
    return Job(
        job_id=row["job_id"],
        client=row["client"],
        provider=row["provider"],
        amount=int(row["amount"]),
        deadline=int(row["deadline"]),
        created_block=int(row["created_block"]),
        created_log_index=int(row["created_log_index"]),
        accepted=row["accepted"],
        completed=row["completed"],
        settlement=Settlement(row["settlement"]),
        created_tx=row["created_tx"],
        accepted_tx=row["accepted_tx"],
        completed_tx=row["completed_tx"],
        released_tx=row["released_tx"],
        refunded_tx=row["refunded_tx"],
    )


class PostgresUnitOfWork:
    """Aggregate reads and writes bound to one open transaction."""

    def __init__(self, conn: psycopg.Connection, checkpoints: CheckpointStore) -> None:
        self._conn = conn
        self._checkpoints = checkpoints

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = %s;", (job_id,))
            row = cur.fetchone()
        return _job_from_row(row) if row else None

    def insert_job(self, job: Job) -> bool:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO jobs (job_id, client, provider, amount, deadline,
                                  created_block, created_log_index, created_tx)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (job_id) DO NOTHING;
                """,
                (
                    job.job_id,
                    job.client,
                    job.provider,
                    job.amount,
                    job.deadline,
                    job.created_block,
                    job.created_log_index,
                    job.created_tx,
                ),
            )
            return cur.rowcount == 1

    def save_job(self, job: Job) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                UPDATE jobs
                SET accepted = %s, completed = %s, settlement = %s,
                    accepted_tx = %s, completed_tx = %s, released_tx = %s, refunded_tx = %s
                WHERE job_id = %s;
                """,
                (
                    job.accepted,
                    job.completed,
                    job.settlement.value,
                    job.accepted_tx,
                    job.completed_tx,
                    job.released_tx,
                    job.refunded_tx,
                    job.job_id,
                ),
            )

    def ensure_agent(self, address: str) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                "INSERT INTO agents (address) VALUES (%s) ON CONFLICT (address) DO NOTHING;",
                (address,),
            )

    def increment_agent(self, address: str, counter: AgentCounter) -> None:
        if counter not in AGENT_COUNTERS:
            raise ValueError(f"Unknown agent counter '{counter}'")
        query = sql.SQL(
            """
            INSERT INTO agents (address, {col}, updated_at) VALUES (%s, 1, now())
            ON CONFLICT (address) DO UPDATE
            SET {col} = agents.{col} + 1, updated_at = now();
            """
        ).format(col=sql.Identifier(counter))
        with self._conn.cursor() as cur:
            cur.execute(query, (address,))

    def add_volume(self, address: str, amount: int) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO agents (address, volume_settled, updated_at) VALUES (%s, %s, now())
                ON CONFLICT (address) DO UPDATE
                SET volume_settled = agents.volume_settled + EXCLUDED.volume_settled,
                    updated_at = now();
                """,
                (address, amount),
            )

    def load_checkpoint(self) -> Optional[int]:
        return self._checkpoints.load(self._conn)

    def advance_checkpoint(self, position: int) -> None:
        self._checkpoints.store(self._conn, position)


class PostgresAggregateStore(AbstractAggregateStore):
    """
    Aggregate store backed by a psycopg connection pool.

    Parameters
    ----------
    pool : ConnectionPool
        Pool to borrow connections from (see `storage.db_factory.get_sync_pool`).
    stream : str
        Checkpoint key for this ingestion stream.
    """

    def __init__(self, pool: ConnectionPool, stream: str = "escrow") -> None:
        self._pool = pool
        self.checkpoints = CheckpointStore(stream)

    @contextmanager
    def unit_of_work(self) -> Generator[PostgresUnitOfWork, None, None]:
        try:
            with self._pool.connection() as conn:
                with conn.transaction():
                    yield PostgresUnitOfWork(conn, self.checkpoints)
        except psycopg.Error as exc:
            raise StorageError(f"Aggregate store transaction failed: {exc}") from exc


__all__ = ["PostgresAggregateStore", "PostgresUnitOfWork"]

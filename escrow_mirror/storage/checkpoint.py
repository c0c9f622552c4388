"""
Checkpoint store: the highest ledger block fully applied to the aggregates.

Both operations take the caller's connection so that the checkpoint write
commits in the same transaction as the batch it describes.
"""

from __future__ import annotations

from typing import Optional

import psycopg


class CheckpointStore:
    """
    Persist one checkpoint per stream in the `ingest_checkpoint` table.

    Parameters
    ----------
    stream : str
        Checkpoint key, normally the escrow contract address.
    """

    def __init__(self, stream: str = "escrow") -> None:
        self.stream = stream

    def load(self, conn: psycopg.Connection) -> Optional[int]:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT position FROM ingest_checkpoint WHERE stream = %s;",
                (self.stream,),
            )
            row = cur.fetchone()
        return int(row[0]) if row else None

    def store(self, conn: psycopg.Connection, position: int) -> None:
        """Record `position`; an older value than the stored one is ignored."""
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO ingest_checkpoint (stream, position, updated_at)
                VALUES (%s, %s, now())
                ON CONFLICT (stream) DO UPDATE
                SET position = GREATEST(ingest_checkpoint.position, EXCLUDED.position),
                    updated_at = now();
                """,
                (self.stream, position),
            )


__all__ = ["CheckpointStore"]

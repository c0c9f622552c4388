"""
PostgreSQL schema for the materialized escrow view.

`init_schema` is idempotent and safe to run at every start. The `released`
column is generated from `settlement` so flag-based readers keep working while
the settlement outcome has a single source of truth.
"""

from __future__ import annotations

import psycopg

from escrow_mirror.utils.logging import get_logger

log = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id            TEXT PRIMARY KEY,
    client            TEXT NOT NULL,
    provider          TEXT NOT NULL,
    amount            NUMERIC(78, 0) NOT NULL,
    deadline          NUMERIC(78, 0) NOT NULL,
    created_block     BIGINT NOT NULL,
    created_log_index INTEGER NOT NULL DEFAULT 0,
    accepted          BOOLEAN NOT NULL DEFAULT FALSE,
    completed         BOOLEAN NOT NULL DEFAULT FALSE,
    settlement        TEXT NOT NULL DEFAULT 'unsettled'
                      CHECK (settlement IN ('unsettled', 'released', 'refunded')),
    released          BOOLEAN GENERATED ALWAYS AS (settlement <> 'unsettled') STORED,
    created_tx        TEXT NOT NULL,
    accepted_tx       TEXT,
    completed_tx      TEXT,
    released_tx       TEXT,
    refunded_tx       TEXT
);

-- deadline is a uint256 like amount; widen tables created with BIGINT.
ALTER TABLE jobs ALTER COLUMN deadline TYPE NUMERIC(78, 0);

CREATE INDEX IF NOT EXISTS idx_jobs_created_position
    ON jobs (created_block DESC, created_log_index DESC);

CREATE TABLE IF NOT EXISTS agents (
    address         TEXT PRIMARY KEY,
    jobs_created    BIGINT NOT NULL DEFAULT 0,
    jobs_accepted   BIGINT NOT NULL DEFAULT 0,
    jobs_completed  BIGINT NOT NULL DEFAULT 0,
    jobs_refunded   BIGINT NOT NULL DEFAULT 0,
    volume_settled  NUMERIC(78, 0) NOT NULL DEFAULT 0,
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS ingest_checkpoint (
    stream      TEXT PRIMARY KEY,
    position    BIGINT NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

TABLES = ("jobs", "agents", "ingest_checkpoint")


def init_schema(conn: psycopg.Connection) -> None:
    """Create tables and indexes if they do not exist, then commit."""
    with conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
    conn.commit()
    log.info("Schema ready", extra={"tables": list(TABLES)})


__all__ = ["SCHEMA_SQL", "TABLES", "init_schema"]

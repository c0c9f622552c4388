"""
Read surface: read-only snapshot queries over the materialized aggregates.

Consumers (the monitor summary, the JSON export) read through this module and
never touch the ingester. Queries run on their own read-only connection and
see whatever the ingester has committed so far; there is no stronger isolation.

Job status is derived here from the stored flags, never stored itself.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, localcontext
from typing import Any, Callable, Dict, List, Literal, Optional

import psycopg
from psycopg.rows import dict_row
from pydantic import BaseModel, Field

from escrow_mirror.config import Settings, get_settings
from escrow_mirror.domain.ids import short_id

JobStatus = Literal["released", "refunded", "completed", "accepted", "pending"]


def derive_status(accepted: bool, completed: bool, released: bool) -> JobStatus:
    """Presentation status of a job from its lifecycle flags."""
    if released and completed:
        return "released"
    if released and not completed:
        return "refunded"
    if completed and not released:
        return "completed"
    if accepted and not completed:
        return "accepted"
    return "pending"


def to_token_units(base_units: int, decimals: int) -> str:
    """Exact decimal rendering of a base-unit amount (`5000000`, 6 -> `"5"`)."""
    # uint256 needs 78 digits; the default context keeps 28.
    with localcontext() as ctx:
        ctx.prec = 100
        value = Decimal(base_units).scaleb(-decimals)
        return format(value.normalize() if value else Decimal(0), "f")


def _success_rate(completed: int, refunded: int) -> Optional[float]:
    denominator = completed + refunded
    return completed / denominator if denominator > 0 else None


_FROZEN = {"frozen": True}


class NetworkInfo(BaseModel):
    name: str
    chain_id: int
    explorer: str
    escrow_address: Optional[str] = None
    escrow_url: Optional[str] = None
    token_decimals: int

    model_config = _FROZEN


class Overview(BaseModel):
    jobs_total: int
    jobs_completed: int
    jobs_settled: int
    jobs_refunded: int
    active_providers: int
    volume_settled: int = Field(..., description="Base units.")
    volume_settled_display: str
    success_rate: Optional[float] = None
    checkpoint: Optional[int] = None

    model_config = _FROZEN


class ProviderRank(BaseModel):
    rank: int
    provider: str
    provider_short: str
    completed: int
    refunded: int
    volume_settled: int
    volume_settled_display: str
    success_rate: Optional[float] = None

    model_config = _FROZEN


class RecentJob(BaseModel):
    job_id: str
    job_short: str
    client: str
    client_short: str
    provider: str
    provider_short: str
    amount: int
    amount_display: str
    status: JobStatus
    tx_hash: Optional[str] = None
    tx_url: Optional[str] = None

    model_config = _FROZEN


class Snapshot(BaseModel):
    """Export structure handed to formatting collaborators."""

    generated_at: datetime
    network: NetworkInfo
    overview: Overview
    top_providers: List[ProviderRank]
    recent_jobs: List[RecentJob]

    model_config = _FROZEN


def _recent_job_from_row(row: Dict[str, Any], explorer: str, decimals: int) -> RecentJob:
    tx = (
        row["released_tx"]
        or row["refunded_tx"]
        or row["completed_tx"]
        or row["accepted_tx"]
        or row["created_tx"]
    )
    amount = int(row["amount"])
    return RecentJob(
        job_id=row["job_id"],
        job_short=short_id(row["job_id"], head=8, tail=0),
        client=row["client"],
        client_short=short_id(row["client"]),
        provider=row["provider"],
        provider_short=short_id(row["provider"]),
        amount=amount,
        amount_display=to_token_units(amount, decimals),
        status=derive_status(row["accepted"], row["completed"], row["released"]),
        tx_hash=tx,
        tx_url=f"{explorer}/tx/{tx}" if tx else None,
    )


def _provider_from_row(rank: int, row: Dict[str, Any], decimals: int) -> ProviderRank:
    volume = int(row["volume_settled"])
    return ProviderRank(
        rank=rank,
        provider=row["address"],
        provider_short=short_id(row["address"]),
        completed=int(row["jobs_completed"]),
        refunded=int(row["jobs_refunded"]),
        volume_settled=volume,
        volume_settled_display=to_token_units(volume, decimals),
        success_rate=_success_rate(int(row["jobs_completed"]), int(row["jobs_refunded"])),
    )


class ReadSurface:
    """
    Aggregation queries over the `jobs` and `agents` tables.

    Parameters
    ----------
    connect : callable
        Returns a new psycopg connection (see `storage.db_factory.get_sync_connection`).
    settings : Settings, optional
        Source of network metadata and token decimals.
    """

    def __init__(
        self,
        connect: Callable[[], psycopg.Connection],
        settings: Optional[Settings] = None,
    ) -> None:
        self._connect = connect
        self._settings = settings or get_settings()

    def _query(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            conn.read_only = True
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    def overview(self) -> Overview:
        (row,) = self._query(
            """
            SELECT
                (SELECT count(*) FROM jobs) AS jobs_total,
                (SELECT count(*) FROM jobs WHERE completed) AS jobs_completed,
                (SELECT count(*) FROM jobs WHERE released) AS jobs_settled,
                (SELECT count(*) FROM jobs WHERE released AND NOT completed) AS jobs_refunded,
                (SELECT count(*) FROM agents WHERE jobs_completed > 0) AS active_providers,
                (SELECT coalesce(sum(volume_settled), 0) FROM agents) AS volume_settled,
                (SELECT position FROM ingest_checkpoint WHERE stream = %s) AS checkpoint;
            """,
            (self._settings.checkpoint_stream,),
        )
        completed = int(row["jobs_completed"])
        refunded = int(row["jobs_refunded"])
        volume = int(row["volume_settled"])
        return Overview(
            jobs_total=int(row["jobs_total"]),
            jobs_completed=completed,
            jobs_settled=int(row["jobs_settled"]),
            jobs_refunded=refunded,
            active_providers=int(row["active_providers"]),
            volume_settled=volume,
            volume_settled_display=to_token_units(volume, self._settings.token_decimals),
            success_rate=_success_rate(completed, refunded),
            checkpoint=row["checkpoint"],
        )

    def top_providers(self, limit: int = 25) -> List[ProviderRank]:
        rows = self._query(
            """
            SELECT address, jobs_completed, jobs_refunded, volume_settled
            FROM agents
            WHERE jobs_completed > 0
            ORDER BY jobs_completed DESC, volume_settled DESC, address
            LIMIT %s;
            """,
            (limit,),
        )
        return [
            _provider_from_row(idx, row, self._settings.token_decimals)
            for idx, row in enumerate(rows, start=1)
        ]

    def recent_jobs(self, limit: int = 50) -> List[RecentJob]:
        rows = self._query(
            """
            SELECT job_id, client, provider, amount, accepted, completed, released,
                   created_tx, accepted_tx, completed_tx, released_tx, refunded_tx
            FROM jobs
            ORDER BY created_block DESC, created_log_index DESC
            LIMIT %s;
            """,
            (limit,),
        )
        explorer = self._settings.explorer_url.rstrip("/")
        return [
            _recent_job_from_row(row, explorer, self._settings.token_decimals) for row in rows
        ]

    def network(self) -> NetworkInfo:
        settings = self._settings
        explorer = settings.explorer_url.rstrip("/")
        escrow = settings.escrow_address
        return NetworkInfo(
            name=settings.network_name,
            chain_id=settings.chain_id,
            explorer=explorer,
            escrow_address=escrow,
            escrow_url=f"{explorer}/address/{escrow}" if escrow else None,
            token_decimals=settings.token_decimals,
        )

    def snapshot(self, top_n: Optional[int] = None, recent_n: Optional[int] = None) -> Snapshot:
        return Snapshot(
            generated_at=datetime.now(timezone.utc),
            network=self.network(),
            overview=self.overview(),
            top_providers=self.top_providers(top_n or self._settings.top_providers_limit),
            recent_jobs=self.recent_jobs(recent_n or self._settings.recent_jobs_limit),
        )


__all__ = [
    "JobStatus",
    "NetworkInfo",
    "Overview",
    "ProviderRank",
    "ReadSurface",
    "RecentJob",
    "Snapshot",
    "derive_status",
    "to_token_units",
]

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path
from typing import Optional

import typer

from escrow_mirror.config import Settings, get_settings
from escrow_mirror.domain.ids import derive_job_id
from escrow_mirror.errors import DecodeError
from escrow_mirror.ingestion.ingester import Ingester
from escrow_mirror.ingestion.source import JsonRpcEventSource
from escrow_mirror.reporting.export import write_snapshot
from escrow_mirror.reporting.read_surface import ReadSurface
from escrow_mirror.reporting.reporter import format_status_line, print_summary
from escrow_mirror.storage.db_factory import get_sync_connection, get_sync_pool
from escrow_mirror.storage.repository import PostgresAggregateStore
from escrow_mirror.storage.schema import init_schema
from escrow_mirror.utils.logging import configure_logging, get_logger

app = typer.Typer(help="Escrow marketplace mirror CLI.")
log = get_logger(__name__)


def _setup(settings: Settings) -> None:
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"rpc={settings.rpc_url} escrow={settings.escrow_address or '-'} "
        f"start_block={settings.start_block} confirmations={settings.confirmations} "
        f"poll={settings.poll_interval_seconds}s range={settings.max_block_range}"
    )


@app.command("init-db")
def init_db() -> None:
    """
    Create the jobs, agents and checkpoint tables if missing.
    """
    settings = get_settings()
    _setup(settings)
    with get_sync_connection() as conn:
        init_schema(conn)
    typer.echo(f"Schema ready in {settings.db_name}.")


async def _run_ingester(
    settings: Settings,
    store: PostgresAggregateStore,
    start_block: Optional[int],
    max_polls: Optional[int],
) -> None:
    async with JsonRpcEventSource(
        settings.rpc_url, settings.escrow_address, timeout=settings.rpc_timeout_seconds
    ) as source:
        ingester = Ingester.from_settings(source, store, settings)
        await ingester.run(start_block=start_block, max_polls=max_polls)


@app.command()
def ingest(
    start_block: Optional[int] = typer.Option(
        None,
        "--start-block",
        "-s",
        help="Backfill from this block before tailing (default from START_BLOCK).",
    ),
    max_polls: Optional[int] = typer.Option(
        None,
        "--max-polls",
        help="Stop after this many live polls (default: run forever).",
    ),
) -> None:
    """
    Backfill (optional) and then tail escrow events into the local store.
    """
    settings = get_settings()
    _setup(settings)
    if not settings.escrow_address:
        typer.echo("Set ESCROW_ADDRESS to the escrow contract address.", err=True)
        raise typer.Exit(code=2)

    if settings.confirmations == 0:
        log.warning(
            "CONFIRMATIONS=0: events are applied at the chain head and never rolled back; "
            "set a confirmation depth if the ledger can reorganize recent blocks"
        )

    with get_sync_connection() as conn:
        init_schema(conn)
    pool = get_sync_pool(min_size=settings.db_pool_min_size, max_size=settings.db_pool_max_size)
    store = PostgresAggregateStore(pool, stream=settings.checkpoint_stream)
    backfill_from = start_block if start_block is not None else settings.start_block

    log.info(
        "[INGEST START]",
        extra={
            "escrow_address": settings.escrow_address,
            "start_block": backfill_from,
            "confirmations": settings.confirmations,
        },
    )
    try:
        asyncio.run(_run_ingester(settings, store, backfill_from, max_polls))
    except DecodeError as exc:
        log.critical(
            f"[INGEST ABORTED] event source does not look like the escrow contract: {exc}",
            extra={"kind": exc.kind, "tx": exc.tx_hash},
        )
        raise typer.Exit(code=1) from exc


@app.command()
def stats(
    watch: bool = typer.Option(
        False,
        "--watch",
        "-w",
        help="Print a summary every MONITOR_INTERVAL_SECONDS until interrupted.",
    ),
    top: int = typer.Option(3, "--top", "-t", help="Number of providers to list."),
) -> None:
    """
    Print the marketplace overview and provider leaderboard.
    """
    settings = get_settings()
    _setup(settings)
    surface = ReadSurface(get_sync_connection, settings)

    while True:
        overview = surface.overview()
        log.info(format_status_line(overview))
        print_summary(overview, surface.top_providers(top))
        if not watch:
            return
        time.sleep(settings.monitor_interval_seconds)


@app.command()
def export(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="JSON output path (default from EXPORT_PATH).",
    ),
) -> None:
    """
    Write a JSON snapshot (overview, top providers, recent jobs).
    """
    settings = get_settings()
    _setup(settings)
    surface = ReadSurface(get_sync_connection, settings)
    path = write_snapshot(surface.snapshot(), output or Path(settings.export_path))
    typer.echo(f"wrote: {path}")


@app.command("job-id")
def job_id(
    client: str = typer.Argument(..., help="Client address."),
    provider: str = typer.Argument(..., help="Provider address."),
    nonce: int = typer.Argument(..., help="Job nonce."),
) -> None:
    """
    Derive a job id: keccak256(packed(client, provider, nonce)).
    """
    try:
        typer.echo(derive_job_id(client, provider, nonce))
    except ValueError as exc:
        typer.echo(f"Invalid input: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()

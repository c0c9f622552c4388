"""
Synthetic escrow event generator for the escrow marketplace mirror.

Implements deterministic pseudo-random job lifecycles (created, accepted,
completed, released or refunded), emitted as JSON lines or applied straight into
PostgreSQL through the Materializer, for dashboard and export development
without a ledger.
"""

from __future__ import annotations

import random
import sys
import time
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

import typer
from psycopg_pool import ConnectionPool

from escrow_mirror.domain.ids import derive_job_id, keccak256, to_hex
from escrow_mirror.domain.models import (
    DomainEvent,
    JobAccepted,
    JobCompleted,
    JobCreated,
    JobRefunded,
    PaymentReleased,
    domain_event_adapter,
)
from escrow_mirror.ingestion.materializer import Materializer
from escrow_mirror.storage.base import AggregateStore
from escrow_mirror.storage.repository import PostgresAggregateStore

app = typer.Typer(help="Generate synthetic escrow events (JSON lines or direct apply).")

OUTCOMES = ("released", "refunded", "completed", "accepted", "pending")
OUTCOME_WEIGHTS = (6, 2, 1, 1, 1)
BASE_TIMESTAMP = 1_700_000_000
# Checkpoint key for generated loads; the ingester keys its own by contract address.
SYNTHETIC_STREAM = "synthetic"


def _address(rng: random.Random) -> str:
    return to_hex(bytes(rng.getrandbits(8) for _ in range(20)))


def _lifecycle(
    rng: random.Random, nonce: int, client: str, provider: str, block: int
) -> List[Tuple[int, DomainEvent]]:
    """One job's events, each paired with its block number (log index assigned later)."""
    job_id = derive_job_id(client, provider, nonce)
    outcome = rng.choices(OUTCOMES, weights=OUTCOME_WEIGHTS)[0]
    amount = rng.randint(1, 50) * 1_000_000
    deadline = BASE_TIMESTAMP + block * 2 + rng.randint(600, 7_200)

    def tx(kind: str) -> str:
        return to_hex(keccak256(f"{job_id}:{kind}".encode("ascii")))

    steps: List[Tuple[int, DomainEvent]] = []

    def add(event_cls, **fields) -> None:
        nonlocal block
        kind = event_cls.model_fields["kind"].default
        steps.append(
            (block, event_cls(job_id=job_id, block_number=block, log_index=0, tx_hash=tx(kind), **fields))
        )
        block += rng.randint(1, 5)

    add(JobCreated, client=client, provider=provider, amount=amount, deadline=deadline)
    if outcome == "pending":
        return steps
    if outcome == "refunded":
        if rng.random() < 0.5:
            add(JobAccepted)
        add(JobRefunded, client=client, amount=amount)
        return steps
    add(JobAccepted)
    if outcome == "accepted":
        return steps
    add(JobCompleted)
    if outcome == "released":
        add(PaymentReleased, provider=provider, amount=amount)
    return steps


def generate_events(jobs: int, seed: int = 42, agents: int = 10, start_block: int = 1) -> List[DomainEvent]:
    """
    Deterministically generate `jobs` lifecycles over a pool of `agents` addresses.

    Returns
    -------
    List[DomainEvent]
        Events in ledger order with unique `(block_number, log_index)` positions.
    """
    if agents < 2:
        raise ValueError("need at least two agents")
    rng = random.Random(seed)
    pool = [_address(rng) for _ in range(agents)]

    placed: List[Tuple[int, int, DomainEvent]] = []
    for nonce in range(1, jobs + 1):
        client, provider = rng.sample(pool, 2)
        first_block = start_block + rng.randint(0, max(jobs, 1) * 2)
        for block, event in _lifecycle(rng, nonce, client, provider, first_block):
            placed.append((block, len(placed), event))

    placed.sort(key=lambda item: (item[0], item[1]))
    next_index: Dict[int, int] = {}
    ordered: List[DomainEvent] = []
    for block, _, event in placed:
        log_index = next_index.get(block, 0)
        next_index[block] = log_index + 1
        ordered.append(event.model_copy(update={"log_index": log_index}))
    return ordered


def write_jsonl(events: Iterable[DomainEvent], path: Path) -> int:
    count = 0
    with path.open("w", encoding="utf-8") as f:
        for event in events:
            f.write(domain_event_adapter.dump_json(event).decode("utf-8"))
            f.write("\n")
            count += 1
    return count


def read_jsonl(path: Path) -> List[DomainEvent]:
    with path.open("r", encoding="utf-8") as f:
        return [domain_event_adapter.validate_json(line) for line in f if line.strip()]


def synthetic_store(pool: ConnectionPool) -> PostgresAggregateStore:
    """Aggregate store whose checkpoint never touches a real ingestion stream."""
    return PostgresAggregateStore(pool, stream=SYNTHETIC_STREAM)


def apply_in_batches(store: AggregateStore, events: List[DomainEvent], batch_size: int) -> int:
    """Materialize `events` in consecutive batches; returns the number of applied transitions."""
    materializer = Materializer(store)
    applied = 0
    for offset in range(0, len(events), batch_size):
        batch = events[offset : offset + batch_size]
        applied += materializer.apply(batch)["applied"]
    return applied


@app.command()
def main(
    jobs: int = typer.Option(100, "--jobs", "-j", help="Number of job lifecycles to generate."),
    agents: int = typer.Option(10, "--agents", "-a", help="Size of the address pool."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write events as JSON lines to this path.",
    ),
    apply: bool = typer.Option(
        False,
        "--apply",
        help="Materialize the events into the configured PostgreSQL database.",
    ),
    batch_size: int = typer.Option(500, "--batch-size", "-b", help="Events per applied batch."),
) -> None:
    """
    Generate synthetic escrow events and write and/or apply them.
    """
    start = time.perf_counter()
    events = generate_events(jobs, seed=seed, agents=agents)
    typer.echo(f"Generated {len(events):,} events for {jobs:,} jobs (seed={seed}).")

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        write_jsonl(events, output)
        typer.echo(f"Wrote {output}")

    if apply:
        from escrow_mirror.storage.db_factory import get_sync_connection, get_sync_pool
        from escrow_mirror.storage.schema import init_schema

        with get_sync_connection() as conn:
            init_schema(conn)
        store = synthetic_store(get_sync_pool())
        applied = apply_in_batches(store, events, batch_size)
        typer.echo(f"Applied {applied:,} transitions.")

    typer.echo(f"Done in {time.perf_counter() - start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)

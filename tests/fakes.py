"""
In-memory test doubles for the aggregate store and the event source.

`MemoryStore` mirrors the transactional contract of the PostgreSQL store: a
unit of work stages changes on a copy and only publishes them when the block
exits cleanly. `fail_after_writes` makes the N+1th write of a unit of work
raise `StorageError`, to simulate a storage failure mid-batch.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Generator, List, Optional, Tuple

from escrow_mirror.domain.models import AGENT_COUNTERS, Agent, AgentCounter, DomainEvent, EventKind, Job
from escrow_mirror.errors import EventSourceError, StorageError
from escrow_mirror.ingestion.decoder import encode_log
from escrow_mirror.ingestion.source import RawEvent
from escrow_mirror.storage.base import AbstractAggregateStore


def addr(n: int) -> str:
    return "0x" + f"{n:040x}"


def jid(n: int) -> str:
    return "0x" + f"{n:064x}"


def txh(n: int) -> str:
    return "0x" + f"{n:064x}"


@dataclass
class _State:
    jobs: Dict[str, Job] = field(default_factory=dict)
    agents: Dict[str, Dict[str, int]] = field(default_factory=dict)
    checkpoint: Optional[int] = None


class MemoryUnitOfWork:
    def __init__(self, state: _State, fail_after_writes: Optional[int]) -> None:
        self._state = state
        self._fail_after = fail_after_writes
        self.writes = 0

    def _write(self) -> None:
        self.writes += 1
        if self._fail_after is not None and self.writes > self._fail_after:
            raise StorageError("simulated write failure")

    def _agent(self, address: str) -> Dict[str, int]:
        return self._state.agents.setdefault(
            address, {**{name: 0 for name in AGENT_COUNTERS}, "volume_settled": 0}
        )

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._state.jobs.get(job_id)

    def insert_job(self, job: Job) -> bool:
        self._write()
        if job.job_id in self._state.jobs:
            return False
        self._state.jobs[job.job_id] = job
        return True

    def save_job(self, job: Job) -> None:
        self._write()
        self._state.jobs[job.job_id] = job

    def ensure_agent(self, address: str) -> None:
        self._write()
        self._agent(address)

    def increment_agent(self, address: str, counter: AgentCounter) -> None:
        self._write()
        self._agent(address)[counter] += 1

    def add_volume(self, address: str, amount: int) -> None:
        self._write()
        self._agent(address)["volume_settled"] += amount

    def load_checkpoint(self) -> Optional[int]:
        return self._state.checkpoint

    def advance_checkpoint(self, position: int) -> None:
        self._write()
        current = self._state.checkpoint
        self._state.checkpoint = position if current is None else max(current, position)


class MemoryStore(AbstractAggregateStore):
    def __init__(self) -> None:
        self._state = _State()
        self.fail_after_writes: Optional[int] = None
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def unit_of_work(self) -> Generator[MemoryUnitOfWork, None, None]:
        staged = copy.deepcopy(self._state)
        uow = MemoryUnitOfWork(staged, self.fail_after_writes)
        try:
            yield uow
        except Exception:
            self.rollbacks += 1
            raise
        self._state = staged
        self.commits += 1

    @property
    def jobs(self) -> Dict[str, Job]:
        return dict(self._state.jobs)

    @property
    def checkpoint(self) -> Optional[int]:
        return self._state.checkpoint

    def agent(self, address: str) -> Agent:
        counters = self._state.agents.get(address)
        if counters is None:
            raise KeyError(address)
        return Agent(address=address, **counters)

    def agents(self) -> Dict[str, Agent]:
        return {address: self.agent(address) for address in self._state.agents}

    def dump(self) -> Tuple[Dict[str, dict], Dict[str, dict], Optional[int]]:
        """Comparable snapshot of every table."""
        return (
            {job_id: job.model_dump() for job_id, job in self._state.jobs.items()},
            copy.deepcopy(self._state.agents),
            self._state.checkpoint,
        )


class FakeEventSource:
    """
    Ledger stand-in serving encoded logs per kind.

    Logs are returned newest-first within each kind so callers that forget to
    sort would apply them out of order.
    """

    def __init__(self, tip: int = 0) -> None:
        self.tip = tip
        self.logs: Dict[EventKind, List[dict]] = {kind: [] for kind in EventKind}
        self.queries: List[Tuple[EventKind, int, int]] = []
        self.tip_failures = 0
        self.query_failures = 0

    def add(self, *events: DomainEvent) -> None:
        for event in events:
            self.logs[EventKind(event.kind)].append(encode_log(event))
            self.tip = max(self.tip, event.block_number)

    def add_raw(self, kind: EventKind, log: dict) -> None:
        self.logs[kind].append(log)

    async def get_tip(self) -> int:
        if self.tip_failures:
            self.tip_failures -= 1
            raise EventSourceError("simulated eth_blockNumber timeout")
        return self.tip

    async def query_events(self, kind: EventKind, from_block: int, to_block: int) -> List[RawEvent]:
        self.queries.append((kind, from_block, to_block))
        if self.query_failures:
            self.query_failures -= 1
            raise EventSourceError("simulated eth_getLogs failure")
        matching = [
            log
            for log in self.logs[kind]
            if from_block <= int(log["blockNumber"], 16) <= to_block
        ]
        return [RawEvent(kind=kind, log=log) for log in reversed(matching)]

"""
Aggregate store interfaces.

The materializer talks to storage only through these protocols so the transition
rules stay independent of the database driver. A `UnitOfWork` is one durability
unit: everything written through it commits together or not at all.
"""

from __future__ import annotations

import abc
from contextlib import AbstractContextManager
from typing import Optional, Protocol, runtime_checkable

from escrow_mirror.domain.models import AgentCounter, Job


@runtime_checkable
class UnitOfWork(Protocol):
    """
    Transactional view of the aggregate store.

    Reads observe writes made earlier in the same unit of work.
    """

    def get_job(self, job_id: str) -> Optional[Job]:
        ...

    def insert_job(self, job: Job) -> bool:
        """Insert a job row unless one exists. Returns True if a row was inserted."""
        ...

    def save_job(self, job: Job) -> None:
        """Persist the lifecycle columns of an existing job."""
        ...

    def ensure_agent(self, address: str) -> None:
        """Create the agent row with zeroed counters if absent."""
        ...

    def increment_agent(self, address: str, counter: AgentCounter) -> None:
        ...

    def add_volume(self, address: str, amount: int) -> None:
        ...

    def load_checkpoint(self) -> Optional[int]:
        ...

    def advance_checkpoint(self, position: int) -> None:
        """Move the checkpoint forward to `position`; never moves it backward."""
        ...


@runtime_checkable
class AggregateStore(Protocol):
    """Factory for units of work plus the startup checkpoint read."""

    def unit_of_work(self) -> AbstractContextManager[UnitOfWork]:
        ...

    def load_checkpoint(self) -> Optional[int]:
        ...


class AbstractAggregateStore(abc.ABC):
    """
    Optional ABC helper for class-based stores.

    `load_checkpoint` defaults to a short read-only unit of work.
    """

    @abc.abstractmethod
    def unit_of_work(self) -> AbstractContextManager[UnitOfWork]:  # pragma: no cover - interface only
        raise NotImplementedError

    def load_checkpoint(self) -> Optional[int]:
        with self.unit_of_work() as uow:
            return uow.load_checkpoint()


__all__ = ["AbstractAggregateStore", "AggregateStore", "UnitOfWork"]

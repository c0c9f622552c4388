"""
Materializer: applies ordered batches of domain events to the Job and Agent aggregates.

Every transition is guarded by the current job state, so re-applying an event
(overlapping ranges after a restart, a duplicate log) is a no-op rather than a
double count. The guards are the only idempotency mechanism; no event ids are
stored.

A batch and its checkpoint advance share one unit of work. If any write fails
the whole batch rolls back and the checkpoint stays where it was.
"""

from __future__ import annotations

from collections import Counter
from typing import Callable, Dict, Optional, Sequence, TypedDict

from escrow_mirror.domain.models import (
    DomainEvent,
    EventKind,
    Job,
    JobAccepted,
    JobCompleted,
    JobCreated,
    JobRefunded,
    PaymentReleased,
    Settlement,
)
from escrow_mirror.storage.base import AggregateStore, UnitOfWork
from escrow_mirror.utils.logging import get_logger

log = get_logger(__name__)


class ApplyResult(TypedDict, total=False):
    """Outcome of one `Materializer.apply` call."""

    events: int
    applied: int
    skipped: int
    checkpoint: Optional[int]
    by_kind: Dict[str, int]


def _on_created(uow: UnitOfWork, event: JobCreated) -> bool:
    if not uow.insert_job(Job.from_created(event)):
        return False
    uow.ensure_agent(event.client)
    uow.ensure_agent(event.provider)
    uow.increment_agent(event.client, "jobs_created")
    return True


def _on_accepted(uow: UnitOfWork, event: JobAccepted) -> bool:
    job = uow.get_job(event.job_id)
    if job is None or job.accepted or job.settled:
        return False
    uow.save_job(job.model_copy(update={"accepted": True, "accepted_tx": event.tx_hash}))
    uow.increment_agent(job.provider, "jobs_accepted")
    return True


def _on_completed(uow: UnitOfWork, event: JobCompleted) -> bool:
    job = uow.get_job(event.job_id)
    if job is None or not job.accepted or job.completed or job.settled:
        return False
    uow.save_job(job.model_copy(update={"completed": True, "completed_tx": event.tx_hash}))
    return True


def _on_released(uow: UnitOfWork, event: PaymentReleased) -> bool:
    job = uow.get_job(event.job_id)
    if job is None or not job.completed or job.settled:
        return False
    uow.save_job(
        job.model_copy(update={"settlement": Settlement.RELEASED, "released_tx": event.tx_hash})
    )
    uow.ensure_agent(event.provider)
    uow.increment_agent(event.provider, "jobs_completed")
    uow.add_volume(event.provider, event.amount)
    return True


def _on_refunded(uow: UnitOfWork, event: JobRefunded) -> bool:
    job = uow.get_job(event.job_id)
    if job is None or job.completed or job.settled:
        return False
    uow.save_job(
        job.model_copy(update={"settlement": Settlement.REFUNDED, "refunded_tx": event.tx_hash})
    )
    uow.ensure_agent(event.client)
    uow.increment_agent(event.client, "jobs_refunded")
    return True


_HANDLERS: Dict[EventKind, Callable[[UnitOfWork, DomainEvent], bool]] = {
    EventKind.JOB_CREATED: _on_created,
    EventKind.JOB_ACCEPTED: _on_accepted,
    EventKind.JOB_COMPLETED: _on_completed,
    EventKind.PAYMENT_RELEASED: _on_released,
    EventKind.JOB_REFUNDED: _on_refunded,
}


class Materializer:
    """
    Apply domain events to an aggregate store.

    Parameters
    ----------
    store : AggregateStore
        Transactional store holding jobs, agents and the checkpoint.
    """

    def __init__(self, store: AggregateStore) -> None:
        self._store = store

    def apply(self, batch: Sequence[DomainEvent], through: Optional[int] = None) -> ApplyResult:
        """
        Apply `batch` in the given order and advance the checkpoint.

        Parameters
        ----------
        batch : Sequence[DomainEvent]
            Events sorted ascending by `(block_number, log_index)`. The order is
            used as-is; events whose preconditions do not hold are skipped.
        through : int, optional
            Last block the batch covers. Lets an empty range still move the
            checkpoint forward.

        Returns
        -------
        ApplyResult
            Event counts and the checkpoint written (None if nothing was written).

        Raises
        ------
        StorageError
            If the store rejects any write; nothing from the batch is kept.
        """
        positions = [event.block_number for event in batch]
        if through is not None:
            positions.append(through)
        checkpoint = max(positions) if positions else None

        applied: Counter = Counter()
        skipped = 0
        with self._store.unit_of_work() as uow:
            for event in batch:
                kind = EventKind(event.kind)
                if _HANDLERS[kind](uow, event):
                    applied[kind.value] += 1
                else:
                    skipped += 1
                    log.debug(
                        "Transition skipped",
                        extra={"kind": kind.value, "job_id": event.job_id, "tx": event.tx_hash},
                    )
            if checkpoint is not None:
                uow.advance_checkpoint(checkpoint)

        result = ApplyResult(
            events=len(batch),
            applied=sum(applied.values()),
            skipped=skipped,
            checkpoint=checkpoint,
            by_kind=dict(applied),
        )
        if batch:
            log.info(
                f"[BATCH APPLIED] {result['applied']}/{result['events']} events",
                extra={"applied": result["applied"], "skipped": skipped, "checkpoint": checkpoint},
            )
        return result


__all__ = ["ApplyResult", "Materializer"]

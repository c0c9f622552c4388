"""
Domain models for the escrow marketplace mirror.

Defines the five decoded ledger events and the two materialized aggregates
(`Job`, `Agent`). All models are frozen; the materializer derives a new `Job`
for every transition instead of mutating rows in place.

Amounts are exact integers in the token's smallest unit. Identifiers are
lowercase `0x`-prefixed hex strings (32 bytes for job ids and transaction
hashes, 20 bytes for addresses).
"""
from __future__ import annotations

import enum
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter

JOB_ID_PATTERN = r"^0x[0-9a-f]{64}$"
ADDRESS_PATTERN = r"^0x[0-9a-f]{40}$"
TX_HASH_PATTERN = r"^0x[0-9a-f]{64}$"


class EventKind(str, enum.Enum):
    """Escrow contract events the mirror consumes."""

    JOB_CREATED = "JobCreated"
    JOB_ACCEPTED = "JobAccepted"
    JOB_COMPLETED = "JobCompleted"
    PAYMENT_RELEASED = "PaymentReleased"
    JOB_REFUNDED = "JobRefunded"


class Settlement(str, enum.Enum):
    """
    Terminal state of a job.

    A job is settled exactly once, either by paying the provider (`RELEASED`)
    or by refunding the client after expiry (`REFUNDED`).
    """

    UNSETTLED = "unsettled"
    RELEASED = "released"
    REFUNDED = "refunded"


_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "arbitrary_types_allowed": False,
}


class _LedgerEvent(BaseModel):
    job_id: str = Field(..., pattern=JOB_ID_PATTERN, description="bytes32 job identifier.")
    block_number: int = Field(..., ge=0, description="Block the log was emitted in.")
    log_index: int = Field(..., ge=0, description="Position of the log within its block.")
    tx_hash: str = Field(..., pattern=TX_HASH_PATTERN, description="Emitting transaction.")

    model_config = _FROZEN

    @property
    def order_key(self) -> Tuple[int, int]:
        """Total causal order of ledger events."""
        return (self.block_number, self.log_index)


class JobCreated(_LedgerEvent):
    kind: Literal["JobCreated"] = "JobCreated"
    client: str = Field(..., pattern=ADDRESS_PATTERN)
    provider: str = Field(..., pattern=ADDRESS_PATTERN)
    amount: int = Field(..., ge=0)
    deadline: int = Field(..., ge=0, description="Expiry as unix seconds.")


class JobAccepted(_LedgerEvent):
    kind: Literal["JobAccepted"] = "JobAccepted"


class JobCompleted(_LedgerEvent):
    kind: Literal["JobCompleted"] = "JobCompleted"


class PaymentReleased(_LedgerEvent):
    kind: Literal["PaymentReleased"] = "PaymentReleased"
    provider: str = Field(..., pattern=ADDRESS_PATTERN, description="Payee.")
    amount: int = Field(..., ge=0)


class JobRefunded(_LedgerEvent):
    kind: Literal["JobRefunded"] = "JobRefunded"
    client: str = Field(..., pattern=ADDRESS_PATTERN, description="Payee.")
    amount: int = Field(..., ge=0)


DomainEvent = Annotated[
    Union[JobCreated, JobAccepted, JobCompleted, PaymentReleased, JobRefunded],
    Field(discriminator="kind"),
]

domain_event_adapter: TypeAdapter[DomainEvent] = TypeAdapter(DomainEvent)


class Job(BaseModel):
    """
    Materialized state of one escrow job.

    `accepted` and `completed` only ever flip from False to True. `settlement`
    leaves `UNSETTLED` at most once; after that the job is frozen.
    """

    job_id: str = Field(..., pattern=JOB_ID_PATTERN)
    client: str = Field(..., pattern=ADDRESS_PATTERN)
    provider: str = Field(..., pattern=ADDRESS_PATTERN)
    amount: int = Field(..., ge=0)
    deadline: int = Field(..., ge=0)
    created_block: int = Field(..., ge=0)
    created_log_index: int = Field(0, ge=0)
    accepted: bool = False
    completed: bool = False
    settlement: Settlement = Settlement.UNSETTLED
    created_tx: str
    accepted_tx: Optional[str] = None
    completed_tx: Optional[str] = None
    released_tx: Optional[str] = None
    refunded_tx: Optional[str] = None

    model_config = _FROZEN

    @property
    def released(self) -> bool:
        """Settled by either path; kept for the flag-based reporting schema."""
        return self.settlement is not Settlement.UNSETTLED

    @property
    def settled(self) -> bool:
        return self.released

    @classmethod
    def from_created(cls, event: JobCreated) -> "Job":
        return cls(
            job_id=event.job_id,
            client=event.client,
            provider=event.provider,
            amount=event.amount,
            deadline=event.deadline,
            created_block=event.block_number,
            created_log_index=event.log_index,
            created_tx=event.tx_hash,
        )


class Agent(BaseModel):
    """Role-agnostic counters for one participant address."""

    address: str = Field(..., pattern=ADDRESS_PATTERN)
    jobs_created: int = 0
    jobs_accepted: int = 0
    jobs_completed: int = 0
    jobs_refunded: int = 0
    volume_settled: int = 0

    model_config = _FROZEN


AgentCounter = Literal["jobs_created", "jobs_accepted", "jobs_completed", "jobs_refunded"]
AGENT_COUNTERS: Tuple[AgentCounter, ...] = (
    "jobs_created",
    "jobs_accepted",
    "jobs_completed",
    "jobs_refunded",
)


__all__ = [
    "AGENT_COUNTERS",
    "Agent",
    "AgentCounter",
    "DomainEvent",
    "EventKind",
    "Job",
    "JobAccepted",
    "JobCompleted",
    "JobCreated",
    "JobRefunded",
    "PaymentReleased",
    "Settlement",
    "domain_event_adapter",
]

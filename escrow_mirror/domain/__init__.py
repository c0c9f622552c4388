"""
Domain package for the escrow marketplace mirror.

Exports the decoded ledger events and the materialized aggregates. Keep this
package focused on data definitions and validation concerns.
"""

from escrow_mirror.domain.models import (
    Agent,
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

__all__ = [
    "Agent",
    "DomainEvent",
    "EventKind",
    "Job",
    "JobAccepted",
    "JobCompleted",
    "JobCreated",
    "JobRefunded",
    "PaymentReleased",
    "Settlement",
]

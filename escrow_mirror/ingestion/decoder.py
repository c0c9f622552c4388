"""
Event decoder: turns raw `eth_getLogs` entries into typed domain events.

Layout of the escrow contract's events (indexed parameters travel in topics,
the rest in 32-byte data words):

    JobCreated(bytes32 indexed jobId, address indexed client,
               address indexed provider, uint256 amount, uint256 deadline)
    JobAccepted(bytes32 indexed jobId)
    JobCompleted(bytes32 indexed jobId)
    PaymentReleased(bytes32 indexed jobId, address indexed provider, uint256 amount)
    JobRefunded(bytes32 indexed jobId, address indexed client, uint256 amount)

Decoding is strict. A log that does not match its kind's layout means the
source is not the expected contract, so the decoder raises `DecodeError`
rather than guessing.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Mapping, Tuple

from escrow_mirror.domain.ids import keccak256, parse_hex, to_hex
from escrow_mirror.domain.models import (
    DomainEvent,
    EventKind,
    JobAccepted,
    JobCompleted,
    JobCreated,
    JobRefunded,
    PaymentReleased,
)
from escrow_mirror.errors import DecodeError

EVENT_SIGNATURES: Dict[EventKind, str] = {
    EventKind.JOB_CREATED: "JobCreated(bytes32,address,address,uint256,uint256)",
    EventKind.JOB_ACCEPTED: "JobAccepted(bytes32)",
    EventKind.JOB_COMPLETED: "JobCompleted(bytes32)",
    EventKind.PAYMENT_RELEASED: "PaymentReleased(bytes32,address,uint256)",
    EventKind.JOB_REFUNDED: "JobRefunded(bytes32,address,uint256)",
}

# (indexed params after topic0, non-indexed 32-byte words)
_LAYOUTS: Dict[EventKind, Tuple[int, int]] = {
    EventKind.JOB_CREATED: (3, 2),
    EventKind.JOB_ACCEPTED: (1, 0),
    EventKind.JOB_COMPLETED: (1, 0),
    EventKind.PAYMENT_RELEASED: (2, 1),
    EventKind.JOB_REFUNDED: (2, 1),
}

_WORD = 32


@lru_cache(maxsize=None)
def event_topic(kind: EventKind) -> str:
    """topic0 of an event: keccak-256 of its canonical signature."""
    return to_hex(keccak256(EVENT_SIGNATURES[EventKind(kind)].encode("ascii")))


def _quantity(value: Any) -> int:
    if not isinstance(value, str):
        raise ValueError(f"expected hex quantity, got {value!r}")
    if not value[:2].lower() == "0x":
        raise ValueError(f"expected 0x-prefixed quantity, got {value!r}")
    return int(value, 16)


def _topic_address(topic: str) -> str:
    raw = parse_hex(topic, _WORD)
    if any(raw[:12]):
        raise ValueError(f"address topic has non-zero padding: {topic}")
    return to_hex(raw[12:])


def _words(data: bytes, count: int) -> List[int]:
    if len(data) != count * _WORD:
        raise ValueError(f"expected {count * _WORD} data bytes, got {len(data)}")
    return [int.from_bytes(data[i : i + _WORD], "big") for i in range(0, len(data), _WORD)]


def decode_event(kind: EventKind, log: Mapping[str, Any]) -> DomainEvent:
    """
    Decode one log entry queried for `kind`.

    Parameters
    ----------
    kind : EventKind
        Event the log was filtered for.
    log : Mapping[str, Any]
        A JSON-RPC log object.

    Returns
    -------
    DomainEvent
        The typed event, carrying block number, log index and transaction hash.

    Raises
    ------
    DecodeError
        If any field is missing, malformed, or inconsistent with the event ABI.
    """
    tx_hash = log.get("transactionHash") if isinstance(log, Mapping) else None
    try:
        kind = EventKind(kind)
        n_indexed, n_words = _LAYOUTS[kind]
        topics = log["topics"]
        if not isinstance(topics, list) or len(topics) != 1 + n_indexed:
            raise ValueError(f"expected {1 + n_indexed} topics, got {topics!r}")
        if str(topics[0]).lower() != event_topic(kind):
            raise ValueError(f"topic0 {topics[0]} is not {EVENT_SIGNATURES[kind]}")

        position = {
            "job_id": to_hex(parse_hex(topics[1], _WORD)),
            "block_number": _quantity(log["blockNumber"]),
            "log_index": _quantity(log["logIndex"]),
            "tx_hash": to_hex(parse_hex(log["transactionHash"], _WORD)),
        }
        words = _words(parse_hex(log["data"]), n_words)

        if kind is EventKind.JOB_CREATED:
            amount, deadline = words
            return JobCreated(
                **position,
                client=_topic_address(topics[2]),
                provider=_topic_address(topics[3]),
                amount=amount,
                deadline=deadline,
            )
        if kind is EventKind.JOB_ACCEPTED:
            return JobAccepted(**position)
        if kind is EventKind.JOB_COMPLETED:
            return JobCompleted(**position)
        if kind is EventKind.PAYMENT_RELEASED:
            return PaymentReleased(**position, provider=_topic_address(topics[2]), amount=words[0])
        return JobRefunded(**position, client=_topic_address(topics[2]), amount=words[0])
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError(
            f"Cannot decode {getattr(kind, 'value', kind)} log: {exc}",
            kind=getattr(kind, "value", str(kind)),
            tx_hash=tx_hash if isinstance(tx_hash, str) else None,
        ) from exc


def encode_log(event: DomainEvent) -> Dict[str, Any]:
    """
    Build the JSON-RPC log object a node would return for `event`.

    Inverse of `decode_event`; used to replay synthetic events through the
    full decode path.
    """
    kind = EventKind(event.kind)

    def word(value: int) -> bytes:
        return value.to_bytes(_WORD, "big")

    def address_topic(address: str) -> str:
        return to_hex(bytes(12) + parse_hex(address, 20))

    topics = [event_topic(kind), event.job_id]
    data = b""
    if isinstance(event, JobCreated):
        topics += [address_topic(event.client), address_topic(event.provider)]
        data = word(event.amount) + word(event.deadline)
    elif isinstance(event, PaymentReleased):
        topics.append(address_topic(event.provider))
        data = word(event.amount)
    elif isinstance(event, JobRefunded):
        topics.append(address_topic(event.client))
        data = word(event.amount)

    return {
        "topics": topics,
        "data": to_hex(data),
        "blockNumber": hex(event.block_number),
        "logIndex": hex(event.log_index),
        "transactionHash": event.tx_hash,
        "removed": False,
    }


__all__ = ["EVENT_SIGNATURES", "decode_event", "encode_log", "event_topic"]

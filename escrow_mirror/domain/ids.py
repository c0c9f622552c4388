"""
Identifier helpers: keccak-256 hashing, hex normalization and job id derivation.

Job ids are derived off-system by the escrow contract as
`keccak256(abi.encodePacked(client, provider, nonce))`.
"""

from __future__ import annotations

from Crypto.Hash import keccak


def keccak256(data: bytes) -> bytes:
    """Ethereum keccak-256 (pre-standard SHA-3 padding)."""
    return keccak.new(digest_bits=256, data=data).digest()


def to_hex(raw: bytes) -> str:
    return "0x" + raw.hex()


def parse_hex(value: str, size: int | None = None) -> bytes:
    """
    Decode a `0x`-prefixed hex string, optionally enforcing its byte length.

    Raises
    ------
    ValueError
        If the string is not prefixed, not hex, or has the wrong length.
    """
    if not isinstance(value, str) or not value[:2].lower() == "0x":
        raise ValueError(f"expected 0x-prefixed hex, got {value!r}")
    raw = bytes.fromhex(value[2:])
    if size is not None and len(raw) != size:
        raise ValueError(f"expected {size} bytes, got {len(raw)}")
    return raw


def normalize_address(value: str) -> str:
    return to_hex(parse_hex(value, 20))


def derive_job_id(client: str, provider: str, nonce: int) -> str:
    """Job id for `(client, provider, nonce)`, as the escrow contract computes it."""
    if nonce < 0 or nonce >= 2**256:
        raise ValueError("nonce must fit in uint256")
    packed = parse_hex(client, 20) + parse_hex(provider, 20) + nonce.to_bytes(32, "big")
    return to_hex(keccak256(packed))


def short_id(value: str | None, head: int = 6, tail: int = 4) -> str:
    """Abbreviate an address or hash for display (`0x1234…abcd`)."""
    if not value:
        return ""
    if tail == 0:
        return value[:head] + "…"
    return value[:head] + "…" + value[-tail:]


__all__ = [
    "derive_job_id",
    "keccak256",
    "normalize_address",
    "parse_hex",
    "short_id",
    "to_hex",
]

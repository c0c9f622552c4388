"""
Utilities package for the escrow marketplace mirror.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from escrow_mirror.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]

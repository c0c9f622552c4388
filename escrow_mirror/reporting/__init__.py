"""
Reporting package: read-only queries over the mirror plus console and JSON output.
"""

from escrow_mirror.reporting.export import write_snapshot
from escrow_mirror.reporting.read_surface import ReadSurface, Snapshot, derive_status
from escrow_mirror.reporting.reporter import format_status_line, print_summary

__all__ = [
    "ReadSurface",
    "Snapshot",
    "derive_status",
    "format_status_line",
    "print_summary",
    "write_snapshot",
]

"""
JSON export of read-surface snapshots.

The file is written to a temporary sibling and renamed into place, so a
dashboard polling the path never reads a half-written document.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from escrow_mirror.reporting.read_surface import Snapshot
from escrow_mirror.utils.logging import get_logger

log = get_logger(__name__)


def write_snapshot(snapshot: Snapshot, output: Path | str) -> Path:
    """
    Serialize `snapshot` as indented JSON at `output`.

    Returns
    -------
    Path
        The written path.
    """
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(snapshot.model_dump_json(indent=2))
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    log.info(
        "Snapshot exported",
        extra={
            "path": str(path),
            "jobs_total": snapshot.overview.jobs_total,
            "recent_jobs": len(snapshot.recent_jobs),
        },
    )
    return path


__all__ = ["write_snapshot"]

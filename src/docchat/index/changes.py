"""Change detection for incremental indexing.

A file is considered changed when its modification time or size differs from
what was recorded when it was last indexed. Content is never hashed: an edit
that preserves both values goes unnoticed, and a bare ``touch`` triggers a
redundant reindex. Both are accepted approximations.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from docchat.models import FileRecord

LOGGER = logging.getLogger(__name__)


def mtime_millis(stat: os.stat_result) -> int:
    return stat.st_mtime_ns // 1_000_000


def needs_reprocessing(path: Path, record: FileRecord | None) -> bool:
    """Return True when ``path`` must be (re)indexed."""
    if record is None:
        return True

    try:
        stat = path.stat()
    except OSError as exc:
        # Reading it now would only fail again
        LOGGER.warning("Cannot stat %s, keeping previous index entry: %s", path, exc)
        return False

    return mtime_millis(stat) != record.last_modified or stat.st_size != record.size_bytes

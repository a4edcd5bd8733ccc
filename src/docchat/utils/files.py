"""Utility helpers for working with files."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, Sequence

LOGGER = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset(
    {
        ".md",
        ".txt",
        ".json",
        ".csv",
        ".mmd",
        ".pdf",
        ".docx",
        ".doc",
        ".xlsx",
        ".xls",
        ".pptx",
        ".ppt",
        ".eml",
        ".msg",
    }
)


def is_supported(path: Path) -> bool:
    return path.suffix.lower() in SUPPORTED_EXTENSIONS


def iter_supported_paths(root: Path) -> Iterator[Path]:
    """Yield supported files below ``root`` recursively, in sorted order.

    Unreadable subdirectories are logged and skipped.
    """

    def _on_error(exc: OSError) -> None:
        LOGGER.warning("Cannot read directory %s: %s", exc.filename, exc)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames.sort()
        for name in sorted(filenames):
            candidate = Path(dirpath) / name
            if is_supported(candidate):
                yield candidate


def relative_key(path: Path, root: Path) -> str:
    """Return the index key of ``path``: its POSIX path relative to ``root``."""
    return path.relative_to(root).as_posix()


def resolve_key(key: str, roots: Sequence[Path]) -> Path | None:
    """Map an index key back to an existing file under one of ``roots``."""
    candidate = Path(key)
    if candidate.is_absolute():
        return candidate if candidate.is_file() else None
    for root in roots:
        resolved = Path(root) / candidate
        if resolved.is_file():
            return resolved
    return None


def key_exists(key: str, roots: Iterable[Path]) -> bool:
    return resolve_key(key, list(roots)) is not None

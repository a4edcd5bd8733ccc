"""Incremental document indexing pipeline."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence

from docchat.index.changes import mtime_millis, needs_reprocessing
from docchat.index.storage import IndexStore, SnapshotFile
from docchat.ingestion.extractors import (
    ExtractionError,
    Extractor,
    extract_text,
    placeholder_text,
)
from docchat.models import DocumentChunk, ScanProgress
from docchat.utils.files import iter_supported_paths, key_exists, relative_key
from docchat.utils.text import chunk_paragraphs

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[ScanProgress], None]

UP_TO_DATE = "All files are up to date"
NO_FILES = "No supported files found in selected directories"


class IndexingInProgressError(RuntimeError):
    """Raised when a scan is requested while another one is running."""


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(slots=True)
class IndexStats:
    indexed: int = 0
    unchanged: int = 0
    failed: int = 0
    skipped: int = 0
    removed_chunks: int = 0
    total_chunks: int = 0
    processed_files: list[str] = field(default_factory=list)
    message: str = ""

    def increment(self, status: str, source_file: str) -> None:
        if status == "indexed":
            self.indexed += 1
        elif status == "failed":
            self.failed += 1
        else:
            self.skipped += 1
        self.processed_files.append(source_file)

    @property
    def changed(self) -> int:
        """Files whose chunks were rewritten in this pass."""
        return self.indexed + self.failed

    @property
    def up_to_date(self) -> bool:
        return not self.processed_files


@dataclass(frozen=True, slots=True)
class _Candidate:
    path: Path
    source_file: str


class Scanner:
    """Reconciles the configured root directories with an ``IndexStore``."""

    def __init__(
        self,
        store: IndexStore,
        snapshot: SnapshotFile,
        directories: Sequence[Path],
        *,
        extractor: Extractor = extract_text,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.store = store
        self.snapshot = snapshot
        self.directories = [Path(directory) for directory in directories]
        self.extractor = extractor
        self.progress = progress
        self.last_indexed: float = 0.0
        self._flag_lock = threading.Lock()
        self._in_progress = False

    @property
    def is_indexing(self) -> bool:
        return self._in_progress

    def scan(self) -> IndexStats:
        """Run one incremental indexing pass.

        Raises:
            IndexingInProgressError: another scan is already running.
        """
        with self._flag_lock:
            if self._in_progress:
                raise IndexingInProgressError("Indexing already in progress")
            self._in_progress = True
        try:
            return self._scan()
        finally:
            self._in_progress = False

    def clear(self) -> None:
        """Drop the whole index and persist the empty snapshot."""
        with self._flag_lock:
            if self._in_progress:
                raise IndexingInProgressError("Cannot clear the index while indexing")
            self.store.clear()
            self.snapshot.save(())
            self.last_indexed = 0.0
        self._emit(ScanProgress("RAG database cleared", is_indexing=False))

    def _scan(self) -> IndexStats:
        LOGGER.info("Starting incremental indexing of %d directories", len(self.directories))
        stats = IndexStats()
        stats.removed_chunks = self.store.prune_missing(
            lambda key: key_exists(key, self.directories)
        )

        records = self.store.file_records()
        to_process: List[_Candidate] = []
        unchanged = 0
        for root in self.directories:
            if not root.is_dir():
                LOGGER.warning("Configured directory %s does not exist", root)
                continue
            LOGGER.info("Scanning directory for changes: %s", root)
            for path in iter_supported_paths(root):
                key = relative_key(path, root)
                if needs_reprocessing(path, records.get(key)):
                    if key in records:
                        LOGGER.info("File changed, will reindex: %s", key)
                    to_process.append(_Candidate(path, key))
                else:
                    unchanged += 1

        stats.unchanged = unchanged
        LOGGER.info(
            "File processing summary: %d to process, %d unchanged",
            len(to_process),
            unchanged,
        )

        if not to_process:
            stats.total_chunks = len(self.store)
            stats.message = UP_TO_DATE if unchanged else NO_FILES
            if stats.removed_chunks:
                self.snapshot.save(self.store.snapshot())
            self.last_indexed = time.time()
            self._emit(
                ScanProgress(stats.message, completed=0, total=0, is_indexing=False)
            )
            return stats

        total = len(to_process)
        for completed, candidate in enumerate(to_process):
            self._emit(
                ScanProgress(
                    f"Processing: {candidate.path.name}...",
                    current_file=candidate.source_file,
                    completed=completed,
                    total=total,
                )
            )
            try:
                status = self._index_file(candidate)
            except Exception as exc:
                LOGGER.error("Failed to process %s: %s", candidate.path, exc)
                status = "failed"
            stats.increment(status, candidate.source_file)

        self.last_indexed = time.time()
        stats.total_chunks = len(self.store)
        stats.message = (
            f"Updated {stats.changed} files, {stats.total_chunks} total chunks indexed"
        )
        try:
            self.snapshot.save(self.store.snapshot())
        except OSError as exc:
            LOGGER.error("Failed to save index snapshot after indexing: %s", exc)

        LOGGER.info(
            "Indexing complete: indexed=%d failed=%d skipped=%d unchanged=%d",
            stats.indexed,
            stats.failed,
            stats.skipped,
            stats.unchanged,
        )
        self._emit(
            ScanProgress(stats.message, completed=total, total=total, is_indexing=False)
        )
        return stats

    def _index_file(self, candidate: _Candidate) -> str:
        """Reindex one file and return ``indexed``, ``failed`` or ``skipped``."""
        path = candidate.path
        try:
            stat = path.stat()
        except OSError as exc:
            LOGGER.warning("Skipping %s, cannot read file metadata: %s", path, exc)
            return "skipped"

        self.store.remove_file(candidate.source_file)

        status = "indexed"
        ext = path.suffix.lower()
        try:
            text = self.extractor(path, ext)
        except ExtractionError as exc:
            LOGGER.error("Error extracting content from %s: %s", path, exc)
            text = placeholder_text(path, ext)
            status = "failed"
        except OSError as exc:
            LOGGER.warning("Skipping %s, cannot read file: %s", path, exc)
            return "skipped"
        except Exception as exc:
            LOGGER.error("Unexpected error extracting %s: %s", path, exc)
            text = placeholder_text(path, ext)
            status = "failed"

        indexed_at = _now_millis()
        # A placeholder stays whole so the file name remains searchable
        contents = [text] if status == "failed" else chunk_paragraphs(text)
        chunks = [
            DocumentChunk(
                content=content,
                source_file=candidate.source_file,
                last_modified=mtime_millis(stat),
                indexed_at=indexed_at,
                size_bytes=stat.st_size,
            )
            for content in contents
        ]
        self.store.upsert_file(candidate.source_file, chunks)
        LOGGER.debug("Indexed %s: %d chunks", candidate.source_file, len(chunks))
        return status

    def _emit(self, progress: ScanProgress) -> None:
        if self.progress is None:
            return
        try:
            self.progress(progress)
        except Exception:
            LOGGER.exception("Progress listener failed")

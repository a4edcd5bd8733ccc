"""In-memory chunk store with JSON snapshot persistence."""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Sequence

from docchat.models import DocumentChunk, FileRecord

LOGGER = logging.getLogger(__name__)


class IndexStore:
    """Owns every indexed chunk.

    All operations take the internal lock, so readers always see the state
    before or after a whole operation, never in between.
    """

    def __init__(self, chunks: Iterable[DocumentChunk] = ()) -> None:
        self._lock = threading.RLock()
        self._chunks: List[DocumentChunk] = list(chunks)

    @contextmanager
    def transaction(self) -> Iterator[List[DocumentChunk]]:
        """Hold the lock across several operations."""
        with self._lock:
            yield self._chunks

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def upsert_file(self, source_file: str, chunks: Sequence[DocumentChunk]) -> int:
        """Replace every chunk of ``source_file`` with ``chunks``.

        Returns the number of chunks that were replaced.
        """
        for chunk in chunks:
            if chunk.source_file != source_file:
                raise ValueError(
                    f"Chunk for {chunk.source_file!r} cannot be stored under {source_file!r}"
                )
        with self._lock:
            removed = self._remove_where(lambda chunk: chunk.source_file == source_file)
            self._chunks.extend(chunks)
        return removed

    def remove_file(self, source_file: str) -> int:
        with self._lock:
            removed = self._remove_where(lambda chunk: chunk.source_file == source_file)
        if removed:
            LOGGER.debug("Removed %d chunks for %s", removed, source_file)
        return removed

    def prune_missing(self, exists: Callable[[str], bool]) -> int:
        """Remove chunks whose source file fails ``exists``; return how many were removed."""
        with self._lock:
            verdicts: Dict[str, bool] = {}
            for chunk in self._chunks:
                if chunk.source_file not in verdicts:
                    verdicts[chunk.source_file] = exists(chunk.source_file)
            removed = self._remove_where(lambda chunk: not verdicts[chunk.source_file])
        if removed:
            LOGGER.info("Removed %d chunks for deleted files", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._chunks.clear()

    def snapshot(self) -> tuple[DocumentChunk, ...]:
        """Immutable copy of the whole collection."""
        with self._lock:
            return tuple(self._chunks)

    def restore(self, records: Any) -> bool:
        """Replace the store contents with ``records``.

        ``records`` must be a list of chunk records (dicts in snapshot format)
        or ``DocumentChunk`` objects. If anything is malformed the store is
        emptied and False is returned; data is never partially loaded.
        """
        try:
            chunks = _parse_records(records)
        except ValueError as exc:
            LOGGER.warning("Invalid index snapshot, starting fresh: %s", exc)
            self.clear()
            return False

        with self._lock:
            self._chunks = chunks
        return True

    def file_records(self) -> Dict[str, FileRecord]:
        """Latest recorded metadata per source file."""
        with self._lock:
            return {
                chunk.source_file: FileRecord(chunk.last_modified, chunk.size_bytes)
                for chunk in self._chunks
            }

    def source_files(self) -> List[str]:
        with self._lock:
            return list(dict.fromkeys(chunk.source_file for chunk in self._chunks))

    def _remove_where(self, predicate: Callable[[DocumentChunk], bool]) -> int:
        kept = [chunk for chunk in self._chunks if not predicate(chunk)]
        removed = len(self._chunks) - len(kept)
        self._chunks[:] = kept
        return removed


def _parse_records(records: Any) -> List[DocumentChunk]:
    if not isinstance(records, (list, tuple)):
        raise ValueError(f"expected a list of chunk records, got {type(records).__name__}")
    return [
        record if isinstance(record, DocumentChunk) else DocumentChunk.from_record(record)
        for record in records
    ]


class SnapshotFile:
    """JSON file holding the persisted index snapshot."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[Any]:
        """Return the raw records, or an empty list when there is no usable snapshot."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            LOGGER.info("No existing index snapshot at %s, starting fresh", self.path)
            return []
        except (OSError, ValueError) as exc:
            LOGGER.error("Failed to load index snapshot %s: %s", self.path, exc)
            return []

        if not isinstance(data, list):
            LOGGER.warning("Invalid index snapshot format in %s, starting fresh", self.path)
            return []
        return data

    def save(self, chunks: Sequence[DocumentChunk]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([chunk.to_record() for chunk in chunks], indent=2, ensure_ascii=False)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self.path)
        LOGGER.info("Saved %d chunks to %s", len(chunks), self.path)

    def load_into(self, store: IndexStore) -> bool:
        return store.restore(self.load())

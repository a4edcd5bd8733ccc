"""Tests for Scanner."""

import os
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from docchat.index.indexer import (
    NO_FILES,
    UP_TO_DATE,
    IndexingInProgressError,
    IndexStats,
    Scanner,
)
from docchat.index.storage import IndexStore, SnapshotFile
from docchat.ingestion.extractors import ExtractionError

PARAGRAPH_A = "The quarterly budget review covers revenue, costs and hiring plans."
PARAGRAPH_B = "Marketing expenses increased because of the new product launch campaign."


@pytest.fixture
def docs(tmp_path):
    root = tmp_path / "docs"
    root.mkdir()
    return root


@pytest.fixture
def snapshot(tmp_path):
    return SnapshotFile(tmp_path / "data" / "index.json")


def _scanner(store, snapshot, *roots, **kwargs):
    return Scanner(store, snapshot, list(roots), **kwargs)


class TestIndexStats:
    """Test IndexStats tracking."""

    def test_init_defaults(self):
        """Test default initialization."""
        stats = IndexStats()
        assert stats.indexed == 0
        assert stats.failed == 0
        assert stats.skipped == 0
        assert stats.processed_files == []
        assert stats.up_to_date

    def test_increment(self):
        """Test incrementing each status."""
        stats = IndexStats()

        stats.increment("indexed", "a.md")
        stats.increment("failed", "b.doc")
        stats.increment("skipped", "c.md")

        assert (stats.indexed, stats.failed, stats.skipped) == (1, 1, 1)
        assert stats.changed == 2
        assert stats.processed_files == ["a.md", "b.doc", "c.md"]
        assert not stats.up_to_date


class TestScan:
    """Test incremental scanning."""

    def test_indexes_new_files(self, docs, snapshot):
        """Test that a first scan indexes every supported file."""
        (docs / "budget.md").write_text(f"{PARAGRAPH_A}\n\n{PARAGRAPH_B}")
        (docs / "ignore.py").write_text("print('not indexed')")
        store = IndexStore()

        stats = _scanner(store, snapshot, docs).scan()

        assert stats.indexed == 1
        assert stats.message == f"Updated 1 files, {len(store)} total chunks indexed"
        assert store.source_files() == ["budget.md"]
        assert any(PARAGRAPH_B in chunk.content for chunk in store.snapshot())
        assert snapshot.path.exists()

    def test_second_scan_is_noop(self, docs, snapshot):
        """Test that rescanning unchanged files changes nothing."""
        (docs / "budget.md").write_text(PARAGRAPH_A)
        store = IndexStore()
        scanner = _scanner(store, snapshot, docs)
        scanner.scan()
        before = store.snapshot()
        extractor = Mock()
        scanner.extractor = extractor

        stats = scanner.scan()

        assert stats.message == UP_TO_DATE
        assert stats.unchanged == 1
        assert stats.up_to_date
        assert store.snapshot() == before
        extractor.assert_not_called()

    def test_modified_file_replaced(self, docs, snapshot):
        """Test that a changed file's chunks are fully replaced."""
        path = docs / "budget.md"
        path.write_text(f"{PARAGRAPH_A}\n\n{PARAGRAPH_B}")
        store = IndexStore()
        scanner = _scanner(store, snapshot, docs)
        scanner.scan()

        path.write_text("A completely different paragraph about travel reimbursement policy.")
        os.utime(path, (1_600_000_000, 1_600_000_000))
        stats = scanner.scan()

        assert stats.indexed == 1
        contents = [chunk.content for chunk in store.snapshot()]
        assert all(PARAGRAPH_B not in content for content in contents)
        assert any("travel reimbursement" in content for content in contents)
        assert all(chunk.last_modified == 1_600_000_000_000 for chunk in store.snapshot())

    def test_deleted_file_pruned(self, docs, snapshot):
        """Test that chunks of deleted files are removed and persisted."""
        (docs / "keep.md").write_text(PARAGRAPH_A)
        (docs / "gone.md").write_text(PARAGRAPH_B)
        store = IndexStore()
        scanner = _scanner(store, snapshot, docs)
        scanner.scan()

        (docs / "gone.md").unlink()
        stats = scanner.scan()

        assert stats.removed_chunks == 1
        assert store.source_files() == ["keep.md"]
        reloaded = IndexStore()
        snapshot.load_into(reloaded)
        assert reloaded.source_files() == ["keep.md"]

    def test_removed_directory_pruned(self, tmp_path, snapshot):
        """Test that dropping a root removes its chunks."""
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()
        (first / "a.md").write_text(PARAGRAPH_A)
        (second / "b.md").write_text(PARAGRAPH_B)
        store = IndexStore()
        scanner = _scanner(store, snapshot, first, second)
        scanner.scan()

        scanner.directories = [first]
        scanner.scan()

        assert store.source_files() == ["a.md"]

    def test_nested_keys_are_relative(self, docs, snapshot):
        """Test that keys are relative to the owning root."""
        nested = docs / "projects" / "alpha"
        nested.mkdir(parents=True)
        (nested / "plan.txt").write_text(PARAGRAPH_A)
        store = IndexStore()

        _scanner(store, snapshot, docs).scan()

        assert store.source_files() == ["projects/alpha/plan.txt"]

    def test_extraction_failure_gets_placeholder(self, docs, snapshot):
        """Test that unreadable documents are indexed as a placeholder."""
        (docs / "legacy.doc").write_bytes(b"\xd0\xcf\x11\xe0")
        store = IndexStore()
        scanner = _scanner(store, snapshot, docs)

        stats = scanner.scan()

        assert stats.failed == 1
        (chunk,) = store.snapshot()
        assert chunk.content == (
            "DOC Document: legacy.doc\n\nError: Could not extract text content from this file."
        )
        assert scanner.scan().up_to_date

    def test_latin1_text_is_indexed(self, docs, snapshot):
        """Test that a non-UTF-8 text file keeps its content searchable."""
        (docs / "notes.txt").write_bytes(
            "Café meeting notes about the quarterly budget and travel costs.".encode("latin-1")
        )
        store = IndexStore()

        stats = _scanner(store, snapshot, docs).scan()

        assert stats.indexed == 1
        assert stats.failed == 0
        assert any("quarterly budget" in chunk.content for chunk in store.snapshot())

    def test_unexpected_error_marks_failed(self, docs, snapshot):
        """Test that one broken file does not stop the scan."""
        (docs / "a.md").write_text(PARAGRAPH_A)
        (docs / "b.md").write_text(PARAGRAPH_B)

        def extractor(path, ext):
            if path.name == "a.md":
                raise RuntimeError("boom")
            return path.read_text()

        store = IndexStore()
        scanner = _scanner(store, snapshot, docs, extractor=extractor)
        stats = scanner.scan()

        assert stats.failed == 1
        assert stats.indexed == 1
        assert "b.md" in store.source_files()
        (placeholder,) = [c for c in store.snapshot() if c.source_file == "a.md"]
        assert placeholder.content.startswith("MD Document: a.md\n\n")
        assert scanner.scan().up_to_date

    def test_email_with_unknown_charset_gets_placeholder(self, docs, snapshot):
        """Test that an e-mail body in an unknown charset is stored as a placeholder."""
        (docs / "mail.eml").write_bytes(
            b"From: a@example.com\r\n"
            b"Subject: Budget\r\n"
            b'Content-Type: text/plain; charset="x-bogus"\r\n'
            b"\r\n"
            b"Budget body\r\n"
        )
        store = IndexStore()
        scanner = _scanner(store, snapshot, docs)

        stats = scanner.scan()

        assert stats.failed == 1
        (chunk,) = store.snapshot()
        assert chunk.content.startswith("EML Document: mail.eml")
        assert scanner.scan().up_to_date

    def test_unreadable_file_skipped(self, docs, snapshot):
        """Test that read errors skip the file without indexing it."""
        (docs / "a.md").write_text(PARAGRAPH_A)

        def extractor(path, ext):
            raise PermissionError("denied")

        store = IndexStore()
        stats = _scanner(store, snapshot, docs, extractor=extractor).scan()

        assert stats.skipped == 1
        assert len(store) == 0

    def test_extraction_error_from_custom_extractor(self, docs, snapshot):
        """Test that ExtractionError from any extractor yields a placeholder."""
        (docs / "notes.md").write_text(PARAGRAPH_A)
        extractor = Mock(side_effect=ExtractionError("bad"))
        store = IndexStore()

        stats = _scanner(store, snapshot, docs, extractor=extractor).scan()

        assert stats.failed == 1
        assert store.snapshot()[0].content.startswith("MD Document: notes.md")

    def test_no_supported_files(self, docs, snapshot):
        """Test the message for directories without documents."""
        (docs / "image.png").write_bytes(b"\x89PNG")

        stats = _scanner(IndexStore(), snapshot, docs).scan()

        assert stats.message == NO_FILES

    def test_missing_directory(self, tmp_path, snapshot):
        """Test that a missing root is skipped."""
        stats = _scanner(IndexStore(), snapshot, tmp_path / "absent").scan()
        assert stats.message == NO_FILES

    def test_last_indexed_updated(self, docs, snapshot):
        """Test that a finished scan records its time."""
        scanner = _scanner(IndexStore(), snapshot, docs)
        assert scanner.last_indexed == 0.0

        scanner.scan()

        assert scanner.last_indexed > 0


class TestProgressAndConcurrency:
    """Test progress reporting and the in-progress guard."""

    def test_progress_events(self, docs, snapshot):
        """Test that progress is reported per file and at the end."""
        (docs / "a.md").write_text(PARAGRAPH_A)
        (docs / "b.md").write_text(PARAGRAPH_B)
        events = []

        _scanner(IndexStore(), snapshot, docs, progress=events.append).scan()

        assert [event.current_file for event in events[:2]] == ["a.md", "b.md"]
        assert [event.completed for event in events] == [0, 1, 2]
        assert events[-1].is_indexing is False
        assert events[-1].percent == 100

    def test_failing_progress_listener(self, docs, snapshot):
        """Test that a broken listener does not break the scan."""
        (docs / "a.md").write_text(PARAGRAPH_A)
        listener = Mock(side_effect=RuntimeError("ui gone"))

        stats = _scanner(IndexStore(), snapshot, docs, progress=listener).scan()

        assert stats.indexed == 1

    def test_concurrent_scan_rejected(self, docs, snapshot):
        """Test that a second scan fails while one is running."""
        (docs / "a.md").write_text(PARAGRAPH_A)
        started = threading.Event()
        release = threading.Event()

        def slow_extractor(path, ext):
            started.set()
            release.wait(5)
            return path.read_text()

        scanner = _scanner(IndexStore(), snapshot, docs, extractor=slow_extractor)
        worker = threading.Thread(target=scanner.scan)
        worker.start()
        assert started.wait(5)

        try:
            assert scanner.is_indexing
            with pytest.raises(IndexingInProgressError):
                scanner.scan()
            with pytest.raises(IndexingInProgressError):
                scanner.clear()
        finally:
            release.set()
            worker.join(5)

        assert not scanner.is_indexing

    def test_clear(self, docs, snapshot):
        """Test that clear empties the store and persists it."""
        (docs / "a.md").write_text(PARAGRAPH_A)
        store = IndexStore()
        events = []
        scanner = _scanner(store, snapshot, docs, progress=events.append)
        scanner.scan()

        scanner.clear()

        assert len(store) == 0
        assert scanner.last_indexed == 0.0
        assert snapshot.load() == []
        assert events[-1].message == "RAG database cleared"

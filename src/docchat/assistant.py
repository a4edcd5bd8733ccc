"""Wiring of the index, retriever, model client and request queue."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Sequence

import httpx

from docchat.config import MAX_DIRECTORIES, AppConfig
from docchat.index.indexer import IndexStats, Scanner
from docchat.index.scheduler import AutoIndexer
from docchat.index.search import Retriever
from docchat.index.storage import IndexStore, SnapshotFile
from docchat.llm.client import EventCallback, FeedbackCallback, OllamaClient
from docchat.llm.events import EventBroadcaster
from docchat.llm.queue import RequestSerializer
from docchat.models import ChatRequest, GenerationOptions, GenerationResult, ScanProgress

LOGGER = logging.getLogger(__name__)

INDEXING_STATUS = "rag:indexing-status"


class Assistant:
    """Owns every long-lived component of one running application."""

    def __init__(
        self,
        config: AppConfig,
        *,
        base_dir: Path | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.events = EventBroadcaster()
        self.store = IndexStore()
        self.snapshot = SnapshotFile(config.resolve_data_path(base_dir))
        self.snapshot.load_into(self.store)
        LOGGER.info("Loaded %d chunks from %s", len(self.store), self.snapshot.path)

        self.scanner = Scanner(
            self.store,
            self.snapshot,
            config.directories,
            progress=self._on_progress,
        )
        self.retriever = Retriever(
            self.store, sensitivity=config.sensitivity, max_results=config.max_results
        )
        self.client = OllamaClient(
            config.base_url,
            config.model,
            retriever=self.retriever,
            broadcaster=self.events,
            timeout=config.request_timeout,
            http_client=http_client,
        )
        self.requests = RequestSerializer(self.client.chat)
        self.auto_indexer: AutoIndexer | None = None

    def start_auto_indexing(self) -> AutoIndexer:
        if self.auto_indexer is None or not self.auto_indexer.is_alive():
            self.auto_indexer = AutoIndexer(
                self.scanner,
                interval=self.config.auto_index_interval,
                stale_after_hours=self.config.stale_after_hours,
                startup_delay=self.config.startup_delay,
            )
            self.auto_indexer.start()
        return self.auto_indexer

    def index(self) -> IndexStats:
        return self.scanner.scan()

    def clear(self) -> None:
        self.scanner.clear()

    def set_directories(self, directories: Sequence[Path]) -> None:
        """Replace the indexed roots; chunks of dropped roots are pruned on the next scan."""
        directories = [Path(directory) for directory in directories]
        if len(directories) > MAX_DIRECTORIES:
            raise ValueError(
                f"At most {MAX_DIRECTORIES} directories can be configured, got {len(directories)}"
            )
        self.config.directories = directories
        self.scanner.directories = list(directories)
        LOGGER.info("Directories set to %s", [str(directory) for directory in directories])

    def set_sensitivity(self, sensitivity: int) -> None:
        if not 0 <= sensitivity <= 100:
            raise ValueError(f"Sensitivity must be between 0 and 100, got {sensitivity}")
        self.config.sensitivity = sensitivity
        self.retriever.sensitivity = sensitivity

    def submit(
        self,
        request: ChatRequest,
        *,
        on_event: EventCallback | None = None,
        on_sources: FeedbackCallback | None = None,
    ) -> "Future[GenerationResult]":
        """Queue a chat request; the future resolves with the final message.

        The callbacks run on the generation thread for this request only.
        """
        if request.options == GenerationOptions():
            request = replace(request, options=self.config.generation_options)
        return self.requests.submit(request, on_event=on_event, on_sources=on_sources)

    def status(self) -> Dict[str, Any]:
        return {
            "isIndexing": self.scanner.is_indexing,
            "documentCount": len(self.store),
            "fileCount": len(self.store.source_files()),
            "lastIndexed": int(self.scanner.last_indexed * 1000),
            "directories": [str(directory) for directory in self.scanner.directories],
            "sensitivity": self.retriever.sensitivity,
            "queue": self.requests.state.value,
            "pending": len(self.requests.pending()),
        }

    def close(self) -> None:
        if self.auto_indexer is not None:
            self.auto_indexer.cancel()
        self.client.close()

    def _on_progress(self, progress: ScanProgress) -> None:
        self.events.publish(
            INDEXING_STATUS,
            {
                "isIndexing": progress.is_indexing,
                "message": progress.message,
                "currentFile": progress.current_file,
                "completed": progress.completed,
                "total": progress.total,
                "indexingProgress": progress.percent,
                "documentCount": len(self.store),
            },
        )

"""Single-flight execution of generation requests."""

from __future__ import annotations

import copy
import enum
import itertools
import logging
import threading
import time
from collections import deque
from concurrent.futures import Future
from typing import Any, Callable, Deque, Dict, List, Tuple

from docchat.models import QueuedRequest

LOGGER = logging.getLogger(__name__)

Handler = Callable[..., Any]
_Entry = Tuple[QueuedRequest, Future, Dict[str, Any]]


class SerializerState(enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    QUEUE_NOT_EMPTY = "queue_not_empty"


class RequestSerializer:
    """Runs one request at a time and queues the rest in submission order.

    Each submission gets a ``Future`` that resolves with the handler's result
    or exception. A failing request still hands the slot to the next one.
    The payload is deep-copied on submission, so later changes to the
    caller's objects do not reach a queued request. Keyword arguments given to
    ``submit`` are passed to the handler as they are, for per-request callbacks.
    Requests run to completion; there is no cancellation of the one in flight.
    """

    def __init__(self, handler: Handler, *, name: str = "docchat-generation") -> None:
        self._handler = handler
        self._name = name
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._queue: Deque[_Entry] = deque()
        self._active: QueuedRequest | None = None
        self._idle = threading.Event()
        self._idle.set()

    @property
    def state(self) -> SerializerState:
        with self._lock:
            if self._active is None:
                return SerializerState.IDLE
            if self._queue:
                return SerializerState.QUEUE_NOT_EMPTY
            return SerializerState.GENERATING

    @property
    def active(self) -> QueuedRequest | None:
        return self._active

    def pending(self) -> List[QueuedRequest]:
        """Queued requests, oldest first; excludes the one in flight."""
        with self._lock:
            return [entry[0] for entry in self._queue]

    def submit(self, payload: Any, **kwargs: Any) -> Future:
        request = QueuedRequest(
            id=next(self._ids),
            payload=copy.deepcopy(payload),
            submitted_at=time.time(),
        )
        entry: _Entry = (request, Future(), kwargs)
        with self._lock:
            if self._active is not None:
                self._queue.append(entry)
                LOGGER.info("Request %d queued, %d waiting", request.id, len(self._queue))
                return entry[1]
            self._active = request
            self._idle.clear()

        worker = threading.Thread(target=self._drain, args=(entry,), name=self._name, daemon=True)
        worker.start()
        return entry[1]

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is generating or queued."""
        return self._idle.wait(timeout)

    def _drain(self, entry: _Entry) -> None:
        while True:
            self._run(*entry)
            with self._lock:
                if not self._queue:
                    self._active = None
                    self._idle.set()
                    return
                entry = self._queue.popleft()
                self._active = entry[0]
            LOGGER.info("Processing next queued request %d", entry[0].id)

    def _run(self, request: QueuedRequest, future: Future, kwargs: Dict[str, Any]) -> None:
        if not future.set_running_or_notify_cancel():
            LOGGER.info("Request %d was cancelled before it started", request.id)
            return
        LOGGER.debug("Request %d started", request.id)
        try:
            result = self._handler(request.payload, **kwargs)
        except Exception as exc:
            LOGGER.error("Request %d failed: %s", request.id, exc)
            future.set_exception(exc)
        else:
            future.set_result(result)

"""Tests for single-flight request execution."""

import threading

import pytest

from docchat.llm.queue import RequestSerializer, SerializerState


class _GatedHandler:
    """Handler that blocks each request until released."""

    def __init__(self):
        self.started = []
        self.finished = []
        self.gates = {}
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()
        self.first_started = threading.Event()

    def gate(self, name):
        return self.gates.setdefault(name, threading.Event())

    def __call__(self, payload, **kwargs):
        name = payload["name"]
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            self.started.append(name)
        self.first_started.set()
        self.gate(name).wait(5)
        with self._lock:
            self.running -= 1
            self.finished.append(name)
        if payload.get("fail"):
            raise RuntimeError(f"{name} failed")
        return payload


class TestRequestSerializer:
    """Tests for RequestSerializer."""

    def test_completion_order_matches_submission(self):
        """Runs A, B, C in arrival order regardless of payload size."""
        handler = _GatedHandler()
        serializer = RequestSerializer(handler)

        future_a = serializer.submit({"name": "A", "body": "x" * 10_000})
        assert handler.first_started.wait(5)
        future_b = serializer.submit({"name": "B", "body": "x" * 100})
        future_c = serializer.submit({"name": "C"})

        assert serializer.state is SerializerState.QUEUE_NOT_EMPTY
        assert [request.payload["name"] for request in serializer.pending()] == ["B", "C"]

        for name in ("A", "B", "C"):
            handler.gate(name).set()
        assert serializer.wait_idle(5)

        assert handler.finished == ["A", "B", "C"]
        assert handler.max_running == 1
        assert future_c.result(1)["name"] == "C"
        assert future_a.done() and future_b.done()
        assert serializer.state is SerializerState.IDLE

    def test_failure_releases_slot(self):
        """Advances to the next request after a failure."""
        handler = _GatedHandler()
        for name in ("A", "B"):
            handler.gate(name).set()
        serializer = RequestSerializer(handler)

        future_a = serializer.submit({"name": "A", "fail": True})
        future_b = serializer.submit({"name": "B"})

        with pytest.raises(RuntimeError, match="A failed"):
            future_a.result(5)
        assert future_b.result(5)["name"] == "B"
        assert serializer.wait_idle(5)

    def test_payload_captured_at_submission(self):
        """Later changes to the caller's payload do not reach a queued request."""
        handler = _GatedHandler()
        serializer = RequestSerializer(handler)
        serializer.submit({"name": "A"})
        assert handler.first_started.wait(5)

        payload = {"name": "B", "attachments": ["report.pdf"]}
        future_b = serializer.submit(payload)
        payload["attachments"].append("secret.pdf")
        payload["name"] = "changed"

        handler.gate("A").set()
        handler.gate("B").set()

        assert future_b.result(5)["attachments"] == ["report.pdf"]

    def test_keyword_arguments_passed_through(self):
        """Hands per-request keyword arguments to the handler uncopied."""
        received = []
        marker = object()

        def handler(payload, **kwargs):
            received.append(kwargs["on_event"])
            return payload

        serializer = RequestSerializer(handler)
        serializer.submit("x", on_event=marker).result(5)

        assert received == [marker]

    def test_generating_state(self):
        """Reports Generating while one request runs with an empty queue."""
        handler = _GatedHandler()
        serializer = RequestSerializer(handler)

        assert serializer.state is SerializerState.IDLE
        serializer.submit({"name": "A"})
        assert handler.first_started.wait(5)

        assert serializer.state is SerializerState.GENERATING
        assert serializer.active.payload["name"] == "A"

        handler.gate("A").set()
        assert serializer.wait_idle(5)
        assert serializer.active is None

    def test_cancelled_before_start(self):
        """Skips queued requests cancelled before they run."""
        handler = _GatedHandler()
        serializer = RequestSerializer(handler)
        serializer.submit({"name": "A"})
        assert handler.first_started.wait(5)

        future_b = serializer.submit({"name": "B"})
        future_c = serializer.submit({"name": "C"})
        assert future_b.cancel()
        handler.gate("A").set()
        handler.gate("C").set()

        assert future_c.result(5)["name"] == "C"
        assert handler.started == ["A", "C"]

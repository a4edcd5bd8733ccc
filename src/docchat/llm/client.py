"""Client for the local model runtime (Ollama HTTP API)."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, List, Tuple

import httpx

from docchat.config import DEFAULT_BASE_URL, DEFAULT_MODEL
from docchat.index.search import Retriever, build_context, build_feedback
from docchat.llm.events import EventBroadcaster
from docchat.llm.stream import StreamEvent, decode_stream, is_chat_terminal, is_pull_terminal
from docchat.models import ChatRequest, GenerationResult, RetrievalFeedback, RetrievalHit

LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[StreamEvent], None]
FeedbackCallback = Callable[[RetrievalFeedback], None]

CHAT_STREAM = "chat:stream"
RAG_SOURCES = "rag:sources"
PULL_PROGRESS = "pull:progress"


class GenerationError(RuntimeError):
    """The model runtime could not be reached or rejected the request."""


class OllamaClient:
    """Streams chat completions, optionally augmented with retrieved document chunks."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        *,
        retriever: Retriever | None = None,
        broadcaster: EventBroadcaster | None = None,
        timeout: float = 300.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Root URL of the model runtime.
            model: Model used when a request does not name one.
            retriever: Source of document context for augmented requests.
            broadcaster: Receives stream events and retrieval feedback for UI listeners.
            timeout: Read timeout in seconds; model loading can be slow.
            http_client: Preconfigured client, mainly for tests.
        """
        self.model = model
        self.retriever = retriever
        self.broadcaster = broadcaster
        self._http = http_client or httpx.Client(
            base_url=base_url, timeout=httpx.Timeout(timeout, connect=10.0)
        )

    def close(self) -> None:
        self._http.close()

    def prepare_messages(self, request: ChatRequest) -> Tuple[List[Dict[str, str]], List[RetrievalHit]]:
        """Build the outgoing message list.

        When retrieval is enabled and finds something, a system message with
        the retrieved chunks is placed directly before the newest user message.
        """
        messages = [message.to_dict() for message in request.history]
        messages.append({"role": "user", "content": request.prompt})

        hits: List[RetrievalHit] = []
        if request.rag_enabled and self.retriever is not None:
            hits = self.retriever.search(request.prompt)
            if hits:
                LOGGER.info("Adding %d retrieved chunks to the prompt", len(hits))
                messages.insert(len(messages) - 1, {"role": "system", "content": build_context(hits)})
            else:
                LOGGER.info("No document context found for query")
        return messages, hits

    def stream_chat(
        self, request: ChatRequest, *, on_sources: FeedbackCallback | None = None
    ) -> Iterator[StreamEvent]:
        """Yield response events as they arrive.

        Retrieval feedback is delivered before the request is sent, so sources
        are visible even if generation then fails.

        Raises:
            GenerationError: transport failure or error status from the runtime.
        """
        messages, hits = self.prepare_messages(request)
        if hits:
            feedback = build_feedback(request.prompt, hits)
            if on_sources is not None:
                on_sources(feedback)
            self._publish(RAG_SOURCES, feedback.to_dict())

        body: Dict[str, Any] = {
            "model": request.model or self.model,
            "messages": messages,
            "stream": True,
            "think": request.think,
            "options": request.options.to_wire(),
        }
        LOGGER.info("Starting chat request: model=%s messages=%d", body["model"], len(messages))
        for event in self._stream("/api/chat", body, is_chat_terminal):
            self._publish(CHAT_STREAM, event.data)
            yield event

    def chat(
        self,
        request: ChatRequest,
        *,
        on_event: EventCallback | None = None,
        on_sources: FeedbackCallback | None = None,
    ) -> GenerationResult:
        """Run a chat request to completion and return the accumulated message."""
        result = GenerationResult()
        for event in self.stream_chat(request, on_sources=on_sources):
            if on_event is not None:
                on_event(event)
            result.content += event.content
            result.thinking += event.thinking
            if event.done:
                result.done = True
                result.summary = event.summary
        if not result.done:
            LOGGER.warning("Chat stream ended without a final record")
        return result

    def list_models(self) -> List[Dict[str, Any]]:
        try:
            response = self._http.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise GenerationError(f"Model runtime not reachable: {exc}") from exc
        return response.json().get("models", [])

    def pull_model(
        self, name: str, *, on_progress: EventCallback | None = None
    ) -> bool:
        """Download a model, reporting progress records; True once the runtime reports success."""
        LOGGER.info("Installing model %s", name)
        for event in self._stream("/api/pull", {"name": name}, is_pull_terminal):
            if on_progress is not None:
                on_progress(event)
            self._publish(PULL_PROGRESS, event.data)
            if is_pull_terminal(event):
                LOGGER.info("Model %s installed", name)
                return True
        LOGGER.warning("Pull of %s ended without a success record", name)
        return False

    def _stream(
        self, path: str, body: Dict[str, Any], is_terminal: Callable[[StreamEvent], bool]
    ) -> Iterator[StreamEvent]:
        try:
            with self._http.stream("POST", path, json=body) as response:
                if response.is_error:
                    response.read()
                    raise GenerationError(
                        f"{path} failed with status {response.status_code}: {response.text[:200]}"
                    )
                for event in decode_stream(response.iter_bytes(), is_terminal):
                    error = event.data.get("error")
                    if error:
                        raise GenerationError(f"{path} reported an error: {error}")
                    yield event
        except httpx.HTTPError as exc:
            raise GenerationError(f"Request to {path} failed: {exc}") from exc

    def _publish(self, channel: str, payload: Any) -> None:
        if self.broadcaster is not None:
            self.broadcaster.publish(channel, payload)

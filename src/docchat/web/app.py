"""FastAPI application exposing DocChat over HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import queue
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterator, List

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from docchat.assistant import Assistant
from docchat.config import AppConfig
from docchat.index.indexer import IndexingInProgressError, IndexStats
from docchat.llm.client import GenerationError
from docchat.llm.stream import StreamEvent
from docchat.models import ChatMessage, ChatRequest, GenerationOptions, RetrievalFeedback, RetrievalHit

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    global _ASSISTANT
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    yield
    with _ASSISTANT_LOCK:
        if _ASSISTANT is not None:
            _ASSISTANT.close()
            _ASSISTANT = None


app = FastAPI(title="DocChat Web", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_ASSISTANT: Assistant | None = None
_ASSISTANT_LOCK = threading.Lock()
_DONE = object()


class IndexPayload(BaseModel):
    directories: List[str] | None = None


class SearchPayload(BaseModel):
    query: str
    sensitivity: int | None = None
    top_k: int | None = None


class MessagePayload(BaseModel):
    role: str
    content: str


class ChatPayload(BaseModel):
    prompt: str
    history: List[MessagePayload] = []
    rag: bool = True
    model: str | None = None
    think: bool = False
    temperature: float | None = None
    context_length: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    repeat_penalty: float | None = None


class PullPayload(BaseModel):
    name: str


def _resolve_data_path(data: Path | None) -> Path:
    config = AppConfig(data_path=data if data is not None else AppConfig().data_path)
    return config.resolve_data_path(Path.cwd())


def _ensure_data_parent(data_path: Path) -> None:
    data_path.parent.mkdir(parents=True, exist_ok=True)


def get_assistant() -> Assistant:
    """Process-wide assistant, created on first use with auto indexing running."""
    global _ASSISTANT
    with _ASSISTANT_LOCK:
        if _ASSISTANT is None:
            config = AppConfig()
            _ensure_data_parent(_resolve_data_path(config.data_path))
            _ASSISTANT = Assistant(config, base_dir=Path.cwd())
            _ASSISTANT.start_auto_indexing()
        return _ASSISTANT


def _validate_directory(raw: str) -> Path:
    clean_path = raw.strip().replace("\r", "").replace("\n", "")
    if not clean_path:
        raise HTTPException(status_code=400, detail="Empty directory path")
    if "\0" in clean_path:
        raise HTTPException(status_code=400, detail="Invalid path: contains null byte")

    path = Path(os.path.realpath(os.path.expanduser(clean_path)))
    if not path.exists():
        raise HTTPException(status_code=404, detail="Path not found: %s" % clean_path)
    if not path.is_dir():
        raise HTTPException(status_code=400, detail="Path must be a directory: %s" % clean_path)
    return path


def _serialize_stats(stats: IndexStats) -> Dict[str, Any]:
    return {
        "indexed": stats.indexed,
        "unchanged": stats.unchanged,
        "failed": stats.failed,
        "skipped": stats.skipped,
        "removed_chunks": stats.removed_chunks,
        "total_chunks": stats.total_chunks,
        "processed_files": list(stats.processed_files),
    }


def _serialize_hit(hit: RetrievalHit) -> Dict[str, Any]:
    return {
        "file": hit.chunk.source_file,
        "content": hit.chunk.content,
        "score": hit.score,
        "matchedTerms": hit.matched_term_count,
        "lastModified": hit.chunk.last_modified,
    }


def _ndjson(item: Dict[str, Any]) -> str:
    return json.dumps(item, ensure_ascii=False) + "\n"


@app.post("/index")
async def index_documents(
    payload: IndexPayload, assistant: Assistant = Depends(get_assistant)
) -> Dict[str, Any]:
    if payload.directories is not None:
        directories = [_validate_directory(raw) for raw in payload.directories]
        try:
            assistant.set_directories(directories)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    if not assistant.scanner.directories:
        raise HTTPException(status_code=400, detail="No directories configured")

    try:
        stats = await asyncio.to_thread(assistant.index)
    except IndexingInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return {
        "status": "ok",
        "message": stats.message,
        "data": str(assistant.snapshot.path),
        "stats": _serialize_stats(stats),
    }


@app.delete("/index")
async def clear_index(assistant: Assistant = Depends(get_assistant)) -> Dict[str, Any]:
    try:
        assistant.clear()
    except IndexingInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"status": "ok"}


@app.get("/status")
async def index_status(assistant: Assistant = Depends(get_assistant)) -> Dict[str, Any]:
    return assistant.status()


@app.post("/search")
async def search_documents(
    payload: SearchPayload, assistant: Assistant = Depends(get_assistant)
) -> Dict[str, List[Dict[str, Any]]]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")
    if payload.sensitivity is not None and not 0 <= payload.sensitivity <= 100:
        raise HTTPException(status_code=400, detail="Sensitivity must be between 0 and 100")

    hits = assistant.retriever.search(query, sensitivity=payload.sensitivity)
    if payload.top_k is not None:
        hits = hits[: max(1, payload.top_k)]
    return {"results": [_serialize_hit(hit) for hit in hits]}


@app.post("/chat")
def chat(payload: ChatPayload, assistant: Assistant = Depends(get_assistant)) -> StreamingResponse:
    """Stream one generation as NDJSON lines.

    Lines are ``{"type": "sources", ...}`` for retrieval feedback,
    ``{"type": "event", "data": ...}`` per runtime record, then either
    ``{"type": "result", ...}`` or ``{"type": "error", "detail": ...}``.
    A failure before the first runtime record is reported as HTTP 502.
    """
    prompt = payload.prompt.strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Empty prompt")

    defaults = assistant.config.generation_options
    options = GenerationOptions(
        temperature=payload.temperature if payload.temperature is not None else defaults.temperature,
        context_length=payload.context_length or defaults.context_length,
        top_p=payload.top_p if payload.top_p is not None else defaults.top_p,
        top_k=payload.top_k or defaults.top_k,
        repeat_penalty=payload.repeat_penalty or defaults.repeat_penalty,
    )
    request = ChatRequest(
        prompt=prompt,
        history=tuple(ChatMessage(message.role, message.content) for message in payload.history),
        rag_enabled=payload.rag,
        options=options,
        model=payload.model,
        think=payload.think,
    )

    items: "queue.Queue[Any]" = queue.Queue()

    def on_sources(feedback: RetrievalFeedback) -> None:
        items.put({"type": "sources", **feedback.to_dict()})

    def on_event(event: StreamEvent) -> None:
        items.put({"type": "event", "data": event.data})

    future = assistant.submit(request, on_event=on_event, on_sources=on_sources)
    future.add_done_callback(lambda _: items.put(_DONE))

    # Hold back until the runtime answers so an unreachable runtime maps to 502.
    buffered: List[Dict[str, Any]] = []
    item = items.get()
    while item is not _DONE and item["type"] != "event":
        buffered.append(item)
        item = items.get()
    finished = item is _DONE
    if finished:
        error = future.exception()
        if isinstance(error, GenerationError):
            raise HTTPException(status_code=502, detail=str(error)) from error
    else:
        buffered.append(item)

    def body() -> Iterator[str]:
        for entry in buffered:
            yield _ndjson(entry)
        if not finished:
            while True:
                entry = items.get()
                if entry is _DONE:
                    break
                yield _ndjson(entry)
        try:
            result = future.result()
        except GenerationError as exc:
            LOGGER.error("Generation failed mid-stream: %s", exc)
            yield _ndjson({"type": "error", "detail": str(exc)})
            return
        except Exception as exc:
            LOGGER.exception("Unexpected chat failure")
            yield _ndjson({"type": "error", "detail": str(exc)})
            return
        yield _ndjson({"type": "result", **result.to_dict()})

    return StreamingResponse(body(), media_type="application/x-ndjson")


@app.get("/models")
async def list_models(assistant: Assistant = Depends(get_assistant)) -> Dict[str, Any]:
    try:
        models = await asyncio.to_thread(assistant.client.list_models)
    except GenerationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"models": models}


@app.post("/pull")
async def pull_model(
    payload: PullPayload, assistant: Assistant = Depends(get_assistant)
) -> Dict[str, Any]:
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Empty model name")
    try:
        ok = await asyncio.to_thread(assistant.client.pull_model, name)
    except GenerationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"status": "ok" if ok else "incomplete", "model": name}

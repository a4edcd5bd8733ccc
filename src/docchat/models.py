"""Core DocChat data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

# Keys of one persisted snapshot record.
RECORD_FIELDS = ("content", "file", "lastModified", "indexed", "size")


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """Chunk of document text paired with the file metadata it was indexed from.

    ``source_file`` is relative to the configured root that owns the file and
    is the identity used to replace or delete all chunks of one file.
    Timestamps are integer milliseconds since the epoch.
    """

    content: str
    source_file: str
    last_modified: int
    indexed_at: int
    size_bytes: int

    def to_record(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "file": self.source_file,
            "lastModified": self.last_modified,
            "indexed": self.indexed_at,
            "size": self.size_bytes,
        }

    @classmethod
    def from_record(cls, record: Any) -> "DocumentChunk":
        """Build a chunk from a snapshot record, raising ``ValueError`` if malformed."""
        if not isinstance(record, Mapping):
            raise ValueError(f"Chunk record must be an object, got {type(record).__name__}")
        missing = [key for key in RECORD_FIELDS if key not in record]
        if missing:
            raise ValueError(f"Chunk record is missing fields: {', '.join(missing)}")
        if not isinstance(record["content"], str) or not isinstance(record["file"], str):
            raise ValueError("Chunk record 'content' and 'file' must be strings")
        numbers = {}
        for key in ("lastModified", "indexed", "size"):
            value = record[key]
            # bool is an int subclass but never a valid timestamp or size
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Chunk record '{key}' must be a number")
            numbers[key] = int(value)
        return cls(
            content=record["content"],
            source_file=record["file"],
            last_modified=numbers["lastModified"],
            indexed_at=numbers["indexed"],
            size_bytes=numbers["size"],
        )


@dataclass(frozen=True, slots=True)
class FileRecord:
    """Metadata last recorded for one indexed file."""

    last_modified: int
    size_bytes: int


@dataclass(frozen=True, slots=True)
class RetrievalHit:
    chunk: DocumentChunk
    score: int
    matched_term_count: int


@dataclass(frozen=True, slots=True)
class RetrievalFeedback:
    """Sources shown to the user whenever retrieval found something."""

    query: str
    sources: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {"sources": list(self.sources), "query": self.query}


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: str  # "user" | "assistant" | "system"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    """Sampling options forwarded to the model runtime."""

    temperature: float | None = None
    context_length: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    repeat_penalty: float | None = None

    def to_wire(self) -> Dict[str, Any]:
        wire = {
            "temperature": self.temperature,
            "num_ctx": self.context_length,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "repeat_penalty": self.repeat_penalty,
        }
        return {key: value for key, value in wire.items() if value is not None}


@dataclass(frozen=True, slots=True)
class ChatRequest:
    """One user submission: the prompt, prior conversation and generation settings."""

    prompt: str
    history: tuple[ChatMessage, ...] = ()
    rag_enabled: bool = False
    options: GenerationOptions = field(default_factory=GenerationOptions)
    model: str | None = None
    think: bool = False


@dataclass(slots=True)
class GenerationResult:
    content: str = ""
    thinking: str = ""
    done: bool = False
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": {"content": self.content, "thinking": self.thinking},
            "done": self.done,
            "summary": dict(self.summary),
        }


@dataclass(frozen=True, slots=True)
class QueuedRequest:
    id: int
    payload: Any
    submitted_at: float


@dataclass(frozen=True, slots=True)
class ScanProgress:
    """Progress notification emitted while a scan runs."""

    message: str
    current_file: str | None = None
    completed: int = 0
    total: int = 0
    is_indexing: bool = True

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return round(self.completed / self.total * 100)

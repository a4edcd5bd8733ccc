"""Text helpers including the paragraph chunker."""

from __future__ import annotations

import re
from typing import Iterable, List

MIN_CHUNK_CHARS = 50
EXCERPT_CHARS = 200

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def chunk_paragraphs(text: str, *, min_chars: int = MIN_CHUNK_CHARS) -> List[str]:
    """Split text into paragraph chunks.

    This is a structural heuristic: paragraphs are separated by blank lines and
    fragments shorter than ``min_chars`` (headings, stray whitespace) are
    dropped. No token-aware splitting is performed. When nothing survives the
    filter the whole trimmed text becomes a single chunk, so a non-empty
    document always yields at least one chunk.
    """
    stripped = text.strip()
    if not stripped:
        return []

    chunks = [part.strip() for part in _PARAGRAPH_BREAK.split(text)]
    chunks = [part for part in chunks if len(part) >= min_chars]
    if not chunks:
        return [stripped]
    return chunks


def excerpt(text: str, limit: int = EXCERPT_CHARS) -> str:
    """Shorten text for display, marking truncation with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())

"""Lexical relevance scoring over the chunk store."""

from __future__ import annotations

import logging
import re
from typing import List, Sequence

from docchat.index.storage import IndexStore
from docchat.models import DocumentChunk, RetrievalFeedback, RetrievalHit
from docchat.utils.text import excerpt

LOGGER = logging.getLogger(__name__)

EXACT_MATCH_POINTS = 3
SUBSTRING_MATCH_POINTS = 1
MULTI_TERM_BONUS = 2
MAX_POINTS_PER_TERM = EXACT_MATCH_POINTS + MULTI_TERM_BONUS
MIN_TERM_LENGTH = 3


def tokenize(query: str) -> List[str]:
    """Lowercase whitespace-separated terms, dropping terms of two characters or fewer."""
    return [term for term in query.lower().split() if len(term) >= MIN_TERM_LENGTH]


def score_chunk(content: str, terms: Sequence[str]) -> tuple[int, int]:
    """Return ``(score, matched_term_count)`` for one chunk.

    A term found as a whole word earns 3 points, a term found only inside a
    longer word earns 1. Matching more than one term adds 2 points per
    matched term. Phrase proximity is not modelled.
    """
    text = content.lower()
    score = 0
    matched = 0
    for term in terms:
        if term not in text:
            continue
        matched += 1
        if re.search(rf"\b{re.escape(term)}\b", text):
            score += EXACT_MATCH_POINTS
        else:
            score += SUBSTRING_MATCH_POINTS
    if matched > 1:
        score += matched * MULTI_TERM_BONUS
    return score, matched


def minimum_score(term_count: int, sensitivity: float) -> float:
    """Score a chunk needs to be returned; never below one point."""
    max_possible = term_count * MAX_POINTS_PER_TERM
    return max(1.0, sensitivity / 100 * max_possible)


class Retriever:
    """Ranks indexed chunks against a free-text query."""

    def __init__(self, store: IndexStore, *, sensitivity: int = 70, max_results: int = 3) -> None:
        self.store = store
        self.sensitivity = sensitivity
        self.max_results = max_results

    def search(self, query: str, *, sensitivity: int | None = None) -> List[RetrievalHit]:
        terms = tokenize(query)
        if not terms:
            return []

        threshold = minimum_score(
            len(terms), self.sensitivity if sensitivity is None else sensitivity
        )
        hits: List[RetrievalHit] = []
        for chunk in self.store.snapshot():
            score, matched = score_chunk(chunk.content, terms)
            if score >= threshold:
                hits.append(RetrievalHit(chunk=chunk, score=score, matched_term_count=matched))

        # sorted() is stable, so equal scores keep store order
        ranked = sorted(hits, key=lambda hit: hit.score, reverse=True)[: self.max_results]
        LOGGER.debug(
            "Found %d relevant chunks for %d terms: %s",
            len(ranked),
            len(terms),
            [(hit.chunk.source_file, hit.score, hit.matched_term_count) for hit in ranked],
        )
        return ranked


def build_context(hits: Sequence[RetrievalHit]) -> str:
    """Text of the system message that carries retrieved chunks to the model."""
    results = "\n\n".join(f"[From {hit.chunk.source_file}]: {hit.chunk.content}" for hit in hits)
    return (
        "Here is relevant information from the user's documents to help answer "
        f"their question:\n\n{results}\n\n"
        "Please use this information to provide a more accurate and informed response."
    )


def build_feedback(query: str, hits: Sequence[RetrievalHit]) -> RetrievalFeedback:
    return RetrievalFeedback(
        query=query,
        sources=[_source(hit.chunk) for hit in hits],
    )


def _source(chunk: DocumentChunk) -> dict:
    return {
        "file": chunk.source_file,
        "excerptText": excerpt(chunk.content),
        "lastModified": chunk.last_modified,
    }

"""Tests for text utility functions."""

from __future__ import annotations

from docchat.utils.text import chunk_paragraphs, excerpt, normalize_whitespace


class TestChunkParagraphs:
    """Test chunk_paragraphs function."""

    def test_splits_on_blank_lines_and_drops_short(self) -> None:
        """Should drop fragments under fifty characters."""
        long_a = "A" * 60
        long_b = "B" * 80
        text = f"{long_a}\n\nshort\n\n{long_b}"

        assert chunk_paragraphs(text) == [long_a, long_b]

    def test_exactly_fifty_characters_kept(self) -> None:
        """Should keep a fragment of exactly the minimum length."""
        text = "x" * 50 + "\n\n" + "y" * 49

        assert chunk_paragraphs(text) == ["x" * 50]

    def test_whitespace_only_separator_lines(self) -> None:
        """Should treat lines holding only whitespace as paragraph breaks."""
        text = "a" * 55 + "\n  \t \n" + "b" * 55

        assert chunk_paragraphs(text) == ["a" * 55, "b" * 55]

    def test_fallback_to_whole_text(self) -> None:
        """Should return the trimmed text when every fragment is short."""
        assert chunk_paragraphs("  hi\n\nthere  ") == ["hi\n\nthere"]

    def test_empty_text(self) -> None:
        """Should return no chunks for empty or whitespace text."""
        assert chunk_paragraphs("") == []
        assert chunk_paragraphs(" \n\n ") == []

    def test_custom_minimum(self) -> None:
        """Should honor a custom minimum length."""
        assert chunk_paragraphs("abcd\n\nab", min_chars=3) == ["abcd"]


class TestExcerpt:
    """Test excerpt function."""

    def test_short_text_unchanged(self) -> None:
        """Should return short text as-is."""
        assert excerpt("short") == "short"

    def test_truncates_with_ellipsis(self) -> None:
        """Should cut at the limit and mark truncation."""
        assert excerpt("x" * 250) == "x" * 200 + "..."


class TestNormalizeWhitespace:
    """Test normalize_whitespace function."""

    def test_strips_and_drops_blank_lines(self) -> None:
        """Should strip lines and skip empty ones."""
        assert normalize_whitespace(["  a ", "", "  ", "b"]) == "a\nb"

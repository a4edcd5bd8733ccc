"""Plain-text extraction for every supported file type.

Text formats are read as UTF-8 and prefixed with a short header naming the
file, so that the file name itself becomes searchable. PDFs are read with
PyMuPDF (fitz), DOCX with python-docx and e-mail messages with the standard
``email`` package. Formats without an extractor raise ``ExtractionError``.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from email import policy
from email.parser import BytesParser
from pathlib import Path
from typing import Callable, Dict, Iterator

import docx
import fitz  # PyMuPDF

from docchat.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)

Extractor = Callable[[Path, str], str]

_TEXT_HEADERS = {
    ".md": "Markdown File",
    ".txt": "Text File",
    ".mmd": "Mermaid Diagram",
}


class ExtractionError(RuntimeError):
    """Raised when a file's text cannot be extracted."""


def placeholder_text(path: Path, ext: str) -> str:
    """Text stored in place of a file whose content could not be extracted."""
    return (
        f"{ext.lstrip('.').upper()} Document: {path.name}\n\n"
        "Error: Could not extract text content from this file."
    )


def _read_text(path: Path) -> str:
    # Undecodable bytes become U+FFFD so the rest of the file stays searchable
    return path.read_text(encoding="utf-8", errors="replace")


def _extract_plain(path: Path, ext: str) -> str:
    header = _TEXT_HEADERS.get(ext, f"{ext.lstrip('.').upper()} File")
    return f"{header}: {path.name}\n\n{_read_text(path)}"


def _extract_json(path: Path, ext: str) -> str:
    content = _read_text(path)
    try:
        content = json.dumps(json.loads(content), indent=2, ensure_ascii=False)
    except json.JSONDecodeError:
        LOGGER.debug("Indexing %s as raw text, it is not valid JSON", path)
    return f"JSON File: {path.name}\n\n{content}"


def _extract_csv(path: Path, ext: str) -> str:
    content = _read_text(path)
    first_row = next(csv.reader(io.StringIO(content)), [])
    headers = [column.strip() for column in first_row]
    if headers:
        return f"CSV File: {path.name}\nColumns: {', '.join(headers)}\n\nData:\n{content}"
    return f"CSV File: {path.name}\n\n{content}"


def iter_pdf_pages(path: Path) -> Iterator[str]:
    """Yield normalized text of each PDF page that has any."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        raise ExtractionError(f"Failed to open PDF {path.name}: {exc}") from exc

    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover
                LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized
    finally:
        doc.close()


def _extract_pdf(path: Path, ext: str) -> str:
    # Pages are separated by blank lines so each page chunks on its own
    return "\n\n".join(iter_pdf_pages(path))


def _extract_docx(path: Path, ext: str) -> str:
    try:
        document = docx.Document(str(path))
    except Exception as exc:
        raise ExtractionError(f"Failed to open DOCX {path.name}: {exc}") from exc
    paragraphs = [p.text.strip() for p in document.paragraphs if p.text.strip()]
    return "\n\n".join(paragraphs)


def _extract_eml(path: Path, ext: str) -> str:
    with path.open("rb") as handle:
        message = BytesParser(policy=policy.default).parse(handle)

    lines = [f"Email: {path.name}"]
    for header in ("From", "To", "Date", "Subject"):
        if message[header]:
            lines.append(f"{header}: {message[header]}")

    body = message.get_body(preferencelist=("plain",))
    text = body.get_content() if body is not None else ""
    return "\n".join(lines) + "\n\n" + text


EXTRACTORS: Dict[str, Extractor] = {
    ".md": _extract_plain,
    ".txt": _extract_plain,
    ".mmd": _extract_plain,
    ".json": _extract_json,
    ".csv": _extract_csv,
    ".pdf": _extract_pdf,
    ".docx": _extract_docx,
    ".eml": _extract_eml,
}


def extract_text(path: Path, ext: str) -> str:
    """Return the plain text of ``path``.

    Raises:
        ExtractionError: no extractor exists for ``ext``, the file cannot be
            decoded, or it contains no text at all.
        OSError: the file cannot be read.
    """
    ext = ext.lower()
    extractor = EXTRACTORS.get(ext)
    if extractor is None:
        raise ExtractionError(f"No text extractor available for {ext} files ({path.name})")

    text = extractor(path, ext)
    if not text.strip():
        raise ExtractionError(f"No text extracted from {path.name}")
    return text

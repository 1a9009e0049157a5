from __future__ import annotations

import io
import os
import tempfile

import docx2txt
from pypdf import PdfReader

from ...observability.logging import get_logger

log = get_logger("text_extraction")

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class TextExtractionError(RuntimeError):
    pass


def _kind(content_type: str | None, file_name: str | None) -> str:
    ct = str(content_type or "").split(";")[0].strip().lower()
    name = str(file_name or "").lower()
    if ct == "application/pdf" or name.endswith(".pdf"):
        return "pdf"
    if ct == DOCX_MIME or name.endswith((".docx", ".doc")):
        return "docx"
    return "text"


def _pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    parts: list[str] = []
    for i, page in enumerate(reader.pages):
        try:
            parts.append(page.extract_text() or "")
        except Exception as e:  # noqa: BLE001
            # A single unreadable page should not fail the whole document.
            log.warning("pdf_page_extract_failed", page=i, error=str(e))
    return "\n\n".join(p for p in parts if p.strip())


def _docx_text(data: bytes) -> str:
    # docx2txt wants a path.
    fd, path = tempfile.mkstemp(suffix=".docx")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return docx2txt.process(path) or ""
    finally:
        os.unlink(path)


def extract_text(data: bytes, *, content_type: str | None = None, file_name: str | None = None) -> str:
    if not data:
        raise TextExtractionError("File is empty")

    kind = _kind(content_type, file_name)
    try:
        if kind == "pdf":
            text = _pdf_text(data)
        elif kind == "docx":
            text = _docx_text(data)
        else:
            text = data.decode("utf-8", errors="replace")
    except Exception as e:  # noqa: BLE001
        raise TextExtractionError(f"Could not read {kind} file: {e}") from e

    text = (text or "").strip()
    if not text:
        raise TextExtractionError("No text could be extracted from the file")
    return text

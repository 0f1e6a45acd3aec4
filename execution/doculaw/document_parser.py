"""
Case Document Text Extraction

Extracts plain text from uploaded case documents so they can be indexed
and used as generation context.

Supported:
- PDF via PyMuPDF4LLM (markdown keeps tables readable) with PyMuPDF for page count
- DOCX via python-docx (paragraphs and table cells)
- Plain text / markdown
"""

import io
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_SUFFIXES = {".txt", ".md", ".csv"}


@dataclass
class ExtractedText:
    text: str
    page_count: int = 0
    mime_type: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def guess_mime_type(filename: str, mime_type: Optional[str] = None) -> str:
    """Resolve a usable MIME type, trusting the extension over generic uploads."""
    suffix = Path(filename or "").suffix.lower()
    if suffix == ".pdf":
        return PDF_MIME
    if suffix == ".docx":
        return DOCX_MIME
    if suffix in TEXT_SUFFIXES:
        return "text/plain"
    return mime_type or "application/octet-stream"


def _extract_pdf(data: bytes) -> ExtractedText:
    import fitz  # PyMuPDF
    import pymupdf4llm

    with fitz.open(stream=data, filetype="pdf") as doc:
        page_count = len(doc)
        text = pymupdf4llm.to_markdown(doc)

    return ExtractedText(text=text, page_count=page_count, mime_type=PDF_MIME)


def _extract_docx(data: bytes) -> ExtractedText:
    from docx import Document

    doc = Document(io.BytesIO(data))
    lines = [p.text for p in doc.paragraphs if p.text.strip()]

    for table in doc.tables:
        for row in table.rows:
            cells = [c.text.strip() for c in row.cells if c.text.strip()]
            if cells:
                lines.append(" | ".join(cells))

    return ExtractedText(text="\n".join(lines), page_count=0, mime_type=DOCX_MIME)


def extract_text(data: bytes, filename: str, mime_type: Optional[str] = None) -> ExtractedText:
    """
    Extract text from an uploaded file.

    Args:
        data: Raw file bytes
        filename: Original filename (used to detect the type)
        mime_type: MIME type reported by the upload, if any

    Returns:
        ExtractedText; empty text for unsupported types
    """
    resolved = guess_mime_type(filename, mime_type)

    if resolved == PDF_MIME:
        result = _extract_pdf(data)
    elif resolved == DOCX_MIME:
        result = _extract_docx(data)
    elif resolved.startswith("text/"):
        result = ExtractedText(text=data.decode("utf-8", errors="replace"), mime_type=resolved)
    else:
        logger.warning(f"No text extractor for {filename} ({resolved})")
        return ExtractedText(text="", mime_type=resolved)

    logger.info(f"Extracted {len(result.text)} chars from {filename} ({resolved})")
    return result

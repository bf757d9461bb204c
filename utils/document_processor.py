"""
Reference Document Processor

Extracts plain text from uploaded reference documents so it can be sent
along with later questions:
- PDF (.pdf) via pypdf
- Word (.docx) via python-docx
- Plain text (.txt) and Markdown (.md)

The extracted text is returned to the caller. Nothing is kept server-side.
"""

import io
import logging
from pathlib import Path

from docx import Document
from pypdf import PdfReader

from config import MAX_UPLOAD_BYTES
from exceptions import DocumentError


logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".pdf", ".docx", ".txt", ".md")


def extract_text(file_bytes: bytes, filename: str) -> str:
    """
    Extract text from an uploaded document.

    Args:
        file_bytes: Raw file content
        filename: Original filename, used to pick the extractor

    Returns:
        Extracted text, stripped

    Raises:
        DocumentError: If the format is unsupported, the file is too
            large, or extraction fails
    """
    ext = Path(filename or "").suffix.lower()

    if ext not in SUPPORTED_EXTENSIONS:
        raise DocumentError(
            f"Unsupported file type: {ext or 'none'}. "
            f"Supported formats: {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    if len(file_bytes) > MAX_UPLOAD_BYTES:
        raise DocumentError(
            f"File too large: {len(file_bytes)} bytes (limit {MAX_UPLOAD_BYTES})",
            status_code=413
        )

    if ext == ".pdf":
        text = _extract_pdf(file_bytes, filename)
    elif ext == ".docx":
        text = _extract_docx(file_bytes, filename)
    else:
        text = _extract_plain(file_bytes, filename)

    logger.info("Extracted %d characters from %s", len(text), filename)
    return text


def _extract_pdf(file_bytes: bytes, filename: str) -> str:
    try:
        reader = PdfReader(io.BytesIO(file_bytes))
        pages = []
        for page in reader.pages:
            page_text = page.extract_text() or ""
            if page_text.strip():
                pages.append(page_text.strip())
        return "\n\n".join(pages)
    except Exception as e:
        logger.error("Error extracting PDF %s: %s", filename, e)
        raise DocumentError(f"Could not extract text from PDF: {e}") from e


def _extract_docx(file_bytes: bytes, filename: str) -> str:
    try:
        doc = Document(io.BytesIO(file_bytes))

        paragraphs = [para.text for para in doc.paragraphs if para.text.strip()]

        # Tables are flattened one row per line
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    paragraphs.append(" | ".join(cells))

        return "\n\n".join(paragraphs)
    except Exception as e:
        logger.error("Error extracting DOCX %s: %s", filename, e)
        raise DocumentError(f"Could not extract text from DOCX: {e}") from e


def _extract_plain(file_bytes: bytes, filename: str) -> str:
    try:
        text = file_bytes.decode("utf-8")
    except UnicodeDecodeError:
        text = file_bytes.decode("latin-1")
        logger.warning("File %s decoded with latin-1 fallback", filename)
    return text.strip()

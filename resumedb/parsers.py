"""PDF text extraction for uploaded resumes.

pdfplumber is tried first, pypdf is the fallback. Extraction never raises:
problems come back as a ``TextExtraction`` carrying a readable failure
reason, which the ingestion pipeline downgrades to a parsing warning.
"""
from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass

import pdfplumber
from pypdf import PdfReader

from .config import settings

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF"
FAILURE_PREFIX = "Unable to parse PDF content: "


@dataclass
class TextExtraction:
    """Result of PDF text extraction."""
    text: str
    failure: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def failed(cls, reason: str) -> "TextExtraction":
        return cls(text="", failure=f"{FAILURE_PREFIX}{reason}")


def is_pdf(content: bytes | None) -> bool:
    """Check the ``%PDF`` file signature."""
    return bool(content) and content[:4] == PDF_SIGNATURE


def _extract_with_pdfplumber(content: bytes) -> str:
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        parts = []
        for page in pdf.pages:
            page_text = page.extract_text()
            if page_text:
                parts.append(page_text)
    return "\n\n".join(parts)


def _extract_with_pypdf(content: bytes) -> str:
    reader = PdfReader(io.BytesIO(content))
    parts = []
    for page in reader.pages:
        page_text = page.extract_text()
        if page_text:
            parts.append(page_text)
    return "\n\n".join(parts)


def extract_pdf_text_sync(content: bytes) -> str:
    """Blocking extraction: pdfplumber, then pypdf if pdfplumber errors.

    Raises:
        Exception: Whatever pypdf raises when both libraries fail.
    """
    try:
        return _extract_with_pdfplumber(content)
    except Exception as e:
        logger.warning(f"pdfplumber extraction failed: {e}, trying pypdf")
    return _extract_with_pypdf(content)


async def extract_text(
    content: bytes,
    *,
    timeout: float | None = None,
    min_bytes: int | None = None,
) -> TextExtraction:
    """Extract plain text from PDF bytes within a wall-clock budget.

    Args:
        content: Raw PDF bytes
        timeout: Seconds allowed for extraction (default from settings)
        min_bytes: Smallest buffer accepted as a PDF (default from settings)

    Returns:
        TextExtraction with the text, or with ``failure`` set
    """
    timeout = settings.upload.parse_timeout if timeout is None else timeout
    min_bytes = settings.upload.min_pdf_bytes if min_bytes is None else min_bytes

    logger.debug(f"PDF buffer size: {len(content)} bytes")
    if len(content) < min_bytes:
        logger.error("PDF buffer too small to be a valid PDF")
        return TextExtraction.failed("Buffer too small.")

    if not is_pdf(content):
        logger.error(f"Invalid PDF header: {content[:4]!r}")
        return TextExtraction.failed("Invalid PDF header.")

    try:
        text = await asyncio.wait_for(asyncio.to_thread(extract_pdf_text_sync, content), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"PDF parsing timed out after {timeout:g} seconds")
        return TextExtraction.failed(f"PDF parsing timed out after {timeout:g} seconds.")
    except Exception as e:
        logger.error(f"Error extracting text from PDF: {e}", exc_info=True)
        return TextExtraction.failed(f"{e}.")

    if not text or not text.strip():
        logger.error("PDF parsing returned empty text")
        return TextExtraction.failed("PDF parsing returned empty text.")

    logger.info(f"PDF successfully parsed: {len(text)} chars")
    return TextExtraction(text=text)

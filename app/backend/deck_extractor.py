import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pypdf import PdfReader

from .constants import MIN_DECK_TEXT_CHARS
from .errors import InsufficientContent, InvalidDocument


ALLOWED_PDF_MIME_TYPES = {"application/pdf", "application/x-pdf"}
DEFAULT_DECK_NAME = "Untitled deck"

_PAGE_FOOTER_RE = re.compile(r"--\s*\d+\s*of\s*\d+\s*--")
_EXCESS_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass
class PdfTextResult:
    text: str
    page_count: int


def validate_pdf_upload(content_type: Optional[str]) -> None:
    """Accept a deck by its declared MIME type; the file name is not consulted."""
    if (content_type or "").lower() not in ALLOWED_PDF_MIME_TYPES:
        raise InvalidDocument(f"Only PDF files are allowed (got content type {content_type or 'unknown'}).")


def derive_deck_name(filename: str) -> str:
    stem = re.sub(r"\.pdf$", "", Path(filename or "").name, flags=re.IGNORECASE)
    name = re.sub(r"[-_]", " ", stem).strip()
    return name or DEFAULT_DECK_NAME


def normalize_deck_text(text: str) -> str:
    cleaned = _PAGE_FOOTER_RE.sub("", text or "")
    cleaned = _EXCESS_BLANK_LINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()


def extract_pdf_text(data: bytes) -> PdfTextResult:
    try:
        reader = PdfReader(io.BytesIO(data))
        pages: List[str] = [(page.extract_text() or "") for page in reader.pages]
    except Exception as exc:
        raise InvalidDocument(
            "This file doesn't appear to be a valid PDF. Please try a different file."
        ) from exc

    text = normalize_deck_text("\n\n".join(pages))
    if len(text) < MIN_DECK_TEXT_CHARS:
        raise InsufficientContent(
            "Could not extract enough text from this PDF. "
            "Make sure it contains readable text, not just images."
        )

    return PdfTextResult(text=text, page_count=len(pages))

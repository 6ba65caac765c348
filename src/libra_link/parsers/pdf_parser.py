"""PDF adapter using PyMuPDF."""

from __future__ import annotations

import logging
from pathlib import Path

import pymupdf

from libra_link.errors import AdapterError
from libra_link.library.models import Document, LineAnchor

from .base import BaseParser

log = logging.getLogger(__name__)


class PdfParser(BaseParser):
    FORMAT = "pdf"
    SUPPORTED_EXTENSIONS = (".pdf",)

    def load(self, file_path: Path) -> Document:
        doc = Document(title=file_path.name, format=self.FORMAT)
        has_text = False

        try:
            pdf = pymupdf.open(str(file_path))
        except pymupdf.FileDataError as e:
            raise AdapterError(f"invalid pdf: {e}") from e
        try:
            for page_num in range(1, len(pdf) + 1):
                page = pdf[page_num - 1]
                content = page.get_text()
                doc.append(f"--- Page {page_num} ---", LineAnchor(page=page_num, offset=0))
                for offset, line in enumerate(split_normalized_lines(content), start=1):
                    doc.append(line, LineAnchor(page=page_num, offset=offset))
                    if line.strip():
                        has_text = True
        except RuntimeError as e:
            raise AdapterError(f"invalid pdf: {e}") from e
        finally:
            pdf.close()

        if not has_text:
            log.warning("No text layer in %s", file_path)
            raise AdapterError("pdf has no extractable text (likely scanned/image-only)")
        return doc


def split_normalized_lines(content: str) -> list[str]:
    """Normalise newlines and whitespace, collapsing blank runs to one blank line."""
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    out: list[str] = []
    prev_blank = False
    for raw in normalized.split("\n"):
        trimmed = raw.strip()
        if not trimmed:
            if not prev_blank and out:
                out.append("")
                prev_blank = True
            continue
        out.append(" ".join(trimmed.split()))
        prev_blank = False
    return out or [""]

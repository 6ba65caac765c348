"""Base parser interface for all document formats."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from libra_link.errors import UnsupportedFormatError
from libra_link.library.models import Document


class BaseParser(ABC):
    """Abstract base for format-specific adapters."""

    FORMAT: str = ""
    SUPPORTED_EXTENSIONS: tuple[str, ...] = ()

    @abstractmethod
    def load(self, file_path: Path) -> Document:
        """Read a file and return its line-indexed document."""

    @classmethod
    def can_handle(cls, file_path: Path) -> bool:
        return file_path.suffix.lower() in cls.SUPPORTED_EXTENSIONS


def get_parser(file_path: Path) -> BaseParser:
    """Return the adapter for a file, chosen by extension."""
    from libra_link.parsers.epub_parser import EpubParser
    from libra_link.parsers.pdf_parser import PdfParser
    from libra_link.parsers.txt_parser import TxtParser

    parsers: list[type[BaseParser]] = [TxtParser, PdfParser, EpubParser]
    for parser_cls in parsers:
        if parser_cls.can_handle(file_path):
            return parser_cls()
    raise UnsupportedFormatError("unsupported document format")


def load_document(file_path: str | Path) -> Document:
    path = Path(file_path)
    return get_parser(path).load(path)

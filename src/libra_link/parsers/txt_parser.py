"""Plain text adapter."""

from __future__ import annotations

from pathlib import Path

from libra_link.library.models import Document, LineAnchor

from .base import BaseParser


class TxtParser(BaseParser):
    FORMAT = "txt"
    SUPPORTED_EXTENSIONS = (".txt", "")

    def load(self, file_path: Path) -> Document:
        doc = Document(title=file_path.name, format=self.FORMAT)
        # Lines end at LF only; a bare CR stays part of the line.
        with open(file_path, encoding="utf-8", errors="replace", newline="\n") as fh:
            for offset, raw in enumerate(fh):
                line = raw[:-1] if raw.endswith("\n") else raw
                if line.endswith("\r"):
                    line = line[:-1]
                doc.append(line, LineAnchor(offset=offset))

        # The reader always needs a cursor target.
        if not doc.lines:
            doc.append("", LineAnchor(offset=0))
        return doc

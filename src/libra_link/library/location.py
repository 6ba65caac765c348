"""Reading-position tokens that survive a round trip through any document format.

Canonical forms::

    fmt=txt;line=N
    fmt=pdf;page=P;line=N
    fmt=epub;spine=S;offset=O;line=N

The legacy ``line:N`` form is accepted when decoding only.
"""

from __future__ import annotations

from typing import Optional

from .models import Document, LineAnchor


def clamp_location(doc: Optional[Document], line: int) -> int:
    if doc is None or not doc.lines:
        return 0
    if line < 0:
        return 0
    if line >= len(doc.lines):
        return len(doc.lines) - 1
    return line


def encode_location(doc: Optional[Document], line: int) -> str:
    if doc is None:
        return "fmt=txt;line=0"
    line = clamp_location(doc, line)
    fmt = (doc.format or "").strip().lower() or "txt"
    anchor = _anchor_at(doc, line)

    if fmt == "pdf":
        page = anchor.page
        if page <= 0:
            page = _infer(doc, line, lambda a: a.page if a.page > 0 else None)
        if page is None or page <= 0:
            page = 1
        return f"fmt=pdf;page={page};line={line}"

    if fmt == "epub":
        spine = anchor.spine
        if spine < 0:
            inferred = _infer(doc, line, lambda a: a.spine if a.spine >= 0 else None)
            spine = -1 if inferred is None else inferred
        offset = anchor.offset if anchor.offset >= 0 else line
        return f"fmt=epub;spine={spine};offset={offset};line={line}"

    return f"fmt=txt;line={line}"


def decode_location(doc: Optional[Document], token: str) -> tuple[int, bool]:
    """Resolve a token to a line index. Returns ``(0, False)`` when nothing matches."""
    if doc is None:
        return 0, False
    token = (token or "").strip()
    if not token:
        return 0, False

    if token.startswith("line:"):
        value = _parse_int(token[len("line:") :])
        if value is None:
            return 0, False
        return clamp_location(doc, value), True

    fields = _parse_fields(token)

    # A cached line number is authoritative.
    line = _parse_int(fields.get("line"))
    if line is not None:
        return clamp_location(doc, line), True

    fmt = fields.get("fmt", "").strip().lower()
    if fmt == "pdf":
        page = _parse_int(fields.get("page"))
        if page is not None:
            found = _first_line(doc, lambda a: a.page == page)
            if found is not None:
                return found, True
    elif fmt == "epub":
        spine = _parse_int(fields.get("spine"))
        if spine is not None:
            offset = _parse_int(fields.get("offset"))
            if offset is not None:
                found = _first_line(
                    doc, lambda a: a.spine == spine and a.offset == offset
                )
                if found is not None:
                    return found, True
            found = _first_line(doc, lambda a: a.spine == spine)
            if found is not None:
                return found, True

    return 0, False


def _parse_fields(token: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for pair in token.split(";"):
        pair = pair.strip()
        if not pair or "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        key = key.strip().lower()
        if key:
            out[key] = value.strip()
    return out


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _anchor_at(doc: Document, line: int) -> LineAnchor:
    if 0 <= line < len(doc.line_index):
        return doc.line_index[line]
    return LineAnchor(line=line)


def _infer(doc: Document, line: int, pick) -> Optional[int]:
    """Nearest anchor value scanning backward from ``line``, then forward."""
    anchors = doc.line_index
    for i in range(min(line, len(anchors) - 1), -1, -1):
        value = pick(anchors[i])
        if value is not None:
            return value
    for i in range(line + 1, len(anchors)):
        value = pick(anchors[i])
        if value is not None:
            return value
    return None


def _first_line(doc: Document, match) -> Optional[int]:
    for i, anchor in enumerate(doc.line_index):
        if match(anchor):
            return clamp_location(doc, i)
    return None

"""Data models for documents and the local cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

READING_MODES = ("normal", "zen")
THEME_MODES = ("light", "dark", "sepia", "high_contrast")
TYPOGRAPHY_PROFILES = ("compact", "comfortable", "large")
GUTTER_PRESETS = ("none", "narrow", "comfortable", "wide")
ENTITY_TYPES = ("progress", "annotation", "bookmark", "preference", "reader_state")
OPERATIONS = ("upsert", "delete")
BOOK_FORMATS = ("txt", "pdf", "epub")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Documents ──────────────────────────────────────────


@dataclass
class LineAnchor:
    """Pins a display line back to its source structure."""

    line: int = 0
    page: int = -1  # >= 1 for PDF
    spine: int = -1  # >= 0 for EPUB
    offset: int = -1


@dataclass
class Document:
    """Line-indexed plain text produced by a format adapter."""

    title: str
    format: str  # txt, pdf, epub
    lines: list[str] = field(default_factory=list)
    line_index: list[LineAnchor] = field(default_factory=list)

    def append(self, text: str, anchor: LineAnchor) -> None:
        anchor.line = len(self.lines)
        self.lines.append(text)
        self.line_index.append(anchor)

    def __len__(self) -> int:
        return len(self.lines)


# ── Cache rows ─────────────────────────────────────────


@dataclass
class SessionState:
    access_token: str = ""
    refresh_token: str = ""
    user_id: str = ""
    updated_at: Optional[datetime] = None


@dataclass
class PreferencesCache:
    user_id: str
    reading_mode: str = "normal"
    zen_restore_on_open: bool = True
    theme_mode: str = "dark"
    theme_overrides: dict[str, str] = field(default_factory=dict)
    typography_profile: str = "comfortable"
    row_version: int = 1
    updated_at: Optional[datetime] = None


@dataclass
class ReaderStateCache:
    user_id: str
    current_ebook_id: str = ""
    current_location: str = ""
    reading_mode: str = "normal"
    row_version: int = 1
    last_opened_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class EbookCache:
    id: str
    title: str
    author: str = ""
    format: str = ""
    file_path: str = ""  # local storage key
    row_version: int = 1
    deleted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ShareCache:
    id: str
    ebook_id: str = ""
    owner_id: str = ""
    status: str = ""
    title: str = ""
    borrow_until: Optional[datetime] = None
    row_version: int = 1
    deleted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class OutboxEvent:
    entity_type: str
    entity_id: str
    operation: str = "upsert"
    payload: Optional[dict[str, Any]] = None
    base_version: Optional[int] = None
    id: str = ""
    idempotency_key: str = ""
    attempt_count: int = 0
    next_attempt_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_error: Optional[str] = None
    succeeded_at: Optional[datetime] = None


@dataclass
class SyncCheckpoint:
    last_server_timestamp: Optional[datetime] = None
    last_event_id: str = ""
    updated_at: Optional[datetime] = None


@dataclass
class UISettings:
    gutter_preset: str = "comfortable"
    updated_at: Optional[datetime] = None

"""SQLite store: session, library and share caches, preferences, reader state and the sync outbox."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from libra_link.errors import StorageError

from .models import (
    GUTTER_PRESETS,
    EbookCache,
    OutboxEvent,
    PreferencesCache,
    ReaderStateCache,
    SessionState,
    ShareCache,
    SyncCheckpoint,
    UISettings,
    utcnow,
)

log = logging.getLogger(__name__)

DEFAULT_PENDING_LIMIT = 25
DEFAULT_RETRY_DELAY = timedelta(seconds=10)

_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA busy_timeout = 5000",
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS session_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    access_token TEXT NOT NULL DEFAULT '',
    refresh_token TEXT NOT NULL DEFAULT '',
    user_id TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ebooks_cache (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    author TEXT,
    format TEXT,
    file_path TEXT,
    row_version INTEGER NOT NULL DEFAULT 1,
    deleted_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS shares_cache (
    id TEXT PRIMARY KEY,
    ebook_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    status TEXT NOT NULL,
    title TEXT,
    borrow_until TEXT,
    row_version INTEGER NOT NULL DEFAULT 1,
    deleted_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS preferences_cache (
    user_id TEXT PRIMARY KEY,
    reading_mode TEXT NOT NULL DEFAULT 'normal',
    zen_restore_on_open INTEGER NOT NULL DEFAULT 1,
    theme_mode TEXT NOT NULL DEFAULT 'dark',
    theme_overrides TEXT NOT NULL DEFAULT '{}',
    typography_profile TEXT NOT NULL DEFAULT 'comfortable',
    row_version INTEGER NOT NULL DEFAULT 1 CHECK (row_version >= 1),
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reader_state_cache (
    user_id TEXT PRIMARY KEY,
    current_ebook_id TEXT,
    current_location TEXT,
    reading_mode TEXT NOT NULL DEFAULT 'normal',
    row_version INTEGER NOT NULL DEFAULT 1,
    last_opened_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS outbox_events (
    id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    operation TEXT NOT NULL,
    payload TEXT,
    base_version INTEGER,
    idempotency_key TEXT NOT NULL UNIQUE,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    next_attempt_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_error TEXT,
    succeeded_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_outbox_pending
    ON outbox_events (succeeded_at, next_attempt_at, created_at);

CREATE TABLE IF NOT EXISTS sync_checkpoint (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_server_timestamp TEXT,
    last_event_id TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ui_settings (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    gutter_preset TEXT NOT NULL DEFAULT 'comfortable',
    updated_at TEXT NOT NULL
);
"""

_FRACTION = re.compile(r"\.(\d+)")


def format_ts(value: datetime) -> str:
    """RFC3339 with a fixed nine-digit fraction so stored values sort as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond:06d}000Z"


def parse_ts(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most microseconds
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        log.warning("Unparseable timestamp in store: %r", raw)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _opt_ts(value: Optional[datetime]) -> Optional[str]:
    return format_ts(value) if value is not None else None


def _blank_to_none(value: str) -> Optional[str]:
    return value if value else None


class Database:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            for pragma in _PRAGMAS:
                self._conn.execute(pragma)
            self._init_schema()
        except sqlite3.Error as e:
            raise StorageError(f"open database {db_path}: {e}") from e

    def _init_schema(self) -> None:
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _write(self, sql: str, params: Iterable[Any] = ()) -> int:
        with self._lock:
            cur = self._conn.execute(sql, tuple(params))
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchone()

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    # ── Session ────────────────────────────────────────────

    def get_session_state(self) -> Optional[SessionState]:
        row = self._fetchone("SELECT * FROM session_state WHERE id = 1")
        if row is None:
            return None
        return SessionState(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            user_id=row["user_id"],
            updated_at=parse_ts(row["updated_at"]),
        )

    def upsert_session_state(self, state: SessionState) -> None:
        self._write(
            """INSERT INTO session_state (id, access_token, refresh_token, user_id, updated_at)
               VALUES (1, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   access_token = excluded.access_token,
                   refresh_token = excluded.refresh_token,
                   user_id = excluded.user_id,
                   updated_at = excluded.updated_at""",
            (
                state.access_token,
                state.refresh_token,
                state.user_id,
                format_ts(state.updated_at or utcnow()),
            ),
        )

    def clear_session_state(self) -> None:
        self._write("DELETE FROM session_state")

    # ── Preferences ────────────────────────────────────────

    def get_preferences(self, user_id: str) -> Optional[PreferencesCache]:
        row = self._fetchone(
            "SELECT * FROM preferences_cache WHERE user_id = ?", (user_id,)
        )
        if row is None:
            return None
        try:
            overrides = json.loads(row["theme_overrides"] or "{}") or {}
        except json.JSONDecodeError:
            overrides = {}
        return PreferencesCache(
            user_id=row["user_id"],
            reading_mode=row["reading_mode"],
            zen_restore_on_open=bool(row["zen_restore_on_open"]),
            theme_mode=row["theme_mode"],
            theme_overrides=dict(overrides),
            typography_profile=row["typography_profile"],
            row_version=row["row_version"],
            updated_at=parse_ts(row["updated_at"]),
        )

    def upsert_preferences(self, prefs: PreferencesCache) -> None:
        self._write(
            """INSERT INTO preferences_cache
               (user_id, reading_mode, zen_restore_on_open, theme_mode, theme_overrides,
                typography_profile, row_version, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   reading_mode = excluded.reading_mode,
                   zen_restore_on_open = excluded.zen_restore_on_open,
                   theme_mode = excluded.theme_mode,
                   theme_overrides = excluded.theme_overrides,
                   typography_profile = excluded.typography_profile,
                   row_version = excluded.row_version,
                   updated_at = excluded.updated_at""",
            (
                prefs.user_id,
                prefs.reading_mode,
                1 if prefs.zen_restore_on_open else 0,
                prefs.theme_mode,
                json.dumps(prefs.theme_overrides or {}, sort_keys=True),
                prefs.typography_profile,
                max(1, prefs.row_version),
                format_ts(prefs.updated_at or utcnow()),
            ),
        )

    # ── Reader state ───────────────────────────────────────

    def get_reader_state(self, user_id: str) -> Optional[ReaderStateCache]:
        row = self._fetchone(
            "SELECT * FROM reader_state_cache WHERE user_id = ?", (user_id,)
        )
        if row is None:
            return None
        return ReaderStateCache(
            user_id=row["user_id"],
            current_ebook_id=row["current_ebook_id"] or "",
            current_location=row["current_location"] or "",
            reading_mode=row["reading_mode"],
            row_version=row["row_version"],
            last_opened_at=parse_ts(row["last_opened_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )

    def upsert_reader_state(self, state: ReaderStateCache) -> None:
        self._write(
            """INSERT INTO reader_state_cache
               (user_id, current_ebook_id, current_location, reading_mode, row_version,
                last_opened_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   current_ebook_id = excluded.current_ebook_id,
                   current_location = excluded.current_location,
                   reading_mode = excluded.reading_mode,
                   row_version = excluded.row_version,
                   last_opened_at = excluded.last_opened_at,
                   updated_at = excluded.updated_at""",
            (
                state.user_id,
                _blank_to_none(state.current_ebook_id),
                _blank_to_none(state.current_location),
                state.reading_mode,
                max(1, state.row_version),
                _opt_ts(state.last_opened_at),
                format_ts(state.updated_at or utcnow()),
            ),
        )

    # ── Ebooks ─────────────────────────────────────────────

    def upsert_ebooks_from_remote(self, ebooks: Iterable[Any]) -> None:
        """Mirror server ebooks (objects with id, title, format, storage_key)."""
        now = format_ts(utcnow())
        with self._lock:
            for item in ebooks:
                self._conn.execute(
                    """INSERT INTO ebooks_cache
                       (id, title, author, format, file_path, row_version, deleted_at, updated_at)
                       VALUES (?, ?, NULL, ?, ?, 1, NULL, ?)
                       ON CONFLICT(id) DO UPDATE SET
                           title = excluded.title,
                           format = excluded.format,
                           file_path = excluded.file_path,
                           row_version = excluded.row_version,
                           deleted_at = NULL,
                           updated_at = excluded.updated_at""",
                    (
                        item.id,
                        item.title,
                        _blank_to_none(item.format),
                        _blank_to_none(item.storage_key),
                        now,
                    ),
                )
            self._conn.commit()

    def list_ebooks(self, query: str = "") -> list[EbookCache]:
        query = query.strip()
        if not query:
            rows = self._fetchall(
                "SELECT * FROM ebooks_cache WHERE deleted_at IS NULL ORDER BY title COLLATE NOCASE, id"
            )
        else:
            q = f"%{query.lower()}%"
            rows = self._fetchall(
                """SELECT * FROM ebooks_cache
                   WHERE deleted_at IS NULL
                     AND (lower(title) LIKE ? OR lower(coalesce(author, '')) LIKE ?)
                   ORDER BY title COLLATE NOCASE, id""",
                (q, q),
            )
        return [self._row_to_ebook(r) for r in rows]

    def mark_ebook_deleted(self, ebook_id: str) -> None:
        now = format_ts(utcnow())
        self._write(
            "UPDATE ebooks_cache SET deleted_at = ?, updated_at = ? WHERE id = ?",
            (now, now, ebook_id),
        )

    @staticmethod
    def _row_to_ebook(row: sqlite3.Row) -> EbookCache:
        return EbookCache(
            id=row["id"],
            title=row["title"],
            author=row["author"] or "",
            format=row["format"] or "",
            file_path=row["file_path"] or "",
            row_version=row["row_version"],
            deleted_at=parse_ts(row["deleted_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )

    # ── Shares ─────────────────────────────────────────────

    def upsert_shares_from_remote(self, shares: Iterable[Any]) -> None:
        now = format_ts(utcnow())
        with self._lock:
            for item in shares:
                self._conn.execute(
                    """INSERT INTO shares_cache
                       (id, ebook_id, owner_id, status, title, borrow_until, row_version,
                        deleted_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, NULL, 1, NULL, ?)
                       ON CONFLICT(id) DO UPDATE SET
                           ebook_id = excluded.ebook_id,
                           owner_id = excluded.owner_id,
                           status = excluded.status,
                           title = excluded.title,
                           row_version = excluded.row_version,
                           deleted_at = NULL,
                           updated_at = excluded.updated_at""",
                    (
                        item.id,
                        item.ebook_id,
                        item.owner_user_id,
                        item.status,
                        _blank_to_none(item.title),
                        now,
                    ),
                )
            self._conn.commit()

    def list_shares(self) -> list[ShareCache]:
        rows = self._fetchall(
            "SELECT * FROM shares_cache WHERE deleted_at IS NULL ORDER BY updated_at DESC, id"
        )
        return [self._row_to_share(r) for r in rows]

    def mark_share_deleted(self, share_id: str) -> None:
        now = format_ts(utcnow())
        self._write(
            "UPDATE shares_cache SET deleted_at = ?, updated_at = ? WHERE id = ?",
            (now, now, share_id),
        )

    @staticmethod
    def _row_to_share(row: sqlite3.Row) -> ShareCache:
        return ShareCache(
            id=row["id"],
            ebook_id=row["ebook_id"],
            owner_id=row["owner_id"],
            status=row["status"],
            title=row["title"] or "",
            borrow_until=parse_ts(row["borrow_until"]),
            row_version=row["row_version"],
            deleted_at=parse_ts(row["deleted_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )

    # ── Outbox ─────────────────────────────────────────────

    def enqueue_outbox(self, event: OutboxEvent) -> OutboxEvent:
        now = utcnow()
        if not event.id:
            event.id = str(uuid.uuid4())
        if not event.idempotency_key:
            event.idempotency_key = str(uuid.uuid4())
        event.created_at = event.created_at or now
        event.updated_at = event.updated_at or now
        event.next_attempt_at = event.next_attempt_at or now

        payload = json.dumps(event.payload, default=_json_default)
        self._write(
            """INSERT INTO outbox_events
               (id, entity_type, entity_id, operation, payload, base_version, idempotency_key,
                attempt_count, next_attempt_at, created_at, updated_at, last_error, succeeded_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL)""",
            (
                event.id,
                event.entity_type,
                event.entity_id,
                event.operation,
                None if payload == "null" else payload,
                event.base_version,
                event.idempotency_key,
                event.attempt_count,
                format_ts(event.next_attempt_at),
                format_ts(event.created_at),
                format_ts(event.updated_at),
                event.last_error,
            ),
        )
        return event

    def list_pending_outbox(self, limit: int = DEFAULT_PENDING_LIMIT) -> list[OutboxEvent]:
        if limit <= 0:
            limit = DEFAULT_PENDING_LIMIT
        rows = self._fetchall(
            """SELECT * FROM outbox_events
               WHERE succeeded_at IS NULL AND next_attempt_at <= ?
               ORDER BY next_attempt_at ASC, created_at ASC
               LIMIT ?""",
            (format_ts(utcnow()), limit),
        )
        return [self._row_to_event(r) for r in rows]

    def count_pending_outbox(self) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS n FROM outbox_events WHERE succeeded_at IS NULL"
        )
        return int(row["n"]) if row else 0

    def get_outbox_event(self, event_id: str) -> Optional[OutboxEvent]:
        row = self._fetchone("SELECT * FROM outbox_events WHERE id = ?", (event_id,))
        return self._row_to_event(row) if row else None

    def mark_outbox_done(self, event_id: str) -> bool:
        """Returns True only for the call that actually acknowledged the event."""
        now = format_ts(utcnow())
        changed = self._write(
            """UPDATE outbox_events
               SET succeeded_at = ?, last_error = NULL, updated_at = ?
               WHERE id = ? AND succeeded_at IS NULL""",
            (now, now, event_id),
        )
        return changed > 0

    def mark_outbox_retry(
        self,
        event_id: str,
        next_attempt_at: Optional[datetime],
        last_error: str,
    ) -> None:
        now = utcnow()
        if next_attempt_at is None:
            next_attempt_at = now + DEFAULT_RETRY_DELAY
        self._write(
            """UPDATE outbox_events
               SET attempt_count = attempt_count + 1,
                   next_attempt_at = ?,
                   last_error = ?,
                   updated_at = ?
               WHERE id = ? AND succeeded_at IS NULL""",
            (format_ts(next_attempt_at), last_error, format_ts(now), event_id),
        )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> OutboxEvent:
        payload = json.loads(row["payload"]) if row["payload"] else None
        return OutboxEvent(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            operation=row["operation"],
            payload=payload,
            base_version=row["base_version"],
            idempotency_key=row["idempotency_key"],
            attempt_count=row["attempt_count"],
            next_attempt_at=parse_ts(row["next_attempt_at"]),
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
            last_error=row["last_error"],
            succeeded_at=parse_ts(row["succeeded_at"]),
        )

    # ── Sync checkpoint ────────────────────────────────────

    def get_sync_checkpoint(self) -> Optional[SyncCheckpoint]:
        row = self._fetchone("SELECT * FROM sync_checkpoint WHERE id = 1")
        if row is None:
            return None
        return SyncCheckpoint(
            last_server_timestamp=parse_ts(row["last_server_timestamp"]),
            last_event_id=row["last_event_id"] or "",
            updated_at=parse_ts(row["updated_at"]),
        )

    def upsert_sync_checkpoint(self, checkpoint: SyncCheckpoint) -> None:
        with self._lock:
            current = self.get_sync_checkpoint()
            if (
                current is not None
                and current.last_server_timestamp is not None
                and checkpoint.last_server_timestamp is not None
                and checkpoint.last_server_timestamp < current.last_server_timestamp
            ):
                return
            self._write(
                """INSERT INTO sync_checkpoint (id, last_server_timestamp, last_event_id, updated_at)
                   VALUES (1, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       last_server_timestamp = excluded.last_server_timestamp,
                       last_event_id = excluded.last_event_id,
                       updated_at = excluded.updated_at""",
                (
                    _opt_ts(checkpoint.last_server_timestamp),
                    _blank_to_none(checkpoint.last_event_id),
                    format_ts(checkpoint.updated_at or utcnow()),
                ),
            )

    # ── UI settings ────────────────────────────────────────

    def get_ui_settings(self) -> Optional[UISettings]:
        row = self._fetchone("SELECT * FROM ui_settings WHERE id = 1")
        if row is None:
            return None
        return UISettings(
            gutter_preset=row["gutter_preset"],
            updated_at=parse_ts(row["updated_at"]),
        )

    def upsert_ui_settings(self, settings: UISettings) -> None:
        preset = settings.gutter_preset.strip().lower()
        if preset not in GUTTER_PRESETS:
            preset = "comfortable"
        self._write(
            """INSERT INTO ui_settings (id, gutter_preset, updated_at)
               VALUES (1, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   gutter_preset = excluded.gutter_preset,
                   updated_at = excluded.updated_at""",
            (preset, format_ts(settings.updated_at or utcnow())),
        )


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_ts(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

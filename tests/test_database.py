"""Tests for database operations."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from libra_link.api.types import Ebook, Share
from libra_link.errors import StorageError
from libra_link.library.database import Database, format_ts, parse_ts
from libra_link.library.models import (
    OutboxEvent,
    PreferencesCache,
    ReaderStateCache,
    SessionState,
    SyncCheckpoint,
    UISettings,
    utcnow,
)


def _event(entity_id: str = "user-1", **kwargs) -> OutboxEvent:
    return OutboxEvent(
        entity_type="preference",
        entity_id=entity_id,
        payload={"themeMode": "sepia"},
        base_version=2,
        **kwargs,
    )


class TestTimestamps:
    def test_format_fixed_width(self):
        ts = datetime(2024, 3, 1, 12, 30, 5, 123456, tzinfo=timezone.utc)
        assert format_ts(ts) == "2024-03-01T12:30:05.123456000Z"

    def test_naive_treated_as_utc(self):
        assert format_ts(datetime(2024, 3, 1)) == "2024-03-01T00:00:00.000000000Z"

    def test_parse_nanoseconds(self):
        parsed = parse_ts("2024-03-01T12:30:05.123456789Z")
        assert parsed == datetime(2024, 3, 1, 12, 30, 5, 123456, tzinfo=timezone.utc)

    def test_parse_offsets_and_garbage(self):
        assert parse_ts("2024-03-01T12:00:00+02:00") == datetime(
            2024, 3, 1, 10, 0, tzinfo=timezone.utc
        )
        assert parse_ts("") is None
        assert parse_ts(None) is None
        assert parse_ts("yesterday") is None


class TestOpen:
    def test_unopenable_path(self, tmp_path: Path):
        with pytest.raises(StorageError):
            Database(tmp_path / "missing-dir" / "x.db")

    def test_schema_is_idempotent(self, tmp_path: Path):
        Database(tmp_path / "a.db").close()
        db = Database(tmp_path / "a.db")
        assert db.count_pending_outbox() == 0
        db.close()


class TestSession:
    def test_round_trip_and_clear(self, db: Database):
        assert db.get_session_state() is None
        db.upsert_session_state(SessionState("a", "r", "u1"))
        db.upsert_session_state(SessionState("a2", "r2", "u2"))
        state = db.get_session_state()
        assert (state.access_token, state.refresh_token, state.user_id) == ("a2", "r2", "u2")
        assert state.updated_at is not None
        db.clear_session_state()
        assert db.get_session_state() is None


class TestPreferences:
    def test_defaults_round_trip(self, db: Database):
        db.upsert_preferences(PreferencesCache(user_id="u1"))
        prefs = db.get_preferences("u1")
        assert prefs.theme_mode == "dark"
        assert prefs.typography_profile == "comfortable"
        assert prefs.zen_restore_on_open is True
        assert prefs.theme_overrides == {}
        assert prefs.row_version == 1

    def test_overrides_and_version(self, db: Database):
        db.upsert_preferences(
            PreferencesCache(
                user_id="u1",
                theme_mode="sepia",
                theme_overrides={"accent": "#ff7f50"},
                zen_restore_on_open=False,
                row_version=4,
            )
        )
        prefs = db.get_preferences("u1")
        assert prefs.theme_overrides == {"accent": "#ff7f50"}
        assert prefs.zen_restore_on_open is False
        assert prefs.row_version == 4

    def test_row_version_floor(self, db: Database):
        db.upsert_preferences(PreferencesCache(user_id="u1", row_version=0))
        assert db.get_preferences("u1").row_version == 1

    def test_missing_user(self, db: Database):
        assert db.get_preferences("nobody") is None


class TestReaderState:
    def test_round_trip(self, db: Database):
        opened = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
        db.upsert_reader_state(
            ReaderStateCache(
                user_id="u1",
                current_ebook_id="e1",
                current_location="fmt=txt;line=4",
                reading_mode="zen",
                row_version=3,
                last_opened_at=opened,
            )
        )
        state = db.get_reader_state("u1")
        assert state.current_ebook_id == "e1"
        assert state.current_location == "fmt=txt;line=4"
        assert state.reading_mode == "zen"
        assert state.last_opened_at == opened

    def test_blank_fields(self, db: Database):
        db.upsert_reader_state(ReaderStateCache(user_id="u1"))
        state = db.get_reader_state("u1")
        assert state.current_ebook_id == ""
        assert state.last_opened_at is None


class TestEbooks:
    def test_mirror_and_search(self, db: Database):
        db.upsert_ebooks_from_remote(
            [
                Ebook(id="2", title="zebra tales", format="txt", storage_key="books/b.txt"),
                Ebook(id="1", title="Alpha Book", format="pdf", storage_key="books/a.pdf"),
            ]
        )
        books = db.list_ebooks()
        assert [b.title for b in books] == ["Alpha Book", "zebra tales"]
        assert books[0].file_path == "books/a.pdf"
        assert [b.id for b in db.list_ebooks("ALPHA")] == ["1"]
        assert db.list_ebooks("missing") == []

    def test_upsert_refreshes_and_undeletes(self, db: Database):
        db.upsert_ebooks_from_remote([Ebook(id="1", title="Old")])
        db.mark_ebook_deleted("1")
        assert db.list_ebooks() == []
        db.upsert_ebooks_from_remote([Ebook(id="1", title="New", format="epub")])
        books = db.list_ebooks()
        assert [(b.title, b.format) for b in books] == [("New", "epub")]
        assert books[0].deleted_at is None


class TestShares:
    def test_mirror_and_delete(self, db: Database):
        db.upsert_shares_from_remote(
            [Share(id="s1", ebook_id="e1", owner_user_id="o1", status="active", title="Shared")]
        )
        shares = db.list_shares()
        assert len(shares) == 1
        assert (shares[0].owner_id, shares[0].title) == ("o1", "Shared")
        db.mark_share_deleted("s1")
        assert db.list_shares() == []


class TestOutbox:
    def test_enqueue_assigns_ids(self, db: Database):
        event = db.enqueue_outbox(_event())
        assert event.id
        assert event.idempotency_key
        stored = db.get_outbox_event(event.id)
        assert stored.payload == {"themeMode": "sepia"}
        assert stored.base_version == 2
        assert stored.attempt_count == 0
        assert db.count_pending_outbox() == 1

    def test_duplicate_idempotency_key_rejected(self, db: Database):
        db.enqueue_outbox(_event(idempotency_key="same"))
        with pytest.raises(sqlite3.IntegrityError):
            db.enqueue_outbox(_event(idempotency_key="same"))

    def test_pending_order_and_due_filter(self, db: Database):
        now = utcnow()
        late = db.enqueue_outbox(_event("late", next_attempt_at=now - timedelta(seconds=1)))
        early = db.enqueue_outbox(_event("early", next_attempt_at=now - timedelta(seconds=30)))
        db.enqueue_outbox(_event("future", next_attempt_at=now + timedelta(hours=1)))
        pending = db.list_pending_outbox(10)
        assert [e.id for e in pending] == [early.id, late.id]
        assert len(db.list_pending_outbox(1)) == 1

    def test_mark_done_only_once(self, db: Database):
        event = db.enqueue_outbox(_event())
        assert db.mark_outbox_done(event.id) is True
        assert db.mark_outbox_done(event.id) is False
        assert db.count_pending_outbox() == 0
        assert db.get_outbox_event(event.id).succeeded_at is not None

    def test_retry_bumps_attempts(self, db: Database):
        event = db.enqueue_outbox(_event())
        later = utcnow() + timedelta(minutes=5)
        db.mark_outbox_retry(event.id, later, "boom")
        stored = db.get_outbox_event(event.id)
        assert stored.attempt_count == 1
        assert stored.last_error == "boom"
        assert db.list_pending_outbox() == []

    def test_retry_ignored_after_success(self, db: Database):
        event = db.enqueue_outbox(_event())
        db.mark_outbox_done(event.id)
        db.mark_outbox_retry(event.id, None, "late failure")
        assert db.get_outbox_event(event.id).attempt_count == 0


class TestCheckpoint:
    def test_never_moves_backwards(self, db: Database):
        now = utcnow()
        db.upsert_sync_checkpoint(SyncCheckpoint(last_server_timestamp=now, last_event_id="b"))
        db.upsert_sync_checkpoint(
            SyncCheckpoint(last_server_timestamp=now - timedelta(minutes=1), last_event_id="a")
        )
        assert db.get_sync_checkpoint().last_event_id == "b"
        db.upsert_sync_checkpoint(
            SyncCheckpoint(last_server_timestamp=now + timedelta(minutes=1), last_event_id="c")
        )
        assert db.get_sync_checkpoint().last_event_id == "c"


class TestUISettings:
    def test_round_trip(self, db: Database):
        assert db.get_ui_settings() is None
        db.upsert_ui_settings(UISettings(gutter_preset=" Wide "))
        assert db.get_ui_settings().gutter_preset == "wide"

    def test_unknown_preset_normalised(self, db: Database):
        db.upsert_ui_settings(UISettings(gutter_preset="enormous"))
        assert db.get_ui_settings().gutter_preset == "comfortable"

"""Tests for the persisted session file."""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from libra_link.library.models import SessionState
from libra_link.session import SessionFile


class TestSessionFile:
    def test_missing_file_is_no_session(self, tmp_path: Path):
        assert SessionFile(tmp_path / "session.json").load() is None

    def test_blank_file_is_no_session(self, tmp_path: Path):
        path = tmp_path / "session.json"
        path.write_text("  \n")
        assert SessionFile(path).load() is None

    def test_save_and_load(self, tmp_path: Path):
        store = SessionFile(tmp_path / "session.json")
        store.save(SessionState("acc", "ref", "user-1"))
        loaded = store.load()
        assert loaded is not None
        assert (loaded.access_token, loaded.refresh_token, loaded.user_id) == ("acc", "ref", "user-1")
        assert loaded.updated_at is not None

    def test_wire_keys(self, tmp_path: Path):
        path = tmp_path / "session.json"
        SessionFile(path).save(SessionState("acc", "ref", "user-1"))
        data = json.loads(path.read_text())
        assert set(data) == {"accessToken", "refreshToken", "userId", "savedAt"}
        assert data["savedAt"].endswith("Z")

    def test_file_is_private(self, tmp_path: Path):
        path = tmp_path / "session.json"
        SessionFile(path).save(SessionState("acc", "ref", "u"))
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_save_none_rejected(self, tmp_path: Path):
        with pytest.raises(ValueError):
            SessionFile(tmp_path / "session.json").save(None)

    def test_clear_is_idempotent(self, tmp_path: Path):
        path = tmp_path / "session.json"
        store = SessionFile(path)
        store.save(SessionState("acc", "ref", "u"))
        store.clear()
        store.clear()
        assert not path.exists()
        assert store.load() is None

    def test_corrupt_file_raises(self, tmp_path: Path):
        path = tmp_path / "session.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            SessionFile(path).load()

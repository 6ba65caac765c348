"""Tests for configuration."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from libra_link.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_SYNC_BATCH_SIZE,
    DEFAULT_SYNC_INTERVAL,
    AppConfig,
    load_config,
)

_KEYS = (
    "LIBRA_TUI_API_BASE_URL",
    "LIBRA_TUI_DATA_DIR",
    "LIBRA_TUI_HTTP_TIMEOUT_SECONDS",
    "LIBRA_TUI_SYNC_INTERVAL_SECONDS",
    "LIBRA_TUI_SYNC_BATCH_SIZE",
    "LIBRA_TUI_LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
    # Keep the .env search away from the developer's own files.
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    yield
    for key in _KEYS:
        os.environ.pop(key, None)


class TestAppConfig:
    def test_defaults(self, tmp_path: Path):
        config = AppConfig(data_dir=tmp_path / "data")
        assert config.api_base_url == DEFAULT_API_BASE_URL
        assert config.http_timeout == DEFAULT_HTTP_TIMEOUT
        assert config.sync_interval == DEFAULT_SYNC_INTERVAL
        assert config.sync_batch_size == DEFAULT_SYNC_BATCH_SIZE
        assert config.log_level == "DEBUG"

    def test_derived_paths(self, tmp_path: Path):
        data = tmp_path / "data"
        config = AppConfig(data_dir=data)
        assert config.db_path == data / "libra-link.db"
        assert config.session_path == data / "session.json"
        assert config.books_dir == data / "books"
        assert config.log_path == data / "libra-link.log"

    def test_dirs_created(self, tmp_path: Path):
        data = tmp_path / "nested" / "data"
        AppConfig(data_dir=data)
        assert data.is_dir()
        assert (data / "books").is_dir()

    def test_batch_size_clamped(self, tmp_path: Path):
        assert AppConfig(data_dir=tmp_path, sync_batch_size=0).sync_batch_size == 1
        assert AppConfig(data_dir=tmp_path, sync_batch_size=-5).sync_batch_size == 1


class TestLoadConfig:
    def test_defaults_without_env(self, clean_env, tmp_path: Path):
        config = load_config()
        assert config.api_base_url == DEFAULT_API_BASE_URL
        assert config.data_dir == tmp_path / "home" / ".local" / "share" / "libra-link-tui"

    def test_load_from_env_file(self, clean_env, tmp_path: Path):
        env_file = tmp_path / "custom.env"
        env_file.write_text(
            "LIBRA_TUI_API_BASE_URL=https://books.example.com\n"
            f"LIBRA_TUI_DATA_DIR={tmp_path / 'store'}\n"
            "LIBRA_TUI_HTTP_TIMEOUT_SECONDS=30\n"
            "LIBRA_TUI_SYNC_INTERVAL_SECONDS=5\n"
            "LIBRA_TUI_SYNC_BATCH_SIZE=7\n"
            "LIBRA_TUI_LOG_LEVEL=info\n"
        )
        config = load_config(env_path=env_file)
        assert config.api_base_url == "https://books.example.com"
        assert config.data_dir == tmp_path / "store"
        assert config.http_timeout == 30.0
        assert config.sync_interval == 5.0
        assert config.sync_batch_size == 7
        assert config.log_level == "INFO"

    def test_cwd_env_file(self, clean_env, tmp_path: Path):
        (tmp_path / ".env").write_text("LIBRA_TUI_API_BASE_URL=http://cwd:9000\n")
        data_dir = tmp_path / "cwd-data"
        os.environ["LIBRA_TUI_DATA_DIR"] = str(data_dir)
        config = load_config()
        assert config.api_base_url == "http://cwd:9000"
        assert config.data_dir == data_dir

    def test_invalid_durations_fall_back(self, clean_env, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("LIBRA_TUI_DATA_DIR", str(tmp_path / "d"))
        monkeypatch.setenv("LIBRA_TUI_HTTP_TIMEOUT_SECONDS", "soon")
        monkeypatch.setenv("LIBRA_TUI_SYNC_INTERVAL_SECONDS", "-4")
        monkeypatch.setenv("LIBRA_TUI_SYNC_BATCH_SIZE", "lots")
        config = load_config()
        assert config.http_timeout == DEFAULT_HTTP_TIMEOUT
        assert config.sync_interval == DEFAULT_SYNC_INTERVAL
        assert config.sync_batch_size == DEFAULT_SYNC_BATCH_SIZE

    def test_zero_batch_size_clamped(self, clean_env, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("LIBRA_TUI_DATA_DIR", str(tmp_path / "d"))
        monkeypatch.setenv("LIBRA_TUI_SYNC_BATCH_SIZE", "0")
        assert load_config().sync_batch_size == 1

    def test_data_dir_expands_user(self, clean_env, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("LIBRA_TUI_DATA_DIR", "~/books-data")
        config = load_config()
        assert config.data_dir == tmp_path / "home" / "books-data"

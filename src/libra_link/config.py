"""Configuration management via environment variables and an optional .env file."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "http://localhost:8080"
DEFAULT_HTTP_TIMEOUT = 15.0
DEFAULT_SYNC_INTERVAL = 10.0
DEFAULT_SYNC_BATCH_SIZE = 25


def _xdg_config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def _default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "libra-link-tui"


@dataclass
class AppConfig:
    api_base_url: str = DEFAULT_API_BASE_URL

    # Paths
    data_dir: Path = field(default_factory=_default_data_dir)
    db_path: Path = field(init=False)
    session_path: Path = field(init=False)
    books_dir: Path = field(init=False)
    log_path: Path = field(init=False)

    # Network and sync
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    sync_interval: float = DEFAULT_SYNC_INTERVAL
    sync_batch_size: int = DEFAULT_SYNC_BATCH_SIZE

    log_level: str = "DEBUG"

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        self.db_path = self.data_dir / "libra-link.db"
        self.session_path = self.data_dir / "session.json"
        self.books_dir = self.data_dir / "books"
        self.log_path = self.data_dir / "libra-link.log"
        if self.sync_batch_size < 1:
            self.sync_batch_size = 1
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.books_dir.mkdir(parents=True, exist_ok=True)


def _seconds_from_env(key: str, fallback: float) -> float:
    raw = os.getenv(key, "")
    if not raw:
        return fallback
    try:
        seconds = int(raw)
    except ValueError:
        return fallback
    return float(seconds) if seconds > 0 else fallback


def _int_from_env(key: str, fallback: int) -> int:
    raw = os.getenv(key, "")
    if not raw:
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def load_config(env_path: Optional[Path] = None) -> AppConfig:
    """Load config from the environment. Searches for a .env in CWD then config dir."""
    search_paths = [
        env_path,
        Path.cwd() / ".env",
        _xdg_config_home() / "libra-link" / ".env",
        Path.home() / ".env",
    ]
    for p in search_paths:
        if p and p.exists():
            load_dotenv(p)
            break

    data_dir = os.getenv("LIBRA_TUI_DATA_DIR", "")
    return AppConfig(
        api_base_url=os.getenv("LIBRA_TUI_API_BASE_URL", "") or DEFAULT_API_BASE_URL,
        data_dir=Path(data_dir).expanduser() if data_dir else _default_data_dir(),
        http_timeout=_seconds_from_env(
            "LIBRA_TUI_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT
        ),
        sync_interval=_seconds_from_env(
            "LIBRA_TUI_SYNC_INTERVAL_SECONDS", DEFAULT_SYNC_INTERVAL
        ),
        sync_batch_size=_int_from_env(
            "LIBRA_TUI_SYNC_BATCH_SIZE", DEFAULT_SYNC_BATCH_SIZE
        ),
        log_level=os.getenv("LIBRA_TUI_LOG_LEVEL", "DEBUG").upper(),
    )

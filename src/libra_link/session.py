"""Persisted login tokens in ``session.json``."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from libra_link.library.database import format_ts, parse_ts
from libra_link.library.models import SessionState, utcnow

log = logging.getLogger(__name__)


class SessionFile:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[SessionState]:
        """Read the saved session. A missing or empty file means no session."""
        with self._lock:
            try:
                content = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
        if not content.strip():
            return None
        data = json.loads(content)
        return SessionState(
            access_token=data.get("accessToken", ""),
            refresh_token=data.get("refreshToken", ""),
            user_id=data.get("userId", ""),
            updated_at=parse_ts(data.get("savedAt")),
        )

    def save(self, state: Optional[SessionState]) -> None:
        if state is None:
            raise ValueError("session state is required")
        state.updated_at = utcnow()
        encoded = json.dumps(
            {
                "accessToken": state.access_token,
                "refreshToken": state.refresh_token,
                "userId": state.user_id,
                "savedAt": format_ts(state.updated_at),
            },
            indent=2,
        )
        with self._lock:
            fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(encoded)
            os.chmod(self._path, 0o600)
        log.debug("Session saved for user %s", state.user_id)

    def clear(self) -> None:
        with self._lock:
            try:
                self._path.unlink()
            except FileNotFoundError:
                pass

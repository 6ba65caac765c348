"""Async I/O behind the coordinator. Every method returns a result message."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import shutil
import sqlite3
import stat
import time
import uuid
import webbrowser
from dataclasses import replace
from pathlib import Path
from typing import Optional

from libra_link.api.client import ApiClient
from libra_link.api.types import CreateEbookInput, Preferences, ReaderState, User
from libra_link.config import AppConfig
from libra_link.errors import (
    APIError,
    LibraLinkError,
    MissingTokenError,
    ValidationError,
    is_retryable,
)
from libra_link.library.database import Database
from libra_link.library.location import decode_location
from libra_link.library.models import (
    BOOK_FORMATS,
    EbookCache,
    OutboxEvent,
    PreferencesCache,
    ReaderStateCache,
    SessionState,
    UISettings,
    utcnow,
)
from libra_link.parsers.base import load_document
from libra_link.session import SessionFile

from .messages import (
    AddBookResult,
    BootstrapResult,
    DocumentLoaded,
    EbooksLoaded,
    GooglePollResult,
    GoogleStartResult,
    LoginResult,
    LogoutResult,
    PatchResult,
    PrefsLoaded,
    ReaderStateLoaded,
    SharesLoaded,
    ShareActionResult,
    SignupResult,
    UISettingsLoaded,
    UISettingsSaved,
)
from .state import AddBookPrepared

log = logging.getLogger(__name__)

REMOTE_LIST_LIMIT = 50
DUPLICATE_SCAN_LIMIT = 200
REPORT_REASONS = ("copyright", "abuse", "spam", "other")
_HASH_CHUNK = 1024 * 1024


def infer_format(path: str) -> str:
    ext = Path(path.strip()).suffix.lower().lstrip(".")
    return ext if ext in BOOK_FORMATS else ""


def file_checksum(path: Path) -> tuple[str, int]:
    """SHA-256 hex digest and byte size of a file."""
    hasher = hashlib.sha256()
    size = 0
    with open(path, "rb") as fh:
        while chunk := fh.read(_HASH_CHUNK):
            hasher.update(chunk)
            size += len(chunk)
    return hasher.hexdigest(), size


def copy_exclusive(source: Path, dest: Path) -> None:
    """Copy ``source`` to ``dest``, refusing to overwrite an existing file."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    with open(source, "rb") as src, open(dest, "xb") as dst:
        shutil.copyfileobj(src, dst)
        dst.flush()
        os.fsync(dst.fileno())


def _prefs_from_wire(prefs: Preferences, user_id: str) -> PreferencesCache:
    return PreferencesCache(
        user_id=prefs.user_id or user_id,
        reading_mode=prefs.reading_mode,
        zen_restore_on_open=prefs.zen_restore_on_open,
        theme_mode=prefs.theme_mode,
        theme_overrides=dict(prefs.theme_overrides),
        typography_profile=prefs.typography_profile,
        row_version=prefs.row_version,
        updated_at=utcnow(),
    )


def _prefs_to_wire(prefs: PreferencesCache) -> Preferences:
    return Preferences(
        user_id=prefs.user_id,
        reading_mode=prefs.reading_mode,
        zen_restore_on_open=prefs.zen_restore_on_open,
        theme_mode=prefs.theme_mode,
        theme_overrides=dict(prefs.theme_overrides),
        typography_profile=prefs.typography_profile,
        row_version=prefs.row_version,
    )


def _reader_state_from_wire(state: ReaderState, user_id: str) -> ReaderStateCache:
    return ReaderStateCache(
        user_id=state.user_id or user_id,
        current_ebook_id=state.current_ebook_id,
        current_location=state.current_location,
        reading_mode=state.reading_mode,
        row_version=state.row_version,
        last_opened_at=state.last_opened_at,
        updated_at=utcnow(),
    )


class Commands:
    """Performs every side effect the coordinator asks for.

    Local cache access goes straight to the database; network calls go
    through the API client; file hashing, copying and document parsing run
    in worker threads.
    """

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        api: ApiClient,
        session_file: SessionFile,
    ) -> None:
        self._config = config
        self._db = db
        self._api = api
        self._session = session_file

    # ── Session ────────────────────────────────────────────

    def persist_session(self, user_id: str) -> None:
        access, refresh, _ = self._api.session()
        self._session.save(SessionState(access, refresh, user_id))
        self._db.upsert_session_state(
            SessionState(access, refresh, user_id, updated_at=utcnow())
        )

    def _persist_quietly(self, user_id: str) -> None:
        try:
            self.persist_session(user_id)
        except (OSError, sqlite3.Error) as e:
            log.error("Failed to persist session for %s: %s", user_id, e)

    def _forget_session(self) -> None:
        self._api.clear_session()
        try:
            self._session.clear()
            self._db.clear_session_state()
        except (OSError, sqlite3.Error) as e:
            log.error("Failed to clear stored session: %s", e)

    async def bootstrap(self) -> BootstrapResult:
        try:
            saved = self._session.load()
        except (OSError, ValueError) as e:
            log.warning("Unreadable session file %s: %s", self._session.path, e)
            return BootstrapResult(error=e)
        if saved is None:
            log.debug("No saved session")
            return BootstrapResult()

        self._api.set_session(saved.access_token, saved.refresh_token, saved.user_id)
        try:
            try:
                user = await self._api.me()
            except (APIError, MissingTokenError) as e:
                if isinstance(e, APIError) and not e.is_auth:
                    raise
                log.info("Access token rejected, refreshing session")
                user = await self._api.refresh()
        except APIError as e:
            if e.is_transient and saved.user_id:
                log.warning("API unreachable, continuing offline as %s", saved.user_id)
                return BootstrapResult(user=User(id=saved.user_id), offline=True)
            if e.is_auth:
                self._forget_session()
            return BootstrapResult(error=e)
        except MissingTokenError as e:
            self._forget_session()
            return BootstrapResult(error=e)

        self._persist_quietly(user.id)
        return BootstrapResult(user=user)

    async def login(self, identifier: str, password: str) -> LoginResult:
        try:
            user = await self._api.login(identifier, password)
        except LibraLinkError as e:
            return LoginResult(error=e)
        self._persist_quietly(user.id)
        return LoginResult(user=user)

    async def signup(self, email: str, username: str, password: str) -> SignupResult:
        try:
            user = await self._api.register(email, username, password)
        except LibraLinkError as e:
            return SignupResult(error=e)
        self._persist_quietly(user.id)
        return SignupResult(user=user)

    async def logout(self) -> LogoutResult:
        error: Optional[Exception] = None
        try:
            await self._api.logout()
        except LibraLinkError as e:
            log.warning("Remote logout failed: %s", e)
            error = e
        self._forget_session()
        return LogoutResult(error=error)

    async def start_google(self) -> GoogleStartResult:
        try:
            start = await self._api.start_google_device_auth()
        except LibraLinkError as e:
            return GoogleStartResult(error=e)
        if start.auth_url.strip():
            try:
                await asyncio.to_thread(webbrowser.open, start.auth_url)
            except webbrowser.Error as e:
                log.warning("Could not open browser: %s", e)
        return GoogleStartResult(start=start)

    async def poll_google(self, device_code: str) -> GooglePollResult:
        if not device_code.strip():
            return GooglePollResult()
        try:
            result = await self._api.poll_google_device_auth(device_code)
        except LibraLinkError as e:
            return GooglePollResult(error=e)
        if result.status.lower() == "approved" and result.user is not None:
            self._persist_quietly(result.user.id)
        return GooglePollResult(result=result)

    # ── Library ────────────────────────────────────────────

    async def fetch_ebooks(self, query: str = "") -> EbooksLoaded:
        try:
            remote = await self._api.list_ebooks(REMOTE_LIST_LIMIT)
        except LibraLinkError as e:
            log.warning("Library fetch failed, using cache: %s", e)
            try:
                return EbooksLoaded(ebooks=self._db.list_ebooks(query))
            except sqlite3.Error:
                return EbooksLoaded(error=e)

        try:
            self._db.upsert_ebooks_from_remote(remote)
            return EbooksLoaded(ebooks=self._db.list_ebooks(query))
        except sqlite3.Error as e:
            log.error("Library cache update failed: %s", e)
            return EbooksLoaded(error=e)

    async def load_local_ebooks(self, query: str = "") -> EbooksLoaded:
        try:
            return EbooksLoaded(ebooks=self._db.list_ebooks(query))
        except sqlite3.Error as e:
            return EbooksLoaded(error=e)

    async def open_book(
        self, ebook: EbookCache, reader_state: Optional[ReaderStateCache]
    ) -> DocumentLoaded:
        path = ebook.file_path.strip() or str(self._config.books_dir / f"{ebook.id}.txt")
        try:
            doc = await asyncio.to_thread(load_document, path)
        except (LibraLinkError, OSError) as e:
            log.warning("Failed to open %s: %s", path, e)
            return DocumentLoaded(ebook=ebook, error=e)

        line = 0
        if reader_state is not None and reader_state.current_ebook_id.strip() == ebook.id.strip():
            restored, ok = decode_location(doc, reader_state.current_location)
            if ok:
                line = restored
        return DocumentLoaded(ebook=ebook, document=doc, line=line)

    async def prepare_add_book(
        self,
        source: str,
        title: str,
        description: str = "",
        language: str = "",
        fmt: str = "",
    ) -> AddBookResult:
        source = source.strip()
        title = title.strip()
        fmt = fmt.strip().lower()
        try:
            if not source:
                raise ValidationError("source file path is required")
            if not title:
                raise ValidationError("title is required")
            if not fmt:
                fmt = infer_format(source)
                if not fmt:
                    raise ValidationError("format is required (txt, pdf, epub)")
            if fmt not in BOOK_FORMATS:
                raise ValidationError(f'unsupported format "{fmt}" (allowed: txt, pdf, epub)')

            source_path = Path(source).expanduser().absolute()
            if not stat.S_ISREG(source_path.stat().st_mode):
                raise ValidationError("source path must be a regular file")
            ext = source_path.suffix.lower()
            if ext.lstrip(".") not in BOOK_FORMATS:
                raise ValidationError(
                    f'unsupported source extension "{ext}" (allowed: .txt, .pdf, .epub)'
                )
            checksum, size = await asyncio.to_thread(file_checksum, source_path)
        except (ValidationError, OSError) as e:
            return AddBookResult(error=e)

        prepared = AddBookPrepared(
            source_path=source_path,
            title=title,
            description=description.strip(),
            language_code=language.strip(),
            format=fmt,
            checksum=checksum,
            file_size=size,
            imported_at=utcnow(),
            base_dest_path=self._config.books_dir / f"{checksum}{ext}",
            ext=ext,
        )

        if prepared.base_dest_path.exists():
            log.info("Duplicate import detected locally: %s", prepared.base_dest_path)
            return AddBookResult(duplicate=True, prepared=prepared)

        try:
            remote = await self._api.list_ebooks(DUPLICATE_SCAN_LIMIT)
        except LibraLinkError as e:
            log.debug("Remote duplicate scan skipped: %s", e)
        else:
            for item in remote:
                if item.checksum_sha256.strip().lower() == checksum:
                    log.info("Duplicate import detected remotely: %s", item.id)
                    return AddBookResult(duplicate=True, prepared=prepared)

        return await self.create_book(prepared, allow_duplicate=False)

    async def create_book(self, prepared: AddBookPrepared, allow_duplicate: bool) -> AddBookResult:
        dest = prepared.base_dest_path
        if allow_duplicate:
            dest = dest.parent / f"{prepared.checksum}-{time.time_ns()}{prepared.ext}"

        try:
            await asyncio.to_thread(copy_exclusive, prepared.source_path, dest)
        except OSError as e:
            return AddBookResult(error=e)

        try:
            created = await self._api.create_ebook(
                CreateEbookInput(
                    title=prepared.title,
                    format=prepared.format,
                    storage_key=str(dest),
                    file_size_bytes=prepared.file_size,
                    checksum_sha256=prepared.checksum,
                    description=prepared.description,
                    language_code=prepared.language_code,
                    imported_at=prepared.imported_at,
                )
            )
        except LibraLinkError as e:
            dest.unlink(missing_ok=True)
            return AddBookResult(error=e)

        log.info("Imported %s as %s", prepared.source_path, created.id)
        return AddBookResult(created=created)

    # ── Community ──────────────────────────────────────────

    async def fetch_shares(self) -> SharesLoaded:
        try:
            remote = await self._api.list_shares(REMOTE_LIST_LIMIT)
        except LibraLinkError as e:
            log.warning("Community fetch failed, using cache: %s", e)
            try:
                return SharesLoaded(shares=self._db.list_shares())
            except sqlite3.Error:
                return SharesLoaded(error=e)

        try:
            self._db.upsert_shares_from_remote(remote)
            return SharesLoaded(shares=self._db.list_shares())
        except sqlite3.Error as e:
            log.error("Community cache update failed: %s", e)
            return SharesLoaded(error=e)

    async def borrow_share(self, share_id: str) -> ShareActionResult:
        try:
            await self._api.borrow_share(share_id)
        except APIError as e:
            if e.is_gone:
                self._db.mark_share_deleted(share_id)
            return ShareActionResult("borrow", share_id, error=e)
        except LibraLinkError as e:
            return ShareActionResult("borrow", share_id, error=e)
        return ShareActionResult("borrow", share_id)

    async def review_share(self, share_id: str, rating: str, text: str = "") -> ShareActionResult:
        try:
            try:
                value = int(rating.strip())
            except ValueError:
                raise ValidationError("rating must be between 1 and 5") from None
            if not 1 <= value <= 5:
                raise ValidationError("rating must be between 1 and 5")
            await self._api.upsert_review(share_id, value, text.strip())
        except LibraLinkError as e:
            return ShareActionResult("review", share_id, error=e)
        return ShareActionResult("review", share_id)

    async def report_share(self, share_id: str, reason: str, details: str = "") -> ShareActionResult:
        reason = reason.strip().lower()
        try:
            if not reason:
                raise ValidationError("reason is required")
            if reason not in REPORT_REASONS:
                raise ValidationError(
                    "reason must be one of: " + ", ".join(REPORT_REASONS)
                )
            await self._api.report_share(share_id, reason, details.strip())
        except LibraLinkError as e:
            return ShareActionResult("report", share_id, error=e)
        return ShareActionResult("report", share_id)

    # ── Preferences & reader state ─────────────────────────

    async def fetch_prefs(self, user_id: str) -> PrefsLoaded:
        try:
            prefs = await self._api.get_preferences()
        except LibraLinkError as e:
            cached = self._db.get_preferences(user_id)
            if cached is not None:
                log.warning("Preferences fetch failed, using cache: %s", e)
                return PrefsLoaded(prefs=cached)
            return PrefsLoaded(error=e)
        local = _prefs_from_wire(prefs, user_id)
        self._db.upsert_preferences(local)
        return PrefsLoaded(prefs=local)

    async def fetch_reader_state(self, user_id: str) -> ReaderStateLoaded:
        try:
            state = await self._api.get_reader_state()
        except LibraLinkError as e:
            cached = self._db.get_reader_state(user_id)
            if cached is not None:
                log.warning("Reader state fetch failed, using cache: %s", e)
                return ReaderStateLoaded(state=cached)
            return ReaderStateLoaded(error=e)
        local = _reader_state_from_wire(state, user_id)
        self._db.upsert_reader_state(local)
        return ReaderStateLoaded(state=local)

    def _next_version(self, cached_version: Optional[int], current: int) -> int:
        prior = cached_version if cached_version is not None else current
        return max(1, prior + 1)

    async def patch_prefs(self, prefs: PreferencesCache) -> PatchResult:
        """Write preferences locally, then remotely; queue them when the API fails."""
        cached = self._db.get_preferences(prefs.user_id)
        local = replace(
            prefs,
            theme_overrides=dict(prefs.theme_overrides),
            row_version=self._next_version(cached.row_version if cached else None, prefs.row_version),
            updated_at=utcnow(),
        )
        self._db.upsert_preferences(local)

        try:
            patched = await self._api.patch_preferences(_prefs_to_wire(local))
        except LibraLinkError as e:
            if not is_retryable(e):
                return PatchResult("prefs", error=e)
            self._enqueue(
                "preference",
                local.user_id,
                {
                    "readingMode": local.reading_mode,
                    "zenRestoreOnOpen": local.zen_restore_on_open,
                    "themeMode": local.theme_mode,
                    "themeOverrides": dict(local.theme_overrides),
                    "typographyProfile": local.typography_profile,
                },
                local.row_version,
            )
            return PatchResult("prefs", error=e, queued=True)

        remote = _prefs_from_wire(patched, local.user_id)
        self._db.upsert_preferences(remote)
        return PatchResult("prefs", prefs=remote)

    async def patch_reader_state(self, state: ReaderStateCache) -> PatchResult:
        cached = self._db.get_reader_state(state.user_id)
        local = replace(
            state,
            row_version=self._next_version(cached.row_version if cached else None, state.row_version),
            updated_at=utcnow(),
        )
        self._db.upsert_reader_state(local)

        try:
            await self._api.patch_reader_state(
                ReaderState(
                    user_id=local.user_id,
                    current_ebook_id=local.current_ebook_id,
                    current_location=local.current_location,
                    reading_mode=local.reading_mode,
                    row_version=local.row_version,
                    last_opened_at=local.last_opened_at,
                )
            )
        except LibraLinkError as e:
            if not is_retryable(e):
                return PatchResult("reader_state", error=e)
            self._enqueue(
                "reader_state",
                local.user_id,
                {
                    "currentEbookId": local.current_ebook_id,
                    "currentLocation": local.current_location,
                    "readingMode": local.reading_mode,
                    "lastOpenedAt": local.last_opened_at,
                },
                local.row_version,
            )
            return PatchResult("reader_state", error=e, queued=True)
        return PatchResult("reader_state")

    def _enqueue(self, entity_type: str, entity_id: str, payload: dict, version: int) -> None:
        event = self._db.enqueue_outbox(
            OutboxEvent(
                entity_type=entity_type,
                entity_id=entity_id,
                operation="upsert",
                payload=payload,
                base_version=version,
                idempotency_key=str(uuid.uuid4()),
            )
        )
        log.info("Queued %s update for sync (event %s)", entity_type, event.id)

    # ── UI settings ────────────────────────────────────────

    async def load_ui_settings(self) -> UISettingsLoaded:
        try:
            return UISettingsLoaded(settings=self._db.get_ui_settings())
        except sqlite3.Error as e:
            return UISettingsLoaded(error=e)

    async def save_ui_settings(self, gutter_preset: str) -> UISettingsSaved:
        try:
            self._db.upsert_ui_settings(
                UISettings(gutter_preset=gutter_preset.strip() or "comfortable", updated_at=utcnow())
            )
        except sqlite3.Error as e:
            return UISettingsSaved(error=e)
        return UISettingsSaved()

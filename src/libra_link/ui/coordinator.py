"""The update loop: key presses and result messages in, state changes and commands out."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from libra_link import theme
from libra_link.api.types import User
from libra_link.errors import APIError, ValidationError
from libra_link.library.location import clamp_location, encode_location
from libra_link.library.models import (
    GUTTER_PRESETS,
    THEME_MODES,
    TYPOGRAPHY_PROFILES,
    ReaderStateCache,
    utcnow,
)

from .commands import Commands, infer_format
from .focus import (
    COMMUNITY_SHARE_PREFIX,
    LIBRARY_BOOK_PREFIX,
    field_for,
    focus_by_id,
    focused_id,
    index_suffix,
    is_disabled,
    move_focus,
    rebuild_focus,
)
from .messages import (
    AddBookResult,
    BootstrapResult,
    Command,
    DocumentLoaded,
    EbooksLoaded,
    GooglePollResult,
    GooglePollTick,
    GoogleStartResult,
    LoadingDone,
    LoginResult,
    LogoutResult,
    PatchResult,
    PrefsLoaded,
    Quit,
    ReaderStateLoaded,
    SharesLoaded,
    ShareActionResult,
    SignupResult,
    SpinnerTick,
    SplashAnimTick,
    SplashMinElapsed,
    Task,
    TaskFailed,
    Tick,
    UISettingsLoaded,
    UISettingsSaved,
)
from .palette import BOOK_OPEN_PREFIX, close_palette, filter_entries, open_palette
from .state import (
    AUTH_SIGN_IN,
    AUTH_SIGN_UP,
    FORM_REPORT,
    FORM_REVIEW,
    PAGE_JUMP,
    SCREEN_AUTH,
    SCREEN_COMMUNITY,
    SCREEN_LIBRARY,
    SCREEN_READER,
    SCREEN_SETTINGS,
    SCREENS,
    TextField,
    UIState,
    fallback,
)

log = logging.getLogger(__name__)

SPLASH_MIN_SECONDS = 3.0
SPLASH_FRAME_SECONDS = 0.08
SPINNER_SECONDS = 0.1
ACCENT_SAMPLE = "#ff7f50"

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+$")

_SCREEN_TITLES = {
    SCREEN_AUTH: "Auth",
    SCREEN_LIBRARY: "Library",
    SCREEN_READER: "Reader",
    SCREEN_COMMUNITY: "Community",
    SCREEN_SETTINGS: "Settings",
}

# palette command id -> (screen, selectable id)
_PALETTE_TARGETS = {
    "auth.submit": (SCREEN_AUTH, "auth.action.submit"),
    "auth.switch_mode": (SCREEN_AUTH, "auth.action.switch_mode"),
    "auth.google": (SCREEN_AUTH, "auth.action.google"),
    "auth.logout": (SCREEN_SETTINGS, "settings.action.logout"),
    "library.refresh": (SCREEN_LIBRARY, "library.action.refresh"),
    "library.search": (SCREEN_LIBRARY, "library.action.search"),
    "library.search_apply": (SCREEN_LIBRARY, "library.search.submit"),
    "library.search_clear": (SCREEN_LIBRARY, "library.search.clear"),
    "library.add": (SCREEN_LIBRARY, "library.action.add"),
    "library.add_submit": (SCREEN_LIBRARY, "library.add.submit"),
    "library.add_cancel": (SCREEN_LIBRARY, "library.add.cancel"),
    "library.open": (SCREEN_LIBRARY, "library.action.open"),
    "reader.toggle_mode": (SCREEN_READER, "reader.action.toggle_mode"),
    "community.refresh": (SCREEN_COMMUNITY, "community.action.refresh"),
    "community.borrow": (SCREEN_COMMUNITY, "community.action.borrow"),
    "community.review": (SCREEN_COMMUNITY, "community.action.review"),
    "community.report": (SCREEN_COMMUNITY, "community.action.report"),
    "settings.theme": (SCREEN_SETTINGS, "settings.action.theme"),
    "settings.typography": (SCREEN_SETTINGS, "settings.action.typography"),
    "settings.accent": (SCREEN_SETTINGS, "settings.action.accent"),
    "settings.clear_overrides": (SCREEN_SETTINGS, "settings.action.clear_overrides"),
    "settings.gutter": (SCREEN_SETTINGS, "settings.action.gutter"),
}

_NEXT_KEYS = ("down", "tab")
_PREV_KEYS = ("up", "shift+tab")


def next_in(options: tuple[str, ...], current: str, default: str) -> str:
    """The option after ``current``, wrapping; ``default`` when current is unknown."""
    if current in options:
        return options[(options.index(current) + 1) % len(options)]
    return default


def _printable(character: Optional[str]) -> bool:
    return bool(character) and len(character) == 1 and character.isprintable()


class Coordinator:
    """Owns ``UIState``. Never performs I/O itself.

    ``update`` and ``handle_key`` return commands for the host application to
    execute; results come back through ``update``.
    """

    def __init__(
        self,
        commands: Commands,
        state: Optional[UIState] = None,
        on_quit: Optional[Callable[[], None]] = None,
    ) -> None:
        self.commands = commands
        self.state = state or UIState()
        self._on_quit = on_quit
        self._handlers: dict[type, Callable[[Any], list[Command]]] = {
            SpinnerTick: self._on_spinner_tick,
            SplashAnimTick: self._on_splash_anim,
            SplashMinElapsed: self._on_splash_min_elapsed,
            GooglePollTick: self._on_google_poll_tick,
            LoadingDone: self._on_loading_done,
            TaskFailed: self._on_task_failed,
            BootstrapResult: self._on_bootstrap,
            LoginResult: self._on_login,
            SignupResult: self._on_signup,
            LogoutResult: self._on_logout,
            GoogleStartResult: self._on_google_start,
            GooglePollResult: self._on_google_poll,
            EbooksLoaded: self._on_ebooks,
            SharesLoaded: self._on_shares,
            PrefsLoaded: self._on_prefs,
            ReaderStateLoaded: self._on_reader_state,
            PatchResult: self._on_patch,
            ShareActionResult: self._on_share_action,
            AddBookResult: self._on_add_book,
            DocumentLoaded: self._on_document,
            UISettingsLoaded: self._on_ui_settings,
            UISettingsSaved: self._on_ui_settings_saved,
        }

    # ── Entry points ───────────────────────────────────────

    def init(self) -> list[Command]:
        self.state.splash.active = True
        rebuild_focus(self.state)
        return [
            Tick(SPLASH_MIN_SECONDS, SplashMinElapsed()),
            Tick(SPLASH_FRAME_SECONDS, SplashAnimTick()),
            Task(self.commands.bootstrap),
            Task(self.commands.load_ui_settings),
        ]

    def update(self, msg: Any) -> list[Command]:
        cmds = self._dispatch(msg)
        rebuild_focus(self.state)
        return cmds

    def handle_key(self, key: str, character: Optional[str] = None) -> list[Command]:
        cmds = self._route_key(key, character)
        rebuild_focus(self.state)
        return cmds

    def resize(self, width: int, height: int) -> None:
        self.state.width = width
        self.state.height = height

    def _dispatch(self, msg: Any) -> list[Command]:
        handler = self._handlers.get(type(msg))
        if handler is None:
            log.warning("Unhandled message %s", type(msg).__name__)
            return []
        return handler(msg)

    def _quit(self) -> list[Command]:
        if self._on_quit is not None:
            self._on_quit()
        return [Quit()]

    # ── Loading ────────────────────────────────────────────

    def begin_loading(self, message: str) -> None:
        loading = self.state.loading
        loading.count += 1
        loading.active = True
        loading.message = message

    def end_loading(self) -> None:
        loading = self.state.loading
        loading.count = max(0, loading.count - 1)
        if loading.count == 0:
            loading.active = False
            loading.message = ""

    def run_blocking(self, message: str, run: Callable[[], Awaitable[Any]]) -> list[Command]:
        """Run ``run`` behind the loading overlay; its result arrives wrapped in ``LoadingDone``."""
        was_active = self.state.loading.active
        self.begin_loading(message)

        async def blocking() -> LoadingDone:
            try:
                return LoadingDone(await run())
            except Exception as e:
                log.exception("%s failed", message)
                return LoadingDone(TaskFailed(e))

        cmds: list[Command] = [Task(blocking)]
        if not was_active:
            cmds.append(Tick(SPINNER_SECONDS, SpinnerTick()))
        return cmds

    def _on_loading_done(self, msg: LoadingDone) -> list[Command]:
        self.end_loading()
        return self._dispatch(msg.inner)

    def _on_spinner_tick(self, msg: SpinnerTick) -> list[Command]:
        if not self.state.loading.active:
            return []
        self.state.loading.frame += 1
        return [Tick(SPINNER_SECONDS, SpinnerTick())]

    def _on_task_failed(self, msg: TaskFailed) -> list[Command]:
        self.state.error = str(msg.error)
        self.state.status = "Action failed"
        # A startup task crashed; never strand the user on the splash.
        if self.state.splash.active:
            self.state.splash.ready = True
            self._maybe_close_splash()
        return []

    # ── Splash ─────────────────────────────────────────────

    def _on_splash_anim(self, msg: SplashAnimTick) -> list[Command]:
        splash = self.state.splash
        if not splash.active:
            return []
        if splash.ready:
            splash.progress = min(100, splash.progress + 10)
        else:
            splash.progress = min(95, splash.progress + 3)
        return [Tick(SPLASH_FRAME_SECONDS, SplashAnimTick())]

    def _on_splash_min_elapsed(self, msg: SplashMinElapsed) -> list[Command]:
        self.state.splash.min_elapsed = True
        self._maybe_close_splash()
        return []

    def _maybe_close_splash(self) -> None:
        splash = self.state.splash
        if splash.active and splash.ready and splash.min_elapsed:
            splash.active = False
            splash.progress = 100

    # ── Session results ────────────────────────────────────

    def _enter_session(self, user: User, status: str) -> list[Command]:
        s = self.state
        s.logged_in = True
        s.user = user
        s.screen = SCREEN_LIBRARY
        s.status = status
        s.error = ""
        for fld in (s.auth.password, s.auth.signup_password, s.auth.confirm):
            fld.clear()
        return [
            Task(partial(self.commands.fetch_ebooks, s.search_query)),
            Task(self.commands.fetch_shares),
            Task(partial(self.commands.fetch_prefs, user.id)),
            Task(partial(self.commands.fetch_reader_state, user.id)),
        ]

    def _on_bootstrap(self, msg: BootstrapResult) -> list[Command]:
        s = self.state
        s.splash.ready = True
        s.splash.message = "Ready"
        self._maybe_close_splash()

        if msg.error is not None:
            s.status = "No active session"
            s.error = str(msg.error)
            s.logged_in = False
            s.screen = SCREEN_AUTH
            return []
        if msg.user is None:
            return []

        s.offline = msg.offline
        status = f"Welcome back, {fallback(msg.user.username, msg.user.id)}"
        if msg.offline:
            status += " (offline)"
        return self._enter_session(msg.user, status)

    def _on_login(self, msg: LoginResult) -> list[Command]:
        if msg.error is not None or msg.user is None:
            self.state.error = str(msg.error)
            self.state.status = "Login failed"
            return []
        return self._enter_session(msg.user, f"Signed in as {msg.user.username}")

    def _on_signup(self, msg: SignupResult) -> list[Command]:
        if msg.error is not None or msg.user is None:
            self.state.error = str(msg.error)
            self.state.status = "Sign up failed"
            return []
        return self._enter_session(msg.user, f"Account created as {msg.user.username}")

    def _on_logout(self, msg: LogoutResult) -> list[Command]:
        old = self.state
        self.state = UIState(
            width=old.width,
            height=old.height,
            ui_settings=old.ui_settings,
            loading=old.loading,
            splash=old.splash,
        )
        self.state.status = "Signed out"
        return []

    def _on_google_start(self, msg: GoogleStartResult) -> list[Command]:
        s = self.state
        if msg.error is not None:
            s.error = str(msg.error)
            s.status = "Google auth start failed"
            return []
        if msg.start is None:
            return []
        auth = s.auth
        auth.google_code = msg.start.device_code
        auth.google_url = msg.start.auth_url
        auth.google_expires = msg.start.expires_at
        if msg.start.interval_seconds > 0:
            auth.google_poll_every = float(msg.start.interval_seconds)
        s.status = "Complete Google sign-in in browser, then waiting for approval..."
        s.error = ""
        return [Task(partial(self.commands.poll_google, auth.google_code))]

    def _on_google_poll_tick(self, msg: GooglePollTick) -> list[Command]:
        code = self.state.auth.google_code
        if not code:
            return []
        return [Task(partial(self.commands.poll_google, code))]

    def _on_google_poll(self, msg: GooglePollResult) -> list[Command]:
        s = self.state
        auth = s.auth
        if msg.error is not None:
            s.error = str(msg.error)
            s.status = "Google auth failed"
            return []
        if msg.result is None:
            return []

        status = msg.result.status.lower()
        if status == "approved":
            if msg.result.user is None:
                s.error = "Google auth approved without user payload"
                return []
            auth.google_code = ""
            auth.google_url = ""
            return self._enter_session(
                msg.result.user, f"Signed in as {msg.result.user.username} via Google"
            )
        if status == "expired":
            s.error = "Google device code expired. Press g to try again."
            s.status = "Google auth expired"
            auth.google_code = ""
            return []
        if status == "failed":
            s.error = "Google auth rejected. Press g to retry."
            s.status = "Google auth failed"
            auth.google_code = ""
            return []
        return [Tick(auth.google_poll_every, GooglePollTick())]

    # ── Data results ───────────────────────────────────────

    def _on_ebooks(self, msg: EbooksLoaded) -> list[Command]:
        s = self.state
        if msg.error is not None:
            s.error = str(msg.error)
            s.status = "Failed to load library"
            return []
        s.ebooks = msg.ebooks
        s.ebook_index = min(max(s.ebook_index, 0), max(len(s.ebooks) - 1, 0))
        s.status = f"Library synced: {len(s.ebooks)} books"
        if s.palette.active:
            filter_entries(s)
        return []

    def _on_shares(self, msg: SharesLoaded) -> list[Command]:
        s = self.state
        if msg.error is not None:
            s.error = str(msg.error)
            s.status = "Failed to load community"
            return []
        s.shares = msg.shares
        s.share_index = min(max(s.share_index, 0), max(len(s.shares) - 1, 0))
        s.status = f"Community synced: {len(s.shares)} shares"
        return []

    def _on_prefs(self, msg: PrefsLoaded) -> list[Command]:
        s = self.state
        if msg.error is not None:
            s.error = str(msg.error)
            return []
        if msg.prefs is not None:
            s.prefs = msg.prefs
            s.reading_mode = msg.prefs.reading_mode
        return []

    def _on_reader_state(self, msg: ReaderStateLoaded) -> list[Command]:
        s = self.state
        if msg.error is not None:
            s.error = str(msg.error)
            return []
        if msg.state is not None:
            s.reader_state = msg.state
            s.reading_mode = msg.state.reading_mode
        return []

    def _on_patch(self, msg: PatchResult) -> list[Command]:
        s = self.state
        if msg.error is not None:
            s.error = str(msg.error)
            s.status = "Update queued for sync" if msg.queued else "Update failed"
            return []
        if msg.prefs is not None:
            s.prefs = msg.prefs
        s.status = "Updated"
        return []

    def _on_share_action(self, msg: ShareActionResult) -> list[Command]:
        s = self.state
        if msg.error is not None:
            s.error = str(msg.error)
            s.status = f"{msg.action.capitalize()} failed"
            if isinstance(msg.error, APIError) and msg.error.is_gone:
                s.shares = [share for share in s.shares if share.id != msg.share_id]
                s.share_index = min(s.share_index, max(len(s.shares) - 1, 0))
            return []

        s.error = ""
        if msg.action == "borrow":
            s.status = "Share borrowed"
            return [Task(partial(self.commands.fetch_ebooks, s.search_query))]
        s.share_form.reset()
        s.status = "Review saved" if msg.action == "review" else "Report submitted"
        return []

    def _on_add_book(self, msg: AddBookResult) -> list[Command]:
        s = self.state
        add = s.add
        if msg.error is not None:
            s.error = str(msg.error)
            s.status = "Add book failed"
            add.confirm_duplicate = False
            add.pending = None
            return []
        if msg.duplicate:
            add.pending = msg.prepared
            add.confirm_duplicate = True
            s.error = ""
            s.status = "Duplicate detected. Press y to import anyway, n to cancel."
            return []
        if msg.created is None:
            return []
        add.reset()
        s.error = ""
        s.status = f"Book added: {msg.created.title}"
        return [Task(partial(self.commands.fetch_ebooks, s.search_query))]

    def _on_document(self, msg: DocumentLoaded) -> list[Command]:
        s = self.state
        if msg.error is not None or msg.document is None:
            s.error = str(msg.error)
            s.status = "Failed to open book"
            return []
        s.document = msg.document
        s.current_ebook = msg.ebook
        s.reader_line = clamp_location(msg.document, msg.line)
        s.screen = SCREEN_READER
        s.error = ""
        s.status = f"Opened {msg.ebook.title}"
        return self._patch_reader_state()

    def _on_ui_settings(self, msg: UISettingsLoaded) -> list[Command]:
        if msg.error is not None:
            log.warning("UI settings unavailable: %s", msg.error)
        elif msg.settings is not None:
            self.state.ui_settings = msg.settings
        return []

    def _on_ui_settings_saved(self, msg: UISettingsSaved) -> list[Command]:
        if msg.error is not None:
            self.state.error = str(msg.error)
        return []

    # ── Optimistic writes ──────────────────────────────────

    def _patch_prefs(self) -> list[Command]:
        s = self.state
        snapshot = replace(
            s.prefs, user_id=s.user_id, theme_overrides=dict(s.prefs.theme_overrides)
        )
        return [Task(partial(self.commands.patch_prefs, snapshot))]

    def _patch_reader_state(self) -> list[Command]:
        s = self.state
        if not s.user_id:
            return []
        previous = s.reader_state
        if s.document is not None:
            ebook = s.current_ebook
            if ebook is None and 0 <= s.ebook_index < len(s.ebooks):
                ebook = s.ebooks[s.ebook_index]
            ebook_id = ebook.id if ebook else ""
            location = encode_location(s.document, s.reader_line)
        else:
            ebook_id = previous.current_ebook_id if previous else ""
            location = previous.current_location if previous else ""

        snapshot = ReaderStateCache(
            user_id=s.user_id,
            current_ebook_id=ebook_id,
            current_location=location,
            reading_mode=s.reading_mode,
            row_version=previous.row_version if previous else 1,
            last_opened_at=utcnow(),
        )
        s.reader_state = snapshot
        return [Task(partial(self.commands.patch_reader_state, snapshot))]

    def _toggle_reading_mode(self) -> list[Command]:
        s = self.state
        s.reading_mode = "zen" if s.reading_mode == "normal" else "normal"
        s.prefs.reading_mode = s.reading_mode
        s.status = f"Reading mode: {s.reading_mode}"
        return self._patch_prefs() + self._patch_reader_state()

    def _update_prefs(self, **changes: Any) -> list[Command]:
        s = self.state
        candidate = replace(s.prefs, **changes)
        try:
            theme.apply_overrides(
                theme.default_tokens(candidate.theme_mode), candidate.theme_overrides
            )
        except ValidationError as e:
            s.error = str(e)
            s.status = "Invalid theme overrides"
            return []
        s.prefs = candidate
        s.error = ""
        return self._patch_prefs()

    # ── Activation ─────────────────────────────────────────

    def activate_by_id(self, item_id: str) -> list[Command]:
        s = self.state
        if not item_id or is_disabled(s, item_id):
            return []

        idx = index_suffix(item_id, LIBRARY_BOOK_PREFIX)
        if idx is not None:
            return self._open_book(idx)
        idx = index_suffix(item_id, COMMUNITY_SHARE_PREFIX)
        if idx is not None:
            if idx < len(s.shares):
                s.share_index = idx
                share = s.shares[idx]
                s.status = f"Selected share: {fallback(share.title, share.id)}"
            return []

        handler = {
            "help.close": self._close_help,
            "auth.action.submit": self._submit_auth,
            "auth.action.switch_mode": self._switch_auth_mode,
            "auth.action.google": self._start_google,
            "library.action.search": self._open_search,
            "library.action.refresh": self._refresh_library,
            "library.action.add": self._open_add,
            "library.action.open": lambda: self._open_book(s.ebook_index),
            "library.search.submit": self._submit_search,
            "library.search.clear": self._clear_search,
            "library.add.submit": self._submit_add,
            "library.add.cancel": self._cancel_add,
            "library.add.duplicate_yes": self._confirm_duplicate,
            "library.add.duplicate_no": self._reject_duplicate,
            "reader.action.toggle_mode": self._toggle_reading_mode,
            "community.action.refresh": self._refresh_community,
            "community.action.borrow": self._borrow_share,
            "community.action.review": lambda: self._open_share_form(FORM_REVIEW),
            "community.action.report": lambda: self._open_share_form(FORM_REPORT),
            "community.review.submit": self._submit_review,
            "community.review.cancel": self._cancel_share_form,
            "community.report.submit": self._submit_report,
            "community.report.cancel": self._cancel_share_form,
            "settings.action.theme": lambda: self._update_prefs(
                theme_mode=next_in(THEME_MODES, s.prefs.theme_mode, "light")
            ),
            "settings.action.typography": lambda: self._update_prefs(
                typography_profile=next_in(
                    TYPOGRAPHY_PROFILES, s.prefs.typography_profile, "comfortable"
                )
            ),
            "settings.action.accent": lambda: self._update_prefs(
                theme_overrides={**s.prefs.theme_overrides, "accent": ACCENT_SAMPLE}
            ),
            "settings.action.clear_overrides": lambda: self._update_prefs(theme_overrides={}),
            "settings.action.reading_mode": self._toggle_reading_mode,
            "settings.action.gutter": self._cycle_gutter,
            "settings.action.logout": self._logout,
        }.get(item_id)
        if handler is None:
            log.debug("No activation for %s", item_id)
            return []
        return handler()

    def _close_help(self) -> list[Command]:
        self.state.show_help = False
        return []

    def _submit_auth(self) -> list[Command]:
        s = self.state
        auth = s.auth
        if auth.mode == AUTH_SIGN_UP:
            email = auth.email.value.strip()
            username = auth.username.value.strip()
            password = auth.signup_password.value
            confirm = auth.confirm.value
            if not (email and username and password and confirm):
                s.error = "email, username, password, and confirm password are required"
                return []
            if not _EMAIL.match(email):
                s.error = "valid email is required"
                return []
            if password != confirm:
                s.error = "password and confirm password must match"
                return []
            s.error = ""
            return self.run_blocking(
                "Creating account...", partial(self.commands.signup, email, username, password)
            )

        identifier = auth.identifier.value.strip()
        password = auth.password.value
        if not identifier or not password:
            s.error = "identifier and password are required"
            return []
        s.error = ""
        return self.run_blocking(
            "Signing in...", partial(self.commands.login, identifier, password)
        )

    def _switch_auth_mode(self) -> list[Command]:
        s = self.state
        s.auth.mode = AUTH_SIGN_UP if s.auth.mode == AUTH_SIGN_IN else AUTH_SIGN_IN
        s.error = ""
        s.status = ""
        return []

    def _start_google(self) -> list[Command]:
        return self.run_blocking("Starting Google sign-in...", self.commands.start_google)

    def _logout(self) -> list[Command]:
        return self.run_blocking("Signing out...", self.commands.logout)

    def _open_search(self) -> list[Command]:
        s = self.state
        s.search_active = True
        s.add.active = False
        s.search.value = s.search_query
        s.status = "Search library"
        return []

    def _refresh_library(self) -> list[Command]:
        return self.run_blocking(
            "Loading library...", partial(self.commands.fetch_ebooks, self.state.search_query)
        )

    def _open_add(self) -> list[Command]:
        s = self.state
        s.add.reset()
        s.add.active = True
        s.search_active = False
        s.status = "Add new book"
        s.error = ""
        return []

    def _open_book(self, index: int) -> list[Command]:
        s = self.state
        if not 0 <= index < len(s.ebooks):
            return []
        s.ebook_index = index
        return self.run_blocking(
            "Opening book...",
            partial(self.commands.open_book, s.ebooks[index], s.reader_state),
        )

    def _submit_search(self) -> list[Command]:
        s = self.state
        s.search_query = s.search.value.strip()
        s.search_active = False
        return self.run_blocking(
            "Searching library...", partial(self.commands.load_local_ebooks, s.search_query)
        )

    def _clear_search(self) -> list[Command]:
        s = self.state
        s.search.clear()
        s.search_query = ""
        s.search_active = False
        return self.run_blocking(
            "Loading library...", partial(self.commands.load_local_ebooks, "")
        )

    def _submit_add(self) -> list[Command]:
        add = self.state.add
        return self.run_blocking(
            "Importing book...",
            partial(
                self.commands.prepare_add_book,
                add.source.value,
                add.title.value,
                add.description.value,
                add.language.value,
                add.format.value,
            ),
        )

    def _cancel_add(self) -> list[Command]:
        s = self.state
        s.add.reset()
        s.status = "Add book canceled"
        s.error = ""
        return []

    def _confirm_duplicate(self) -> list[Command]:
        pending = self.state.add.pending
        if pending is None:
            return []
        return self.run_blocking(
            "Importing duplicate...", partial(self.commands.create_book, pending, True)
        )

    def _reject_duplicate(self) -> list[Command]:
        s = self.state
        s.add.confirm_duplicate = False
        s.add.pending = None
        s.status = "Duplicate import canceled"
        return []

    def _refresh_community(self) -> list[Command]:
        return self.run_blocking("Loading community...", self.commands.fetch_shares)

    def _selected_share_id(self) -> str:
        s = self.state
        if 0 <= s.share_index < len(s.shares):
            return s.shares[s.share_index].id
        return ""

    def _borrow_share(self) -> list[Command]:
        share_id = self._selected_share_id()
        if not share_id:
            return []
        return self.run_blocking("Borrowing share...", partial(self.commands.borrow_share, share_id))

    def _open_share_form(self, kind: str) -> list[Command]:
        s = self.state
        if not self._selected_share_id():
            return []
        s.share_form.reset()
        s.share_form.kind = kind
        s.error = ""
        share = s.shares[s.share_index]
        verb = "Review" if kind == FORM_REVIEW else "Report"
        s.status = f"{verb} {fallback(share.title, share.id)}"
        return []

    def _cancel_share_form(self) -> list[Command]:
        s = self.state
        kind = s.share_form.kind
        s.share_form.reset()
        s.status = f"{kind.capitalize()} canceled" if kind else ""
        return []

    def _submit_review(self) -> list[Command]:
        form = self.state.share_form
        return self.run_blocking(
            "Submitting review...",
            partial(
                self.commands.review_share,
                self._selected_share_id(),
                form.rating.value,
                form.review.value,
            ),
        )

    def _submit_report(self) -> list[Command]:
        form = self.state.share_form
        return self.run_blocking(
            "Submitting report...",
            partial(
                self.commands.report_share,
                self._selected_share_id(),
                form.reason.value,
                form.details.value,
            ),
        )

    def _cycle_gutter(self) -> list[Command]:
        s = self.state
        preset = next_in(GUTTER_PRESETS, s.ui_settings.gutter_preset, "comfortable")
        s.ui_settings.gutter_preset = preset
        s.status = f"Gutter: {preset}"
        return [Task(partial(self.commands.save_ui_settings, preset))]

    # ── Palette ────────────────────────────────────────────

    def execute_palette_command(self, command_id: str) -> list[Command]:
        s = self.state
        if command_id == "app.help":
            s.show_help = not s.show_help
            return []
        if command_id == "app.quit":
            return self._quit()

        if command_id.startswith(BOOK_OPEN_PREFIX):
            idx = index_suffix(command_id, BOOK_OPEN_PREFIX)
            if idx is None or not s.logged_in:
                return []
            s.screen = SCREEN_LIBRARY
            return self._open_book(idx)

        if command_id.startswith("nav."):
            screen = command_id[len("nav."):]
            if screen not in SCREENS or (screen != SCREEN_AUTH and not s.logged_in):
                return []
            s.screen = screen
            s.status = f"Opened {_SCREEN_TITLES[screen]}"
            return []

        target = _PALETTE_TARGETS.get(command_id)
        if target is None:
            log.warning("Unknown palette command %s", command_id)
            return []
        screen, item_id = target
        if screen == SCREEN_AUTH or s.logged_in:
            s.screen = screen
        rebuild_focus(s)
        return self.activate_by_id(item_id)

    def _palette_key(self, key: str, character: Optional[str]) -> list[Command]:
        s = self.state
        palette = s.palette
        if key == "escape":
            close_palette(s)
            return []
        if key in _NEXT_KEYS:
            if palette.entries:
                palette.index = (palette.index + 1) % len(palette.entries)
            return []
        if key in _PREV_KEYS:
            if palette.entries:
                palette.index = (palette.index - 1) % len(palette.entries)
            return []
        if key == "enter":
            if not palette.entries:
                return []
            entry = palette.entries[palette.index]
            if not entry.enabled:
                s.status = "Command unavailable in current state"
                return []
            close_palette(s)
            return self.execute_palette_command(entry.command.id)

        before = palette.query.value
        self._edit_field(palette.query, key, character)
        if palette.query.value != before:
            filter_entries(s)
        return []

    # ── Keys ───────────────────────────────────────────────

    @staticmethod
    def _edit_field(fld: TextField, key: str, character: Optional[str]) -> bool:
        if key == "backspace":
            fld.backspace()
            return True
        if key == "ctrl+u":
            fld.clear()
            return True
        if _printable(character):
            fld.insert(character)
            return True
        return False

    def _move(self, key: str) -> bool:
        if key in _NEXT_KEYS:
            move_focus(self.state, 1)
            return True
        if key in _PREV_KEYS:
            move_focus(self.state, -1)
            return True
        return False

    def _route_key(self, key: str, character: Optional[str]) -> list[Command]:
        s = self.state
        if key == "ctrl+c":
            return self._quit()
        if s.splash.active:
            return []

        if key == "ctrl+p":
            if s.palette.active:
                close_palette(s)
            else:
                open_palette(s)
            return []
        if key in ("ctrl+h", "f1"):
            s.show_help = not s.show_help
            if s.show_help:
                close_palette(s)
            return []

        if s.palette.active:
            return self._palette_key(key, character)
        if s.show_help:
            if key in ("escape", "enter"):
                s.show_help = False
            return []
        if s.loading.active:
            return []

        if not s.logged_in or s.screen == SCREEN_AUTH:
            return self._auth_key(key, character)
        handler = {
            SCREEN_LIBRARY: self._library_key,
            SCREEN_READER: self._reader_key,
            SCREEN_COMMUNITY: self._community_key,
            SCREEN_SETTINGS: self._settings_key,
        }[s.screen]
        return handler(key, character)

    def _auth_key(self, key: str, character: Optional[str]) -> list[Command]:
        s = self.state
        current = focused_id(s)
        in_field = current.startswith("auth.field.")
        if key == "ctrl+n":
            return self.activate_by_id("auth.action.switch_mode")
        if character == "g" and not in_field:
            return self.activate_by_id("auth.action.google")
        if self._move(key):
            return []
        if key == "enter":
            return self.activate_by_id("auth.action.submit" if in_field else current)
        fld = field_for(s, current)
        if fld is not None:
            self._edit_field(fld, key, character)
        return []

    def _library_key(self, key: str, character: Optional[str]) -> list[Command]:
        s = self.state
        add = s.add
        if add.active and add.confirm_duplicate:
            if character == "y":
                return self.activate_by_id("library.add.duplicate_yes")
            if character == "n":
                return self.activate_by_id("library.add.duplicate_no")

        if key == "escape":
            if add.active:
                return self._cancel_add()
            if s.search_active:
                s.search_active = False
                s.search.clear()
                s.search_query = ""
                return self.run_blocking(
                    "Loading library...", partial(self.commands.load_local_ebooks, "")
                )
            return []

        if not add.active and not s.search_active:
            if key in ("down", "up"):
                if s.ebooks:
                    step = 1 if key == "down" else -1
                    s.ebook_index = min(max(s.ebook_index + step, 0), len(s.ebooks) - 1)
                    focus_by_id(s, f"{LIBRARY_BOOK_PREFIX}{s.ebook_index}")
                return []
            if character == "a":
                return self.activate_by_id("library.action.add")
            if key == "ctrl+f":
                return self.activate_by_id("library.action.search")
            if key == "ctrl+r":
                return self.activate_by_id("library.action.refresh")
            if self._move(key):
                return []
            if key == "enter":
                return self.activate_by_id(focused_id(s))
            return []

        if key == "ctrl+s":
            if s.search_active:
                return self.activate_by_id("library.search.submit")
            if add.active and not add.confirm_duplicate:
                return self.activate_by_id("library.add.submit")
            return []
        if self._move(key):
            return []

        current = focused_id(s)
        if key == "enter":
            if current == "library.search.field.query":
                return self.activate_by_id("library.search.submit")
            if current.startswith("library.add.field."):
                return self.activate_by_id("library.add.submit")
            return self.activate_by_id(current)

        fld = field_for(s, current)
        if fld is None:
            return []
        before = fld.value
        self._edit_field(fld, key, character)
        if fld.value == before:
            return []
        if current == "library.add.field.source" and not add.format_set:
            inferred = infer_format(fld.value)
            if inferred:
                add.format.value = inferred
        elif current == "library.add.field.format":
            add.format_set = True
        return []

    def _reader_key(self, key: str, character: Optional[str]) -> list[Command]:
        s = self.state
        if character == "z":
            return self.activate_by_id("reader.action.toggle_mode")

        if focused_id(s) != "reader.content":
            if self._move(key):
                return []
            if key == "enter":
                return self.activate_by_id(focused_id(s))
            return []

        if key == "tab":
            move_focus(s, 1)
            return []
        if key == "shift+tab":
            move_focus(s, -1)
            return []
        if s.document is None:
            return []

        if key == "down":
            target = s.reader_line + 1
        elif key == "up":
            target = s.reader_line - 1
        elif character == "l":
            target = s.reader_line + PAGE_JUMP
        elif character == "h":
            target = s.reader_line - PAGE_JUMP
        elif character == "g":
            target = 0
        elif character == "G":
            target = len(s.document.lines) - 1
        else:
            return []
        s.reader_line = clamp_location(s.document, target)
        return self._patch_reader_state()

    def _community_key(self, key: str, character: Optional[str]) -> list[Command]:
        s = self.state
        form = s.share_form
        if form.kind:
            if key == "escape":
                return self._cancel_share_form()
            if key == "ctrl+s":
                return self.activate_by_id(f"community.{form.kind}.submit")
            if self._move(key):
                return []
            current = focused_id(s)
            if key == "enter":
                if ".field." in current:
                    return self.activate_by_id(f"community.{form.kind}.submit")
                return self.activate_by_id(current)
            fld = field_for(s, current)
            if fld is not None:
                self._edit_field(fld, key, character)
            return []

        if key in ("down", "up"):
            if s.shares:
                step = 1 if key == "down" else -1
                s.share_index = min(max(s.share_index + step, 0), len(s.shares) - 1)
                focus_by_id(s, f"{COMMUNITY_SHARE_PREFIX}{s.share_index}")
            return []
        shortcuts = {
            "r": "community.action.refresh",
            "b": "community.action.borrow",
            "v": "community.action.review",
            "p": "community.action.report",
        }
        if character in shortcuts:
            return self.activate_by_id(shortcuts[character])
        if self._move(key):
            return []
        if key == "enter":
            return self.activate_by_id(focused_id(s))
        return []

    def _settings_key(self, key: str, character: Optional[str]) -> list[Command]:
        shortcuts = {
            "t": "settings.action.theme",
            "p": "settings.action.typography",
            "o": "settings.action.accent",
            "x": "settings.action.clear_overrides",
            "]": "settings.action.gutter",
        }
        if character in shortcuts:
            return self.activate_by_id(shortcuts[character])
        if self._move(key):
            return []
        if key == "enter":
            return self.activate_by_id(focused_id(self.state))
        return []

"""In-memory UI state owned by the coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from libra_link.api.types import User
from libra_link.library.models import (
    Document,
    EbookCache,
    PreferencesCache,
    ReaderStateCache,
    ShareCache,
    UISettings,
)

SCREEN_AUTH = "auth"
SCREEN_LIBRARY = "library"
SCREEN_READER = "reader"
SCREEN_COMMUNITY = "community"
SCREEN_SETTINGS = "settings"
SCREENS = (SCREEN_AUTH, SCREEN_LIBRARY, SCREEN_READER, SCREEN_COMMUNITY, SCREEN_SETTINGS)

OVERLAY_NONE = "none"
OVERLAY_HELP = "help"
OVERLAY_PALETTE = "palette"
OVERLAY_LOADING = "loading"

AUTH_SIGN_IN = "sign_in"
AUTH_SIGN_UP = "sign_up"

FORM_NONE = ""
FORM_REVIEW = "review"
FORM_REPORT = "report"

PAGE_JUMP = 20


@dataclass
class Selectable:
    id: str
    label: str
    disabled: bool = False


@dataclass
class PaletteCommand:
    id: str
    group: str
    icon: str
    title: str
    description: str


@dataclass
class PaletteEntry:
    command: PaletteCommand
    score: int
    enabled: bool


@dataclass
class TextField:
    """Single-line input buffer edited by routed key presses."""

    prompt: str
    placeholder: str = ""
    value: str = ""
    secret: bool = False

    def insert(self, text: str) -> None:
        self.value += text

    def backspace(self) -> None:
        self.value = self.value[:-1]

    def clear(self) -> None:
        self.value = ""

    def display(self) -> str:
        if self.secret:
            return "•" * len(self.value)
        return self.value


@dataclass
class LoadingState:
    active: bool = False
    message: str = ""
    count: int = 0
    frame: int = 0


@dataclass
class SplashState:
    active: bool = True
    ready: bool = False
    min_elapsed: bool = False
    progress: int = 0
    message: str = "Starting libra-link..."


@dataclass
class PaletteState:
    active: bool = False
    query: TextField = field(default_factory=lambda: TextField("> ", "type a command or book"))
    entries: list[PaletteEntry] = field(default_factory=list)
    index: int = 0


@dataclass
class AuthForm:
    mode: str = AUTH_SIGN_IN
    identifier: TextField = field(default_factory=lambda: TextField("identifier: ", "email or username"))
    password: TextField = field(default_factory=lambda: TextField("password: ", "password", secret=True))
    email: TextField = field(default_factory=lambda: TextField("email: ", "email"))
    username: TextField = field(default_factory=lambda: TextField("username: ", "username"))
    signup_password: TextField = field(default_factory=lambda: TextField("password: ", "password", secret=True))
    confirm: TextField = field(default_factory=lambda: TextField("confirm: ", "confirm password", secret=True))
    google_code: str = ""
    google_url: str = ""
    google_expires: Optional[datetime] = None
    google_poll_every: float = 2.0


@dataclass
class AddBookPrepared:
    """A validated import waiting to be copied and registered."""

    source_path: Path
    title: str
    description: str
    language_code: str
    format: str
    checksum: str
    file_size: int
    imported_at: datetime
    base_dest_path: Path
    ext: str


@dataclass
class AddBookForm:
    active: bool = False
    confirm_duplicate: bool = False
    format_set: bool = False
    pending: Optional[AddBookPrepared] = None
    source: TextField = field(default_factory=lambda: TextField("source: ", "/path/to/book.txt"))
    title: TextField = field(default_factory=lambda: TextField("title: ", "book title"))
    description: TextField = field(default_factory=lambda: TextField("description: ", "description (optional)"))
    language: TextField = field(default_factory=lambda: TextField("language: ", "language code (optional)"))
    format: TextField = field(default_factory=lambda: TextField("format: ", "txt|pdf|epub", value="txt"))

    def reset(self) -> None:
        self.active = False
        self.confirm_duplicate = False
        self.format_set = False
        self.pending = None
        for fld in (self.source, self.title, self.description, self.language):
            fld.clear()
        self.format.value = "txt"


@dataclass
class ShareForm:
    """Review or report form for the selected share."""

    kind: str = FORM_NONE
    rating: TextField = field(default_factory=lambda: TextField("rating: ", "1-5"))
    review: TextField = field(default_factory=lambda: TextField("review: ", "review (optional)"))
    reason: TextField = field(default_factory=lambda: TextField("reason: ", "copyright|abuse|spam|other"))
    details: TextField = field(default_factory=lambda: TextField("details: ", "details (optional)"))

    def reset(self) -> None:
        self.kind = FORM_NONE
        for fld in (self.rating, self.review, self.reason, self.details):
            fld.clear()


def default_preferences(user_id: str = "") -> PreferencesCache:
    return PreferencesCache(user_id=user_id)


@dataclass
class UIState:
    width: int = 0
    height: int = 0

    screen: str = SCREEN_AUTH
    show_help: bool = False
    logged_in: bool = False
    offline: bool = False
    user: Optional[User] = None

    auth: AuthForm = field(default_factory=AuthForm)

    ebooks: list[EbookCache] = field(default_factory=list)
    ebook_index: int = 0
    search_active: bool = False
    search_query: str = ""
    search: TextField = field(default_factory=lambda: TextField("search: ", "search title/author"))
    add: AddBookForm = field(default_factory=AddBookForm)

    shares: list[ShareCache] = field(default_factory=list)
    share_index: int = 0
    share_form: ShareForm = field(default_factory=ShareForm)

    document: Optional[Document] = None
    current_ebook: Optional[EbookCache] = None
    reader_line: int = 0
    reading_mode: str = "normal"
    reader_state: Optional[ReaderStateCache] = None

    prefs: PreferencesCache = field(default_factory=default_preferences)
    ui_settings: UISettings = field(default_factory=UISettings)

    selectables: list[Selectable] = field(default_factory=list)
    focus_idx: int = 0

    palette: PaletteState = field(default_factory=PaletteState)
    loading: LoadingState = field(default_factory=LoadingState)
    splash: SplashState = field(default_factory=SplashState)

    status: str = ""
    error: str = ""

    @property
    def overlay(self) -> str:
        if self.loading.active:
            return OVERLAY_LOADING
        if self.palette.active:
            return OVERLAY_PALETTE
        if self.show_help:
            return OVERLAY_HELP
        return OVERLAY_NONE

    @property
    def user_id(self) -> str:
        return self.user.id if self.user else ""

    @property
    def user_name(self) -> str:
        if self.user is None or not self.user.username.strip():
            return "guest"
        return self.user.username


def fallback(value: str, default: str) -> str:
    return value if value.strip() else default

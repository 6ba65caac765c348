"""Messages delivered to the coordinator and the commands it hands back."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from libra_link.api.types import Ebook, GoogleDevicePoll, GoogleDeviceStart, User
from libra_link.library.models import (
    Document,
    EbookCache,
    PreferencesCache,
    ReaderStateCache,
    ShareCache,
    UISettings,
)

from .state import AddBookPrepared

# ── Commands ───────────────────────────────────────────


@dataclass
class Task:
    """Run ``run()`` off the update loop and feed its result back as a message."""

    run: Callable[[], Awaitable[Any]]


@dataclass
class Tick:
    delay: float
    message: Any


@dataclass
class Quit:
    pass


Command = Task | Tick | Quit


# ── Timers ─────────────────────────────────────────────


@dataclass
class SpinnerTick:
    pass


@dataclass
class SplashAnimTick:
    pass


@dataclass
class SplashMinElapsed:
    pass


@dataclass
class GooglePollTick:
    pass


@dataclass
class LoadingDone:
    inner: Any


@dataclass
class TaskFailed:
    error: BaseException


# ── Results ────────────────────────────────────────────


@dataclass
class BootstrapResult:
    user: Optional[User] = None
    error: Optional[Exception] = None
    offline: bool = False


@dataclass
class LoginResult:
    user: Optional[User] = None
    error: Optional[Exception] = None


@dataclass
class SignupResult:
    user: Optional[User] = None
    error: Optional[Exception] = None


@dataclass
class LogoutResult:
    error: Optional[Exception] = None


@dataclass
class GoogleStartResult:
    start: Optional[GoogleDeviceStart] = None
    error: Optional[Exception] = None


@dataclass
class GooglePollResult:
    result: Optional[GoogleDevicePoll] = None
    error: Optional[Exception] = None


@dataclass
class EbooksLoaded:
    ebooks: list[EbookCache] = field(default_factory=list)
    error: Optional[Exception] = None


@dataclass
class SharesLoaded:
    shares: list[ShareCache] = field(default_factory=list)
    error: Optional[Exception] = None


@dataclass
class PrefsLoaded:
    prefs: Optional[PreferencesCache] = None
    error: Optional[Exception] = None


@dataclass
class ReaderStateLoaded:
    state: Optional[ReaderStateCache] = None
    error: Optional[Exception] = None


@dataclass
class PatchResult:
    source: str  # prefs, reader_state
    error: Optional[Exception] = None
    prefs: Optional[PreferencesCache] = None
    queued: bool = False


@dataclass
class ShareActionResult:
    action: str  # borrow, review, report
    share_id: str
    error: Optional[Exception] = None


@dataclass
class AddBookResult:
    created: Optional[Ebook] = None
    error: Optional[Exception] = None
    duplicate: bool = False
    prepared: Optional[AddBookPrepared] = None


@dataclass
class DocumentLoaded:
    ebook: EbookCache
    document: Optional[Document] = None
    line: int = 0
    error: Optional[Exception] = None


@dataclass
class UISettingsLoaded:
    settings: Optional[UISettings] = None
    error: Optional[Exception] = None


@dataclass
class UISettingsSaved:
    error: Optional[Exception] = None

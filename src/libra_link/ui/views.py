"""Plain-text rendering of ``UIState``. No widgets, no side effects."""

from __future__ import annotations

from libra_link import theme
from libra_link.errors import ValidationError

from .focus import COMMUNITY_SHARE_PREFIX, LIBRARY_BOOK_PREFIX, focused_id
from .state import (
    AUTH_SIGN_UP,
    FORM_REVIEW,
    SCREEN_COMMUNITY,
    SCREEN_LIBRARY,
    SCREEN_READER,
    SCREEN_SETTINGS,
    Selectable,
    TextField,
    UIState,
    fallback,
)

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
PALETTE_MAX_ROWS = 10
MIN_CONTENT_WIDTH = 40

LOGO = (
    " _     _ _                _     _       _    ",
    "| |   (_) |__  _ __ __ _  | |   (_)_ __ | | __",
    "| |   | | '_ \\| '__/ _` | | |   | | '_ \\| |/ /",
    "| |___| | |_) | | | (_| | | |___| | | | |   < ",
    "|_____|_|_.__/|_|  \\__,_| |_____|_|_| |_|_|\\_\\",
)

HELP_LINES = (
    "Help",
    "Navigation: Up/Down, Tab/Shift+Tab",
    "Activation: Enter",
    "Command Palette: Ctrl+P",
    "Help: Ctrl+H",
    "Quit: Ctrl+C",
    "",
    "View-specific commands are listed in the bottom-left controls.",
)


# ── Layout ─────────────────────────────────────────────


def gutter_width(width: int, preset: str) -> int:
    if width <= 0:
        return 0
    preset = preset.strip().lower()
    if preset == "none":
        return 0
    if preset == "narrow":
        return max(2, width // 16)
    if preset == "wide":
        return max(4, width // 6)
    return max(3, width // 8)


def content_width(width: int, preset: str) -> int:
    if width <= 0:
        return 80
    result = width - 2 * gutter_width(width, preset)
    return width if result < MIN_CONTENT_WIDTH else result


def status_line(state: UIState) -> str:
    message = state.status if state.status.strip() else "Ready"
    if state.error.strip():
        message += " | error: " + state.error
    return message


def header_line(state: UIState) -> str:
    parts = ["libra-link", state.screen.capitalize() if state.logged_in else "Auth"]
    if state.logged_in:
        parts.append(state.user_name)
    if state.offline:
        parts.append("offline")
    return " | ".join(parts)


def context_controls(state: UIState) -> str:
    if state.loading.active:
        return "Loading... actions are temporarily blocked"
    if state.palette.active:
        return "Palette: type to filter, Up/Down to select, Enter run, Esc close"
    if not state.logged_in:
        return "Auth: enter submit | ctrl+n switch mode | g google oauth"

    if state.screen == SCREEN_LIBRARY:
        if state.add.active:
            if state.add.confirm_duplicate:
                return "y import anyway | n cancel duplicate | esc cancel"
            return "ctrl+s submit add | esc cancel add | tab/shift+tab next/prev field"
        if state.search_active:
            return "ctrl+s or enter apply search | esc clear search"
        return "up/down move | a add | ctrl+f search | ctrl+r refresh"
    if state.screen == SCREEN_READER:
        return "Reader: up/down scroll | h/l page | g/G jump | z zen toggle"
    if state.screen == SCREEN_COMMUNITY:
        if state.share_form.kind:
            return "ctrl+s submit | esc cancel | tab/shift+tab next/prev field"
        return "Community: up/down move | b borrow | v review | p report | r refresh"
    if state.screen == SCREEN_SETTINGS:
        return "Settings: t theme | p typography | o accent | x clear | ] gutter"
    return ""


def controls_line(state: UIState, width: int) -> str:
    left = context_controls(state)
    right = "Ctrl+P Command Palette"
    gap = max(2, width - len(left) - len(right))
    return left + " " * gap + right


def fit_to_height(text: str, height: int) -> str:
    if height <= 0:
        return ""
    lines = text.split("\n")[:height]
    lines += [""] * (height - len(lines))
    return "\n".join(lines)


# ── Widgets as text ────────────────────────────────────


def render_field(fld: TextField, focused: bool) -> str:
    value = fld.display()
    if focused:
        return f"> {fld.prompt}{value}█"
    return f"  {fld.prompt}{value or fld.placeholder}"


def render_buttons(state: UIState, items: list[Selectable]) -> str:
    current = focused_id(state)
    parts = []
    for item in items:
        if item.disabled:
            parts.append(f"({item.label})")
        elif item.id == current:
            parts.append(f"[>{item.label}<]")
        else:
            parts.append(f"[ {item.label} ]")
    return " ".join(parts)


def _buttons(state: UIState) -> str:
    items = [
        item
        for item in state.selectables
        if ".field." not in item.id
        and not item.id.startswith((LIBRARY_BOOK_PREFIX, COMMUNITY_SHARE_PREFIX))
        and item.id != "reader.content"
    ]
    return render_buttons(state, items)


def _fields(state: UIState, pairs: list[tuple[str, TextField]]) -> list[str]:
    current = focused_id(state)
    return [render_field(fld, item_id == current) for item_id, fld in pairs]


# ── Screens ────────────────────────────────────────────


def render_auth(state: UIState) -> str:
    auth = state.auth
    if auth.mode == AUTH_SIGN_UP:
        rows = ["Create Account"] + _fields(
            state,
            [
                ("auth.field.email", auth.email),
                ("auth.field.username", auth.username),
                ("auth.field.password", auth.signup_password),
                ("auth.field.confirm", auth.confirm),
            ],
        )
    else:
        rows = ["Sign In"] + _fields(
            state,
            [
                ("auth.field.identifier", auth.identifier),
                ("auth.field.password", auth.password),
            ],
        )

    rows.append("")
    rows.append(f"Open URL: {auth.google_url}" if auth.google_url else "Google OAuth ready")
    if auth.google_code:
        expires = auth.google_expires.strftime("%I:%M%p").lstrip("0") if auth.google_expires else ""
        rows.append(f"Device code: {auth.google_code} (expires {expires})")
    rows += ["", _buttons(state)]
    return "\n".join(rows)


def render_library(state: UIState) -> str:
    add = state.add
    if add.active:
        rows = ["Add Book"] + _fields(
            state,
            [
                ("library.add.field.source", add.source),
                ("library.add.field.title", add.title),
                ("library.add.field.description", add.description),
                ("library.add.field.language", add.language),
                ("library.add.field.format", add.format),
            ],
        )
        rows.append("  storageKey: " + storage_key_preview(state))
        if add.confirm_duplicate:
            rows.append("Duplicate detected. Import anyway?")
        rows += ["", _buttons(state)]
        return "\n".join(rows)

    if state.search_active:
        rows = ["Search Library"] + _fields(
            state, [("library.search.field.query", state.search)]
        )
        rows += ["", _buttons(state)]
        return "\n".join(rows)

    title = "Library"
    if state.search_query:
        title += f' (filter: "{state.search_query}")'
    rows = [title]
    if not state.ebooks:
        rows.append("Library is empty.")
    current = focused_id(state)
    for i, book in enumerate(state.ebooks):
        prefix = "> " if current == f"{LIBRARY_BOOK_PREFIX}{i}" else "  "
        rows.append(f"{prefix}{fallback(book.title, 'Untitled')} [{fallback(book.format, 'unknown')}]")
    rows += ["", _buttons(state)]
    return "\n".join(rows)


def storage_key_preview(state: UIState) -> str:
    add = state.add
    if add.pending is not None:
        return str(add.pending.base_dest_path)
    source = add.source.value.strip()
    if not source:
        return "(computed on submit)"
    dot = source.rfind(".")
    ext = source[dot:].lower() if dot > source.rfind("/") else ""
    if ext not in (".txt", ".pdf", ".epub"):
        return "(unsupported source extension)"
    return f"books/<sha256>{ext}"


def reader_window(state: UIState) -> tuple[int, int]:
    """Start and end (exclusive) of the visible document lines."""
    doc = state.document
    if doc is None:
        return 0, 0
    available = max(5, state.height - 12)
    if state.prefs.typography_profile == "large":
        available = max(3, available // 2)
    start = state.reader_line
    return start, min(start + available, len(doc.lines))


def render_reader(state: UIState) -> str:
    doc = state.document
    if doc is None:
        return "Reader\nNo book open.\n\n" + _buttons(state)

    start, end = reader_window(state)
    separator = "\n\n" if state.prefs.typography_profile == "large" else "\n"
    rows = []
    if state.reading_mode != "zen":
        rows.append(doc.title)
        rows.append(f"line {state.reader_line + 1}/{len(doc.lines)} | mode={state.reading_mode}")
    rows.append(separator.join(doc.lines[start:end]))
    if state.reading_mode != "zen":
        rows += ["", _buttons(state)]
    return "\n".join(rows)


def render_community(state: UIState) -> str:
    form = state.share_form
    if form.kind:
        share = state.shares[state.share_index] if state.share_index < len(state.shares) else None
        target = fallback(share.title, share.id) if share else ""
        if form.kind == FORM_REVIEW:
            rows = [f"Review: {target}"] + _fields(
                state,
                [
                    ("community.review.field.rating", form.rating),
                    ("community.review.field.text", form.review),
                ],
            )
        else:
            rows = [f"Report: {target}"] + _fields(
                state,
                [
                    ("community.report.field.reason", form.reason),
                    ("community.report.field.details", form.details),
                ],
            )
        rows += ["", _buttons(state)]
        return "\n".join(rows)

    rows = ["Community Shares"]
    if not state.shares:
        rows.append("No community shares cached.")
    current = focused_id(state)
    for i, share in enumerate(state.shares):
        prefix = "> " if current == f"{COMMUNITY_SHARE_PREFIX}{i}" else "  "
        rows.append(f"{prefix}{fallback(share.title, share.id)} ({share.status})")
    rows += ["", _buttons(state)]
    return "\n".join(rows)


def render_settings(state: UIState) -> str:
    prefs = state.prefs
    base = theme.default_tokens(prefs.theme_mode)
    try:
        tokens = theme.apply_overrides(base, prefs.theme_overrides)
        validation = "theme overrides valid"
    except ValidationError as e:
        tokens = base
        validation = str(e)

    rows = [
        "Settings",
        f"readingMode: {prefs.reading_mode}",
        f"themeMode: {prefs.theme_mode}",
        f"typographyProfile: {prefs.typography_profile}",
        f"gutterPreset: {state.ui_settings.gutter_preset}",
        f"tokens: bg={tokens.background} text={tokens.text} accent={tokens.accent} progress={tokens.progress}",
        validation,
        "",
        _buttons(state),
    ]
    return "\n".join(rows)


_SCREEN_RENDERERS = {
    SCREEN_LIBRARY: render_library,
    SCREEN_READER: render_reader,
    SCREEN_COMMUNITY: render_community,
    SCREEN_SETTINGS: render_settings,
}


def render_screen(state: UIState) -> str:
    if not state.logged_in:
        return render_auth(state)
    return _SCREEN_RENDERERS.get(state.screen, render_auth)(state)


# ── Overlays ───────────────────────────────────────────


def render_splash(state: UIState, width: int) -> str:
    progress = min(max(state.splash.progress, 0), 100)
    bar_width = min(40, max(20, width - 20))
    filled = bar_width * progress // 100
    bar = "[" + "=" * filled + " " * (bar_width - filled) + "]"
    user = state.user_name if state.logged_in else "guest"
    return "\n".join(
        list(LOGO) + ["", f"{bar} {state.splash.message.strip()}", f"user: {user}"]
    )


def render_loading(state: UIState) -> str:
    frame = SPINNER_FRAMES[state.loading.frame % len(SPINNER_FRAMES)]
    label = state.loading.message.strip() or "Loading"
    return f"{frame} {label}\nPlease wait..."


def render_help(state: UIState) -> str:
    return "\n".join(HELP_LINES)


def render_palette(state: UIState) -> str:
    palette = state.palette
    rows = ["Command Palette", render_field(palette.query, True)]
    if not palette.entries:
        rows.append("No matching commands")

    # Scroll so the selected entry stays visible.
    first = max(0, palette.index - PALETTE_MAX_ROWS + 1)
    last_group = ""
    for i, entry in enumerate(palette.entries[first : first + PALETTE_MAX_ROWS], start=first):
        command = entry.command
        if command.group != last_group:
            last_group = command.group
            rows += ["", last_group.upper()]
        prefix = "> " if i == palette.index else "  "
        disabled = "" if entry.enabled else " (disabled)"
        rows.append(f"{prefix}{command.icon} {command.title}{disabled}")
        rows.append(f"   {command.description}")
    rows.append("Enter to run command, Esc to close")
    return "\n".join(rows)


def render_overlay(state: UIState, width: int) -> str:
    """The topmost overlay, or an empty string when the screen is uncovered."""
    if state.loading.active:
        return render_loading(state)
    if state.palette.active:
        return render_palette(state)
    if state.show_help:
        return render_help(state)
    if state.splash.active:
        return render_splash(state, width)
    return ""

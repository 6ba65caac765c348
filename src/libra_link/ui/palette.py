"""Command palette: catalogue, enablement rules and fuzzy filtering."""

from __future__ import annotations

from .state import SCREEN_AUTH, PaletteCommand, PaletteEntry, UIState, fallback

GROUP_COMMANDS = "commands"
GROUP_BOOKS = "books"
BOOK_OPEN_PREFIX = "book.open."


def _cmd(id: str, icon: str, title: str, description: str) -> PaletteCommand:
    return PaletteCommand(id, GROUP_COMMANDS, icon, title, description)


COMMANDS: tuple[PaletteCommand, ...] = (
    _cmd("nav.auth", "🔐", "Go to Auth", "Open sign in/sign up screen"),
    _cmd("nav.library", "📚", "Go to Library", "Open your library"),
    _cmd("nav.reader", "📖", "Go to Reader", "Open reader screen"),
    _cmd("nav.community", "🌐", "Go to Community", "Open community shares"),
    _cmd("nav.settings", "⚙", "Go to Settings", "Open settings screen"),
    _cmd("auth.submit", "↵", "Submit Auth Form", "Submit sign in or sign up"),
    _cmd("auth.switch_mode", "⇆", "Switch Auth Mode", "Switch sign in/sign up"),
    _cmd("auth.google", "G", "Start Google Sign-In", "Begin device auth"),
    _cmd("auth.logout", "⎋", "Sign Out", "End the current session"),
    _cmd("library.refresh", "⟳", "Refresh Library", "Sync library list"),
    _cmd("library.search", "⌕", "Open Library Search", "Focus search form"),
    _cmd("library.search_apply", "↵", "Apply Search", "Submit current search"),
    _cmd("library.search_clear", "✕", "Clear Search", "Clear search filter"),
    _cmd("library.add", "+", "Add New Book", "Open add book form"),
    _cmd("library.add_submit", "↵", "Submit Add Book", "Import new book"),
    _cmd("library.add_cancel", "✕", "Cancel Add Book", "Close add book form"),
    _cmd("library.open", "→", "Open Selected Book", "Open highlighted book in reader"),
    _cmd("reader.toggle_mode", "Z", "Toggle Reading Mode", "Switch normal and zen"),
    _cmd("community.refresh", "⟳", "Refresh Community", "Sync shares"),
    _cmd("community.borrow", "↓", "Borrow Selected Share", "Borrow highlighted share"),
    _cmd("community.review", "★", "Review Selected Share", "Rate and review highlighted share"),
    _cmd("community.report", "!", "Report Selected Share", "Report highlighted share"),
    _cmd("settings.theme", "T", "Next Theme", "Cycle theme mode"),
    _cmd("settings.typography", "P", "Next Typography", "Cycle typography profile"),
    _cmd("settings.accent", "O", "Apply Accent Override", "Set sample accent color"),
    _cmd("settings.clear_overrides", "X", "Clear Theme Overrides", "Reset custom colors"),
    _cmd("settings.gutter", "]", "Cycle Gutter Preset", "Change horizontal focus width"),
    _cmd("app.help", "?", "Toggle Help", "Open keyboard help"),
    _cmd("app.quit", "⎋", "Quit Application", "Exit TUI"),
)

_ALWAYS = frozenset({"nav.auth", "app.help", "app.quit"})
_AUTH_FORM = frozenset({"auth.submit", "auth.switch_mode", "auth.google"})


def fuzzy_score(query: str, target: str) -> int:
    """Subsequence score: +10 per match, a growing bonus for runs, minus target length.

    Returns 0 for an empty query and -1 when the query is not a subsequence.
    """
    query = query.strip().lower()
    if not query:
        return 0
    target = target.lower()

    qi = score = streak = 0
    for i, ch in enumerate(target):
        if qi >= len(query):
            break
        if ch != query[qi]:
            continue
        score += 10
        if qi > 0 and i > 0 and query[qi - 1] == target[i - 1]:
            streak += 1
            score += streak * 3
        else:
            streak = 0
        qi += 1

    if qi < len(query):
        return -1
    return score - len(target)


def is_enabled(state: UIState, command_id: str) -> bool:
    if command_id in _ALWAYS or command_id.startswith(BOOK_OPEN_PREFIX):
        return True
    if command_id in _AUTH_FORM:
        return not state.logged_in or state.screen == SCREEN_AUTH
    if not state.logged_in:
        return False

    rules = {
        "library.open": lambda: bool(state.ebooks),
        "library.search_apply": lambda: state.search_active,
        "library.search_clear": lambda: state.search_active or bool(state.search_query),
        "library.add_submit": lambda: state.add.active,
        "library.add_cancel": lambda: state.add.active,
        "community.borrow": lambda: bool(state.shares),
        "community.review": lambda: bool(state.shares),
        "community.report": lambda: bool(state.shares),
        "reader.toggle_mode": lambda: state.document is not None,
    }
    rule = rules.get(command_id)
    return rule() if rule else True


def _target(command: PaletteCommand) -> str:
    return f"{command.title} {command.description} {command.id}"


def book_commands(state: UIState) -> list[PaletteCommand]:
    return [
        PaletteCommand(
            id=f"{BOOK_OPEN_PREFIX}{i}",
            group=GROUP_BOOKS,
            icon="📘",
            title=fallback(book.title, "Untitled"),
            description=f"{fallback(book.format, 'unknown')} format • {fallback(book.author, 'unknown author')}",
        )
        for i, book in enumerate(state.ebooks)
    ]


def filter_entries(state: UIState) -> None:
    query = state.palette.query.value.strip()

    commands: list[PaletteEntry] = []
    for command in COMMANDS:
        score = fuzzy_score(query, _target(command))
        if query and score < 0:
            continue
        commands.append(PaletteEntry(command, score, is_enabled(state, command.id)))

    books: list[PaletteEntry] = []
    for command in book_commands(state):
        score = fuzzy_score(query, _target(command))
        if query and score < 0:
            continue
        books.append(PaletteEntry(command, score, True))

    commands.sort(key=lambda e: (-e.score, not e.enabled, e.command.title))
    books.sort(key=lambda e: (-e.score, e.command.title))

    palette = state.palette
    palette.entries = commands + books
    if not palette.entries:
        palette.index = 0
        return
    palette.index = min(max(palette.index, 0), len(palette.entries) - 1)


def open_palette(state: UIState) -> None:
    state.show_help = False
    state.palette.active = True
    state.palette.query.clear()
    state.palette.index = 0
    filter_entries(state)


def close_palette(state: UIState) -> None:
    state.palette.active = False
    state.palette.entries = []
    state.palette.index = 0

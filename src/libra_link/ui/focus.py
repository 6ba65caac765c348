"""Selectable lists per screen and keyboard focus movement."""

from __future__ import annotations

from typing import Optional

from .state import (
    AUTH_SIGN_UP,
    FORM_REPORT,
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

LIBRARY_BOOK_PREFIX = "library.book."
COMMUNITY_SHARE_PREFIX = "community.share."


def build_selectables(state: UIState) -> list[Selectable]:
    if state.palette.active:
        return []
    if state.show_help:
        return [Selectable("help.close", "Close Help")]
    if not state.logged_in:
        return _auth(state)

    builders = {
        SCREEN_LIBRARY: _library,
        SCREEN_READER: _reader,
        SCREEN_COMMUNITY: _community,
        SCREEN_SETTINGS: _settings,
    }
    return builders.get(state.screen, _auth)(state)


def _auth(state: UIState) -> list[Selectable]:
    if state.auth.mode == AUTH_SIGN_UP:
        items = [
            Selectable("auth.field.email", "Email"),
            Selectable("auth.field.username", "Username"),
            Selectable("auth.field.password", "Password"),
            Selectable("auth.field.confirm", "Confirm Password"),
        ]
    else:
        items = [
            Selectable("auth.field.identifier", "Identifier"),
            Selectable("auth.field.password", "Password"),
        ]
    items += [
        Selectable("auth.action.submit", "Submit"),
        Selectable("auth.action.switch_mode", "Switch Mode"),
        Selectable("auth.action.google", "Sign in with Google"),
    ]
    return items


def _library(state: UIState) -> list[Selectable]:
    if state.add.active:
        if state.add.confirm_duplicate:
            return [
                Selectable("library.add.duplicate_yes", "Import Anyway"),
                Selectable("library.add.duplicate_no", "Cancel"),
            ]
        return [
            Selectable("library.add.field.source", "Source Path"),
            Selectable("library.add.field.title", "Title"),
            Selectable("library.add.field.description", "Description"),
            Selectable("library.add.field.language", "Language"),
            Selectable("library.add.field.format", "Format"),
            Selectable("library.add.submit", "Add Book"),
            Selectable("library.add.cancel", "Cancel"),
        ]

    if state.search_active:
        return [
            Selectable("library.search.field.query", "Search Query"),
            Selectable("library.search.submit", "Search"),
            Selectable("library.search.clear", "Clear"),
        ]

    items = [
        Selectable(f"{LIBRARY_BOOK_PREFIX}{i}", fallback(book.title, "Untitled"))
        for i, book in enumerate(state.ebooks)
    ]
    items += [
        Selectable("library.action.search", "Search"),
        Selectable("library.action.refresh", "Refresh Library"),
        Selectable("library.action.add", "Add New Book"),
        Selectable("library.action.open", "Open Selected", disabled=not state.ebooks),
    ]
    return items


def _reader(state: UIState) -> list[Selectable]:
    return [
        Selectable("reader.content", "Reader Content"),
        Selectable("reader.action.toggle_mode", "Toggle Reading Mode"),
    ]


def _community(state: UIState) -> list[Selectable]:
    if state.share_form.kind == FORM_REVIEW:
        return [
            Selectable("community.review.field.rating", "Rating"),
            Selectable("community.review.field.text", "Review"),
            Selectable("community.review.submit", "Submit Review"),
            Selectable("community.review.cancel", "Cancel"),
        ]
    if state.share_form.kind == FORM_REPORT:
        return [
            Selectable("community.report.field.reason", "Reason"),
            Selectable("community.report.field.details", "Details"),
            Selectable("community.report.submit", "Submit Report"),
            Selectable("community.report.cancel", "Cancel"),
        ]

    empty = not state.shares
    items = [
        Selectable(f"{COMMUNITY_SHARE_PREFIX}{i}", fallback(share.title, share.id))
        for i, share in enumerate(state.shares)
    ]
    items += [
        Selectable("community.action.refresh", "Refresh Community"),
        Selectable("community.action.borrow", "Borrow Selected", disabled=empty),
        Selectable("community.action.review", "Review Selected", disabled=empty),
        Selectable("community.action.report", "Report Selected", disabled=empty),
    ]
    return items


def _settings(state: UIState) -> list[Selectable]:
    return [
        Selectable("settings.action.theme", "Next Theme"),
        Selectable("settings.action.typography", "Next Typography"),
        Selectable("settings.action.accent", "Apply Accent Override"),
        Selectable("settings.action.clear_overrides", "Clear Theme Overrides"),
        Selectable("settings.action.reading_mode", "Toggle Reading Mode"),
        Selectable("settings.action.gutter", "Cycle Gutter Preset"),
        Selectable("settings.action.logout", "Sign Out"),
    ]


def rebuild_focus(state: UIState) -> None:
    """Recompute selectables, keeping focus on the same id when it survives."""
    prev_id = focused_id(state)
    state.selectables = build_selectables(state)
    if not state.selectables:
        state.focus_idx = 0
        return

    if prev_id:
        for i, item in enumerate(state.selectables):
            if item.id == prev_id and not item.disabled:
                state.focus_idx = i
                sync_selection_from_focus(state)
                return

    state.focus_idx = 0
    for i, item in enumerate(state.selectables):
        if not item.disabled:
            state.focus_idx = i
            break
    sync_selection_from_focus(state)


def move_focus(state: UIState, delta: int) -> None:
    count = len(state.selectables)
    if not count or not delta:
        return
    idx = state.focus_idx
    for _ in range(count):
        idx = (idx + delta) % count
        if not state.selectables[idx].disabled:
            state.focus_idx = idx
            sync_selection_from_focus(state)
            return


def focus_by_id(state: UIState, item_id: str) -> None:
    for i, item in enumerate(state.selectables):
        if item.id == item_id and not item.disabled:
            state.focus_idx = i
            sync_selection_from_focus(state)
            return


def focused(state: UIState) -> Optional[Selectable]:
    if 0 <= state.focus_idx < len(state.selectables):
        return state.selectables[state.focus_idx]
    return None


def focused_id(state: UIState) -> str:
    item = focused(state)
    return item.id if item else ""


def is_disabled(state: UIState, item_id: str) -> bool:
    return any(item.id == item_id and item.disabled for item in state.selectables)


def sync_selection_from_focus(state: UIState) -> None:
    item_id = focused_id(state)
    idx = index_suffix(item_id, LIBRARY_BOOK_PREFIX)
    if idx is not None and idx < len(state.ebooks):
        state.ebook_index = idx
    idx = index_suffix(item_id, COMMUNITY_SHARE_PREFIX)
    if idx is not None and idx < len(state.shares):
        state.share_index = idx


def index_suffix(item_id: str, prefix: str) -> Optional[int]:
    if not item_id.startswith(prefix):
        return None
    try:
        idx = int(item_id[len(prefix) :])
    except ValueError:
        return None
    return idx if idx >= 0 else None


def field_for(state: UIState, item_id: str) -> Optional[TextField]:
    """The text buffer behind a field selectable, if any."""
    auth = state.auth
    fields = {
        "auth.field.identifier": auth.identifier,
        "auth.field.password": auth.signup_password if auth.mode == AUTH_SIGN_UP else auth.password,
        "auth.field.email": auth.email,
        "auth.field.username": auth.username,
        "auth.field.confirm": auth.confirm,
        "library.search.field.query": state.search,
        "library.add.field.source": state.add.source,
        "library.add.field.title": state.add.title,
        "library.add.field.description": state.add.description,
        "library.add.field.language": state.add.language,
        "library.add.field.format": state.add.format,
        "community.review.field.rating": state.share_form.rating,
        "community.review.field.text": state.share_form.review,
        "community.report.field.reason": state.share_form.reason,
        "community.report.field.details": state.share_form.details,
    }
    return fields.get(item_id)

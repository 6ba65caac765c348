"""Tests for selectables and focus movement."""

from __future__ import annotations

from libra_link.library.models import EbookCache, ShareCache
from libra_link.ui.focus import (
    build_selectables,
    field_for,
    focus_by_id,
    focused_id,
    index_suffix,
    is_disabled,
    move_focus,
    rebuild_focus,
)
from libra_link.ui.palette import open_palette
from libra_link.ui.state import (
    AUTH_SIGN_UP,
    FORM_REVIEW,
    SCREEN_COMMUNITY,
    SCREEN_LIBRARY,
    SCREEN_SETTINGS,
    UIState,
)


def _library_state(books: int = 2) -> UIState:
    state = UIState(logged_in=True, screen=SCREEN_LIBRARY)
    state.ebooks = [EbookCache(id=f"e{i}", title=f"Book {i}") for i in range(books)]
    rebuild_focus(state)
    return state


def _ids(state: UIState) -> list[str]:
    return [item.id for item in state.selectables]


class TestBuildSelectables:
    def test_signed_out_shows_sign_in(self):
        state = UIState()
        rebuild_focus(state)
        assert _ids(state) == [
            "auth.field.identifier",
            "auth.field.password",
            "auth.action.submit",
            "auth.action.switch_mode",
            "auth.action.google",
        ]

    def test_sign_up_fields(self):
        state = UIState()
        state.auth.mode = AUTH_SIGN_UP
        ids = [item.id for item in build_selectables(state)]
        assert ids[:4] == [
            "auth.field.email",
            "auth.field.username",
            "auth.field.password",
            "auth.field.confirm",
        ]

    def test_library_lists_books_then_actions(self):
        state = _library_state(2)
        assert _ids(state)[:2] == ["library.book.0", "library.book.1"]
        assert "library.action.add" in _ids(state)

    def test_open_disabled_for_empty_library(self):
        state = _library_state(0)
        assert is_disabled(state, "library.action.open")
        assert focused_id(state) == "library.action.search"

    def test_help_and_palette_override_screen(self):
        state = _library_state()
        state.show_help = True
        rebuild_focus(state)
        assert _ids(state) == ["help.close"]
        open_palette(state)
        rebuild_focus(state)
        assert state.selectables == []

    def test_community_actions_disabled_without_shares(self):
        state = UIState(logged_in=True, screen=SCREEN_COMMUNITY)
        rebuild_focus(state)
        for action in ("borrow", "review", "report"):
            assert is_disabled(state, f"community.action.{action}")
        assert not is_disabled(state, "community.action.refresh")

    def test_review_form(self):
        state = UIState(logged_in=True, screen=SCREEN_COMMUNITY)
        state.shares = [ShareCache(id="s1")]
        state.share_form.kind = FORM_REVIEW
        rebuild_focus(state)
        assert focused_id(state) == "community.review.field.rating"

    def test_settings(self):
        state = UIState(logged_in=True, screen=SCREEN_SETTINGS)
        rebuild_focus(state)
        assert _ids(state)[-1] == "settings.action.logout"


class TestMovement:
    def test_wraps_both_ways(self):
        state = _library_state(1)
        move_focus(state, -1)
        assert focused_id(state) == "library.action.open"
        move_focus(state, 1)
        assert focused_id(state) == "library.book.0"

    def test_skips_disabled(self):
        state = _library_state(0)
        focus_by_id(state, "library.action.add")
        move_focus(state, 1)
        assert focused_id(state) == "library.action.search"

    def test_focus_updates_selection(self):
        state = _library_state(3)
        focus_by_id(state, "library.book.2")
        assert state.ebook_index == 2

    def test_rebuild_keeps_focus_id(self):
        state = _library_state(3)
        focus_by_id(state, "library.action.refresh")
        state.ebooks = state.ebooks[:1]
        rebuild_focus(state)
        assert focused_id(state) == "library.action.refresh"

    def test_rebuild_falls_back_to_first_enabled(self):
        state = _library_state(3)
        focus_by_id(state, "library.book.2")
        state.ebooks = []
        rebuild_focus(state)
        assert focused_id(state) == "library.action.search"

    def test_focus_by_unknown_id_is_noop(self):
        state = _library_state(2)
        focus_by_id(state, "nope")
        assert focused_id(state) == "library.book.0"


class TestHelpers:
    def test_index_suffix(self):
        assert index_suffix("library.book.4", "library.book.") == 4
        assert index_suffix("library.book.x", "library.book.") is None
        assert index_suffix("library.book.-1", "library.book.") is None
        assert index_suffix("community.share.1", "library.book.") is None

    def test_password_field_follows_mode(self):
        state = UIState()
        assert field_for(state, "auth.field.password") is state.auth.password
        state.auth.mode = AUTH_SIGN_UP
        assert field_for(state, "auth.field.password") is state.auth.signup_password
        assert field_for(state, "auth.action.submit") is None

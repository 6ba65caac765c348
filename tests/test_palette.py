"""Tests for the command palette catalogue, scoring and filtering."""

from __future__ import annotations

from libra_link.library.models import EbookCache, ShareCache
from libra_link.ui.palette import (
    COMMANDS,
    GROUP_BOOKS,
    GROUP_COMMANDS,
    book_commands,
    close_palette,
    filter_entries,
    fuzzy_score,
    is_enabled,
    open_palette,
)
from libra_link.ui.state import SCREEN_AUTH, SCREEN_LIBRARY, UIState


def _state(**kwargs) -> UIState:
    state = UIState(logged_in=True, screen=SCREEN_LIBRARY, **kwargs)
    return state


class TestFuzzyScore:
    def test_empty_query(self):
        assert fuzzy_score("", "anything") == 0
        assert fuzzy_score("   ", "anything") == 0

    def test_not_a_subsequence(self):
        assert fuzzy_score("xyz", "library") == -1
        assert fuzzy_score("yl", "ly") == -1

    def test_exact_scoring(self):
        # l(10) i(10 + 3) b(10 + 6) minus len("lib")
        assert fuzzy_score("lib", "lib") == 39 - 3

    def test_scattered_scores_lower_than_contiguous(self):
        assert fuzzy_score("gl", "go library") < fuzzy_score("gl", "glow")

    def test_case_insensitive(self):
        assert fuzzy_score("LIB", "Library") == fuzzy_score("lib", "library")

    def test_shorter_target_wins_on_tie(self):
        assert fuzzy_score("set", "settings") > fuzzy_score("set", "settings screen")


class TestCatalogue:
    def test_ids_unique(self):
        ids = [c.id for c in COMMANDS]
        assert len(ids) == len(set(ids))
        assert all(c.group == GROUP_COMMANDS for c in COMMANDS)

    def test_book_entries(self):
        state = _state()
        state.ebooks = [
            EbookCache(id="e1", title="Dune", author="Herbert", format="epub"),
            EbookCache(id="e2", title=" "),
        ]
        books = book_commands(state)
        assert [b.id for b in books] == ["book.open.0", "book.open.1"]
        assert books[0].description == "epub format • Herbert"
        assert books[1].title == "Untitled"
        assert books[1].description == "unknown format • unknown author"
        assert all(b.group == GROUP_BOOKS for b in books)


class TestEnablement:
    def test_signed_out_only_auth_and_globals(self):
        state = UIState()
        assert is_enabled(state, "nav.auth")
        assert is_enabled(state, "auth.submit")
        assert is_enabled(state, "app.quit")
        assert not is_enabled(state, "nav.library")
        assert not is_enabled(state, "library.refresh")

    def test_auth_form_commands_only_on_auth_screen_when_signed_in(self):
        state = _state()
        assert not is_enabled(state, "auth.google")
        state.screen = SCREEN_AUTH
        assert is_enabled(state, "auth.google")

    def test_context_rules(self):
        state = _state()
        assert not is_enabled(state, "library.open")
        assert not is_enabled(state, "library.add_submit")
        assert not is_enabled(state, "community.borrow")
        assert not is_enabled(state, "reader.toggle_mode")
        state.ebooks = [EbookCache(id="e1", title="A")]
        state.shares = [ShareCache(id="s1")]
        state.add.active = True
        assert is_enabled(state, "library.open")
        assert is_enabled(state, "library.add_submit")
        assert is_enabled(state, "community.report")

    def test_search_clear(self):
        state = _state()
        assert not is_enabled(state, "library.search_clear")
        state.search_query = "dune"
        assert is_enabled(state, "library.search_clear")
        assert not is_enabled(state, "library.search_apply")


class TestFiltering:
    def test_open_shows_everything(self):
        state = _state()
        state.ebooks = [EbookCache(id="e1", title="Dune")]
        state.show_help = True
        open_palette(state)
        assert state.palette.active
        assert not state.show_help
        assert len(state.palette.entries) == len(COMMANDS) + 1
        assert state.palette.entries[-1].command.id == "book.open.0"

    def test_empty_query_orders_enabled_first(self):
        state = _state()
        open_palette(state)
        enabled = [e.enabled for e in state.palette.entries]
        assert enabled == sorted(enabled, reverse=True)

    def test_query_filters_and_ranks(self):
        state = _state()
        state.ebooks = [EbookCache(id="e1", title="Settlers of Mars")]
        open_palette(state)
        state.palette.query.value = "settings"
        filter_entries(state)
        ids = [e.command.id for e in state.palette.entries]
        assert ids
        assert all(i.startswith("settings.") or i == "nav.settings" for i in ids)
        assert "book.open.0" not in ids

    def test_books_follow_commands(self):
        state = _state()
        state.ebooks = [EbookCache(id="e1", title="Go West")]
        open_palette(state)
        state.palette.query.value = "go"
        filter_entries(state)
        groups = [e.command.group for e in state.palette.entries]
        assert groups.index(GROUP_BOOKS) > max(
            i for i, g in enumerate(groups) if g == GROUP_COMMANDS
        )

    def test_no_matches(self):
        state = _state()
        open_palette(state)
        state.palette.index = 5
        state.palette.query.value = "qqqqzzzz"
        filter_entries(state)
        assert state.palette.entries == []
        assert state.palette.index == 0

    def test_index_clamped(self):
        state = _state()
        open_palette(state)
        state.palette.index = 500
        filter_entries(state)
        assert state.palette.index == len(state.palette.entries) - 1

    def test_close(self):
        state = _state()
        open_palette(state)
        close_palette(state)
        assert not state.palette.active
        assert state.palette.entries == []

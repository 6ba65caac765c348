from __future__ import annotations

from typing import TYPE_CHECKING

from textual import events
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.screen import Screen
from textual.widgets import Static

from libra_link.library.models import TYPOGRAPHY_PROFILES
from libra_link.ui import views
from libra_link.ui.state import OVERLAY_NONE, SCREEN_READER, UIState

if TYPE_CHECKING:
    from libra_link.app import LibraLinkApp


class MainScreen(Screen, inherit_bindings=False):
    """The only screen. Renders ``UIState`` and hands every key to the coordinator."""

    @property
    def ll(self) -> LibraLinkApp:
        return self.app  # type: ignore[return-value]

    def compose(self) -> ComposeResult:
        yield Static("", id="header", markup=False)
        yield Static("", id="body", markup=False)
        yield Static("", id="overlay", markup=False)
        with Vertical(id="footer"):
            yield Static("", id="status-line", markup=False)
            yield Static("", id="controls-line", markup=False)

    def on_mount(self) -> None:
        self.ll.resize_view(self.size.width, self.size.height)

    def on_resize(self, event: events.Resize) -> None:
        self.ll.resize_view(event.size.width, event.size.height)

    def on_key(self, event: events.Key) -> None:
        event.stop()
        event.prevent_default()
        self.ll.handle_key(event.key, event.character)

    # ── Rendering ───────────────────────────────

    def refresh_view(self, state: UIState) -> None:
        width = state.width or self.size.width

        self.query_one("#header", Static).update(views.header_line(state))

        body = self.query_one("#body", Static)
        body.update(views.render_screen(state))
        body.styles.margin = (0, views.gutter_width(width, state.ui_settings.gutter_preset))
        for profile in TYPOGRAPHY_PROFILES:
            body.set_class(state.prefs.typography_profile == profile, f"typo-{profile}")
        body.set_class(
            state.screen == SCREEN_READER and state.reading_mode == "zen", "zen"
        )

        overlay = self.query_one("#overlay", Static)
        text = views.render_overlay(state, width)
        overlay.update(text)
        overlay.set_class(bool(text), "visible")
        overlay.set_class(state.overlay == OVERLAY_NONE and state.splash.active, "splash")

        status = self.query_one("#status-line", Static)
        status.update(views.status_line(state))
        status.set_class(bool(state.error.strip()), "error")

        self.query_one("#controls-line", Static).update(
            views.controls_line(state, max(0, width - 2))
        )

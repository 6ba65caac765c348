"""Textual CSS for the libra-link shell."""

APP_CSS = """
/* ── Global ────────────────────────────────── */
Screen {
    background: $background;
    color: $foreground;
    layers: base overlay;
}

/* ── Header ────────────────────────────────── */
#header {
    dock: top;
    height: 1;
    padding: 0 1;
    background: $primary;
    color: $background;
    text-style: bold;
}

/* ── Body ──────────────────────────────────── */
#body {
    height: 1fr;
    padding: 1 0;
    overflow: hidden;
}

#body.typo-compact {
    padding: 0 0;
}

#body.typo-comfortable {
    padding: 1 0;
}

#body.typo-large {
    padding: 2 0;
}

#body.zen {
    padding: 0 0;
}

/* ── Overlay ───────────────────────────────── */
#overlay {
    layer: overlay;
    display: none;
    width: auto;
    min-width: 40;
    max-width: 90%;
    height: auto;
    max-height: 90%;
    offset: 4 2;
    padding: 1 2;
    background: $panel;
    border: round $accent;
}

#overlay.visible {
    display: block;
}

#overlay.splash {
    border: round $secondary;
    offset: 2 1;
}

/* ── Status / controls ─────────────────────── */
#footer {
    dock: bottom;
    height: 2;
}

#status-line {
    height: 1;
    padding: 0 1;
    background: $primary;
    color: $background;
}

#status-line.error {
    background: $error;
}

#controls-line {
    height: 1;
    padding: 0 1;
    color: $secondary;
}
"""

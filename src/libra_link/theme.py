"""Reader colour tokens, user overrides, and the Textual theme built from them."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Optional

from textual.theme import Theme

from libra_link.errors import ValidationError

TOKEN_KEYS = ("background", "text", "accent", "progress")
_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


@dataclass(frozen=True)
class Tokens:
    background: str
    text: str
    accent: str
    progress: str


_DEFAULTS = {
    "light": Tokens("#f5f5f2", "#202022", "#2a6fdb", "#5f87ff"),
    "dark": Tokens("#111318", "#f5f7fa", "#64b5f6", "#82b1ff"),
    "sepia": Tokens("#f4ecd8", "#4e3f2f", "#9c5a16", "#b88c3a"),
    "high_contrast": Tokens("#000000", "#ffffff", "#00ffff", "#ffff00"),
}

# Light backgrounds for Textual's dark flag.
_LIGHT_MODES = frozenset({"light", "sepia"})


def default_tokens(mode: str) -> Tokens:
    return _DEFAULTS.get(mode, _DEFAULTS["dark"])


def apply_overrides(base: Tokens, overrides: Optional[dict[str, str]]) -> Tokens:
    """Validate and merge overrides. Raises ``ValidationError`` on any bad entry."""
    if not overrides:
        return base

    normalized: dict[str, str] = {}
    for raw_key, raw_value in overrides.items():
        key = raw_key.strip().lower()
        value = (raw_value or "").strip()
        if key not in TOKEN_KEYS:
            raise ValidationError(f'unsupported token "{raw_key}"')
        if not _HEX_COLOR.match(value):
            raise ValidationError(f'invalid hex color for "{raw_key}"')
        normalized[key] = value.lower()

    merged = replace(base, **normalized)
    if contrast_ratio(merged.background, merged.text) < 4.5:
        raise ValidationError("background/text contrast is below WCAG AA minimum")
    return merged


def resolve_tokens(mode: str, overrides: Optional[dict[str, str]]) -> Tokens:
    """Tokens for a mode, falling back to the defaults when overrides are invalid."""
    base = default_tokens(mode)
    try:
        return apply_overrides(base, overrides)
    except ValidationError:
        return base


def contrast_ratio(bg_hex: str, text_hex: str) -> float:
    bg = relative_luminance(bg_hex)
    fg = relative_luminance(text_hex)
    lighter, darker = max(bg, fg), min(bg, fg)
    return (lighter + 0.05) / (darker + 0.05)


def relative_luminance(hex_color: str) -> float:
    r, g, b = _hex_to_rgb(hex_color)
    return 0.2126 * _channel(r) + 0.7152 * _channel(g) + 0.0722 * _channel(b)


def _hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    clean = hex_color.lstrip("#")
    if len(clean) != 6:
        return 0, 0, 0
    try:
        return int(clean[0:2], 16), int(clean[2:4], 16), int(clean[4:6], 16)
    except ValueError:
        return 0, 0, 0


def _channel(value: int) -> float:
    c = value / 255
    if c <= 0.03928:
        return c / 12.92
    return ((c + 0.055) / 1.055) ** 2.4


def theme_name(mode: str) -> str:
    return f"libra-{mode}"


def build_theme(mode: str, tokens: Tokens) -> Theme:
    return Theme(
        name=theme_name(mode),
        primary=tokens.accent,
        secondary=tokens.progress,
        accent=tokens.accent,
        foreground=tokens.text,
        background=tokens.background,
        surface=tokens.background,
        panel=tokens.background,
        dark=mode not in _LIGHT_MODES,
    )

"""Tests for theme tokens, overrides and contrast."""

from __future__ import annotations

import pytest

from libra_link import theme
from libra_link.errors import ValidationError


class TestDefaults:
    def test_every_mode_meets_contrast(self):
        for mode in ("light", "dark", "sepia", "high_contrast"):
            tokens = theme.default_tokens(mode)
            assert theme.contrast_ratio(tokens.background, tokens.text) >= 4.5

    def test_unknown_mode_is_dark(self):
        assert theme.default_tokens("neon") == theme.default_tokens("dark")


class TestContrast:
    def test_black_on_white(self):
        assert theme.contrast_ratio("#ffffff", "#000000") == pytest.approx(21.0)

    def test_identical_colours(self):
        assert theme.contrast_ratio("#777777", "#777777") == pytest.approx(1.0)

    def test_malformed_hex_is_black(self):
        assert theme.relative_luminance("#zzzzzz") == 0.0
        assert theme.relative_luminance("#fff") == 0.0


class TestOverrides:
    def test_none_returns_base(self):
        base = theme.default_tokens("light")
        assert theme.apply_overrides(base, None) is base
        assert theme.apply_overrides(base, {}) is base

    def test_keys_and_values_normalised(self):
        base = theme.default_tokens("dark")
        merged = theme.apply_overrides(base, {" Accent ": " #FF7F50 "})
        assert merged.accent == "#ff7f50"
        assert merged.background == base.background

    def test_unknown_token(self):
        with pytest.raises(ValidationError, match='unsupported token "border"'):
            theme.apply_overrides(theme.default_tokens("dark"), {"border": "#ffffff"})

    def test_bad_hex(self):
        with pytest.raises(ValidationError, match='invalid hex color for "accent"'):
            theme.apply_overrides(theme.default_tokens("dark"), {"accent": "#fff"})

    def test_low_contrast_rejected(self):
        with pytest.raises(ValidationError, match="contrast"):
            theme.apply_overrides(
                theme.default_tokens("dark"), {"text": "#151820"}
            )

    def test_resolve_falls_back_on_invalid(self):
        assert theme.resolve_tokens("sepia", {"accent": "nope"}) == theme.default_tokens("sepia")
        assert theme.resolve_tokens("sepia", {"accent": "#123456"}).accent == "#123456"


class TestTextualTheme:
    def test_build_theme(self):
        tokens = theme.default_tokens("sepia")
        built = theme.build_theme("sepia", tokens)
        assert built.name == "libra-sepia"
        assert built.background == tokens.background
        assert built.foreground == tokens.text
        assert built.primary == tokens.accent
        assert built.dark is False

    def test_dark_modes(self):
        assert theme.build_theme("high_contrast", theme.default_tokens("high_contrast")).dark is True

"""Tests for caricature.core.style_parser — compact style code decoding."""

from __future__ import annotations

import pytest

from caricature.core.style_parser import ParsedStyle, parse_style_id


class TestShortCodes:
    """Codes of three characters or fewer."""

    @pytest.mark.parametrize("code", ["S01", "S02", "X", "AB", "S99"])
    def test_short_code_returned_verbatim(self, code):
        """The code is the style, with medium exaggeration and BG01."""
        parsed = parse_style_id(code)
        assert parsed.style == code
        assert parsed.exaggeration == "medium"
        assert parsed.background == "BG01"
        assert parsed.has_tier_code is False

    @pytest.mark.parametrize("code", [None, ""])
    def test_missing_code_uses_default_style(self, code):
        """None and the empty string select S01."""
        assert parse_style_id(code) == ParsedStyle("S01", "medium", "BG01")


class TestTierCodes:
    """Codes carrying a fourth tier character."""

    @pytest.mark.parametrize(
        ("code", "style", "tier"),
        [
            ("S01A", "S01", "mild"),
            ("S02B", "S02", "medium"),
            ("S07C", "S07", "bold"),
        ],
    )
    def test_tier_letters(self, code, style, tier):
        """A, B and C map to mild, medium and bold."""
        parsed = parse_style_id(code)
        assert parsed.style == style
        assert parsed.exaggeration == tier
        assert parsed.background == "BG01"
        assert parsed.has_tier_code is True

    def test_unknown_tier_letter_defaults_to_medium(self):
        """An unrecognised tier letter never fails."""
        assert parse_style_id("S03Z").exaggeration == "medium"

    def test_lowercase_tier_letter_is_unknown(self):
        """Tier letters are case sensitive."""
        assert parse_style_id("S03c").exaggeration == "medium"

    def test_characters_after_tier_are_ignored(self):
        """Only the fourth character is read."""
        parsed = parse_style_id("S04CXYZ")
        assert parsed.style == "S04"
        assert parsed.exaggeration == "bold"

"""Decode compact style identifiers.

The frontend sends a single style code such as ``"S01B"``: the first three
characters select the visual style and the optional fourth character picks
the exaggeration tier (``A`` mild, ``B`` medium, ``C`` bold).  Parsing never
fails; anything unrecognised falls back to the defaults.
"""

from __future__ import annotations

from typing import NamedTuple

DEFAULT_STYLE = "S01"
DEFAULT_EXAGGERATION = "medium"
DEFAULT_BACKGROUND = "BG01"

EXAGGERATION_CODES = {"A": "mild", "B": "medium", "C": "bold"}


class ParsedStyle(NamedTuple):
    """Result of :func:`parse_style_id`."""

    style: str
    exaggeration: str
    background: str
    has_tier_code: bool = False


def parse_style_id(style_id: str | None) -> ParsedStyle:
    """Split a style code into base style, exaggeration tier and background.

    Args:
        style_id: Code such as ``"S02"`` or ``"S07C"``.  ``None`` or an empty
            string selects the default style.

    Returns:
        A :class:`ParsedStyle`.  Codes of three characters or fewer are
        returned verbatim with the ``"medium"`` tier; longer codes use the
        fourth character as the tier code.  The background is always the
        default ``"BG01"``.
    """
    if not style_id or len(style_id) <= 3:
        return ParsedStyle(style_id or DEFAULT_STYLE, DEFAULT_EXAGGERATION, DEFAULT_BACKGROUND)

    level = style_id[3]
    return ParsedStyle(
        style_id[:3],
        EXAGGERATION_CODES.get(level, DEFAULT_EXAGGERATION),
        DEFAULT_BACKGROUND,
        has_tier_code=True,
    )

"""Caricature prompt composition.

The final prompt is assembled from a fixed lead sentence and five labelled
blocks, each looked up in the current :class:`PromptSnapshot`:

Template Structure::

    Transform the reference image into a professional caricature illustration.

    IDENTITY REQUIREMENTS:
    [config: identity_lock]

    EXAGGERATION:
    [exaggeration level text]

    STYLE:
    [style text]

    BACKGROUND:
    [background text]

    TECHNICAL:
    [config: technical]

Lookups never fail.  An unknown id falls back to the default id (``S01``,
``medium``, ``BG01``); if the default is missing too, a generic stand-in is
used.  Prompt length is not checked here; the model API enforces its own
limits.

Usage
-----
::

    composed = build_prompt(store.snapshot, "S02", "bold", "BG03")
    composed.prompt, composed.negative_prompt
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, TypeVar

from caricature.core.prompt_store import PromptEntry, PromptSnapshot, StyleEntry
from caricature.core.style_parser import (
    DEFAULT_BACKGROUND,
    DEFAULT_EXAGGERATION,
    DEFAULT_STYLE,
)

_LEAD = "Transform the reference image into a professional caricature illustration."

_FALLBACK_STYLE = StyleEntry(name="Caricature", text="caricature portrait")
_FALLBACK_EXAGGERATION = PromptEntry(name="Medium", text="")
_FALLBACK_BACKGROUND = PromptEntry(name="Gradient", text="gradient background")

_T = TypeVar("_T")


@dataclass(frozen=True)
class ComposedPrompt:
    """Prompt text plus the model selection of the resolved style."""

    prompt: str
    negative_prompt: str
    style_id: str
    model: str | None = None
    model_params: Mapping[str, Any] = field(default_factory=dict)


def _resolve(table: Mapping[str, _T], key: str, default_key: str, fallback: _T) -> tuple[str, _T]:
    if key in table:
        return key, table[key]
    if default_key in table:
        return default_key, table[default_key]
    return default_key, fallback


def build_prompt(
    snapshot: PromptSnapshot,
    style_id: str,
    exaggeration: str = DEFAULT_EXAGGERATION,
    background: str = DEFAULT_BACKGROUND,
) -> ComposedPrompt:
    """Compose the prompt and negative prompt for one generation.

    Args:
        snapshot: Prompt tables to read from.
        style_id: Base style id, e.g. ``"S01"``.
        exaggeration: Exaggeration level id (``"mild"``, ``"medium"``,
            ``"bold"``).
        background: Background id, e.g. ``"BG01"``.

    Returns:
        A :class:`ComposedPrompt`.  ``style_id`` is the id that was actually
        used after fallback.
    """
    resolved_style_id, style = _resolve(snapshot.styles, style_id, DEFAULT_STYLE, _FALLBACK_STYLE)
    _, exag = _resolve(
        snapshot.exaggeration_levels, exaggeration, DEFAULT_EXAGGERATION, _FALLBACK_EXAGGERATION
    )
    _, bg = _resolve(snapshot.backgrounds, background, DEFAULT_BACKGROUND, _FALLBACK_BACKGROUND)

    sections = [
        ("IDENTITY REQUIREMENTS", snapshot.config.get("identity_lock", "")),
        ("EXAGGERATION", exag.text),
        ("STYLE", style.text),
        ("BACKGROUND", bg.text),
        ("TECHNICAL", snapshot.config.get("technical", "")),
    ]
    blocks = [_LEAD] + [f"{label}:\n{text.strip()}".strip() for label, text in sections]

    return ComposedPrompt(
        prompt="\n\n".join(blocks).strip(),
        negative_prompt=snapshot.config.get("negative_prompt", "").strip(),
        style_id=resolved_style_id,
        model=style.model,
        model_params=dict(style.model_params),
    )

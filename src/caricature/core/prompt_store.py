"""Prompt tables: styles, exaggeration levels, backgrounds and global config.

Two stores share one read interface:

- :class:`StaticPromptStore` serves compiled-in tables.
- :class:`DatabasePromptStore` loads the same four tables from Supabase and
  is refreshed by :func:`run_periodic_reload` (and on demand through
  ``POST /reload-prompts``).

Snapshot Semantics
------------------
Readers never see the tables directly.  They read :attr:`PromptStore.snapshot`,
an immutable :class:`PromptSnapshot` built completely before it is published
with a single attribute assignment.  A reload that fails part-way therefore
never exposes half a table set; the previous snapshot simply stays in place
and the failure is logged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from caricature.core.supabase import SupabaseClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StyleEntry:
    """A visual style.  ``model`` overrides the default stylisation model."""

    name: str
    text: str
    model: str | None = None
    model_params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PromptEntry:
    """An exaggeration level or a background."""

    name: str
    text: str


@dataclass(frozen=True)
class PromptSnapshot:
    """One consistent generation of all four prompt tables."""

    styles: Mapping[str, StyleEntry]
    exaggeration_levels: Mapping[str, PromptEntry]
    backgrounds: Mapping[str, PromptEntry]
    config: Mapping[str, str]
    loaded_at: float | None = None

    @classmethod
    def build(
        cls,
        styles: dict[str, StyleEntry],
        exaggeration_levels: dict[str, PromptEntry],
        backgrounds: dict[str, PromptEntry],
        config: dict[str, str],
        loaded_at: float | None = None,
    ) -> "PromptSnapshot":
        """Freeze plain dicts into read-only mappings."""
        return cls(
            styles=MappingProxyType(dict(styles)),
            exaggeration_levels=MappingProxyType(dict(exaggeration_levels)),
            backgrounds=MappingProxyType(dict(backgrounds)),
            config=MappingProxyType(dict(config)),
            loaded_at=loaded_at,
        )

    @classmethod
    def empty(cls) -> "PromptSnapshot":
        return cls.build({}, {}, {}, {})


# ---------------------------------------------------------------------------
# Compiled-in tables.
# ---------------------------------------------------------------------------

STATIC_STYLES: dict[str, StyleEntry] = {
    "S01": StyleEntry(
        "Classic Caricature",
        "Hand-drawn classic caricature, bold confident ink outlines, soft gouache shading, "
        "warm skin tones, the look of a professional boardwalk caricature artist.",
    ),
    "S02": StyleEntry(
        "Cartoon",
        "Clean modern cartoon illustration, flat vibrant colours, thick smooth outlines, "
        "simple cel shading, friendly and playful.",
    ),
    "S03": StyleEntry(
        "3D Animated",
        "Stylised 3D animated movie character, soft global illumination, subsurface skin "
        "scattering, big expressive eyes, polished studio render.",
    ),
    "S04": StyleEntry(
        "Comic Book",
        "American comic book art, dynamic ink hatching, halftone dots, saturated primary "
        "colours, strong dramatic shadows.",
    ),
    "S05": StyleEntry(
        "Watercolour",
        "Loose watercolour caricature on textured paper, visible brush strokes, gentle "
        "colour bleeds, light pencil underdrawing.",
    ),
    "S06": StyleEntry(
        "Pencil Sketch",
        "Graphite pencil caricature, expressive cross-hatching, smudged shading, "
        "sketchbook feel, monochrome.",
        model_params={"prompt_strength": 0.75},
    ),
}

STATIC_EXAGGERATION: dict[str, PromptEntry] = {
    "mild": PromptEntry(
        "Mild",
        "Subtle exaggeration: slightly enlarge the head and the most distinctive feature, "
        "keep proportions close to the photo.",
    ),
    "medium": PromptEntry(
        "Medium",
        "Noticeable exaggeration: enlarged head on a smaller body, emphasise the two or "
        "three most distinctive facial features.",
    ),
    "bold": PromptEntry(
        "Bold",
        "Strong exaggeration: oversized head, dramatically amplified distinctive features, "
        "playful tiny body, still clearly the same person.",
    ),
}

STATIC_BACKGROUNDS: dict[str, PromptEntry] = {
    "BG01": PromptEntry("Gradient", "Smooth soft pastel gradient background."),
    "BG02": PromptEntry("Plain White", "Clean plain white studio background."),
    "BG03": PromptEntry("City", "Softly blurred city street background at golden hour."),
    "BG04": PromptEntry("Beach", "Sunny beach background with turquoise water and palm trees."),
    "BG05": PromptEntry("Party", "Festive party background with balloons and confetti."),
}

STATIC_CONFIG: dict[str, str] = {
    "identity_lock": (
        "The subject must remain instantly recognisable as the person in the reference "
        "photo. Preserve face shape, skin tone, eye colour, hairstyle, hair colour, facial "
        "hair, glasses and any distinctive marks. Do not change gender, age or ethnicity."
    ),
    "technical": (
        "Single subject, head and shoulders, centred composition, sharp focus on the face, "
        "high detail, clean edges, no text, no watermark, no frame."
    ),
    "negative_prompt": (
        "photorealistic, photo, deformed, disfigured, extra limbs, extra fingers, "
        "duplicate face, multiple people, blurry, lowres, text, watermark, signature, "
        "different person, wrong identity"
    ),
}


# ---------------------------------------------------------------------------
# Stores.
# ---------------------------------------------------------------------------


class PromptStore(ABC):
    """Holds the current :class:`PromptSnapshot` and knows how to rebuild it."""

    def __init__(self) -> None:
        self._snapshot = PromptSnapshot.empty()

    @property
    def snapshot(self) -> PromptSnapshot:
        return self._snapshot

    @property
    def loaded_at(self) -> float | None:
        return self._snapshot.loaded_at

    @abstractmethod
    async def reload(self) -> bool:
        """Rebuild the snapshot.  Returns ``True`` on success."""


class StaticPromptStore(PromptStore):
    """Prompt store backed by the compiled-in tables."""

    async def reload(self) -> bool:
        self._snapshot = PromptSnapshot.build(
            STATIC_STYLES,
            STATIC_EXAGGERATION,
            STATIC_BACKGROUNDS,
            STATIC_CONFIG,
            loaded_at=time.time(),
        )
        return True


class DatabasePromptStore(PromptStore):
    """Prompt store backed by the Supabase prompt tables.

    Tables read:

    - ``styles`` (``id, name, prompt, model?, model_params?, active, sort_order``)
    - ``exaggeration_levels`` (``id, name, prompt, sort_order``)
    - ``backgrounds`` (``id, name, prompt, sort_order``)
    - ``prompt_config`` (``key, value``)

    Args:
        client: Supabase client used for the reads.
    """

    def __init__(self, client: SupabaseClient) -> None:
        super().__init__()
        self._client = client

    async def reload(self) -> bool:
        """Load all four tables and publish them as one snapshot.

        Any failure is logged and leaves the previous snapshot in place.

        Returns:
            ``True`` if a new snapshot was published, ``False`` otherwise.
        """
        logger.info("Loading prompts from Supabase...")
        try:
            snapshot = await self._fetch_snapshot()
        except Exception:
            logger.exception("Failed to load prompts; keeping previous snapshot.")
            return False

        # Single reference swap: readers see either the old or the new tables.
        self._snapshot = snapshot
        logger.info(
            "Prompts loaded: %d styles, %d exaggeration levels, %d backgrounds",
            len(snapshot.styles),
            len(snapshot.exaggeration_levels),
            len(snapshot.backgrounds),
        )
        return True

    async def _fetch_snapshot(self) -> PromptSnapshot:
        style_rows = await self._client.select(
            "styles", filters={"active": True}, order="sort_order"
        )
        exaggeration_rows = await self._client.select("exaggeration_levels", order="sort_order")
        background_rows = await self._client.select("backgrounds", order="sort_order")
        config_rows = await self._client.select("prompt_config")

        styles = {
            row["id"]: StyleEntry(
                name=row["name"],
                text=row["prompt"],
                model=row.get("model") or None,
                model_params=row.get("model_params") or {},
            )
            for row in style_rows
        }
        exaggeration_levels = {
            row["id"]: PromptEntry(row["name"], row["prompt"]) for row in exaggeration_rows
        }
        backgrounds = {row["id"]: PromptEntry(row["name"], row["prompt"]) for row in background_rows}
        prompt_config = {row["key"]: row["value"] for row in config_rows}

        return PromptSnapshot.build(
            styles,
            exaggeration_levels,
            backgrounds,
            prompt_config,
            loaded_at=time.time(),
        )


async def run_periodic_reload(store: PromptStore, interval: float) -> None:
    """Reload *store* every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        await store.reload()

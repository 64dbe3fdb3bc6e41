"""Photo-to-preview generation pipeline.

:class:`GenerationPipeline` runs the fixed chain behind every preview::

    normalize_image ─▶ stylize ─▶ [upscale] ─▶ download ─▶ watermark_preview

Each vendor call (stylize, upscale) is wrapped in
:func:`~caricature.core.retry.retry_on_rate_limit`.  The upscale stage only
runs when ``upscale_enabled`` is set; otherwise the stylised URL is passed
through unchanged.

Deadline
--------
``run()`` accepts an optional ``deadline`` in seconds bounding the whole
chain.  When it expires a :class:`VendorError` is raised to the caller.
Vendor calls already in flight are not cancelled on Replicate's side.

Usage
-----
::

    pipeline = GenerationPipeline.from_config(client, config)
    composed = build_prompt(store.snapshot, "S02", "bold", "BG01")
    preview_jpeg = await pipeline.run(upload_bytes, composed)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Mapping

from caricature.core.config import CaricatureConfig
from caricature.core.errors import VendorError
from caricature.core.imaging import normalize_image, watermark_preview
from caricature.core.prompt_builder import ComposedPrompt
from caricature.core.replicate_client import GenerationRequest, ReplicateImageClient
from caricature.core.retry import retry_on_rate_limit

logger = logging.getLogger(__name__)


class GenerationPipeline:
    """Sequences the image steps and vendor calls for one preview.

    Attributes:
        _client: Vendor client used for stylize, upscale and download.
        _stylize_model: Model reference used when the style names none.
        _stylize_params: Default model inputs; style params override them.
    """

    def __init__(
        self,
        client: ReplicateImageClient,
        *,
        stylize_model: str,
        stylize_params: Mapping[str, Any] | None = None,
        upscale_enabled: bool = False,
        upscale_model: str = "",
        upscale_scale: int = 2,
        max_attempts: int = 3,
        base_delay: float = 5.0,
        input_edge: int = 1024,
        preview_max_width: int = 1200,
        preview_quality: int = 85,
        watermark_text: str = "PREVIEW",
        deadline: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._stylize_model = stylize_model
        self._stylize_params = dict(stylize_params or {})
        self._upscale_enabled = upscale_enabled
        self._upscale_model = upscale_model
        self._upscale_scale = upscale_scale
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._input_edge = input_edge
        self._preview_max_width = preview_max_width
        self._preview_quality = preview_quality
        self._watermark_text = watermark_text
        self._deadline = deadline
        self._sleep = sleep

    @classmethod
    def from_config(cls, client: ReplicateImageClient, config: CaricatureConfig) -> "GenerationPipeline":
        return cls(
            client,
            stylize_model=config.stylize_model,
            stylize_params=config.stylize_params,
            upscale_enabled=config.upscale_enabled,
            upscale_model=config.upscale_model,
            upscale_scale=config.upscale_scale,
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
            input_edge=config.input_edge,
            preview_max_width=config.preview_max_width,
            preview_quality=config.preview_quality,
            watermark_text=config.watermark_text,
            deadline=config.generation_deadline,
        )

    # -- Public interface ---------------------------------------------------

    async def run(
        self,
        image_data: bytes,
        composed: ComposedPrompt,
        *,
        deadline: float | None = None,
    ) -> bytes:
        """Produce the watermarked JPEG preview for *image_data*.

        Args:
            image_data: Encoded upload bytes.
            composed: Prompt and model selection from
                :func:`~caricature.core.prompt_builder.build_prompt`.
            deadline: Seconds allowed for the whole chain; defaults to the
                configured ``generation_deadline`` (``None`` = unbounded).

        Returns:
            JPEG bytes of the preview.

        Raises:
            DecodeError: If *image_data* is not an image.
            VendorError: If a vendor call fails, returns nothing, stays rate
                limited after all retries, or the deadline expires.
        """
        deadline = deadline if deadline is not None else self._deadline
        if deadline is None:
            return await self._run(image_data, composed)
        try:
            return await asyncio.wait_for(self._run(image_data, composed), timeout=deadline)
        except TimeoutError as exc:
            raise VendorError(f"Generation exceeded deadline of {deadline:.0f}s") from exc

    async def generate_url(self, image_data: bytes, composed: ComposedPrompt) -> str:
        """Run normalisation and the vendor stages; return the result URL."""
        normalized = await asyncio.to_thread(normalize_image, image_data, self._input_edge)

        request = GenerationRequest(
            image_png=normalized,
            prompt=composed.prompt,
            negative_prompt=composed.negative_prompt,
            model=composed.model or self._stylize_model,
            model_params={**self._stylize_params, **composed.model_params},
        )
        logger.info(
            "Submitting style=%s to %s with params=%s",
            composed.style_id,
            request.model,
            dict(request.model_params),
        )

        url = await retry_on_rate_limit(
            lambda: self._client.stylize(request),
            max_attempts=self._max_attempts,
            base_delay=self._base_delay,
            sleep=self._sleep,
            label="stylize",
        )

        if self._upscale_enabled:
            url = await retry_on_rate_limit(
                lambda: self._client.upscale(
                    url, model=self._upscale_model, scale=self._upscale_scale
                ),
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
                sleep=self._sleep,
                label="upscale",
            )
        return url

    # -- Internals ----------------------------------------------------------

    async def _run(self, image_data: bytes, composed: ComposedPrompt) -> bytes:
        url = await self.generate_url(image_data, composed)
        generated = await self._client.download(url)
        return await asyncio.to_thread(
            watermark_preview,
            generated,
            max_width=self._preview_max_width,
            text=self._watermark_text,
            quality=self._preview_quality,
        )

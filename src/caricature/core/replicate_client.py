"""Replicate calls used by the generation pipeline.

:class:`ReplicateImageClient` wraps the official ``replicate`` SDK and an
``httpx`` client for downloading results.  It owns the translation from
vendor failures into the service's typed errors:

- HTTP 429 from Replicate  -> :class:`RateLimitError` (retried upstream)
- any other SDK failure     -> :class:`VendorError`
- no output                 -> :class:`EmptyResultError`

The SDK's ``run`` is blocking, so it is executed with
:func:`asyncio.to_thread` to keep the event loop free while Replicate works.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx
import replicate
from replicate.exceptions import ModelError, ReplicateError

from caricature.core.errors import EmptyResultError, RateLimitError, VendorError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    """Everything the stylisation model receives for one image."""

    image_png: bytes
    prompt: str
    negative_prompt: str
    model: str
    model_params: Mapping[str, Any] = field(default_factory=dict)

    def data_url(self) -> str:
        encoded = base64.b64encode(self.image_png).decode("ascii")
        return f"data:image/png;base64,{encoded}"


def first_output_url(output: Any) -> str:
    """Reduce a model output to a single URL.

    Models return either one item or a list of items; items are URL strings
    or ``FileOutput`` objects exposing ``.url``.

    Raises:
        EmptyResultError: If the output holds nothing usable.
    """
    if isinstance(output, (list, tuple)):
        output = output[0] if output else None
    if output is None:
        raise EmptyResultError("No image returned from AI model")
    url = getattr(output, "url", output)
    if not url:
        raise EmptyResultError("No image returned from AI model")
    return str(url)


class ReplicateImageClient:
    """Stylisation, upscaling and result download.

    Args:
        api_token: Replicate API token.
        http: Optional ``httpx.AsyncClient`` for downloads (tests inject one
            with a mock transport).
    """

    def __init__(self, api_token: str, *, http: httpx.AsyncClient | None = None) -> None:
        self._replicate = replicate.Client(api_token=api_token)
        self._http = http or httpx.AsyncClient(follow_redirects=True)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _run(self, model: str, model_input: dict) -> Any:
        try:
            return await asyncio.to_thread(self._replicate.run, model, input=model_input)
        except ReplicateError as exc:
            if getattr(exc, "status", None) == 429:
                raise RateLimitError(f"Replicate rate limit for {model}") from exc
            raise VendorError(f"Replicate call to {model} failed: {exc}") from exc
        except ModelError as exc:
            raise VendorError(f"Model {model} failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise VendorError(f"Replicate request for {model} failed: {exc}") from exc

    async def stylize(self, request: GenerationRequest) -> str:
        """Run the stylisation model and return the URL of its first output."""
        model_input = {
            "image": request.data_url(),
            "prompt": request.prompt,
            "negative_prompt": request.negative_prompt,
            **request.model_params,
        }
        output = await self._run(request.model, model_input)
        url = first_output_url(output)
        logger.info("Generated image URL: %s", url)
        return url

    async def upscale(self, image_url: str, *, model: str, scale: int) -> str:
        """Run the upscaler on *image_url* and return the URL of its output."""
        output = await self._run(model, {"image": image_url, "scale": scale})
        url = first_output_url(output)
        logger.info("Upscaled image URL (x%d): %s", scale, url)
        return url

    async def download(self, url: str) -> bytes:
        """Fetch the bytes of a generated image."""
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as exc:
            raise VendorError(f"Failed to fetch generated image: {exc}") from exc
        if not response.is_success:
            raise VendorError(f"Failed to fetch generated image: {response.status_code}")
        return response.content

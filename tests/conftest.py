"""Shared pytest fixtures for Caricature Preview tests."""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from caricature.core.config import CaricatureConfig
from caricature.core.pipeline import GenerationPipeline
from caricature.core.projects import MemoryProjectStore, ProjectService
from caricature.core.prompt_store import StaticPromptStore


def make_image_bytes(
    size: tuple[int, int] = (200, 200),
    color: tuple[int, int, int] = (220, 180, 160),
    fmt: str = "JPEG",
) -> bytes:
    """Encode a solid-colour test image.

    Args:
        size: Width and height in pixels.
        color: RGB fill.
        fmt: Pillow format name.

    Returns:
        Encoded image bytes.
    """
    buffer = BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeVendor:
    """Stand-in for :class:`ReplicateImageClient` recording every call.

    Attributes:
        stylize_failures: Exceptions raised by the first ``stylize`` calls,
            in order, before it starts succeeding.
        upscale_failures: Same for ``upscale``.
        generated: Bytes returned by ``download``.
    """

    def __init__(self, generated: bytes | None = None) -> None:
        self.stylize_failures: list[Exception] = []
        self.upscale_failures: list[Exception] = []
        self.generated = generated or make_image_bytes((1600, 1600), (90, 120, 200), "PNG")
        self.stylize_requests: list = []
        self.upscale_calls: list[tuple[str, str, int]] = []
        self.downloads: list[str] = []

    async def stylize(self, request) -> str:
        self.stylize_requests.append(request)
        if self.stylize_failures:
            raise self.stylize_failures.pop(0)
        return "https://replicate.delivery/stylized.png"

    async def upscale(self, image_url: str, *, model: str, scale: int) -> str:
        self.upscale_calls.append((image_url, model, scale))
        if self.upscale_failures:
            raise self.upscale_failures.pop(0)
        return "https://replicate.delivery/upscaled.png"

    async def download(self, url: str) -> bytes:
        self.downloads.append(url)
        return self.generated

    async def aclose(self) -> None:
        pass


class SleepRecorder:
    """Async ``sleep`` replacement that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    """Manually advanced clock for eviction tests."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def test_config(monkeypatch) -> CaricatureConfig:
    """Create a configuration that ignores the environment and .env file.

    Returns:
        CaricatureConfig instance for testing
    """
    for name in ("REPLICATE_API_TOKEN", "SUPABASE_URL", "SUPABASE_SECRET_KEY"):
        monkeypatch.delenv(f"CARICATURE_{name}", raising=False)
    return CaricatureConfig(
        _env_file=None,
        replicate_api_token="r8_test",
        storage_backend="memory",
        prompt_source="static",
    )


@pytest.fixture
def photo_bytes() -> bytes:
    """A small JPEG standing in for an uploaded photo."""
    return make_image_bytes()


@pytest.fixture
def vendor() -> FakeVendor:
    return FakeVendor()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def static_prompts() -> StaticPromptStore:
    """A static prompt store with its snapshot loaded."""
    store = StaticPromptStore()
    asyncio.run(store.reload())
    return store


@pytest.fixture
def pipeline(vendor: FakeVendor, sleep_recorder: SleepRecorder) -> GenerationPipeline:
    """Generation pipeline over the fake vendor with recorded sleeps."""
    return GenerationPipeline(
        vendor,
        stylize_model="stability-ai/sdxl:test",
        stylize_params={"prompt_strength": 0.8, "num_inference_steps": 35, "guidance_scale": 9},
        sleep=sleep_recorder,
    )


@pytest.fixture
def memory_store(clock: FakeClock) -> MemoryProjectStore:
    return MemoryProjectStore(max_age=1800, clock=clock)


@pytest.fixture
def project_service(
    memory_store: MemoryProjectStore,
    pipeline: GenerationPipeline,
    static_prompts: StaticPromptStore,
) -> ProjectService:
    return ProjectService(memory_store, pipeline, static_prompts, max_upload_bytes=1024 * 1024)


@pytest.fixture
def test_client(
    monkeypatch,
    vendor: FakeVendor,
    pipeline: GenerationPipeline,
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with the vendor replaced by :class:`FakeVendor`.

    ``build_services`` is patched so the lifespan wires a memory store, the
    static prompt tables and the fake-vendor pipeline.
    """
    from caricature.api import main as api_main

    def fake_build_services(settings):
        prompts = StaticPromptStore()
        store = MemoryProjectStore(max_age=1800)
        service = ProjectService(store, pipeline, prompts, max_upload_bytes=1024 * 1024)
        return api_main.Services(prompts=prompts, projects=service, vendor=vendor)

    monkeypatch.setattr(api_main, "build_services", fake_build_services)

    with TestClient(api_main.app) as client:
        yield client

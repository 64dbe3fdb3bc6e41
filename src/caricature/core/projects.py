"""Project lifecycle: records, artifact storage and state transitions.

A project is one photo travelling through ``created → uploaded →
preview_ready``.  There is no failure state: a failed step leaves the record
exactly as it was and the error goes back to the caller of that step.

Storage
-------
:class:`ProjectStore` is the storage interface.  Two implementations exist:

- :class:`MemoryProjectStore` keeps everything in process dictionaries and
  evicts anything older than ``max_age`` when :meth:`~MemoryProjectStore.sweep`
  runs (scheduled by :func:`run_periodic_sweep`).
- :class:`SupabaseProjectStore` keeps records in the ``projects`` table and
  artifacts in the ``uploads`` / ``previews`` buckets; expiry is left to
  Supabase.

Transitions
-----------
:class:`ProjectService` implements ``create``, ``upload`` and ``complete``
on top of any store, plus the stateless ``preview`` used by ``POST
/preview``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import StrEnum
from typing import Callable

from pydantic import BaseModel, Field

from caricature.core.errors import NotFoundError, ValidationError
from caricature.core.pipeline import GenerationPipeline
from caricature.core.prompt_builder import build_prompt
from caricature.core.prompt_store import PromptStore
from caricature.core.style_parser import (
    DEFAULT_BACKGROUND,
    DEFAULT_EXAGGERATION,
    DEFAULT_STYLE,
    parse_style_id,
)
from caricature.core.supabase import SupabaseClient

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = "2:3"
UPLOAD_BUCKET = "uploads"
PREVIEW_BUCKET = "previews"
BUCKET_SIZE_LIMIT = 15 * 1024 * 1024


class ProjectStatus(StrEnum):
    CREATED = "created"
    UPLOADED = "uploaded"
    PREVIEW_READY = "preview_ready"


class Project(BaseModel):
    """A single upload-to-preview request unit."""

    id: str
    style_id: str = DEFAULT_STYLE
    exaggeration: str = DEFAULT_EXAGGERATION
    background: str = DEFAULT_BACKGROUND
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    filename: str | None = None
    mime_type: str | None = None
    status: ProjectStatus = ProjectStatus.CREATED
    preview_url: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Storage interface.
# ---------------------------------------------------------------------------


class ProjectStore(ABC):
    """Put/get/update of project records and their two image artifacts."""

    async def initialise(self) -> None:
        """Prepare backing resources.  No-op by default."""

    async def aclose(self) -> None:
        """Release backing resources.  No-op by default."""

    @abstractmethod
    async def create(self, project: Project) -> Project: ...

    @abstractmethod
    async def get(self, project_id: str) -> Project | None: ...

    @abstractmethod
    async def update(self, project_id: str, **fields) -> Project: ...

    @abstractmethod
    async def save_upload(self, project_id: str, data: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def load_upload(self, project_id: str) -> bytes | None: ...

    @abstractmethod
    async def save_preview(self, project_id: str, data: bytes, base_url: str) -> str:
        """Store the preview JPEG and return the URL it can be fetched from."""

    @abstractmethod
    async def load_preview(self, project_id: str) -> bytes | None: ...


class MemoryProjectStore(ProjectStore):
    """Process-memory store with age-based eviction.

    Args:
        max_age: Seconds after which projects and artifacts are evicted by
            :meth:`sweep`, whatever their status.
        clock: Source of the current time in seconds; injectable for tests.
    """

    def __init__(self, max_age: float = 1800.0, clock: Callable[[], float] = time.time) -> None:
        self._max_age = max_age
        self._clock = clock
        self._projects: dict[str, tuple[Project, float]] = {}
        self._uploads: dict[str, tuple[bytes, float]] = {}
        self._previews: dict[str, tuple[bytes, float]] = {}

    async def create(self, project: Project) -> Project:
        self._projects[project.id] = (project, self._clock())
        return project

    async def get(self, project_id: str) -> Project | None:
        entry = self._projects.get(project_id)
        return entry[0] if entry else None

    async def update(self, project_id: str, **fields) -> Project:
        entry = self._projects.get(project_id)
        if entry is None:
            raise NotFoundError("Project not found")
        project, stored_at = entry
        updated = project.model_copy(update=fields)
        self._projects[project_id] = (updated, stored_at)
        return updated

    async def save_upload(self, project_id: str, data: bytes, content_type: str) -> None:
        self._uploads[project_id] = (data, self._clock())

    async def load_upload(self, project_id: str) -> bytes | None:
        entry = self._uploads.get(project_id)
        return entry[0] if entry else None

    async def save_preview(self, project_id: str, data: bytes, base_url: str) -> str:
        self._previews[project_id] = (data, self._clock())
        return f"{base_url.rstrip('/')}/projects/{project_id}/preview"

    async def load_preview(self, project_id: str) -> bytes | None:
        entry = self._previews.get(project_id)
        return entry[0] if entry else None

    def sweep(self, now: float | None = None) -> int:
        """Evict every entry older than ``max_age``.

        Args:
            now: Reference time; defaults to the store clock.

        Returns:
            Number of entries removed across all three maps.
        """
        cutoff = (self._clock() if now is None else now) - self._max_age
        removed = 0
        for table in (self._projects, self._uploads, self._previews):
            expired = [key for key, (_, stored_at) in table.items() if stored_at < cutoff]
            for key in expired:
                del table[key]
            removed += len(expired)
        if removed:
            logger.info("Swept %d expired project entries.", removed)
        return removed


async def run_periodic_sweep(store: MemoryProjectStore, interval: float) -> None:
    """Sweep *store* every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        store.sweep()


class SupabaseProjectStore(ProjectStore):
    """Store backed by the Supabase ``projects`` table and two buckets."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def initialise(self) -> None:
        """Create the ``uploads`` and ``previews`` buckets if missing.

        Failures are logged only; the server still starts.
        """
        for bucket in (UPLOAD_BUCKET, PREVIEW_BUCKET):
            try:
                await self._client.create_bucket(
                    bucket, public=True, file_size_limit=BUCKET_SIZE_LIMIT
                )
            except Exception:
                logger.exception("Failed to create bucket %s", bucket)
        logger.info("Supabase storage initialised")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create(self, project: Project) -> Project:
        row = await self._client.insert("projects", project.model_dump(mode="json"))
        return Project.model_validate(row)

    async def get(self, project_id: str) -> Project | None:
        rows = await self._client.select("projects", filters={"id": project_id})
        return Project.model_validate(rows[0]) if rows else None

    async def update(self, project_id: str, **fields) -> Project:
        values = Project.model_construct(**fields).model_dump(mode="json", include=set(fields))
        rows = await self._client.update("projects", values, filters={"id": project_id})
        if not rows:
            raise NotFoundError("Project not found")
        return Project.model_validate(rows[0])

    async def save_upload(self, project_id: str, data: bytes, content_type: str) -> None:
        await self._client.upload(UPLOAD_BUCKET, f"{project_id}/original.jpg", data, content_type)

    async def load_upload(self, project_id: str) -> bytes | None:
        return await self._client.download(UPLOAD_BUCKET, f"{project_id}/original.jpg")

    async def save_preview(self, project_id: str, data: bytes, base_url: str) -> str:
        path = f"{project_id}/preview.jpg"
        await self._client.upload(PREVIEW_BUCKET, path, data, "image/jpeg")
        return self._client.public_url(PREVIEW_BUCKET, path)

    async def load_preview(self, project_id: str) -> bytes | None:
        return await self._client.download(PREVIEW_BUCKET, f"{project_id}/preview.jpg")


# ---------------------------------------------------------------------------
# Transitions.
# ---------------------------------------------------------------------------


def _check_project_id(project_id: str) -> None:
    """Unknown-format ids can never exist; reject them before any storage call."""
    try:
        uuid.UUID(project_id)
    except ValueError as exc:
        raise NotFoundError("Project not found") from exc


class ProjectService:
    """Drives projects through their lifecycle.

    Args:
        store: Where records and artifacts live.
        pipeline: Generation pipeline run on ``complete``.
        prompts: Source of the current prompt snapshot.
        max_upload_bytes: Largest accepted upload.
    """

    def __init__(
        self,
        store: ProjectStore,
        pipeline: GenerationPipeline,
        prompts: PromptStore,
        *,
        max_upload_bytes: int = 15 * 1024 * 1024,
    ) -> None:
        self.store = store
        self._pipeline = pipeline
        self._prompts = prompts
        self._max_upload_bytes = max_upload_bytes

    async def create(
        self,
        *,
        style_id: str | None = None,
        exaggeration: str | None = None,
        background: str | None = None,
        aspect_ratio: str | None = None,
        filename: str | None = None,
        mime_type: str | None = None,
    ) -> Project:
        project = Project(
            id=str(uuid.uuid4()),
            style_id=style_id or DEFAULT_STYLE,
            exaggeration=exaggeration or DEFAULT_EXAGGERATION,
            background=background or DEFAULT_BACKGROUND,
            aspect_ratio=aspect_ratio or DEFAULT_ASPECT_RATIO,
            filename=filename,
            mime_type=mime_type,
        )
        project = await self.store.create(project)
        logger.info("Project created: %s", project.id)
        return project

    async def get(self, project_id: str) -> Project:
        _check_project_id(project_id)
        project = await self.store.get(project_id)
        if project is None:
            raise NotFoundError("Project not found")
        return project

    async def upload(self, project_id: str, data: bytes, content_type: str | None = None) -> Project:
        """Store the raw photo and move the project to ``uploaded``.

        Raises:
            NotFoundError: Unknown project.
            ValidationError: Empty or oversized body.
        """
        await self.get(project_id)
        if not data:
            raise ValidationError("No file data received")
        self.check_upload_size(len(data))

        if not content_type or not content_type.startswith("image/"):
            content_type = "image/jpeg"
        await self.store.save_upload(project_id, data, content_type)
        project = await self.store.update(project_id, status=ProjectStatus.UPLOADED)
        logger.info("Image uploaded for project %s: %d bytes", project_id, len(data))
        return project

    def check_upload_size(self, size: int) -> None:
        """Raise :class:`ValidationError` if *size* bytes exceeds the upload limit."""
        if size > self._max_upload_bytes:
            raise ValidationError(
                f"File too large: {size} bytes (limit {self._max_upload_bytes})"
            )

    async def complete(
        self,
        project_id: str,
        *,
        base_url: str,
        style_id: str | None = None,
        exaggeration: str | None = None,
        background: str | None = None,
    ) -> Project:
        """Generate and store the preview, moving the project to ``preview_ready``.

        Style resolution: *style_id* from the request, else the project's.
        A four-character code carries its own exaggeration tier; for a bare
        style id the request's *exaggeration*, else the project's, applies.
        The background is the request's, else the project's.

        Raises:
            NotFoundError: Unknown project.
            ValidationError: Nothing has been uploaded yet.
            DecodeError: The upload is not an image.
            VendorError: Generation or storage failed.
        """
        project = await self.get(project_id)
        image = await self.store.load_upload(project_id)
        if not image:
            raise ValidationError("No image found for this project")

        final_style_id = style_id or project.style_id or DEFAULT_STYLE
        final_background = background or project.background or DEFAULT_BACKGROUND
        parsed = parse_style_id(final_style_id)
        final_exaggeration = (
            parsed.exaggeration
            if parsed.has_tier_code
            else exaggeration or project.exaggeration or parsed.exaggeration
        )

        logger.info("Generating preview for project %s", project_id)
        preview = await self._generate(image, parsed.style, final_exaggeration, final_background)

        preview_url = await self.store.save_preview(project_id, preview, base_url)
        project = await self.store.update(
            project_id,
            status=ProjectStatus.PREVIEW_READY,
            preview_url=preview_url,
            style_id=final_style_id,
            background=final_background,
        )
        logger.info("Preview ready: %s", preview_url)
        return project

    async def preview(
        self,
        image: bytes,
        style_id: str | None = None,
        background: str | None = None,
    ) -> bytes:
        """Stateless generation: photo in, watermarked JPEG out."""
        if not image:
            raise ValidationError("No image data received")
        parsed = parse_style_id(style_id)
        return await self._generate(
            image, parsed.style, parsed.exaggeration, background or parsed.background
        )

    async def load_preview(self, project_id: str) -> bytes:
        await self.get(project_id)
        data = await self.store.load_preview(project_id)
        if data is None:
            raise NotFoundError("Preview not found")
        return data

    async def _generate(self, image: bytes, style: str, exaggeration: str, background: str) -> bytes:
        composed = build_prompt(self._prompts.snapshot, style, exaggeration, background)
        logger.info(
            "Generating: style=%s exaggeration=%s background=%s",
            composed.style_id,
            exaggeration,
            background,
        )
        return await self._pipeline.run(image, composed)

"""Caricature Preview — FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST routes, the error mapping, and the
``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`~caricature.core.config.config`
  (``CARICATURE_*`` environment variables).
- **Services** are built once in the lifespan by :func:`build_services`:
  the prompt store, the Replicate client, the project store and the
  :class:`~caricature.core.projects.ProjectService` that ties them together.
- **Background tasks** run beside the server: the prompt reload loop
  (database prompts) and the eviction sweep (memory storage).
- **Errors** derived from :class:`~caricature.core.errors.CaricatureError`
  are turned into ``{"error": message}`` with their status code by one
  exception handler.

Endpoints
---------
========  ==================================  ================================
Method    Path                                Purpose
========  ==================================  ================================
GET       ``/health``                         Liveness check
GET       ``/styles``                         Styles, exaggeration levels, backgrounds
POST      ``/reload-prompts``                 Reload prompt tables now
POST      ``/projects``                       Create a project
PUT       ``/projects/{id}/upload``           Upload the raw photo
POST      ``/projects/{id}/upload-complete``  Generate the preview
GET       ``/projects/{id}``                  Project record
GET       ``/projects/{id}/preview``          Preview JPEG (memory storage)
POST      ``/preview``                        Stateless base64 preview
========  ==================================  ================================

Usage
-----
CLI (installed entry point)::

    caricature

Direct invocation::

    python -m caricature.api.main
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from caricature import __version__
from caricature.api.models import (
    CompleteRequest,
    CreateProjectRequest,
    CreateProjectResponse,
    PreviewRequest,
)
from caricature.core.config import CaricatureConfig, config
from caricature.core.errors import CaricatureError, ConfigError, ValidationError
from caricature.core.pipeline import GenerationPipeline
from caricature.core.projects import (
    MemoryProjectStore,
    ProjectService,
    ProjectStore,
    SupabaseProjectStore,
    run_periodic_sweep,
)
from caricature.core.prompt_store import (
    DatabasePromptStore,
    PromptStore,
    StaticPromptStore,
    run_periodic_reload,
)
from caricature.core.replicate_client import ReplicateImageClient
from caricature.core.supabase import SupabaseClient

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Service wiring.
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Everything the routes need, built once per process."""

    prompts: PromptStore
    projects: ProjectService
    vendor: ReplicateImageClient | None = None

    @property
    def store(self) -> ProjectStore:
        return self.projects.store


def build_services(settings: CaricatureConfig) -> Services:
    """Construct the stores, vendor client and project service.

    Args:
        settings: Application configuration.

    Returns:
        Wired :class:`Services`.

    Raises:
        ConfigError: If a mandatory credential is missing.
    """
    settings.validate_credentials()

    supabase: SupabaseClient | None = None
    if settings.uses_supabase:
        supabase = SupabaseClient(settings.supabase_url, settings.supabase_secret_key)

    prompts: PromptStore
    if settings.prompt_source == "database":
        prompts = DatabasePromptStore(supabase)
    else:
        prompts = StaticPromptStore()

    store: ProjectStore
    if settings.storage_backend == "supabase":
        store = SupabaseProjectStore(supabase)
    else:
        store = MemoryProjectStore(max_age=settings.project_max_age)

    vendor = ReplicateImageClient(settings.replicate_api_token)
    pipeline = GenerationPipeline.from_config(vendor, settings)
    projects = ProjectService(
        store,
        pipeline,
        prompts,
        max_upload_bytes=settings.max_upload_bytes,
    )
    return Services(prompts=prompts, projects=projects, vendor=vendor)


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services, load prompts and start background loops.

    On startup:
        Builds :class:`Services`, performs the initial prompt load and
        storage initialisation, and starts the periodic prompt reload
        (database prompts) and eviction sweep (memory storage).

    On shutdown:
        Cancels the background loops and closes HTTP clients.
    """
    # --- Startup -----------------------------------------------------------
    services = build_services(config)
    await asyncio.gather(services.prompts.reload(), services.store.initialise())
    app.state.services = services

    tasks: list[asyncio.Task] = []
    if isinstance(services.prompts, DatabasePromptStore):
        tasks.append(
            asyncio.create_task(
                run_periodic_reload(services.prompts, config.prompt_reload_interval)
            )
        )
    if isinstance(services.store, MemoryProjectStore):
        tasks.append(asyncio.create_task(run_periodic_sweep(services.store, config.sweep_interval)))
    logger.info("Services ready (storage=%s, prompts=%s).", config.storage_backend, config.prompt_source)

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await services.store.aclose()
    if services.vendor is not None:
        await services.vendor.aclose()
    logger.info("Services closed on shutdown.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Caricature Preview",
    description="Turns a photo into a watermarked caricature preview.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping.
# ---------------------------------------------------------------------------


@app.exception_handler(CaricatureError)
async def caricature_error_handler(request: Request, exc: CaricatureError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s failed unexpectedly", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal error"})


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _services(request: Request) -> Services:
    return request.app.state.services


def _external_base_url(request: Request) -> str:
    """Base URL as seen by the client, honouring ``X-Forwarded-Proto``."""
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


def _decode_base64_image(value: str | None) -> bytes:
    if not value:
        raise ValidationError("image_base64 is required")
    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("image_base64 is not valid base64") from exc


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.get("/styles")
async def get_styles(request: Request) -> dict:
    """Return the selectable styles, exaggeration levels and backgrounds.

    Returns:
        Dictionary with ``styles``, ``exaggeration_levels`` and
        ``backgrounds``, each a list of ``{id, name}``.
    """
    snapshot = _services(request).prompts.snapshot
    return {
        "styles": [{"id": key, "name": entry.name} for key, entry in snapshot.styles.items()],
        "exaggeration_levels": [
            {"id": key, "name": entry.name} for key, entry in snapshot.exaggeration_levels.items()
        ],
        "backgrounds": [
            {"id": key, "name": entry.name} for key, entry in snapshot.backgrounds.items()
        ],
    }


@app.post("/reload-prompts")
async def reload_prompts(request: Request) -> dict:
    """Reload the prompt tables now.

    A failed reload keeps the previous tables; ``success`` reports the
    outcome and ``loaded_at`` (epoch milliseconds) the age of what is served.
    """
    prompts = _services(request).prompts
    success = await prompts.reload()
    loaded_at = prompts.loaded_at
    return {
        "success": success,
        "loaded_at": int(loaded_at * 1000) if loaded_at is not None else None,
    }


@app.post("/projects", response_model=CreateProjectResponse)
async def create_project(
    request: Request,
    req: CreateProjectRequest | None = None,
) -> CreateProjectResponse:
    """Create a project and return the URL to upload its photo to."""
    req = req or CreateProjectRequest()
    project = await _services(request).projects.create(**req.model_dump())
    upload_url = f"{_external_base_url(request)}/projects/{project.id}/upload"
    return CreateProjectResponse(project_id=project.id, upload_url=upload_url)


@app.put("/projects/{project_id}/upload")
async def upload_image(project_id: str, request: Request) -> dict:
    """Store the raw photo bytes sent as the request body.

    The declared ``Content-Length`` is checked before anything is read, and
    a body without one is refused as soon as it grows past the limit.

    Raises:
        NotFoundError: 404 for an unknown project.
        ValidationError: 400 for an empty or oversized body.
    """
    projects = _services(request).projects
    declared = request.headers.get("content-length")
    if declared and declared.isdigit():
        projects.check_upload_size(int(declared))

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        projects.check_upload_size(len(body))

    await projects.upload(project_id, bytes(body), request.headers.get("content-type"))
    return {"ok": True}


@app.post("/projects/{project_id}/upload-complete")
async def upload_complete(
    project_id: str,
    request: Request,
    req: CompleteRequest | None = None,
) -> dict:
    """Generate the preview for an uploaded photo.

    Returns:
        Dictionary with the ``preview_url``.

    Raises:
        NotFoundError: 404 for an unknown project.
        ValidationError: 400 if no photo has been uploaded.
        VendorError: 502 if generation or storage failed.
    """
    req = req or CompleteRequest()
    project = await _services(request).projects.complete(
        project_id,
        base_url=_external_base_url(request),
        style_id=req.style_id,
        exaggeration=req.exaggeration,
        background=req.background,
    )
    return {"preview_url": project.preview_url}


@app.get("/projects/{project_id}")
async def get_project(project_id: str, request: Request) -> dict:
    project = await _services(request).projects.get(project_id)
    return project.model_dump(mode="json")


@app.get("/projects/{project_id}/preview")
async def get_project_preview(project_id: str, request: Request) -> Response:
    data = await _services(request).projects.load_preview(project_id)
    return Response(content=data, media_type="image/jpeg")


@app.post("/preview")
async def stateless_preview(req: PreviewRequest, request: Request) -> dict:
    """Generate a preview without creating a project.

    Returns:
        Dictionary with ``preview_base64`` (JPEG).
    """
    image = _decode_base64_image(req.image_base64)
    preview = await _services(request).projects.preview(image, req.style_id, req.background)
    return {"preview_base64": base64.b64encode(preview).decode("ascii")}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Validate credentials and launch the uvicorn ASGI server.

    Exits with status 1 when a mandatory credential is missing, before any
    port is bound.  Registered as the ``caricature`` console script.
    """
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        config.validate_credentials()
    except ConfigError as exc:
        logger.error("ERROR: %s", exc)
        sys.exit(1)

    import uvicorn

    uvicorn.run(
        "caricature.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()

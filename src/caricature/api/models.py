"""Pydantic request and response models for the Caricature Preview API.

These models define the JSON schema for the endpoints that take or return a
JSON body.  FastAPI uses them for request validation, serialisation, and
OpenAPI documentation generation.

Models
------
CreateProjectRequest
    Payload for ``POST /projects``.  Every field is optional; missing values
    take the project defaults.
CreateProjectResponse
    ``project_id`` plus the URL the client should ``PUT`` the photo to.
CompleteRequest
    Payload for ``POST /projects/{id}/upload-complete``; overrides the style
    settings stored on the project.
PreviewRequest
    Payload for the stateless ``POST /preview`` endpoint.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateProjectRequest(BaseModel):
    """Request body for ``POST /projects``.

    Attributes:
        style_id: Style code, e.g. ``"S01"`` or ``"S01C"``.
        exaggeration: Exaggeration level id (``mild``/``medium``/``bold``).
        background: Background id, e.g. ``"BG01"``.
        aspect_ratio: Requested output aspect ratio, e.g. ``"2:3"``.
        filename: Original file name of the photo.
        mime_type: MIME type of the photo.
    """

    style_id: str | None = Field(default=None, description="Style code (default S01).")
    exaggeration: str | None = Field(default=None, description="Exaggeration level id.")
    background: str | None = Field(default=None, description="Background id (default BG01).")
    aspect_ratio: str | None = Field(default=None, description="Aspect ratio (default 2:3).")
    filename: str | None = Field(default=None, description="Original file name.")
    mime_type: str | None = Field(default=None, description="MIME type of the photo.")


class CreateProjectResponse(BaseModel):
    """Response body for ``POST /projects``."""

    project_id: str
    upload_url: str


class CompleteRequest(BaseModel):
    """Request body for ``POST /projects/{id}/upload-complete``."""

    style_id: str | None = Field(default=None, description="Overrides the project style.")
    exaggeration: str | None = Field(
        default=None, description="Used when the style code carries no tier letter."
    )
    background: str | None = Field(default=None, description="Overrides the project background.")


class PreviewRequest(BaseModel):
    """Request body for ``POST /preview``.

    Attributes:
        image_base64: The photo, base64 encoded.  A ``data:`` URL prefix is
            accepted and stripped.
        style_id: Style code; defaults to ``"S01"``.
        background: Background id; defaults to ``"BG01"``.
    """

    image_base64: str | None = Field(default=None, description="Base64 encoded photo.")
    style_id: str | None = Field(default=None, description="Style code.")
    background: str | None = Field(default=None, description="Background id.")

"""Core functionality for caricature preview generation.

This package holds everything below the HTTP layer:

- **config**: Pydantic Settings configuration (``CARICATURE_`` prefix)
- **errors**: Error kinds and their HTTP status codes
- **style_parser**: Compact style code decoding (``"S01B"``)
- **prompt_store**: Static and Supabase-backed prompt tables
- **prompt_builder**: Prompt / negative prompt composition
- **imaging**: Input normalisation and preview watermarking (Pillow)
- **retry**: Rate-limit retry with exponential backoff
- **replicate_client**: Replicate stylise / upscale / download calls
- **pipeline**: The normalise → stylise → upscale → watermark chain
- **supabase**: Async Supabase REST client (tables + storage)
- **projects**: Project records, stores and lifecycle transitions

Architecture Overview
---------------------
Leaves first::

    style_parser ─┐
    prompt_store ─┼─▶ prompt_builder ─┐
                  │                   ├─▶ projects.ProjectService ─▶ api.main
    imaging ──────┤                   │
    retry ────────┼─▶ pipeline ───────┘
    replicate ────┘
"""

from caricature.core.config import CaricatureConfig, config
from caricature.core.errors import (
    CaricatureError,
    ConfigError,
    DecodeError,
    EmptyResultError,
    NotFoundError,
    RateLimitError,
    ValidationError,
    VendorError,
)

__all__ = [
    "CaricatureConfig",
    "config",
    "CaricatureError",
    "ConfigError",
    "DecodeError",
    "EmptyResultError",
    "NotFoundError",
    "RateLimitError",
    "ValidationError",
    "VendorError",
]

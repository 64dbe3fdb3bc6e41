"""Caricature Preview - photo in, watermarked stylised preview out."""

__version__ = "0.3.0"

from caricature.core.config import CaricatureConfig, config

__all__ = [
    "CaricatureConfig",
    "config",
]

"""Configuration management for the Caricature Preview backend.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the CARICATURE_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (CARICATURE_* prefix)
2. .env file in the project root
3. Default values defined in CaricatureConfig

Example .env file:
    CARICATURE_REPLICATE_API_TOKEN=r8_xxx
    CARICATURE_STORAGE_BACKEND=supabase
    CARICATURE_PROMPT_SOURCE=database
    CARICATURE_SUPABASE_URL=https://xyz.supabase.co
    CARICATURE_SUPABASE_SECRET_KEY=eyJ...
    CARICATURE_UPSCALE_ENABLED=true

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Credentials are optional at import so that the module can be imported by
tests and tooling; :meth:`CaricatureConfig.validate_credentials` is called by
the server entry point and refuses to start when a mandatory credential is
missing.

Usage Example
-------------
    from caricature.core.config import config

    config.validate_credentials()
    print(config.storage_backend)
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from caricature.core.errors import ConfigError

# SDXL img2img on Replicate, the model every style falls back to.
DEFAULT_STYLIZE_MODEL = (
    "stability-ai/sdxl:7762fd07cf82c948538e41f63f77d685e02b063e37e496e96eefd46c929f9bdc"
)
DEFAULT_UPSCALE_MODEL = (
    "nightmareai/real-esrgan:42fed1c4974146d4d2414e2be2c5277c7fcf05fcc3a73abf41610695738c1d7b"
)


class CaricatureConfig(BaseSettings):
    """Main configuration for the Caricature Preview backend.

    Values are loaded from environment variables with the CARICATURE_
    prefix, with fallback to the defaults defined here.

    Attributes
    ----------
    Credentials:
        replicate_api_token : str | None
            API token for Replicate (mandatory to serve requests)
        supabase_url : str | None
            Supabase project URL (mandatory for the supabase backends)
        supabase_secret_key : str | None
            Supabase service-role key (mandatory for the supabase backends)

    Backends:
        storage_backend : Literal["memory", "supabase"]
            Where projects, uploads and previews live
        prompt_source : Literal["static", "database"]
            Compiled-in prompt tables or Supabase tables hot-reloaded
        prompt_reload_interval : float
            Seconds between prompt table reloads (database source only)
        sweep_interval : float
            Seconds between eviction sweeps (memory backend only)
        project_max_age : float
            Age in seconds after which memory-backed projects are evicted
        max_upload_bytes : int
            Largest accepted upload body

    Generation:
        stylize_model, prompt_strength, num_inference_steps, guidance_scale
            Default stylisation model reference and its input parameters
        upscale_enabled, upscale_model, upscale_scale
            Optional second stage
        retry_max_attempts, retry_base_delay
            Rate-limit retry policy
        generation_deadline : float | None
            Upper bound in seconds for one whole generation, None = unbounded

    Imaging:
        input_edge : int
            Square edge of the image sent to the model
        preview_max_width : int
            Preview width cap (never upscaled)
        preview_quality : int
            JPEG quality of the preview
        watermark_text : str
            Label drawn over the preview

    Server:
        server_host, server_port, log_level

    Examples
    --------
        >>> custom_config = CaricatureConfig(
        ...     replicate_api_token="r8_test",
        ...     storage_backend="memory",
        ...     upscale_enabled=True,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CARICATURE_",
        case_sensitive=False,
    )

    # Credentials
    replicate_api_token: str | None = Field(
        default=None,
        description="Replicate API token",
    )
    supabase_url: str | None = Field(
        default=None,
        description="Supabase project URL",
    )
    supabase_secret_key: str | None = Field(
        default=None,
        description="Supabase service-role key",
    )

    # Backends
    storage_backend: Literal["memory", "supabase"] = Field(
        default="memory",
        description="Project and artifact storage backend",
    )
    prompt_source: Literal["static", "database"] = Field(
        default="static",
        description="Where prompt tables come from",
    )
    prompt_reload_interval: float = Field(default=300.0, gt=0)
    sweep_interval: float = Field(default=600.0, gt=0)
    project_max_age: float = Field(default=1800.0, gt=0)
    max_upload_bytes: int = Field(default=15 * 1024 * 1024, ge=1)

    # Stage 1: stylisation
    stylize_model: str = Field(default=DEFAULT_STYLIZE_MODEL)
    prompt_strength: float = Field(default=0.8, ge=0.0, le=1.0)
    num_inference_steps: int = Field(default=35, ge=1, le=500)
    guidance_scale: float = Field(default=9.0, ge=0.0)

    # Stage 2: optional upscaling
    upscale_enabled: bool = Field(
        default=False,
        description="Run the upscaler on the stylised result",
    )
    upscale_model: str = Field(default=DEFAULT_UPSCALE_MODEL)
    upscale_scale: int = Field(default=2, ge=1, le=10)

    # Retry policy
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=5.0, ge=0.0)
    generation_deadline: float | None = Field(default=None, gt=0)

    # Imaging
    input_edge: int = Field(default=1024, ge=64, le=4096)
    preview_max_width: int = Field(default=1200, ge=64)
    preview_quality: int = Field(default=85, ge=1, le=100)
    watermark_text: str = Field(default="PREVIEW")

    # Server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=3000, ge=1, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def uses_supabase(self) -> bool:
        """Whether any backend needs the Supabase credentials."""
        return self.storage_backend == "supabase" or self.prompt_source == "database"

    @property
    def stylize_params(self) -> dict:
        """Default model inputs for the stylisation stage."""
        return {
            "prompt_strength": self.prompt_strength,
            "num_inference_steps": self.num_inference_steps,
            "guidance_scale": self.guidance_scale,
        }

    def validate_credentials(self) -> None:
        """Fail fast when a mandatory credential is absent.

        Raises:
            ConfigError: If the Replicate token is missing, or if a Supabase
                backend is selected without both URL and secret key.
        """
        if not self.replicate_api_token:
            raise ConfigError("CARICATURE_REPLICATE_API_TOKEN required")
        if self.uses_supabase and not (self.supabase_url and self.supabase_secret_key):
            raise ConfigError(
                "CARICATURE_SUPABASE_URL and CARICATURE_SUPABASE_SECRET_KEY required"
            )


# Global configuration instance
# Loads values from environment variables (CARICATURE_* prefix) and .env file.
config = CaricatureConfig()

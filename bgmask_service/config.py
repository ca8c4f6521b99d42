"""
Configuration loader for the background-removal service.

Environment variables are centralized here to keep the rest of the code
focused on the segmentation pipeline and to make operational tuning clear.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Input limits
    max_image_pixels: int = Field(40_000_000, env="MAX_IMAGE_PIXELS")

    # Output
    output_suffix: str = Field("_nobg", env="OUTPUT_SUFFIX")
    png_compress_level: int = Field(6, env="PNG_COMPRESS_LEVEL")

    # API
    request_timeout_seconds: int = Field(30, env="REQUEST_TIMEOUT_SECONDS")
    log_level: str = Field("INFO", env="LOG_LEVEL")

    # Batch worker
    batch_max_workers: int = Field(1, env="BATCH_MAX_WORKERS")

    # Debugging
    debug: bool = Field(False, env="DEBUG")
    debug_output_dir: Path = Field(Path("/tmp/bgmask_debug"), env="DEBUG_OUTPUT_DIR")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @validator("max_image_pixels")
    def validate_max_image_pixels(cls, v: int) -> int:  # noqa: B902
        if v <= 0:
            raise ValueError("MAX_IMAGE_PIXELS must be positive")
        return v

    @validator("png_compress_level")
    def validate_png_compress_level(cls, v: int) -> int:  # noqa: B902
        if not 0 <= v <= 9:
            raise ValueError("PNG_COMPRESS_LEVEL must be between 0 and 9")
        return v

    @validator("batch_max_workers")
    def validate_batch_max_workers(cls, v: int) -> int:  # noqa: B902
        if v < 1:
            raise ValueError("BATCH_MAX_WORKERS must be at least 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()

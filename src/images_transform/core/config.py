"""
Configuration for the image transform service.

Values come from environment variables prefixed with IMAGES_TRANSFORM_
(for example IMAGES_TRANSFORM_WORK_DIR) or from a local .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="IMAGES_TRANSFORM_", env_file=".env", extra="ignore"
    )

    # Artifact storage
    work_dir: Path = Field(default_factory=Path.cwd)
    upload_dir: Optional[Path] = None
    output_dir: Optional[Path] = None

    # Artifact lifecycle (seconds)
    retention_seconds: float = Field(30 * 60, gt=0)
    sweep_interval_seconds: float = Field(5 * 60, gt=0)
    delivery_grace_seconds: float = Field(60, ge=0)

    # Upload gatekeeping
    max_upload_bytes: int = Field(10 * 1024 * 1024, gt=0)
    allowed_mime_types: List[str] = ["image/jpeg", "image/png", "image/webp"]
    reject_noop_plans: bool = False

    # Encoding
    default_quality: int = Field(90, ge=1, le=100)

    # Batch processing
    batch_concurrency: int = Field(8, ge=1)
    batch_strategy: Literal["asyncio", "multithread"] = "asyncio"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def default_artifact_dirs(self) -> "Settings":
        if self.upload_dir is None:
            self.upload_dir = self.work_dir / "uploads"
        if self.output_dir is None:
            self.output_dir = self.work_dir / "outputs"
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()

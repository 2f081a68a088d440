"""
Configuration loader for the image rendition service.

Environment variables are centralized here to keep the rest of the code
focused on the transcoding pipeline and to make operational tuning clear.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings

STORAGE_BACKENDS = {"local", "memory", "r2"}


class Settings(BaseSettings):
    # Filesystem layout
    upload_dir: Path = Field(Path("/tmp/rendition_service/incoming"), env="UPLOAD_DIR")
    output_dir: Path = Field(Path("/tmp/rendition_service/outputs"), env="OUTPUT_DIR")
    static_dir: Optional[Path] = Field(None, env="STATIC_DIR")

    # Output store
    storage_backend: str = Field("local", env="STORAGE_BACKEND")
    purge_outputs_on_upload: bool = Field(False, env="PURGE_OUTPUTS_ON_UPLOAD")

    # Cloudflare R2 / S3-compatible storage
    r2_endpoint: Optional[str] = Field(None, env="R2_ENDPOINT")
    r2_access_key_id: Optional[str] = Field(None, env="R2_ACCESS_KEY_ID")
    r2_secret_access_key: Optional[str] = Field(None, env="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: Optional[str] = Field(None, env="R2_BUCKET_NAME")
    r2_key_prefix: str = Field("renditions/", env="R2_KEY_PREFIX")

    # Batch limits
    max_batch_size: int = Field(10, env="MAX_BATCH_SIZE")
    max_upload_bytes: int = Field(20 * 1024 * 1024, env="MAX_UPLOAD_BYTES")
    # Unset: one worker per image in the batch.
    max_parallel_transcodes: Optional[int] = Field(None, env="MAX_PARALLEL_TRANSCODES")

    # API
    archive_filename: str = Field("processed-images.zip", env="ARCHIVE_FILENAME")
    log_level: str = Field("INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @validator("storage_backend")
    def validate_storage_backend(cls, v: str) -> str:  # noqa: B902
        v = v.lower()
        if v not in STORAGE_BACKENDS:
            raise ValueError("STORAGE_BACKEND must be one of local|memory|r2")
        return v

    @validator("max_batch_size", "max_upload_bytes")
    def validate_positive(cls, v: int) -> int:  # noqa: B902
        if v <= 0:
            raise ValueError("batch limits must be positive")
        return v

    @validator("max_parallel_transcodes")
    def validate_parallelism(cls, v: Optional[int]) -> Optional[int]:  # noqa: B902
        if v is not None and v <= 0:
            raise ValueError("MAX_PARALLEL_TRANSCODES must be positive when set")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()

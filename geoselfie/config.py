"""
Configuration for the selfie verification service.

Settings are read once from environment variables (or a `.env` file) when
the application is created and are frozen afterwards.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Verification thresholds
    max_photo_age_minutes: float = Field(default=5, gt=0)
    distance_threshold_meters: float = Field(default=50, gt=0)
    # Reject (instead of just flag) uploads taken too far from the claimed spot
    enforce_geo_match: bool = False
    # IANA zone for EXIF timestamps without an offset; unset means server local time
    exif_timezone: Optional[str] = None

    # Record store
    mongo_uri: str = "mongodb://127.0.0.1:27017/geotag"
    mongo_collection: str = "photos"

    # Uploads
    upload_dir: str = "uploads"
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, gt=0)

    # Face detection: "hog" (CPU) or "cnn" (GPU)
    face_detection_model: str = "hog"

    port: int = 3000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()

"""
Configuration management using pydantic-settings.

Loads settings from environment variables (prefix INTAKE_) and .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "data" / "intake.db"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INTAKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
    )

    # Storage
    database_path: Path = Field(
        default=DEFAULT_DB_PATH,
        description="SQLite file holding jobs and committed claims",
    )

    # Reference data (GeoJSON FeatureCollections)
    gazetteer_path: Path | None = Field(default=None, description="Village boundaries with hierarchy properties")
    protected_layer_path: Path | None = Field(default=None)
    forest_layer_path: Path | None = Field(default=None)
    revenue_layer_path: Path | None = Field(default=None)

    # Dispatcher
    lease_seconds: float = Field(default=30.0, gt=0, description="Lease duration granted to a worker")
    max_stage_attempts: int = Field(default=4, ge=1, description="Attempt ceiling per stage")
    retry_backoff_base: float = Field(default=0.5, ge=0, description="First backoff delay in seconds")
    retry_backoff_max: float = Field(default=8.0, ge=0, description="Backoff delay cap in seconds")
    workers_per_stage: int = Field(default=2, ge=1)
    poll_interval: float = Field(default=0.5, gt=0, description="Idle worker sleep between lease attempts")

    # Gating thresholds
    commit_confidence: float = Field(default=70.0, description="Minimum confidence for automatic commit")
    duplicate_block: float = Field(default=80.0, description="Duplicate probability that forces review")
    duplicate_disclosure: float = Field(default=40.0, description="Duplicate score recorded for reviewers")

    # Matching
    village_match_threshold: float = Field(default=80.0, description="Minimum fuzzy score for a village match")
    name_similarity_threshold: float = Field(default=85.0, description="Minimum patta-holder name similarity")
    proximity_meters: float = Field(default=100.0, description="Centroid distance treated as a duplicate signal")
    discrepancy_penalty: float = Field(default=25.0, description="Confidence lost when coordinates fall outside the village")

    # Review
    review_sla_hours: float = Field(default=72.0, gt=0, description="Review-queue age that triggers a notification")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Enable debug logging")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-reading environment on every call.
    """
    return Settings()

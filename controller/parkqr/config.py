"""Central configuration for the ParkQR kiosk service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class KioskTimings(BaseModel):
    """Kiosk display cycle timing (seconds)."""
    poll_interval: float = Field(1.5, gt=0, description="Delay between registration session status polls")
    show_qr_delay: float = Field(0.1, ge=0, description="Pause between session ready and QR reveal")
    confirm_dwell: float = Field(3.0, ge=0, description="Success screen duration")
    transition_delay: float = Field(0.5, ge=0, description="Transition animation before the next session")
    clock_interval: float = Field(1.0, gt=0, description="Header clock refresh interval")
    max_qr_lifetime: Optional[float] = Field(
        None,
        gt=0,
        description="Upper bound for showing one QR; None relies on the session expires_at only",
    )


class PerformanceSettings(BaseModel):
    """Queue tuning."""
    ui_event_queue_size: int = Field(16, ge=1, description="Max buffered UI events per screen client")


class Settings(BaseSettings):
    """Environment-driven settings for the kiosk service."""

    # Backend & API
    backend_api_url: str = Field("http://localhost:3001", description="Parking REST API base URL")
    public_base_url: str = Field(
        "http://localhost:3000",
        description="Public origin registrants open; the QR encodes <origin>/register?session=<token>",
    )
    http_timeout_seconds: float = Field(15.0, gt=0, description="Per-request timeout for backend calls")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    timings: KioskTimings = Field(default_factory=KioskTimings, description="Kiosk cycle timings")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("backend_api_url", "public_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            parsed = value.strip().rstrip("/")
            if not parsed:
                raise ValueError("URL settings must not be empty")
            return parsed
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()

"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FIELDROUTE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Field Route Scheduling API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root log level for the service.")
    data_root: Path = Field(default=Path("data"), description="Root directory for persisted route outputs.")
    persist_routes: bool = Field(default=False, description="Write generated routes as JSON/CSV under data_root.")
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    osrm_max_retries: int = Field(default=2, ge=0)
    osrm_backoff_seconds: float = Field(default=0.5, ge=0.0)
    provider_timeout_seconds: float = Field(
        default=3.0,
        gt=0.0,
        description="Upper bound on a single travel-time provider call before falling back to straight-line ordering.",
    )
    average_speed_kmh: float = Field(default=40.0, gt=0.0)
    default_service_minutes: int = Field(default=30, ge=0, description="Planned on-site time per stop.")
    default_workday_start: str = Field(default="08:00", pattern=r"^\d{2}:\d{2}$")
    max_customers_per_route: int = Field(default=30, ge=1)
    two_opt_max_iterations: int = Field(default=200, ge=0)
    schedule_tolerance_minutes: float = Field(default=10.0, ge=0.0)
    significant_delay_minutes: float = Field(default=30.0, ge=0.0)
    break_threshold_minutes: float = Field(default=30.0, ge=0.0)
    arrival_threshold_meters: float = Field(
        default=50.0,
        gt=0.0,
        description="Distance from a stop within which a reported crew position counts as arrived.",
    )
    route_cache_retention_days: int = Field(default=2, ge=0)
    max_parallel_crews: int = Field(default=8, ge=1)
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()

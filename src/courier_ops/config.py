"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SurgeWindow(BaseModel):
    """Hour window [start_hour, end_hour) during which a surge multiplier applies."""

    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=1, le=24)
    multiplier: float = Field(default=1.0, ge=1.0)

    def covers(self, hour: int) -> bool:
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour < self.end_hour
        # window wraps past midnight
        return hour >= self.start_hour or hour < self.end_hour


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Courier Dispatch & Settlement API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for report artifacts.")

    # Assignment
    max_assignment_distance_km: float = Field(
        default=50.0,
        gt=0.0,
        description="Couriers farther than this from the restaurant are never assigned.",
    )
    priority_distance_km: float = Field(
        default=5.0,
        gt=0.0,
        description="Radius used when building the priority notification list.",
    )
    offer_timeout_seconds: int = Field(default=60, ge=1)
    max_position_age_seconds: Optional[int] = Field(
        default=None,
        ge=1,
        description="Ignore couriers whose last position fix is older than this. Disabled when unset.",
    )
    default_cash_limit: float = Field(default=750.0, ge=0.0)

    # Commission rule
    base_payout: float = Field(default=22.0, ge=0.0)
    free_threshold_km: float = Field(default=4.0, ge=0.0)
    per_km_rate: float = Field(default=5.0, ge=0.0)
    minimum_guarantee: bool = Field(
        default=True,
        description="Never pay the courier less than the delivery fee the customer paid.",
    )
    surge_schedule: tuple[SurgeWindow, ...] = Field(default=())
    platform_fee: float = Field(default=5.0, ge=0.0)
    missing_distance_policy: Literal["zero", "default", "block"] = Field(
        default="zero",
        description="What to do when no delivery distance can be resolved for a settlement.",
    )
    fallback_distance_km: float = Field(default=0.0, ge=0.0)
    subsidy_account: str = Field(
        default="platform:delivery-subsidy",
        description="Account that absorbs negative delivery margins.",
    )

    # Ledger
    ledger_max_retries: int = Field(default=5, ge=1)

    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "bike", "foot"] = Field(default="driving")
    osrm_max_retries: int = Field(default=2, ge=0)
    osrm_backoff_seconds: float = Field(default=0.5, ge=0.0)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=("http://localhost:5173", "http://127.0.0.1:5173"),
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

    @field_validator("surge_schedule", mode="before")
    @classmethod
    def _parse_surge_schedule(cls, value: Any) -> Any:
        """Accept a JSON array of {start_hour, end_hour, multiplier} objects."""
        if value is None or value == "":
            return ()
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError(f"surge_schedule must be a JSON array: {exc}") from exc
        if isinstance(value, dict):
            value = [value]
        return tuple(value)

    def surge_multiplier_for_hour(self, hour: int) -> float:
        for window in self.surge_schedule:
            if window.covers(hour):
                return window.multiplier
        return 1.0


settings = Settings()

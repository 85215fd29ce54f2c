"""Application configuration and settings management."""

from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTE_ENGINE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Courier Route Optimization API"
    api_prefix: str = "/api"

    # Route building
    average_speed_kmh: float = Field(default=40.0, gt=0.0, description="Average travel speed between waypoints.")
    pickup_dwell_minutes: float = Field(default=5.0, ge=0.0)
    delivery_dwell_minutes: float = Field(default=3.0, ge=0.0)
    traffic_duration_factor: float = Field(
        default=1.2,
        ge=1.0,
        description="Multiplier applied to the total duration to estimate the duration in traffic.",
    )

    # Scoring model
    distance_normalization_km: float = Field(default=50.0, gt=0.0)
    transition_distance_normalization_km: float = Field(default=20.0, gt=0.0)
    preparation_delay_ceiling_minutes: float = Field(default=30.0, gt=0.0)
    missing_preparation_score: float = Field(default=0.5, ge=0.0, le=1.0)
    delivery_window_placeholder_score: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Fixed delivery-window sub-score until customer time windows are modeled.",
    )
    criteria_tolerance: float = Field(default=1e-6, gt=0.0)

    # Solver family
    exact_solver_max_orders: int = Field(default=4, ge=1)
    genetic_solver_max_orders: int = Field(default=8, ge=1)
    ga_population_size: int = Field(default=50, ge=2)
    ga_generations: int = Field(default=100, ge=1)
    ga_elite_fraction: float = Field(default=0.1, ge=0.0, le=1.0)
    ga_tournament_size: int = Field(default=3, ge=1)
    ga_mutation_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    ga_random_fraction: float = Field(default=0.7, ge=0.0, le=1.0)
    nearest_neighbor_starts: int = Field(default=3, ge=1)
    sa_initial_temperature: float = Field(default=1000.0, gt=0.0)
    sa_cooling_rate: float = Field(default=0.95, gt=0.0, lt=1.0)
    sa_iterations: int = Field(default=1000, ge=1)
    solver_seed: Optional[int] = Field(
        default=None,
        description="Seed for the randomized solvers. Leave unset for non-deterministic runs.",
    )
    solver_parallel_branches: bool = Field(
        default=True,
        description="Run the hybrid heuristic branches in a thread pool.",
    )

    # Reoptimization controller
    reoptimization_cooldown_minutes: float = Field(default=5.0, ge=0.0)
    max_reoptimizations_per_hour: int = Field(default=6, ge=1)
    periodic_check_seconds: float = Field(default=120.0, gt=0.0)
    event_queue_size: int = Field(default=100, ge=1)
    recent_event_history: int = Field(default=10, ge=1)
    min_time_saving_minutes: float = Field(default=5.0, ge=0.0)
    min_distance_saving_km: float = Field(default=2.0, ge=0.0)
    min_score_improvement: float = Field(default=0.1, ge=0.0)
    incident_impact_radius_km: float = Field(default=5.0, gt=0.0)
    kitchen_load_change_threshold: float = Field(default=0.2, ge=0.0)
    urgent_notification_minutes: float = Field(default=15.0, ge=0.0)
    location_poll_seconds: float = Field(default=30.0, gt=0.0)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
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

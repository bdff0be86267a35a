from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/goalengine"
    default_tz: str = "Asia/Seoul"
    engine_api_key: str | None = None

    # Verification defaults (photo + time window checks)
    time_tolerance_minutes: int = 10  # ±10 min around a scheduled window
    geofence_radius_m: float = 100.0
    photo_freshness_max_minutes: int = 30  # photo must be taken within the last 30 min

    # Occurrence builder
    default_duration_min: int = 60
    max_occurrences: int = 100  # above this the validator flags the schedule

    # Offline queue
    queue_max_retries: int = 3
    queue_path: str = ".engine/verification_queue_v1.json"

    # Frequency aggregation: fraction of complete weeks that must pass (1.0 = all)
    frequency_pass_ratio: float = 1.0

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()

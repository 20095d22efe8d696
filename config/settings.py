from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Required infrastructure ────────────────────────────────
    database_url: str = ""
    queue_url: str = ""
    token_encryption_key: str = ""

    # ── Worker ─────────────────────────────────────────────────
    worker_concurrency: int = 3
    rate_limit_max: int = 10
    rate_limit_duration_ms: int = 1000
    poll_interval_seconds: float = 1.0
    lock_duration_seconds: float = 300.0
    max_stalled_count: int = 1

    # ── Retry policy ───────────────────────────────────────────
    job_attempts: int = 3
    backoff_type: str = "exponential"
    backoff_delay_seconds: float = 30.0

    # ── Retention ──────────────────────────────────────────────
    keep_completed_seconds: int = 86_400
    keep_completed_count: int = 1000
    keep_failed_seconds: int = 604_800

    # ── Scheduling ─────────────────────────────────────────────
    schedule_grace_seconds: int = 60
    schedule_horizon_days: int = 365
    rate_limit_cooldown_minutes: int = 15

    # ── Health server ──────────────────────────────────────────
    health_port: int = 3001
    health_host: str = "0.0.0.0"
    degraded_failed_threshold: int = 10

    # ── Platform apps ──────────────────────────────────────────
    twitter_client_id: str = ""
    twitter_client_secret: str = ""
    twitter_consumer_key: str = ""
    twitter_consumer_secret: str = ""
    linkedin_client_id: str = ""
    linkedin_client_secret: str = ""
    tiktok_client_key: str = ""
    tiktok_client_secret: str = ""
    graph_api_version: str = "v18.0"

    # ── Adapter polling ────────────────────────────────────────
    instagram_poll_interval: float = 2.0
    instagram_poll_attempts: int = 30
    tiktok_poll_interval: float = 5.0
    tiktok_poll_attempts: int = 60
    twitter_poll_interval: float = 2.0
    twitter_poll_attempts: int = 60
    http_timeout: float = 30.0

    # ── App ────────────────────────────────────────────────────
    log_level: str = "INFO"

    @field_validator("health_port")
    @classmethod
    def _check_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"health_port must be between 1 and 65535, got {v}")
        return v

    @field_validator("backoff_type")
    @classmethod
    def _check_backoff(cls, v: str) -> str:
        if v not in ("exponential", "linear"):
            raise ValueError(f"backoff_type must be exponential or linear, got {v!r}")
        return v

    @property
    def database_path(self) -> Path:
        return sqlite_path(self.database_url)

    @property
    def queue_path(self) -> Path:
        return sqlite_path(self.queue_url)

    def missing_required(self) -> list[str]:
        """Names of the required environment variables that are unset."""
        required = {
            "DATABASE_URL": self.database_url,
            "QUEUE_URL": self.queue_url,
            "TOKEN_ENCRYPTION_KEY": self.token_encryption_key,
        }
        return [name for name, value in required.items() if not value.strip()]


def sqlite_path(url: str) -> Path:
    """Accept ``sqlite:///relative.db``, ``sqlite:////abs.db`` or a bare path."""
    if url.startswith("sqlite:///"):
        return Path(url[len("sqlite:///"):])
    return Path(url)


settings = Settings()

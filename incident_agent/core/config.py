from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="IAP_",
        case_sensitive=False,
    )

    # ── Groq LLM ────────────────────────────────────────────────
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"
    groq_temperature: float = 0.3
    groq_max_tokens: int = 4096

    # ── Rate Limiter ────────────────────────────────────────────
    rate_limit_requests_per_minute: int = 30
    rate_limit_burst_size: int = 5

    # ── Analysis retry policy ───────────────────────────────────
    analysis_max_retries: int = 3
    analysis_initial_backoff_seconds: float = 5.0

    # ── Database ────────────────────────────────────────────────
    # Default to local SQLite for dev; use PostgreSQL in Docker/production
    database_url: str = "sqlite+aiosqlite:///./incidents.db"

    # ── Job queue ───────────────────────────────────────────────
    queue_name: str = "incident-processing"
    queue_concurrency: int = 2
    queue_max_attempts: int = 3
    queue_backoff_seconds: float = 2.0
    queue_stall_timeout_seconds: float = 30.0
    queue_max_stalled_count: int = 2
    queue_heartbeat_interval_seconds: float = 5.0
    queue_poll_interval_seconds: float = 0.5

    # ── Pipeline pacing (drives UI animation only) ──────────────
    diagnostic_step_delay_seconds: float = 0.8
    action_step_delay_seconds: float = 0.5
    log_sample_size: int = 15

    # ── Notifications ───────────────────────────────────────────
    subscriber_buffer_size: int = 256

    # ── API ─────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 4000
    api_run_worker: bool = True

    # ── Logging ─────────────────────────────────────────────────
    log_json: bool = False


# Cached for the CLI / API entry points; pipeline components take values explicitly.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

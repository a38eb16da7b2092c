from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+psycopg2://stats:stats@db:5432/stats"
    DB_POOL_PRE_PING: bool = True
    LOG_LEVEL: str = "INFO"

    # Async queue (manual re-run trigger)
    ASYNC_QUEUE_ENABLED: bool = False
    REDIS_URL: str = "redis://redis:6379/0"
    RQ_QUEUE_NAME: str = "statistics"
    RQ_JOB_TIMEOUT_SECONDS: int = 1800
    RQ_JOB_RETRY_MAX: int = 1

    # Scheduler
    STATS_REFRESH_INTERVAL_MINUTES: int = 60
    STATS_RUN_ON_STARTUP: bool = True

    # Cross-process lease around one pipeline run
    PIPELINE_LOCK_ENABLED: bool = True
    PIPELINE_LOCK_NAME: str = "statsengine:pipeline"
    PIPELINE_LOCK_TIMEOUT_SECONDS: int = 3300

    # Per-entity upsert retries
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_BACKOFF_SECONDS: float = 0.5
    DB_RETRY_BACKOFF_MAX_SECONDS: float = 4.0

    # Aggregates
    SCHOOL_STATS_RETENTION_DAYS: int = 365
    CLASS_ACTIVE_WINDOW_DAYS: int = 7

    # Help flagging thresholds
    HELP_LOW_COMPLETION_THRESHOLD: float = 50.0
    HELP_LOW_SCORE_THRESHOLD: float = 50.0
    HELP_OVERDUE_THRESHOLD: int = 0
    HELP_WARNING_AFTER_DAYS: int = 7
    HELP_CRITICAL_AFTER_DAYS: int = 14

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()

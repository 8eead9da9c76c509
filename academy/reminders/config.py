from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ReminderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REMINDER_", env_file=".env", extra="ignore")

    # Scheduling
    LEAD_TIME_HOURS: float = 24.0
    LOOKAHEAD_MONTHS: int = 1

    # Sending
    SEND_DELAY_SECONDS: float = 1.0  # pacing between consecutive emails of one job
    SEND_TIMEOUT_SECONDS: float = 30.0

    # History / maintenance
    HISTORY_LIMIT: int = 200
    STALE_JOB_HOURS: float = 24.0
    BOOTSTRAP_DELAY_SECONDS: float = 5.0
    CLEANUP_INTERVAL_SECONDS: float = 3600.0
    RESCAN_INTERVAL_SECONDS: Optional[float] = None

    # Metrics
    METRICS_ENABLED: bool = False


settings = ReminderSettings()

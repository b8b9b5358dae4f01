from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from roster.models import Shift


class Settings(BaseSettings):
    """
    Runtime settings, read from ROSTER_* environment variables or `.env`.
    """

    model_config = SettingsConfigDict(
        env_prefix="ROSTER_", env_file=".env", extra="ignore"
    )

    facility_timezone: str = "Asia/Riyadh"

    # max doctors on approved leave for any single calendar date
    leave_concurrency_cap: int = Field(default=2, ge=1)
    default_annual_leave_days: int = Field(default=45, ge=0)
    # longest single request of any leave type
    max_leave_days: int = Field(default=366, ge=1)
    # submission-time warning also counts other doctors' pending requests
    warn_counts_pending_leave: bool = True

    shift_start_hours: dict[Shift, int] = Field(
        default_factory=lambda: {
            Shift.MORNING: 7,
            Shift.EVENING: 15,
            Shift.NIGHT: 23,
        }
    )
    shift_length_hours: int = 8

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000


@lru_cache
def get_settings() -> Settings:
    return Settings()

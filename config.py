"""
Application settings, read from SRS_* environment variables or a .env file.
"""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from spaced_rep import SchedulerConfig


class Settings(BaseSettings):
    """Settings with environment variable support"""

    model_config = SettingsConfigDict(env_prefix="SRS_", env_file=".env", extra="ignore")

    app_name: str = "Vocabulary Review API"
    database_url: str = "sqlite:///reviews.db"
    log_level: str = "INFO"

    # Scheduler tuning
    starting_ease_factor: float = 2.5
    ease_floor: float = 1.3
    lapse_penalty: float = 0.2
    default_session_size: int = 20
    strict_quality: bool = False

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            starting_ease_factor=self.starting_ease_factor,
            ease_floor=self.ease_floor,
            lapse_penalty=self.lapse_penalty,
            default_session_size=self.default_session_size,
            strict_quality=self.strict_quality,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()

import logging
from datetime import date
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from quizdash.models.enums import StorageType


class ConfigurationError(Exception):
    """Raised when a component cannot start because of missing or invalid configuration."""

    pass


class AppSettings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # Scrape targets
    city_ids: Annotated[List[int], NoDecode] = Field(
        default_factory=lambda: [17],
        description="Cities to discover new games for, in processing order.",
    )

    # Source endpoints
    api_base_url: str = Field(
        "https://api.quizplease.ru/api", description="Base URL of the v2 JSON API."
    )
    legacy_games_api_url: str = Field(
        "https://quizplease.ru/api/game",
        description="Paginated game listing used by the legacy (v1) strategy.",
    )
    legacy_game_page_url: str = Field(
        "https://{city_slug}.quizplease.ru/game-page",
        description="Legacy results page; '{city_slug}' is substituted per city.",
    )

    # Request behaviour
    page_size: int = Field(50, gt=0, description="Games requested per listing page.")
    request_timeout: float = Field(30.0, gt=0, description="HTTP timeout in seconds.")
    retry_delay_seconds: float = Field(
        1.0, ge=0, description="Pause before the single retry of a failed request."
    )
    skip_games_before: Optional[date] = Field(
        None,
        description="Games scheduled before this date are marked processed without fetching results.",
    )

    # Storage
    storage_type: StorageType = StorageType.CSV
    data_path: Path = Field(Path("data"), description="Directory holding the CSV files.")

    # GitHub sync (storage_type=github)
    github_token: Optional[str] = None
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    github_branch: str = "main"

    # Supabase (storage_type=database)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Logging Configuration
    log_level: str = Field(
        "INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."
    )
    log_dir: Optional[Path] = Field(
        Path("logs"), description="Directory for per-run log files; empty disables file logging."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("city_ids", mode="before")
    @classmethod
    def split_city_ids(cls, value):
        # CITY_IDS=17,18 as well as a JSON list
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                value = value.strip("[]")
            return [int(part) for part in value.split(",") if part.strip()]
        return value

    @field_validator("log_dir", mode="before")
    @classmethod
    def empty_log_dir_disables(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


def load_settings() -> AppSettings:
    """Loads and validates application settings."""
    try:
        settings = AppSettings()
        log_level_upper = settings.log_level.upper()
        # Validate log_level even if loaded from .env
        if log_level_upper not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            logging.warning(
                f"Invalid LOG_LEVEL '{settings.log_level}' found in .env or default. Using INFO."
            )
            settings.log_level = "INFO"
        else:
            settings.log_level = log_level_upper
        return settings
    except Exception as e:
        logging.exception(f"Error loading application settings: {e}")
        raise SystemExit("Failed to load application settings. Exiting.")


settings: AppSettings = load_settings()

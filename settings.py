"""Environment configuration for the assessment service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOGGER = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent


class Settings(BaseSettings):
    """Runtime settings; every field has an environment variable."""

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    duration_seconds: int = Field(
        900, validation_alias=AliasChoices("duration_seconds", "QUIZ_DURATION_SECONDS")
    )
    question_count: int = Field(
        35, validation_alias=AliasChoices("question_count", "QUIZ_QUESTION_COUNT")
    )
    difficulty_weight: float = Field(
        0.5, validation_alias=AliasChoices("difficulty_weight", "QUIZ_DIFFICULTY_WEIGHT")
    )
    question_bank_path: Path = BASE_DIR / "data" / "question_bank.json"
    results_dir: Path = BASE_DIR / "data" / "results"
    session_retention_seconds: int = 3600
    analytics_enabled: bool = True
    analytics_url: Optional[str] = None
    analytics_timeout_seconds: float = 5.0
    log_level: str = "INFO"

    @field_validator(
        "duration_seconds",
        "question_count",
        "difficulty_weight",
        "session_retention_seconds",
        "analytics_timeout_seconds",
        mode="wrap",
    )
    @classmethod
    def _number_or_default(cls, value: Any, handler, info) -> Any:
        default = cls.model_fields[info.field_name].default
        try:
            number = handler(value)
        except ValidationError:
            LOGGER.warning("Invalid %s=%r, using %s", info.field_name, value, default)
            return default
        if number <= 0 and info.field_name != "difficulty_weight":
            LOGGER.warning("Non-positive %s=%r, using %s", info.field_name, value, default)
            return default
        return number

    @field_validator("question_bank_path", "results_dir")
    @classmethod
    def _relative_to_base(cls, value: Path) -> Path:
        return value if value.is_absolute() else BASE_DIR / value

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Read settings from the environment and an optional .env file.

    Args:
        env_file: Path of the .env file; defaults to the one beside this module

    Returns:
        Settings object
    """
    return Settings(_env_file=env_file or BASE_DIR / ".env")

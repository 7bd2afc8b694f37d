"""
Release Downloads Configuration
Defaults for the GitHub source, daily bucketing and gap backfill
Every value can be overridden through the environment
"""

import math
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .bucketing import parse_cutoff_minutes
from .exceptions import ConfigError

# GitHub API Configuration
GITHUB_API_BASE = "https://api.github.com"
GITHUB_REPO = "hanzoai/studio"
RELEASES_PER_PAGE = 100
MAX_RETRIES = 3
TIMEOUT_SECONDS = 30

# Headers for the releases API
HEADERS = {
    "Accept": "application/vnd.github.v3+json",
    "User-Agent": "Release-Download-Stats-Fetcher (Python)",
}

# Storage
DATA_DIR = "data"
DB_FILENAME = "downloads.db"

# Daily bucketing
DAILY_CUTOFF_UTC = "10:49"  # HH:MM, runs before this time count for the previous day

# Backfill defaults
BACKFILL_STRATEGY = "even"
BACKFILL_MIN_GAP_DAYS = 2
BACKFILL_LOOKBACK_DAYS = 30
BACKFILL_STOCHASTIC_FALLBACK = "even"
BACKFILL_NOISE_SCALE = 1.0
BACKFILL_TREND_WINDOW = 21

# Export
OUTPUT_FORMAT = "json"  # json, csv or parquet
TIMEFRAME_DAYS = {
    "1week": 7,
    "1month": 30,
    "3months": 90,
    "all": None,
}


class Strategy(str, Enum):
    NONE = "none"
    EVEN = "even"
    PATTERN = "pattern"
    STOCHASTIC = "stochastic"


class WriteMode(str, Enum):
    ONCE = "once"
    REPLACE = "replace"


STOCHASTIC_FALLBACKS = (Strategy.PATTERN, Strategy.EVEN)


class BackfillConfig(BaseSettings):
    """
    Settings for one ingestion cycle

    Read from the environment under the field aliases; field names are accepted as
    keyword arguments. Invalid values raise ConfigError.
    """
    strategy: Strategy = Field(Strategy(BACKFILL_STRATEGY), alias="BACKFILL_STRATEGY")
    min_gap_days: int = Field(BACKFILL_MIN_GAP_DAYS, ge=0, alias="BACKFILL_MIN_GAP_DAYS")
    lookback_days: int = Field(BACKFILL_LOOKBACK_DAYS, ge=0, alias="BACKFILL_LOOKBACK_DAYS")
    stochastic_fallback: Strategy = Field(
        Strategy(BACKFILL_STOCHASTIC_FALLBACK), alias="BACKFILL_STOCHASTIC_FALLBACK"
    )
    noise_scale: float = Field(BACKFILL_NOISE_SCALE, alias="BACKFILL_NOISE_SCALE")
    trend_window: int = Field(BACKFILL_TREND_WINDOW, ge=0, alias="BACKFILL_TREND_WINDOW")
    random_seed: Optional[str] = Field(None, alias="BACKFILL_RANDOM_SEED")
    bucket_write_mode: WriteMode = Field(WriteMode.ONCE, alias="BUCKET_WRITE_MODE")
    summary_write_mode: WriteMode = Field(WriteMode.ONCE, alias="SUMMARY_WRITE_MODE")
    cutoff_utc: str = Field(DAILY_CUTOFF_UTC, alias="DAILY_CUTOFF_UTC")
    github_repo: str = Field(GITHUB_REPO, alias="GITHUB_REPO")
    github_token: Optional[str] = Field(None, validation_alias=AliasChoices("GITHUB_TOKEN", "PAT"))
    data_dir: Path = Field(Path(DATA_DIR), alias="DATA_DIR")
    db_path: Optional[Path] = Field(None, alias="DB_PATH")

    model_config = SettingsConfigDict(
        populate_by_name=True,
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(self, **values):
        try:
            super().__init__(**values)
        except ValidationError as e:
            raise ConfigError(_describe(e)) from e

    @field_validator("strategy", "stochastic_fallback", "bucket_write_mode", "summary_write_mode", mode="before")
    @classmethod
    def _normalize_choice(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("random_seed", "github_token", "db_path", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("stochastic_fallback")
    @classmethod
    def _check_fallback(cls, value: Strategy) -> Strategy:
        if value not in STOCHASTIC_FALLBACKS:
            raise ValueError(f"stochastic fallback must be pattern or even, got {value.value}")
        return value

    @field_validator("noise_scale")
    @classmethod
    def _finite_noise_scale(cls, value: float) -> float:
        # Non-finite multipliers fall back to no scaling
        return value if math.isfinite(value) else 1.0

    @field_validator("cutoff_utc")
    @classmethod
    def _check_cutoff(cls, value: str) -> str:
        parse_cutoff_minutes(value)
        return value.strip()

    @model_validator(mode="after")
    def _default_db_path(self) -> "BackfillConfig":
        if self.db_path is None:
            self.db_path = Path(self.data_dir) / DB_FILENAME
        return self

    @property
    def backfill_enabled(self) -> bool:
        return self.strategy is not Strategy.NONE

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BackfillConfig":
        """Build a config from the process environment, or from the given mapping only"""
        if environ is None:
            return cls()
        try:
            return cls.model_validate(dict(environ))
        except ValidationError as e:
            raise ConfigError(_describe(e)) from e


def _describe(error: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'config'}: {err['msg']}"
        for err in error.errors()
    )
    return f"Invalid configuration: {problems}"

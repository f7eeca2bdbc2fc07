"""Pydantic settings for lending pool configuration."""

from __future__ import annotations
from decimal import Decimal
from functools import lru_cache
import logging
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core import BPS_SCALE


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class LendingSettings(BaseSettings):
    """Protocol settings loaded from LENDPOOL_* environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="LENDPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Risk parameters
    collateralization_ratio_bps: int = Field(
        default=7500, ge=0, le=BPS_SCALE, description="Maximum loan-to-value in basis points",
    )
    liquidation_bonus_bps: int = Field(
        default=500, ge=0, description="Extra collateral paid to liquidators in basis points",
    )
    rate_per_second: Decimal = Field(
        default=Decimal("0"), ge=0, description="Simple interest rate applied per second",
    )

    # Price feed
    oracle_max_age_seconds: Optional[int] = Field(
        default=None, ge=1, description="Reject prices older than this many seconds",
    )

    # Logging
    log_level: str = Field(default="WARNING", description="Level for the lendpool logger")

    @field_validator("log_level", mode="before")
    @classmethod
    def parse_log_level(cls, v):
        """Normalize and check the level name."""
        level = str(v).strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level


@lru_cache()
def get_settings() -> LendingSettings:
    """Get cached settings instance."""
    return LendingSettings()


def configure_logging(settings: Optional[LendingSettings] = None) -> logging.Logger:
    """
    Apply the configured level to the package logger.

    Handlers are left to the application; a NullHandler is attached so the
    library stays silent when nothing is configured.
    """
    settings = settings or get_settings()
    logger = logging.getLogger("lendpool")
    logger.setLevel(settings.log_level)
    if not any(isinstance(h, logging.NullHandler) for h in logger.handlers):
        logger.addHandler(logging.NullHandler())
    return logger

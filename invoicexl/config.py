"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
Reconciliation tolerances are kept as distinct named settings; each check
reads its own constant.
"""
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    debug: bool = False
    log_level: str = "INFO"
    max_text_chars: int = 2_000_000

    # Line-item math (cents)
    line_item_tolerance_cents: int = Field(5, ge=0)

    # Totals checks (fractions)
    sum_vs_subtotal_pct: float = Field(0.02, ge=0, le=1)
    totals_equation_pct: float = Field(0.01, ge=0, le=1)
    salvage_match_pct: float = Field(0.05, ge=0, le=1)
    salvage_trigger_pct: float = Field(0.10, ge=0, le=1)
    synthetic_max_pct: float = Field(0.20, ge=0, le=1)
    salvage_gross_error_pct: float = Field(0.50, ge=0, le=1)
    printed_total_min_ratio: float = Field(0.05, ge=0, le=1)

    # Absolute floors (cents)
    synthetic_min_delta_cents: int = Field(10, ge=0)
    printed_total_floor_cents: int = Field(1000, ge=0)

    # Confidence
    salvage_confidence_penalty: int = Field(15, ge=0, le=100)

    @model_validator(mode="after")
    def _check_ordering(self) -> "Settings":
        if self.salvage_trigger_pct < self.sum_vs_subtotal_pct:
            raise ValueError("salvage_trigger_pct must not be below sum_vs_subtotal_pct")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

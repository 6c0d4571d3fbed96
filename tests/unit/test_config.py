"""
Unit tests for application settings and engine tolerances.
"""
import pytest
from pydantic import ValidationError

from invoicexl.config import Settings, get_settings
from invoicexl.engine.tolerances import Tolerances
from invoicexl.exceptions import ConfigurationError


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        settings = Settings()

        assert settings.debug is False
        assert settings.max_text_chars == 2_000_000
        assert settings.line_item_tolerance_cents == 5
        assert settings.sum_vs_subtotal_pct == 0.02
        assert settings.totals_equation_pct == 0.01
        assert settings.synthetic_max_pct == 0.20
        assert settings.printed_total_floor_cents == 1000
        assert settings.salvage_confidence_penalty == 15

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SYNTHETIC_MAX_PCT", "0.25")
        monkeypatch.setenv("LINE_ITEM_TOLERANCE_CENTS", "2")

        settings = Settings()

        assert settings.synthetic_max_pct == 0.25
        assert settings.line_item_tolerance_cents == 2

    def test_fraction_out_of_range(self):
        with pytest.raises(ValidationError):
            Settings(totals_equation_pct=2)

    def test_trigger_below_subtotal_check(self):
        """The salvage trigger cannot be tighter than the subtotal check."""
        with pytest.raises(ValidationError):
            Settings(salvage_trigger_pct=0.01, sum_vs_subtotal_pct=0.02)

    def test_cached(self):
        assert get_settings() is get_settings()


class TestTolerancesFromSettings:
    """Tests for building engine tolerances from settings."""

    def test_maps_every_field(self):
        settings = Settings(
            line_item_tolerance_cents=3,
            salvage_match_pct=0.04,
            salvage_confidence_penalty=10,
        )

        tol = Tolerances.from_settings(settings)

        assert tol.line_item_cents == 3
        assert tol.salvage_match_pct == 0.04
        assert tol.salvage_penalty == 10
        assert tol.totals_equation_pct == settings.totals_equation_pct

    def test_reads_cached_settings(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SALVAGE_MATCH_PCT", "0.03")
        get_settings.cache_clear()

        assert Tolerances.from_settings().salvage_match_pct == 0.03

    def test_invalid_tolerances(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Tolerances(salvage_gross_error_pct=-0.1)

        assert exc_info.value.details["field"] == "salvage_gross_error_pct"

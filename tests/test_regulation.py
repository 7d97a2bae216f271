#!/usr/bin/env python3
"""Tests for regulations and the manufacturer catalog."""

import pytest

from fleet import Regulation, ValidationError, validate_regulation
from fleet.catalog import GENERIC, HONDA, default_regulations


class TestValidateRegulation:
    """Tests for validate_regulation."""

    def test_valid_regulation_passes(self):
        """Test a complete regulation passes."""
        validate_regulation(Regulation("Engine oil", 10000, 6))

    def test_zero_mileage_interval_rejected(self):
        """Test a zero mileage interval is refused."""
        with pytest.raises(ValidationError) as exc:
            validate_regulation(Regulation("Engine oil", 0, 6))
        assert exc.value.field == "mileage"

    def test_zero_period_rejected(self):
        """Test a zero period is refused."""
        with pytest.raises(ValidationError) as exc:
            validate_regulation(Regulation("Engine oil", 10000, 0))
        assert exc.value.field == "period"

    def test_blank_operation_rejected(self):
        """Test a blank operation name is refused."""
        with pytest.raises(ValidationError):
            validate_regulation(Regulation("  ", 10000, 6))


class TestDefaultRegulations:
    """Tests for default_regulations brand matching."""

    def test_known_brand(self):
        """Test a known brand gets its own schedule."""
        regulations = default_regulations("Honda")
        assert len(regulations) == len(HONDA)
        assert regulations[0].operation == "Engine oil and filter replacement"
        assert regulations[0].mileage_interval == 10000
        assert regulations[0].period_months == 6

    def test_brand_matched_by_substring(self):
        """Test brands are matched by substring."""
        assert len(default_regulations("Mercedes-Benz")) == 4

    def test_unknown_brand_gets_generic(self):
        """Test an unknown brand gets the generic schedule."""
        assert len(default_regulations("Lada")) == len(GENERIC)
        assert len(default_regulations(None)) == len(GENERIC)

    def test_catalog_entries_are_valid(self):
        """Test every catalog entry passes validation."""
        for brand in ("honda", "toyota", "bmw", "mercedes", "other"):
            for regulation in default_regulations(brand):
                validate_regulation(regulation)

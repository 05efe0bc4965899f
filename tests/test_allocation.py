# -*- coding: utf-8 -*-
"""Tests for facility impact allocation.

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

import math

import pytest

from impactledger.engine.allocation import FacilityImpactAllocator
from impactledger.engine.provenance import ProvenanceTracker
from impactledger.exceptions import ValidationError


@pytest.fixture
def allocator():
    return FacilityImpactAllocator(provenance=ProvenanceTracker())


class TestAllocate:
    """Tests for single-product allocation."""

    def test_end_to_end_scenario(self, allocator, facility_impacts):
        """125,000 of 1,000,000 units over 50,000 kg: ratio 0.125, 0.05 kg/unit."""
        brewery = facility_impacts.model_copy(update={"total_volume": 1_000_000, "co2e_kg": 50_000})
        result = allocator.allocate(brewery, 125_000)

        assert result.allocation_ratio == pytest.approx(0.125)
        assert result.co2e_per_unit == pytest.approx(0.05)

    def test_per_unit_figures(self, allocator, facility_impacts):
        """1000 of 8000 units gets 12.5% and 0.125 kg/unit."""
        result = allocator.allocate(facility_impacts, 1000, product_id="prod-1")

        assert result.allocation_ratio == pytest.approx(0.125)
        assert result.co2e_per_unit == pytest.approx(0.125)
        assert result.water_per_unit == pytest.approx(5.0)
        assert result.waste_per_unit == pytest.approx(0.025)
        assert result.product_id == "prod-1"
        assert result.facility_id == "fac-1"
        assert "12.50%" in result.provenance
        assert "fac-1" in result.provenance
        assert len(result.provenance_hash) == 64

    def test_smaller_product(self, allocator, facility_impacts):
        """400 of 8000 units: 0.05 ratio, per-unit figure unchanged."""
        result = allocator.allocate(facility_impacts, 400)
        assert result.allocation_ratio == pytest.approx(0.05)
        assert result.co2e_per_unit == pytest.approx(0.125)

    def test_conservation(self, allocator, facility_impacts):
        """Per-unit times volume recovers the ratio share of the facility total."""
        result = allocator.allocate(facility_impacts, 2500)
        totals = result.allocated_totals()

        assert totals["co2e_kg"] == pytest.approx(facility_impacts.co2e_kg * result.allocation_ratio)
        assert totals["water_litres"] == pytest.approx(
            facility_impacts.water_litres * result.allocation_ratio,
        )
        assert totals["waste_kg"] == pytest.approx(facility_impacts.waste_kg * result.allocation_ratio)

    def test_whole_facility(self, allocator, facility_impacts):
        """A product that is the whole facility takes everything."""
        result = allocator.allocate(facility_impacts, facility_impacts.total_volume)
        assert result.allocation_ratio == pytest.approx(1.0)
        assert result.allocated_totals()["co2e_kg"] == pytest.approx(facility_impacts.co2e_kg)

    def test_zero_impacts(self, allocator, facility_impacts):
        """Zero facility impacts allocate to zero."""
        empty = facility_impacts.model_copy(update={"co2e_kg": 0.0, "water_litres": 0.0, "waste_kg": 0.0})
        result = allocator.allocate(empty, 100)
        assert result.co2e_per_unit == 0.0


class TestAllocateRejection:
    """Tests for inputs rejected before any arithmetic."""

    @pytest.mark.parametrize("total", [0, -10, math.nan, math.inf])
    def test_bad_total_volume(self, allocator, facility_impacts, total):
        """Total volume must be a positive finite number."""
        bad = facility_impacts.model_copy(update={"total_volume": total})
        with pytest.raises(ValidationError) as exc_info:
            allocator.allocate(bad, 100)
        assert exc_info.value.message == "Total facility volume must be greater than zero"

    @pytest.mark.parametrize("volume", [0, -1, math.nan])
    def test_bad_product_volume(self, allocator, facility_impacts, volume):
        """Product volume must be a positive finite number."""
        with pytest.raises(ValidationError) as exc_info:
            allocator.allocate(facility_impacts, volume)
        assert exc_info.value.message == "Product volume must be greater than zero"

    def test_product_exceeds_facility(self, allocator, facility_impacts):
        """A product cannot produce more than its facility."""
        with pytest.raises(ValidationError) as exc_info:
            allocator.allocate(facility_impacts, 8001)
        assert exc_info.value.message == "Product volume cannot exceed total facility volume"
        assert "product_volume" in exc_info.value.invalid_fields


class TestAllocateMany:
    """Tests for splitting one facility period across products."""

    def test_shares_sum_to_facility(self, allocator, facility_impacts):
        """Products covering the full volume receive the full impact."""
        results = allocator.allocate_many(
            facility_impacts, {"lager": 5000, "stout": 2000, "cider": 1000},
        )
        allocated = sum(r.allocated_totals()["co2e_kg"] for r in results.values())

        assert set(results) == {"lager", "stout", "cider"}
        assert allocated == pytest.approx(facility_impacts.co2e_kg)
        assert results["stout"].product_id == "stout"

    def test_combined_volume_too_large(self, allocator, facility_impacts):
        """Volumes that together exceed the facility are rejected."""
        with pytest.raises(ValidationError):
            allocator.allocate_many(facility_impacts, {"lager": 5000, "stout": 4000})

# -*- coding: utf-8 -*-
"""Tests for Scope 3 aggregation and corporate emissions.

Covers:
- The end-to-end organisation scenario
- Sum invariant and all-zero results
- Unit counts, never bulk volume, drive the product stream
- No double counting of a product's own Scope 1/2 share
- Latest completed assessment selection
- Overhead category mapping, grey fleet and run notes
- Parallel product stream equivalence
- Scope 1/2/3 corporate totals

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

import random
from datetime import date, datetime, timezone

import pytest

from impactledger.engine.aggregation import CorporateEmissionsCalculator, ScopeAggregator
from impactledger.engine.models import (
    AssessmentStatus,
    EmissionScope,
    FleetActivity,
    ProductAssessment,
    ProductionLogEntry,
    QualityGrade,
    Scope3Breakdown,
    Scope3Category,
    ScopeActivity,
)
from impactledger.engine.provenance import ProvenanceTracker
from impactledger.engine.repository import InMemoryImpactRepository
from impactledger.engine.units import BulkQuantity, UnitCount


ORG = "org-1"
YEAR = 2025


def _assessment(product_id, scope3, completed_at=datetime(2025, 1, 10, tzinfo=timezone.utc),
                status=AssessmentStatus.COMPLETED, scope1_2=0.0, tag="Secondary_Modelled"):
    return ProductAssessment(
        product_id=product_id,
        organization_id=ORG,
        status=status,
        scope3_per_unit=scope3,
        scope1_2_per_unit=scope1_2,
        data_quality_tag=tag,
        completed_at=completed_at,
    )


def _run(product_id, units, on=date(2025, 6, 1), org=ORG):
    return ProductionLogEntry(
        organization_id=org,
        product_id=product_id,
        production_date=on,
        units_produced=None if units is None else UnitCount(units),
    )


# ==============================================================================
# Scenario and invariants
# ==============================================================================

class TestScopeAggregator:
    """Tests for the Scope 3 breakdown."""

    def test_end_to_end_scenario(self, scenario_repository):
        """20,000 units x 0.5 kg plus 172 kg travel gives 10,172 kg."""
        result = ScopeAggregator(scenario_repository).aggregate(ORG, YEAR)
        breakdown = result.breakdown

        assert breakdown.products == pytest.approx(10000.0)
        assert breakdown.business_travel == pytest.approx(172.0)
        for category in Scope3Category:
            if category not in (Scope3Category.PRODUCTS, Scope3Category.BUSINESS_TRAVEL):
                assert getattr(breakdown, category.value) == 0.0
        assert breakdown.total == pytest.approx(10172.0)
        assert result.skipped_entries == []
        assert result.missing_assessments == []

    def test_sum_invariant(self, scenario_repository, overhead_entry):
        """Total always equals the sum of the eight buckets."""
        for category, co2e in [
            ("employee_commuting", 40.0), ("capital_goods", 900.0),
            ("operational_waste", 12.5), ("downstream_logistics", 300.0),
            ("marketing_materials", 8.0), ("purchased_services", 55.0),
        ]:
            scenario_repository.add_overhead(overhead_entry(category, co2e))

        breakdown = ScopeAggregator(scenario_repository).aggregate_scope3(ORG, YEAR)
        buckets = breakdown.as_dict()
        total = buckets.pop("total")

        assert isinstance(breakdown, Scope3Breakdown)
        assert total == pytest.approx(sum(buckets.values()))
        assert total == pytest.approx(10172.0 + 40 + 900 + 12.5 + 300 + 8 + 55)

    @pytest.mark.parametrize("seed", range(20))
    def test_sum_invariant_random_combinations(self, seed, overhead_entry):
        """Random overhead mixes, zero amounts and empty years keep total == sum."""
        rng = random.Random(seed)
        labels = [
            "business_travel", "purchased_services", "employee_commuting", "capital_goods",
            "operational_waste", "downstream_logistics", "marketing_materials",
        ]
        repository = InMemoryImpactRepository()
        for label in rng.sample(labels, rng.randint(0, len(labels))):
            for _ in range(rng.randint(1, 3)):
                co2e = 0.0 if rng.random() < 0.3 else round(rng.uniform(0, 5000), 3)
                repository.add_overhead(overhead_entry(label, co2e))

        breakdown = ScopeAggregator(repository).aggregate_scope3(ORG, YEAR)
        buckets = breakdown.as_dict()
        total = buckets.pop("total")

        assert total == pytest.approx(sum(buckets.values()))
        assert breakdown.merge(Scope3Breakdown()).total == pytest.approx(total)

    def test_all_zero_breakdown_total(self):
        """Eight zero buckets total zero, alone and merged."""
        zero = Scope3Breakdown()
        for category in Scope3Category:
            zero.add(category, 0.0)

        assert zero.total == 0.0
        assert zero.merge(Scope3Breakdown()).as_dict() == {
            **{category.value: 0.0 for category in Scope3Category}, "total": 0.0,
        }

    def test_all_zero(self):
        """An organisation with no data gets eight zero buckets."""
        result = ScopeAggregator(InMemoryImpactRepository()).aggregate(ORG, YEAR)
        assert all(v == 0.0 for v in result.breakdown.as_dict().values())
        assert result.product_quality.weighted_confidence == 0.0

    def test_unit_count_not_bulk_volume(self):
        """100,000 units at 0.002744 kg is 274.4 kg, whatever the bulk volume."""
        repository = InMemoryImpactRepository()
        repository.add_assessment(_assessment("lager", 0.002744))
        repository.add_production_log(ProductionLogEntry(
            organization_id=ORG,
            product_id="lager",
            production_date=date(2025, 3, 3),
            units_produced=UnitCount(100000),
            bulk_volume=BulkQuantity(value=100, unit="hL"),
        ))

        breakdown = ScopeAggregator(repository).aggregate_scope3(ORG, YEAR)

        assert breakdown.products == pytest.approx(274.4)

    def test_no_double_counting(self):
        """Only the Scope-3-only figure enters the products bucket."""
        repository = InMemoryImpactRepository()
        repository.add_assessment(_assessment("lager", 0.4, scope1_2=0.1))
        repository.add_production_log(_run("lager", 1000))

        breakdown = ScopeAggregator(repository).aggregate_scope3(ORG, YEAR)

        assert breakdown.products == pytest.approx(400.0)

    def test_other_orgs_and_years_excluded(self, scenario_repository):
        """Runs outside the organisation or year are ignored."""
        scenario_repository.add_production_log(_run("prod-1", 5000, org="org-2"))
        scenario_repository.add_production_log(_run("prod-1", 5000, on=date(2024, 12, 31)))
        scenario_repository.add_production_log(_run("prod-1", 5000, on=date(2026, 1, 1)))

        breakdown = ScopeAggregator(scenario_repository).aggregate_scope3(ORG, YEAR)

        assert breakdown.products == pytest.approx(10000.0)

    def test_provenance_recorded(self, scenario_repository):
        """A provenance hash is attached when tracking is enabled."""
        tracker = ProvenanceTracker()
        result = ScopeAggregator(scenario_repository, provenance=tracker).aggregate(ORG, YEAR)
        assert len(result.provenance_hash) == 64
        assert tracker.get_entries(operation="aggregate_scope3")


# ==============================================================================
# Product stream edge cases
# ==============================================================================

class TestProductStream:
    """Tests for production log handling."""

    def test_entries_without_units_skipped(self):
        """Missing or zero unit counts are skipped and reported."""
        repository = InMemoryImpactRepository()
        repository.add_assessment(_assessment("lager", 0.5))
        missing = _run("lager", None)
        zero = _run("lager", 0)
        counted = _run("lager", 10)
        for entry in (missing, zero, counted):
            repository.add_production_log(entry)

        result = ScopeAggregator(repository).aggregate(ORG, YEAR)

        assert result.skipped_entries == [missing.entry_id, zero.entry_id]
        assert result.breakdown.products == pytest.approx(5.0)

    def test_missing_assessment_reported_once(self):
        """Products without a completed assessment contribute nothing."""
        repository = InMemoryImpactRepository()
        repository.add_assessment(_assessment("stout", 9.9, status=AssessmentStatus.DRAFT))
        repository.add_production_log(_run("stout", 100))
        repository.add_production_log(_run("stout", 200))

        result = ScopeAggregator(repository).aggregate(ORG, YEAR)

        assert result.breakdown.products == 0.0
        assert result.missing_assessments == ["stout"]

    def test_latest_completed_assessment_used(self):
        """The newest assessment completed by year end wins."""
        repository = InMemoryImpactRepository()
        repository.add_assessment(_assessment(
            "lager", 1.0, completed_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        ))
        repository.add_assessment(_assessment(
            "lager", 0.8, completed_at=datetime(2025, 11, 1, tzinfo=timezone.utc),
        ))
        repository.add_assessment(_assessment(
            "lager", 0.1, completed_at=datetime(2026, 2, 1, tzinfo=timezone.utc),
        ))
        repository.add_production_log(_run("lager", 100))

        breakdown = ScopeAggregator(repository).aggregate_scope3(ORG, YEAR)

        assert breakdown.products == pytest.approx(80.0)

    def test_product_quality_weighted_by_impact(self):
        """Product quality is weighted by each product's contribution."""
        repository = InMemoryImpactRepository()
        repository.add_assessment(_assessment("lager", 1.0, tag="Primary_Verified"))
        repository.add_assessment(_assessment("cider", 1.0, tag="Hybrid_Proxy"))
        repository.add_production_log(_run("lager", 300))
        repository.add_production_log(_run("cider", 100))

        quality = ScopeAggregator(repository).aggregate(ORG, YEAR).product_quality

        assert quality.weighted_confidence == pytest.approx((95 * 300 + 50 * 100) / 400)
        assert quality.grade == QualityGrade.MEDIUM

    def test_parallel_matches_sequential(self):
        """Worker count does not change the result."""
        repository = InMemoryImpactRepository()
        for i in range(20):
            repository.add_assessment(_assessment(f"p{i}", 0.01 * (i + 1)))
        for i in range(200):
            repository.add_production_log(_run(f"p{i % 25}", 10 + i))

        sequential = ScopeAggregator(repository, max_workers=1).aggregate(ORG, YEAR)
        parallel = ScopeAggregator(repository, max_workers=4).aggregate(ORG, YEAR)

        assert parallel.breakdown.products == pytest.approx(sequential.breakdown.products)
        assert sorted(parallel.missing_assessments) == sorted(sequential.missing_assessments)
        assert sorted(parallel.missing_assessments) == [f"p{i}" for i in range(20, 25)]


# ==============================================================================
# Overhead stream
# ==============================================================================

class TestOverheadStream:
    """Tests for corporate overhead mapping."""

    def test_unknown_category_counted_as_services(self, overhead_entry):
        """Unknown labels land in purchased_services with a note."""
        repository = InMemoryImpactRepository()
        repository.add_overhead(overhead_entry("office plants", 25.0))

        result = ScopeAggregator(repository).aggregate(ORG, YEAR)

        assert result.breakdown.purchased_services == pytest.approx(25.0)
        assert len(result.notes) == 1
        assert "office plants" in result.notes[0]

    def test_products_overhead_not_in_products_bucket(self, overhead_entry):
        """A 'products' overhead never reaches the product stream bucket."""
        repository = InMemoryImpactRepository()
        repository.add_overhead(overhead_entry("products", 60.0))

        breakdown = ScopeAggregator(repository).aggregate_scope3(ORG, YEAR)

        assert breakdown.products == 0.0
        assert breakdown.purchased_services == pytest.approx(60.0)

    def test_merchandise_is_marketing(self, overhead_entry):
        """Purchased services with a material type are marketing materials."""
        repository = InMemoryImpactRepository()
        repository.add_overhead(overhead_entry("purchased_services", 30.0, material_type="cotton"))
        repository.add_overhead(overhead_entry("purchased_services", 70.0))

        breakdown = ScopeAggregator(repository).aggregate_scope3(ORG, YEAR)

        assert breakdown.marketing_materials == pytest.approx(30.0)
        assert breakdown.purchased_services == pytest.approx(70.0)

    def test_grey_fleet_is_business_travel(self, scenario_repository):
        """Grey-fleet journeys add to business travel; company fleet does not."""
        scenario_repository.add_fleet_activity(FleetActivity(
            organization_id=ORG, scope=EmissionScope.SCOPE_3_CAT_6,
            emissions_tco2e=0.028, activity_date=date(2025, 8, 1),
        ))
        scenario_repository.add_fleet_activity(FleetActivity(
            organization_id=ORG, scope=EmissionScope.SCOPE_1,
            emissions_tco2e=5.0, activity_date=date(2025, 8, 1),
        ))

        breakdown = ScopeAggregator(scenario_repository).aggregate_scope3(ORG, YEAR)

        assert breakdown.business_travel == pytest.approx(200.0)
        assert breakdown.total == pytest.approx(10200.0)


# ==============================================================================
# Breakdown model
# ==============================================================================

class TestScope3Breakdown:
    """Tests for the breakdown model itself."""

    def test_negative_contribution_rejected(self):
        """Buckets only ever grow."""
        with pytest.raises(ValueError):
            Scope3Breakdown().add(Scope3Category.CAPITAL_GOODS, -1.0)

    def test_merge(self):
        """Merging sums bucket by bucket."""
        a = Scope3Breakdown(products=10.0, capital_goods=1.0)
        b = Scope3Breakdown(products=5.0, business_travel=2.0)
        merged = a.merge(b)
        assert merged.products == 15.0
        assert merged.total == pytest.approx(18.0)

    def test_total_serialised(self):
        """The derived total is part of the serialised form."""
        assert Scope3Breakdown(products=3.0).model_dump()["total"] == 3.0


# ==============================================================================
# Corporate emissions
# ==============================================================================

class TestCorporateEmissions:
    """Tests for the full Scope 1/2/3 inventory."""

    def test_scope_totals(self, scenario_repository):
        """Scope 1 and 2 come from activities and fleet; Scope 3 from the aggregator."""
        scenario_repository.add_scope_activity(ScopeActivity(
            organization_id=ORG, scope=EmissionScope.SCOPE_1,
            quantity=100.0, emission_factor=2.0, activity_date=date(2025, 2, 1),
        ))
        scenario_repository.add_scope_activity(ScopeActivity(
            organization_id=ORG, scope=EmissionScope.SCOPE_2,
            quantity=1000.0, emission_factor=0.2, activity_date=date(2025, 2, 1),
        ))
        scenario_repository.add_fleet_activity(FleetActivity(
            organization_id=ORG, scope=EmissionScope.SCOPE_1,
            emissions_tco2e=0.5, activity_date=date(2025, 3, 1),
        ))
        aggregator = ScopeAggregator(scenario_repository)
        calculator = CorporateEmissionsCalculator(
            scenario_repository, aggregator, provenance=ProvenanceTracker(),
        )

        emissions = calculator.calculate(ORG, YEAR)

        assert emissions.breakdown.scope1 == pytest.approx(700.0)
        assert emissions.breakdown.scope2 == pytest.approx(200.0)
        assert emissions.breakdown.scope3.total == pytest.approx(10172.0)
        assert emissions.breakdown.total == pytest.approx(11072.0)
        assert emissions.has_data is True
        assert emissions.provenance_hash

    def test_empty_inventory(self):
        """No data at all is reported as such."""
        repository = InMemoryImpactRepository()
        emissions = CorporateEmissionsCalculator(
            repository, ScopeAggregator(repository),
        ).calculate(ORG, YEAR)
        assert emissions.breakdown.total == 0.0
        assert emissions.has_data is False

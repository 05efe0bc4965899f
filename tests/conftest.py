# -*- coding: utf-8 -*-
"""Pytest configuration and shared fixtures for the impact engine."""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from impactledger.db.base import create_db_engine, init_db
from impactledger.engine.config import EngineConfig, reset_config
from impactledger.engine.external_source import ExternalFactorSource, MockFactorGenerator
from impactledger.engine.factor_store import (
    InMemoryCuratedFactorStore,
    InMemoryFactorCacheStore,
)
from impactledger.engine.models import (
    AssessmentStatus,
    FacilityPeriodImpacts,
    ImpactCategory,
    ImpactFactor,
    OverheadEntry,
    ProductAssessment,
    ProductionLogEntry,
)
from impactledger.engine.provenance import ProvenanceTracker
from impactledger.engine.repository import InMemoryImpactRepository
from impactledger.engine.units import BulkQuantity, UnitCount
from impactledger.engine.waterfall import WaterfallResolver


ORG = "org-1"
YEAR = 2025


class FixedClock:
    """Settable clock for cache TTL tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _reset_global_config():
    """Keep the config singleton from leaking between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return EngineConfig(resolver_max_workers=4)


@pytest.fixture
def provenance():
    return ProvenanceTracker()


@pytest.fixture
def curated_store():
    return InMemoryCuratedFactorStore([
        ImpactFactor(
            name="Oat Milk",
            category=ImpactCategory.INGREDIENT,
            value=0.9,
            source="DEFRA 2025",
            is_primary_verified=True,
            confidence=95,
        ),
        ImpactFactor(
            name="Glass Bottle",
            category=ImpactCategory.PACKAGING,
            value=1.2,
            source="Ecoinvent 3.10",
        ),
    ])


@pytest.fixture
def cache_store():
    return InMemoryFactorCacheStore()


@pytest.fixture
def mock_source():
    """Stage-3 source with no live client: every lookup is a mock factor."""
    return ExternalFactorSource(client=None, mock=MockFactorGenerator(confidence=30.0))


@pytest.fixture
def resolver(curated_store, cache_store, mock_source, config, provenance, clock):
    return WaterfallResolver.build(
        curated_store,
        cache_store,
        mock_source,
        config=config,
        provenance=provenance,
        clock=clock,
    )


@pytest.fixture
def session_factory():
    """SQLite in-memory database with all tables created."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def facility_impacts():
    """One month at the main brewery: 1000 kg CO2e over 8000 units."""
    return FacilityPeriodImpacts(
        facility_id="fac-1",
        organization_id=ORG,
        period_start=date(2025, 1, 1),
        period_end=date(2025, 1, 31),
        co2e_kg=1000.0,
        water_litres=40000.0,
        waste_kg=200.0,
        total_volume=8000.0,
    )


@pytest.fixture
def scenario_repository():
    """Organisation with one product run and one business-travel overhead.

    20,000 units at 0.5 kg CO2e/unit Scope 3 gives 10,000 kg products; the
    overhead adds 172 kg business travel.
    """
    repository = InMemoryImpactRepository()
    repository.add_assessment(ProductAssessment(
        product_id="prod-1",
        organization_id=ORG,
        status=AssessmentStatus.COMPLETED,
        scope3_per_unit=0.5,
        scope1_2_per_unit=0.05,
        data_quality_tag="Primary_Verified",
        completed_at=datetime(2025, 3, 1, tzinfo=timezone.utc),
    ))
    repository.add_production_log(ProductionLogEntry(
        organization_id=ORG,
        product_id="prod-1",
        production_date=date(2025, 4, 15),
        units_produced=UnitCount(20000),
        bulk_volume=BulkQuantity(value=100, unit="hL"),
    ))
    repository.add_overhead(OverheadEntry(
        organization_id=ORG,
        year=YEAR,
        category="business_travel",
        computed_co2e=172.0,
    ))
    return repository


@pytest.fixture
def overhead_entry():
    def _make(category, co2e, material_type=None):
        return OverheadEntry(
            organization_id=ORG,
            year=YEAR,
            category=category,
            computed_co2e=co2e,
            material_type=material_type,
        )
    return _make

# -*- coding: utf-8 -*-
"""
Impact Engine Service Setup

Provides ``configure_engine_service(app)`` which wires up the impact
engine (factor stores, waterfall resolver, allocator, aggregators,
classifier, readiness validator, provenance) and mounts the REST API.

Also exposes ``get_engine_service(app)`` for programmatic access and the
``EngineService`` facade class.

Usage:
    >>> from fastapi import FastAPI
    >>> from impactledger.engine.setup import configure_engine_service
    >>> app = FastAPI()
    >>> configure_engine_service(app)

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from impactledger.db.base import create_db_engine, init_db
from impactledger.engine.aggregation import CorporateEmissionsCalculator, ScopeAggregator
from impactledger.engine.allocation import FacilityImpactAllocator
from impactledger.engine.config import EngineConfig, get_config
from impactledger.engine.external_source import ExternalFactorSource
from impactledger.engine.factor_store import (
    CuratedFactorStore,
    FactorCacheStore,
    InMemoryCuratedFactorStore,
    InMemoryFactorCacheStore,
    SqlCuratedFactorStore,
    SqlFactorCacheStore,
)
from impactledger.engine.models import (
    AggregationResult,
    AllocatedImpact,
    CorporateEmissions,
    FacilityPeriodImpacts,
    FactorQuery,
    MaterialInput,
    ReadinessReport,
    ResolvedFactor,
)
from impactledger.engine.provenance import ProvenanceEntry, ProvenanceTracker
from impactledger.engine.quality import DataQualityClassifier
from impactledger.engine.readiness import CalculationReadinessValidator
from impactledger.engine.repository import (
    ImpactRecordRepository,
    InMemoryImpactRepository,
    SqlImpactRepository,
)
from impactledger.engine.waterfall import WaterfallResolver
from impactledger.exceptions import MissingData

logger = logging.getLogger(__name__)


# ===================================================================
# EngineService facade
# ===================================================================

# Thread-safe singleton lock
_singleton_lock = threading.Lock()
_singleton_instance: Optional["EngineService"] = None


class EngineService:
    """Unified facade over the impact engine.

    Stores default to in-memory implementations, or SQLAlchemy-backed ones
    when ``config.database_url`` is set. Any store can be injected.

    Attributes:
        config: EngineConfig instance.
        resolver: WaterfallResolver instance.
        allocator: FacilityImpactAllocator instance.
        aggregator: ScopeAggregator instance.
        corporate: CorporateEmissionsCalculator instance.
        classifier: DataQualityClassifier instance.
        readiness: CalculationReadinessValidator instance.
        provenance: ProvenanceTracker instance.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        curated_store: Optional[CuratedFactorStore] = None,
        cache_store: Optional[FactorCacheStore] = None,
        repository: Optional[ImpactRecordRepository] = None,
        external_source: Optional[ExternalFactorSource] = None,
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        """Initialize the engine service facade.

        Args:
            config: Optional engine config. Uses global config if None.
            curated_store: Curated factor store override.
            cache_store: Factor cache store override.
            repository: Impact record repository override.
            external_source: Stage-3 source override.
            session_factory: SQLAlchemy session factory for the SQL stores.
        """
        self.config = config or get_config()
        self.config.validate()

        self._db_engine = None
        if session_factory is None and self.config.database_url:
            self._db_engine = create_db_engine(self.config.database_url)
            init_db(self._db_engine)
            session_factory = sessionmaker(
                autocommit=False, autoflush=False, bind=self._db_engine,
            )

        if session_factory is not None:
            self.curated_store = curated_store or SqlCuratedFactorStore(session_factory)
            self.cache_store = cache_store or SqlFactorCacheStore(session_factory)
            self.repository = repository or SqlImpactRepository(session_factory)
        else:
            self.curated_store = curated_store or InMemoryCuratedFactorStore()
            self.cache_store = cache_store or InMemoryFactorCacheStore()
            self.repository = repository or InMemoryImpactRepository()

        self.external_source = external_source or ExternalFactorSource.from_config(self.config)
        self.provenance = ProvenanceTracker()
        self.classifier = DataQualityClassifier()
        self.resolver = WaterfallResolver.build(
            self.curated_store,
            self.cache_store,
            self.external_source,
            config=self.config,
            provenance=self.provenance,
        )
        self.allocator = FacilityImpactAllocator(provenance=self.provenance)
        self.aggregator = ScopeAggregator(
            self.repository,
            classifier=self.classifier,
            provenance=self.provenance,
            max_workers=self.config.aggregator_max_workers,
        )
        self.corporate = CorporateEmissionsCalculator(
            self.repository, self.aggregator, provenance=self.provenance,
        )
        self.readiness = CalculationReadinessValidator(self.resolver, self.classifier)
        self._started = False

        logger.info(
            "EngineService facade created (stages=%s, external_live=%s)",
            ",".join(self.resolver.stage_names), self.external_source.is_live,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def resolve(self, query: FactorQuery) -> Optional[ResolvedFactor]:
        return self.resolver.resolve(query)

    def resolve_many(self, queries: Sequence[FactorQuery]) -> List[Optional[ResolvedFactor]]:
        return self.resolver.resolve_many(queries)

    def allocate(
        self,
        facility_impacts: FacilityPeriodImpacts,
        product_volume: float,
        product_id: Optional[str] = None,
    ) -> AllocatedImpact:
        return self.allocator.allocate(facility_impacts, product_volume, product_id)

    def allocate_for_facility(
        self,
        facility_id: str,
        product_volume: float,
        product_id: Optional[str] = None,
        period_start: Optional[date] = None,
    ) -> AllocatedImpact:
        """Allocate using stored facility readings.

        Raises:
            MissingData: If no readings exist for the facility and period.
        """
        impacts = self.repository.facility_period_impacts(facility_id, period_start)
        if impacts is None:
            raise MissingData(
                f"No period impacts recorded for facility {facility_id}",
                data_type="facility_period_impacts",
                context={"facility_id": facility_id, "period_start": period_start},
            )
        return self.allocator.allocate(impacts, product_volume, product_id)

    def aggregate_scope3(self, organization_id: str, year: int) -> AggregationResult:
        return self.aggregator.aggregate(organization_id, year)

    def corporate_emissions(self, organization_id: str, year: int) -> CorporateEmissions:
        return self.corporate.calculate(organization_id, year)

    def validate_materials(self, materials: Sequence[MaterialInput]) -> ReadinessReport:
        return self.readiness.validate(materials)

    # ------------------------------------------------------------------
    # Health and metrics
    # ------------------------------------------------------------------

    def get_health(self) -> Dict[str, Any]:
        chain_valid = self.provenance.verify_chain()
        return {
            "status": "healthy" if chain_valid else "degraded",
            "started": self._started,
            "stages": self.resolver.stage_names,
            "external_live": self.external_source.is_live,
            "mock_fallback_enabled": self.config.mock_fallback_enabled,
            "provenance_chain_valid": chain_valid,
            "provenance_entries": self.provenance.entry_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "started": self._started,
            "provenance_entries": self.provenance.entry_count,
            "cache_ttl_seconds": self.config.cache_ttl_seconds,
            "resolver_max_workers": self.config.resolver_max_workers,
        }

    def get_provenance(
        self, operation: Optional[str] = None, limit: int = 100,
    ) -> List[ProvenanceEntry]:
        return self.provenance.get_entries(operation=operation, limit=limit)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def startup(self) -> None:
        """Start the engine service. Safe to call multiple times."""
        if self._started:
            logger.debug("EngineService already started; skipping")
            return

        logger.info("EngineService starting up...")
        removed = self.cache_store.purge_expired()
        if removed:
            logger.info("Purged %d expired factor cache entries", removed)
        self._started = True
        logger.info("EngineService startup complete")

    def shutdown(self) -> None:
        """Shutdown the engine service and release resources."""
        if not self._started:
            return

        if self._db_engine is not None:
            self._db_engine.dispose()
        self._started = False
        logger.info("EngineService shut down")


# ===================================================================
# Thread-safe singleton access
# ===================================================================


def get_engine_service_singleton() -> EngineService:
    """Get or create the process-wide EngineService."""
    global _singleton_instance
    if _singleton_instance is None:
        with _singleton_lock:
            if _singleton_instance is None:
                _singleton_instance = EngineService()
    return _singleton_instance


# ===================================================================
# FastAPI integration
# ===================================================================


def configure_engine_service(
    app: Any,
    config: Optional[EngineConfig] = None,
    service: Optional[EngineService] = None,
) -> EngineService:
    """Configure the engine service on a FastAPI application.

    Creates the EngineService (unless one is given), stores it in
    app.state, mounts the impact API router, and starts the service.

    Args:
        app: FastAPI application instance.
        config: Optional engine config.
        service: Pre-built service, e.g. with injected stores.

    Returns:
        EngineService instance.
    """
    global _singleton_instance

    service = service or EngineService(config=config)

    with _singleton_lock:
        _singleton_instance = service

    app.state.engine_service = service
    app.include_router(get_router())
    logger.info("Impact engine API router mounted")

    service.startup()

    logger.info("Impact engine service configured on app")
    return service


def get_engine_service(app: Any) -> EngineService:
    """Get the EngineService instance from app state.

    Raises:
        RuntimeError: If the engine service is not configured.
    """
    service = getattr(app.state, "engine_service", None)
    if service is None:
        raise RuntimeError(
            "Engine service not configured. "
            "Call configure_engine_service(app) first."
        )
    return service


def get_router() -> Any:
    """Get the impact engine API router."""
    from impactledger.engine.api.router import router
    return router


__all__ = [
    "EngineService",
    "configure_engine_service",
    "get_engine_service",
    "get_engine_service_singleton",
    "get_router",
]

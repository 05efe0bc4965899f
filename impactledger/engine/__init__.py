# -*- coding: utf-8 -*-
"""
ImpactLedger Impact Engine
==========================

Resolution, allocation and aggregation of environmental impact data:

- Three-stage factor waterfall: curated data, 24-hour cache, external
  database with deterministic mock fallback
- Facility impact allocation by production-volume ratio
- Scope 3 aggregation over production logs and corporate overheads, plus
  Scope 1/2 totals for a full corporate inventory
- Data-quality classification of source tags and priority levels
- Calculation readiness checks over material lists
- SHA-256 provenance tracking for audit trails
- Prometheus metrics and a FastAPI REST API
- Thread-safe configuration with IL_ENGINE_ env prefix

Key Components:
    - waterfall: WaterfallResolver and its stages
    - allocation: FacilityImpactAllocator
    - aggregation: ScopeAggregator, CorporateEmissionsCalculator
    - quality: DataQualityClassifier
    - readiness: CalculationReadinessValidator
    - factor_store: curated factor and cache stores
    - external_source: OpenLCA client and mock generator
    - repository: impact record repositories
    - config: EngineConfig with IL_ENGINE_ env prefix
    - setup: EngineService facade

Example:
    >>> from impactledger.engine import EngineService, FactorQuery
    >>> service = EngineService()
    >>> result = service.resolve(FactorQuery(name="oat milk"))
    >>> result.stage, result.data_quality_tag
"""

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from impactledger.engine.config import (
    EngineConfig,
    get_config,
    reset_config,
    set_config,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
from impactledger.engine.models import (
    AggregationResult,
    AllocatedImpact,
    AssessmentStatus,
    CorporateEmissions,
    EmissionScope,
    FacilityPeriodImpacts,
    FactorQuery,
    FleetActivity,
    ImpactCategory,
    ImpactFactor,
    ImpactSourceTag,
    MaterialInput,
    OverheadEntry,
    ProductAssessment,
    ProductionLogEntry,
    QualityAssessment,
    QualityGrade,
    ReadinessReport,
    ResolutionStage,
    ResolvedFactor,
    Scope3Breakdown,
    Scope3Category,
    ScopeActivity,
    ScopeBreakdown,
)
from impactledger.engine.units import BulkQuantity, UnitCount, normalize_to_kg

# ---------------------------------------------------------------------------
# Core engines
# ---------------------------------------------------------------------------
from impactledger.engine.quality import DataQualityClassifier
from impactledger.engine.factor_store import (
    InMemoryCuratedFactorStore,
    InMemoryFactorCacheStore,
    SqlCuratedFactorStore,
    SqlFactorCacheStore,
)
from impactledger.engine.external_source import (
    ExternalFactorSource,
    MockFactorGenerator,
    OpenLCAClient,
)
from impactledger.engine.waterfall import WaterfallResolver
from impactledger.engine.allocation import FacilityImpactAllocator
from impactledger.engine.repository import InMemoryImpactRepository, SqlImpactRepository
from impactledger.engine.aggregation import CorporateEmissionsCalculator, ScopeAggregator
from impactledger.engine.readiness import CalculationReadinessValidator
from impactledger.engine.provenance import ProvenanceTracker

# ---------------------------------------------------------------------------
# Service setup facade
# ---------------------------------------------------------------------------
from impactledger.engine.setup import (
    EngineService,
    configure_engine_service,
    get_engine_service,
)

__all__ = [
    # Configuration
    "EngineConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Models
    "AggregationResult",
    "AllocatedImpact",
    "AssessmentStatus",
    "BulkQuantity",
    "CorporateEmissions",
    "EmissionScope",
    "FacilityPeriodImpacts",
    "FactorQuery",
    "FleetActivity",
    "ImpactCategory",
    "ImpactFactor",
    "ImpactSourceTag",
    "MaterialInput",
    "OverheadEntry",
    "ProductAssessment",
    "ProductionLogEntry",
    "QualityAssessment",
    "QualityGrade",
    "ReadinessReport",
    "ResolutionStage",
    "ResolvedFactor",
    "Scope3Breakdown",
    "Scope3Category",
    "ScopeActivity",
    "ScopeBreakdown",
    "UnitCount",
    "normalize_to_kg",
    # Core engines
    "DataQualityClassifier",
    "InMemoryCuratedFactorStore",
    "InMemoryFactorCacheStore",
    "SqlCuratedFactorStore",
    "SqlFactorCacheStore",
    "ExternalFactorSource",
    "MockFactorGenerator",
    "OpenLCAClient",
    "WaterfallResolver",
    "FacilityImpactAllocator",
    "InMemoryImpactRepository",
    "SqlImpactRepository",
    "ScopeAggregator",
    "CorporateEmissionsCalculator",
    "CalculationReadinessValidator",
    "ProvenanceTracker",
    # Service
    "EngineService",
    "configure_engine_service",
    "get_engine_service",
]

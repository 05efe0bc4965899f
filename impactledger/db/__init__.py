"""
Database module for ImpactLedger
Provides SQLAlchemy models and database utilities
"""

from impactledger.db.base import (
    Base,
    create_db_engine,
    init_db,
    session_scope,
)
from impactledger.db.models import (
    StagingEmissionFactor,
    FactorCacheEntry,
    ProductionLog,
    ProductAssessmentRecord,
    CorporateOverhead,
    FacilityPeriodImpactRecord,
    FacilityActivity,
    FleetActivityRecord,
)

__all__ = [
    "Base",
    "create_db_engine",
    "init_db",
    "session_scope",
    "StagingEmissionFactor",
    "FactorCacheEntry",
    "ProductionLog",
    "ProductAssessmentRecord",
    "CorporateOverhead",
    "FacilityPeriodImpactRecord",
    "FacilityActivity",
    "FleetActivityRecord",
]

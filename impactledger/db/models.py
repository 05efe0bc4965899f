"""
Database models for the ImpactLedger engine stores

Tables:
- Curated (staging) emission factors, global or organisation-scoped
- Persisted factor cache entries for stage 2 of the resolver
- Production logs, product assessments and corporate overheads
- Facility period impacts, facility scope activities and fleet activities
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
)

from impactledger.db.base import Base


class StagingEmissionFactor(Base):
    """Curated impact factor; corrections are inserted as new rows"""

    __tablename__ = "staging_emission_factors"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    category = Column(String(32), nullable=False)
    value = Column(Float, nullable=False)
    reference_unit = Column(String(64), nullable=False, default="kg CO2e/kg")
    source = Column(String(255), nullable=False)
    organization_id = Column(String(36), nullable=True, index=True)  # NULL = global
    is_primary_verified = Column(Boolean, default=False, nullable=False)
    confidence = Column(Float, default=90.0, nullable=False)
    factor_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class FactorCacheEntry(Base):
    """Stage-3 resolution cached for reuse until its TTL lapses"""

    __tablename__ = "factor_cache_entries"

    cache_key = Column(String(512), primary_key=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False)
    ttl_seconds = Column(Integer, nullable=False, default=86400)


class ProductionLog(Base):
    """One production run of a product"""

    __tablename__ = "production_logs"

    id = Column(String(36), primary_key=True)
    organization_id = Column(String(36), nullable=False)
    product_id = Column(String(36), nullable=False)
    facility_id = Column(String(36), nullable=True)
    production_date = Column(Date, nullable=False)
    units_produced = Column(Integer, nullable=True)

    # Bulk measure, informational only
    bulk_volume = Column(Float, nullable=True)
    bulk_unit = Column(String(16), nullable=True)

    __table_args__ = (
        Index("ix_production_logs_org_date", "organization_id", "production_date"),
    )


class ProductAssessmentRecord(Base):
    """Product LCA with the Scope-3-only figure stored on its own"""

    __tablename__ = "product_assessments"

    id = Column(String(36), primary_key=True)
    product_id = Column(String(36), nullable=False, index=True)
    organization_id = Column(String(36), nullable=True)
    status = Column(String(16), nullable=False, default="draft")
    scope3_per_unit = Column(Float, nullable=False)
    scope1_2_per_unit = Column(Float, nullable=False, default=0.0)
    data_quality_tag = Column(String(64), nullable=True)
    completed_at = Column(DateTime, nullable=True)


class CorporateOverhead(Base):
    """Corporate overhead activity with computed emissions"""

    __tablename__ = "corporate_overheads"

    id = Column(String(36), primary_key=True)
    organization_id = Column(String(36), nullable=False)
    year = Column(Integer, nullable=False)
    category = Column(String(64), nullable=False)
    computed_co2e = Column(Float, nullable=False, default=0.0)
    material_type = Column(String(64), nullable=True)
    description = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_corporate_overheads_org_year", "organization_id", "year"),
    )


class FacilityPeriodImpactRecord(Base):
    """Finalised facility readings for a reporting period"""

    __tablename__ = "facility_period_impacts"

    id = Column(String(36), primary_key=True)
    facility_id = Column(String(36), nullable=False, index=True)
    organization_id = Column(String(36), nullable=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    co2e_kg = Column(Float, nullable=False, default=0.0)
    water_litres = Column(Float, nullable=False, default=0.0)
    waste_kg = Column(Float, nullable=False, default=0.0)
    total_volume = Column(Float, nullable=False)
    volume_unit = Column(String(16), nullable=False, default="units")


class FacilityActivity(Base):
    """Scope 1 or Scope 2 activity reading at a facility"""

    __tablename__ = "facility_activities"

    id = Column(String(36), primary_key=True)
    organization_id = Column(String(36), nullable=False, index=True)
    facility_id = Column(String(36), nullable=True)
    scope = Column(String(16), nullable=False)
    quantity = Column(Float, nullable=False)
    emission_factor = Column(Float, nullable=False)
    activity_date = Column(Date, nullable=False)


class FleetActivityRecord(Base):
    """Fleet journey with emissions in tonnes CO2e"""

    __tablename__ = "fleet_activities"

    id = Column(String(36), primary_key=True)
    organization_id = Column(String(36), nullable=False, index=True)
    scope = Column(String(16), nullable=False)
    emissions_tco2e = Column(Float, nullable=False)
    activity_date = Column(Date, nullable=False)

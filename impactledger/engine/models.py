# -*- coding: utf-8 -*-
"""
Impact Engine Data Models

Pydantic v2 data models for the impact resolution and aggregation engine.

Models:
    - Enums: ImpactCategory, ImpactSourceTag, QualityGrade, ResolutionStage,
             Scope3Category, AssessmentStatus, EmissionScope
    - Factors: ImpactFactor, FactorQuery, ResolvedFactor, CacheEntry
    - Allocation: FacilityPeriodImpacts, AllocatedImpact
    - Inputs: ProductionLogEntry, ProductAssessment, OverheadEntry,
              ScopeActivity, FleetActivity
    - Results: Scope3Breakdown, ScopeBreakdown, CorporateEmissions,
               AggregationResult
    - Quality: QualityAssessment, QualitySummary
    - Readiness: MaterialInput, ResolvedMaterial, MissingMaterial,
                 ReadinessReport

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from impactledger.engine.units import BulkQuantity, UnitCount


# =============================================================================
# Enumerations
# =============================================================================


class ImpactCategory(str, Enum):
    """Category a factor is tagged with at write time."""
    INGREDIENT = "ingredient"
    PACKAGING = "packaging"
    ENERGY = "energy"
    TRANSPORT = "transport"
    WASTE = "waste"


class ImpactSourceTag(str, Enum):
    """Normalised data-quality tag."""
    PRIMARY_VERIFIED = "primary_verified"
    SECONDARY_MODELLED = "secondary_modelled"
    HYBRID_PROXY = "hybrid_proxy"


class QualityGrade(str, Enum):
    """Coarse grade derived from confidence."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ResolutionStage(IntEnum):
    """Waterfall stage that produced a factor."""
    CURATED = 1
    CACHE = 2
    EXTERNAL = 3


class Scope3Category(str, Enum):
    """The eight fixed Scope 3 buckets."""
    PRODUCTS = "products"
    BUSINESS_TRAVEL = "business_travel"
    PURCHASED_SERVICES = "purchased_services"
    EMPLOYEE_COMMUTING = "employee_commuting"
    CAPITAL_GOODS = "capital_goods"
    OPERATIONAL_WASTE = "operational_waste"
    DOWNSTREAM_LOGISTICS = "downstream_logistics"
    MARKETING_MATERIALS = "marketing_materials"


class AssessmentStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"


class EmissionScope(str, Enum):
    """Scope label on facility and fleet activity rows."""
    SCOPE_1 = "Scope 1"
    SCOPE_2 = "Scope 2"
    SCOPE_3_CAT_6 = "Scope 3 Cat 6"


# =============================================================================
# Helpers
# =============================================================================


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _new_id() -> str:
    return str(uuid.uuid4())


def normalize_name(name: str) -> str:
    """Lower-case a material name and collapse runs of whitespace."""
    return " ".join(name.lower().split())


# =============================================================================
# Factor Models
# =============================================================================


class ImpactFactor(BaseModel):
    """A curated impact coefficient, e.g. kg CO2e per kg of material.

    Rows are never edited in place; a correction is a new row and the newest
    row wins among otherwise equal matches. Curated confidence is floored at
    80, the confidence of a live external factor.
    """
    factor_id: str = Field(default_factory=_new_id, description="Unique factor ID")
    name: str = Field(..., description="Material or activity name")
    category: ImpactCategory = Field(..., description="Factor category")
    value: float = Field(..., ge=0, description="Coefficient value")
    reference_unit: str = Field(default="kg CO2e/kg", description="Unit of the coefficient")
    source: str = Field(..., description="Source identifier (e.g. DEFRA 2025, supplier EPD)")
    organization_id: Optional[str] = Field(
        None, description="Owning organisation, None for global factors",
    )
    is_primary_verified: bool = Field(
        default=False, description="Stored verification flag",
    )
    confidence: float = Field(
        default=90.0, ge=80, le=100, description="Declared confidence",
    )
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject blank names."""
        if not v or not v.strip():
            raise ValueError("name must not be empty")
        return v


class FactorQuery(BaseModel):
    """A single resolver lookup."""
    name: str = Field(..., description="Material or activity name")
    category: Optional[ImpactCategory] = Field(None, description="Optional category filter")
    organization_id: Optional[str] = Field(None, description="Requesting organisation")

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject blank names."""
        if not v or not v.strip():
            raise ValueError("name must not be empty")
        return v

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.name)

    def cache_key(self) -> str:
        """Normalised cache key: name, category and organisation scope."""
        category = self.category.value if self.category else "*"
        scope = self.organization_id or "global"
        return f"{self.normalized_name}|{category}|{scope}"


class ResolvedFactor(BaseModel):
    """Outcome of one waterfall resolution."""
    query: FactorQuery = Field(..., description="Query that produced this result")
    name: str = Field(..., description="Matched factor or process name")
    category: Optional[ImpactCategory] = Field(None, description="Factor category")
    value: float = Field(..., ge=0, description="Coefficient value")
    reference_unit: str = Field(default="kg CO2e/kg", description="Unit of the coefficient")
    source: str = Field(..., description="Source identifier")
    stage: ResolutionStage = Field(..., description="Stage that produced the result")
    data_quality_tag: ImpactSourceTag = Field(..., description="Normalised quality tag")
    quality_grade: QualityGrade = Field(..., description="Coarse quality grade")
    confidence: float = Field(..., ge=0, le=100, description="Numeric confidence")
    resolved_at: datetime = Field(default_factory=_utcnow, description="Resolution timestamp")
    factor_id: Optional[str] = Field(None, description="Curated factor or process ID")
    is_mock: bool = Field(default=False, description="True for mock-generated factors")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Source metadata")
    provenance_hash: str = Field(default="", description="SHA-256 hash for audit trail")

    model_config = {"extra": "forbid"}


class CacheEntry(BaseModel):
    """A persisted stage-2 record."""
    cache_key: str = Field(..., description="Normalised query key")
    payload: ResolvedFactor = Field(..., description="Stage-3 result being cached")
    created_at: datetime = Field(default_factory=_utcnow, description="Write timestamp")
    ttl_seconds: int = Field(default=86400, gt=0, description="Time-to-live in seconds")

    model_config = {"extra": "forbid"}

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once the entry is older than its TTL."""
        now = now or datetime.now(timezone.utc)
        return now - self.created_at > timedelta(seconds=self.ttl_seconds)


# =============================================================================
# Allocation Models
# =============================================================================


class FacilityPeriodImpacts(BaseModel):
    """A facility's measured impacts and total production for one period.

    Volumes are not range-checked here; the allocator rejects invalid
    volumes with a ValidationError before doing any arithmetic.
    """
    facility_id: str = Field(..., description="Facility identifier")
    organization_id: Optional[str] = Field(None, description="Owning organisation")
    period_start: date = Field(..., description="Reporting period start")
    period_end: date = Field(..., description="Reporting period end")
    co2e_kg: float = Field(default=0.0, ge=0, description="Total CO2e in kg")
    water_litres: float = Field(default=0.0, ge=0, description="Total water in litres")
    waste_kg: float = Field(default=0.0, ge=0, description="Total waste in kg")
    total_volume: float = Field(..., description="Total production volume for the period")
    volume_unit: str = Field(default="units", description="Unit of the production volume")

    model_config = {"extra": "forbid", "frozen": True}


class AllocatedImpact(BaseModel):
    """Per-unit impacts allocated to one product from one facility period."""
    product_id: Optional[str] = Field(None, description="Product receiving the allocation")
    facility_id: str = Field(..., description="Source facility")
    period_start: date = Field(..., description="Reporting period start")
    period_end: date = Field(..., description="Reporting period end")
    co2e_per_unit: float = Field(..., description="Allocated CO2e per unit (kg)")
    water_per_unit: float = Field(..., description="Allocated water per unit (litres)")
    waste_per_unit: float = Field(..., description="Allocated waste per unit (kg)")
    allocation_ratio: float = Field(..., ge=0, le=1, description="Product / facility volume")
    product_volume: float = Field(..., gt=0, description="Product production volume")
    total_volume: float = Field(..., gt=0, description="Facility production volume")
    provenance: str = Field(..., description="Human-readable allocation provenance")
    provenance_hash: str = Field(default="", description="SHA-256 hash for audit trail")
    calculated_at: datetime = Field(default_factory=_utcnow, description="Calculation timestamp")

    model_config = {"extra": "forbid"}

    def allocated_totals(self) -> Dict[str, float]:
        """Absolute quantities allocated to the product."""
        return {
            "co2e_kg": self.co2e_per_unit * self.product_volume,
            "water_litres": self.water_per_unit * self.product_volume,
            "waste_kg": self.waste_per_unit * self.product_volume,
        }


# =============================================================================
# Aggregation Input Models
# =============================================================================


class ProductionLogEntry(BaseModel):
    """One production run. Only ``units_produced`` feeds the aggregator."""
    entry_id: str = Field(default_factory=_new_id, description="Unique entry ID")
    organization_id: str = Field(..., description="Owning organisation")
    product_id: str = Field(..., description="Product produced")
    facility_id: Optional[str] = Field(None, description="Producing facility")
    production_date: date = Field(..., description="Production date")
    units_produced: Optional[UnitCount] = Field(
        None, ge=0, description="Finished items produced",
    )
    bulk_volume: Optional[BulkQuantity] = Field(
        None, description="Bulk volume produced, informational only",
    )

    model_config = {"extra": "forbid"}


class ProductAssessment(BaseModel):
    """A product LCA assessment.

    ``scope3_per_unit`` is stored on its own and is the only figure the
    aggregator reads. ``scope1_2_per_unit`` is the product's share of its
    own facility emissions, already counted in Scope 1/2.
    """
    assessment_id: str = Field(default_factory=_new_id, description="Unique assessment ID")
    product_id: str = Field(..., description="Assessed product")
    organization_id: Optional[str] = Field(None, description="Owning organisation")
    status: AssessmentStatus = Field(default=AssessmentStatus.DRAFT, description="Lifecycle status")
    scope3_per_unit: float = Field(..., ge=0, description="Scope-3-only kg CO2e per unit")
    scope1_2_per_unit: float = Field(
        default=0.0, ge=0, description="Own-facility Scope 1/2 kg CO2e per unit",
    )
    data_quality_tag: Optional[str] = Field(None, description="Source tag or label")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")

    model_config = {"extra": "forbid"}

    @property
    def total_per_unit(self) -> float:
        return self.scope3_per_unit + self.scope1_2_per_unit


class OverheadEntry(BaseModel):
    """A corporate overhead activity with computed emissions."""
    entry_id: str = Field(default_factory=_new_id, description="Unique entry ID")
    organization_id: str = Field(..., description="Owning organisation")
    year: int = Field(..., description="Reporting year")
    category: str = Field(..., description="Stored category label")
    computed_co2e: float = Field(..., ge=0, description="Computed kg CO2e")
    material_type: Optional[str] = Field(None, description="Material type, if any")
    description: Optional[str] = Field(None, description="Free-text description")

    model_config = {"extra": "forbid"}


class ScopeActivity(BaseModel):
    """A facility activity reading contributing to Scope 1 or Scope 2."""
    activity_id: str = Field(default_factory=_new_id, description="Unique activity ID")
    organization_id: str = Field(..., description="Owning organisation")
    facility_id: Optional[str] = Field(None, description="Facility")
    scope: EmissionScope = Field(..., description="Scope 1 or Scope 2")
    quantity: float = Field(..., ge=0, description="Activity quantity")
    emission_factor: float = Field(..., ge=0, description="kg CO2e per activity unit")
    activity_date: date = Field(..., description="Activity date")

    model_config = {"extra": "forbid"}

    @property
    def co2e_kg(self) -> float:
        return self.quantity * self.emission_factor


class FleetActivity(BaseModel):
    """A fleet journey with emissions already computed in tonnes."""
    activity_id: str = Field(default_factory=_new_id, description="Unique activity ID")
    organization_id: str = Field(..., description="Owning organisation")
    scope: EmissionScope = Field(..., description="Scope 1, Scope 2 or grey fleet")
    emissions_tco2e: float = Field(..., ge=0, description="Emissions in tonnes CO2e")
    activity_date: date = Field(..., description="Journey date")

    model_config = {"extra": "forbid"}

    @property
    def co2e_kg(self) -> float:
        return self.emissions_tco2e * 1000.0


# =============================================================================
# Quality Models
# =============================================================================


class QualityAssessment(BaseModel):
    """Classifier output for one source tag or priority."""
    tag: ImpactSourceTag = Field(..., description="Normalised tag")
    confidence: float = Field(..., ge=0, le=100, description="Numeric confidence")
    grade: QualityGrade = Field(..., description="Coarse grade")
    source_label: str = Field(..., description="Input as received")
    recognised: bool = Field(default=True, description="False for unrecognised tags")

    model_config = {"extra": "forbid"}


class QualitySummary(BaseModel):
    """Weighted confidence over a set of classified contributions."""
    weighted_confidence: float = Field(default=0.0, description="Weighted mean confidence")
    grade: QualityGrade = Field(default=QualityGrade.LOW, description="Grade of the mean")
    counts_by_tag: Dict[str, int] = Field(default_factory=dict, description="Items per tag")
    total_weight: float = Field(default=0.0, description="Sum of weights")

    model_config = {"extra": "forbid"}


# =============================================================================
# Result Models
# =============================================================================


class Scope3Breakdown(BaseModel):
    """Scope 3 kg CO2e by category. ``total`` is always derived."""
    products: float = Field(default=0.0, ge=0)
    business_travel: float = Field(default=0.0, ge=0)
    purchased_services: float = Field(default=0.0, ge=0)
    employee_commuting: float = Field(default=0.0, ge=0)
    capital_goods: float = Field(default=0.0, ge=0)
    operational_waste: float = Field(default=0.0, ge=0)
    downstream_logistics: float = Field(default=0.0, ge=0)
    marketing_materials: float = Field(default=0.0, ge=0)

    # Dumped output carries the computed total; accept it back on re-validation.
    model_config = {"extra": "ignore"}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> float:
        return sum(getattr(self, category.value) for category in Scope3Category)

    def add(self, category: Scope3Category, co2e_kg: float) -> None:
        """Accumulate a non-negative amount into one bucket."""
        if co2e_kg < 0:
            raise ValueError(f"negative contribution to {category.value}: {co2e_kg}")
        key = Scope3Category(category).value
        setattr(self, key, getattr(self, key) + co2e_kg)

    def merge(self, other: Scope3Breakdown) -> Scope3Breakdown:
        """Return a new breakdown summing both operands bucket by bucket."""
        return Scope3Breakdown(**{
            category.value: getattr(self, category.value) + getattr(other, category.value)
            for category in Scope3Category
        })

    def as_dict(self) -> Dict[str, float]:
        data = {category.value: getattr(self, category.value) for category in Scope3Category}
        data["total"] = self.total
        return data


class ScopeBreakdown(BaseModel):
    """Scope 1, 2 and 3 totals in kg CO2e."""
    scope1: float = Field(default=0.0, ge=0)
    scope2: float = Field(default=0.0, ge=0)
    scope3: Scope3Breakdown = Field(default_factory=Scope3Breakdown)

    model_config = {"extra": "ignore"}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> float:
        return self.scope1 + self.scope2 + self.scope3.total


class AggregationResult(BaseModel):
    """Scope 3 breakdown for an organisation and year, with run notes."""
    organization_id: str = Field(..., description="Organisation")
    year: int = Field(..., description="Reporting year")
    breakdown: Scope3Breakdown = Field(default_factory=Scope3Breakdown)
    skipped_entries: List[str] = Field(
        default_factory=list, description="Production entries skipped for lack of units",
    )
    missing_assessments: List[str] = Field(
        default_factory=list, description="Products with no completed assessment",
    )
    product_quality: QualitySummary = Field(
        default_factory=QualitySummary, description="Quality of the product stream",
    )
    notes: List[str] = Field(default_factory=list, description="Classification notes")
    provenance_hash: str = Field(default="", description="SHA-256 hash for audit trail")
    calculated_at: datetime = Field(default_factory=_utcnow, description="Calculation timestamp")

    model_config = {"extra": "forbid"}


class CorporateEmissions(BaseModel):
    """Full Scope 1/2/3 inventory for an organisation and year."""
    organization_id: str = Field(..., description="Organisation")
    year: int = Field(..., description="Reporting year")
    breakdown: ScopeBreakdown = Field(default_factory=ScopeBreakdown)
    provenance_hash: str = Field(default="", description="SHA-256 hash for audit trail")

    model_config = {"extra": "ignore"}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_data(self) -> bool:
        return self.breakdown.total > 0


# =============================================================================
# Readiness Models
# =============================================================================


class MaterialInput(BaseModel):
    """A material line awaiting a factor."""
    material_id: str = Field(default_factory=_new_id, description="Material line ID")
    name: str = Field(..., description="Material name")
    quantity: float = Field(..., ge=0, description="Quantity in ``unit``")
    unit: str = Field(default="kg", description="Quantity unit")
    category: Optional[ImpactCategory] = Field(None, description="Known category")
    organization_id: Optional[str] = Field(None, description="Requesting organisation")

    model_config = {"extra": "forbid"}


class ResolvedMaterial(BaseModel):
    material: MaterialInput
    factor: ResolvedFactor
    quantity_kg: float
    co2e_kg: float

    model_config = {"extra": "forbid"}


class MissingMaterial(BaseModel):
    material_id: str
    name: str
    reason: str

    model_config = {"extra": "forbid"}


class ReadinessReport(BaseModel):
    """Whether a set of materials can be calculated, and what is missing."""
    valid: bool = Field(..., description="True when every material resolved")
    total_materials: int = Field(..., ge=0)
    resolved: List[ResolvedMaterial] = Field(default_factory=list)
    missing: List[MissingMaterial] = Field(default_factory=list)
    total_co2e_kg: float = Field(default=0.0, ge=0)
    quality: QualitySummary = Field(default_factory=QualitySummary)
    summary: str = Field(default="", description="Human-readable summary")

    model_config = {"extra": "forbid"}


__all__ = [
    # Enumerations
    "ImpactCategory",
    "ImpactSourceTag",
    "QualityGrade",
    "ResolutionStage",
    "Scope3Category",
    "AssessmentStatus",
    "EmissionScope",
    # Factor models
    "ImpactFactor",
    "FactorQuery",
    "normalize_name",
    "ResolvedFactor",
    "CacheEntry",
    # Allocation models
    "FacilityPeriodImpacts",
    "AllocatedImpact",
    # Input models
    "ProductionLogEntry",
    "ProductAssessment",
    "OverheadEntry",
    "ScopeActivity",
    "FleetActivity",
    # Quality models
    "QualityAssessment",
    "QualitySummary",
    # Result models
    "Scope3Breakdown",
    "ScopeBreakdown",
    "AggregationResult",
    "CorporateEmissions",
    # Readiness models
    "MaterialInput",
    "ResolvedMaterial",
    "MissingMaterial",
    "ReadinessReport",
]

# -*- coding: utf-8 -*-
"""
Impact Record Repository

Read access to the persisted records the aggregator and allocator consume:
production logs, product assessments, corporate overheads, facility
period impacts, and facility/fleet activity for Scope 1 and 2. These
records are owned by other subsystems; the engine only reads them. The
``add_*`` methods exist for seeding and tests.

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from impactledger.db.base import session_scope
from impactledger.db.models import (
    CorporateOverhead,
    FacilityActivity,
    FacilityPeriodImpactRecord,
    FleetActivityRecord,
    ProductAssessmentRecord,
    ProductionLog,
)
from impactledger.engine.models import (
    AssessmentStatus,
    EmissionScope,
    FacilityPeriodImpacts,
    FleetActivity,
    OverheadEntry,
    ProductAssessment,
    ProductionLogEntry,
    ScopeActivity,
)
from impactledger.engine.units import BulkQuantity, UnitCount
from impactledger.exceptions import DataAccessError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def year_bounds(year: int) -> tuple:
    """First and last day of a calendar year."""
    return date(year, 1, 1), date(year, 12, 31)


def _completed_on_or_before(assessment: ProductAssessment, as_of: date) -> bool:
    return (
        assessment.status == AssessmentStatus.COMPLETED
        and assessment.completed_at is not None
        and assessment.completed_at.date() <= as_of
    )


class ImpactRecordRepository(ABC):
    """Read interface over upstream impact records."""

    @abstractmethod
    def production_logs(self, organization_id: str, year: int) -> List[ProductionLogEntry]:
        """Production entries dated within ``year``."""

    @abstractmethod
    def latest_completed_assessment(
        self, product_id: str, as_of: date,
    ) -> Optional[ProductAssessment]:
        """Most recently completed assessment on or before ``as_of``."""

    @abstractmethod
    def overhead_entries(self, organization_id: str, year: int) -> List[OverheadEntry]:
        """Corporate overhead entries for ``year``."""

    @abstractmethod
    def scope_activities(self, organization_id: str, year: int) -> List[ScopeActivity]:
        """Scope 1 and 2 facility activity dated within ``year``."""

    @abstractmethod
    def fleet_activities(self, organization_id: str, year: int) -> List[FleetActivity]:
        """Fleet activity dated within ``year``."""

    @abstractmethod
    def facility_period_impacts(
        self, facility_id: str, period_start: Optional[date] = None,
    ) -> Optional[FacilityPeriodImpacts]:
        """Facility readings for the period starting ``period_start``, or
        the latest period when omitted."""


# =============================================================================
# In-memory implementation
# =============================================================================


class InMemoryImpactRepository(ImpactRecordRepository):
    """List-backed repository for tests and embedded use."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._production: List[ProductionLogEntry] = []
        self._assessments: List[ProductAssessment] = []
        self._overheads: List[OverheadEntry] = []
        self._scope_activities: List[ScopeActivity] = []
        self._fleet: List[FleetActivity] = []
        self._facility_periods: List[FacilityPeriodImpacts] = []

    # -- seeding -------------------------------------------------------------

    def add_production_log(self, entry: ProductionLogEntry) -> None:
        with self._lock:
            self._production.append(entry)

    def add_assessment(self, assessment: ProductAssessment) -> None:
        with self._lock:
            self._assessments.append(assessment)

    def add_overhead(self, entry: OverheadEntry) -> None:
        with self._lock:
            self._overheads.append(entry)

    def add_scope_activity(self, activity: ScopeActivity) -> None:
        with self._lock:
            self._scope_activities.append(activity)

    def add_fleet_activity(self, activity: FleetActivity) -> None:
        with self._lock:
            self._fleet.append(activity)

    def add_facility_period(self, impacts: FacilityPeriodImpacts) -> None:
        with self._lock:
            self._facility_periods.append(impacts)

    # -- reads ---------------------------------------------------------------

    def production_logs(self, organization_id: str, year: int) -> List[ProductionLogEntry]:
        start, end = year_bounds(year)
        with self._lock:
            return [
                e for e in self._production
                if e.organization_id == organization_id and start <= e.production_date <= end
            ]

    def latest_completed_assessment(
        self, product_id: str, as_of: date,
    ) -> Optional[ProductAssessment]:
        with self._lock:
            candidates = [
                a for a in self._assessments
                if a.product_id == product_id and _completed_on_or_before(a, as_of)
            ]
        if not candidates:
            return None
        return max(candidates, key=lambda a: a.completed_at)

    def overhead_entries(self, organization_id: str, year: int) -> List[OverheadEntry]:
        with self._lock:
            return [
                e for e in self._overheads
                if e.organization_id == organization_id and e.year == year
            ]

    def scope_activities(self, organization_id: str, year: int) -> List[ScopeActivity]:
        start, end = year_bounds(year)
        with self._lock:
            return [
                a for a in self._scope_activities
                if a.organization_id == organization_id and start <= a.activity_date <= end
            ]

    def fleet_activities(self, organization_id: str, year: int) -> List[FleetActivity]:
        start, end = year_bounds(year)
        with self._lock:
            return [
                a for a in self._fleet
                if a.organization_id == organization_id and start <= a.activity_date <= end
            ]

    def facility_period_impacts(
        self, facility_id: str, period_start: Optional[date] = None,
    ) -> Optional[FacilityPeriodImpacts]:
        with self._lock:
            periods = [p for p in self._facility_periods if p.facility_id == facility_id]
        if period_start is not None:
            periods = [p for p in periods if p.period_start == period_start]
        if not periods:
            return None
        return max(periods, key=lambda p: p.period_start)


# =============================================================================
# SQLAlchemy implementation
# =============================================================================


class SqlImpactRepository(ImpactRecordRepository):
    """Repository over the ImpactLedger tables."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def _fetch(self, stmt, table: str, convert: Callable[[Any], T]) -> List[T]:
        try:
            with session_scope(self._session_factory) as session:
                # Convert before commit expires the loaded rows
                return [convert(row) for row in session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise DataAccessError(
                f"Failed to read {table}",
                data_source=table,
                operation="select",
                cause=e,
            ) from e

    def _store(self, row, table: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.add(row)
        except SQLAlchemyError as e:
            raise DataAccessError(
                f"Failed to insert into {table}",
                data_source=table,
                operation="insert",
                cause=e,
            ) from e

    # -- seeding -------------------------------------------------------------

    def add_production_log(self, entry: ProductionLogEntry) -> None:
        self._store(ProductionLog(
            id=entry.entry_id,
            organization_id=entry.organization_id,
            product_id=entry.product_id,
            facility_id=entry.facility_id,
            production_date=entry.production_date,
            units_produced=entry.units_produced,
            bulk_volume=entry.bulk_volume.value if entry.bulk_volume else None,
            bulk_unit=entry.bulk_volume.unit if entry.bulk_volume else None,
        ), ProductionLog.__tablename__)

    def add_assessment(self, assessment: ProductAssessment) -> None:
        completed_at = assessment.completed_at
        if completed_at is not None and completed_at.tzinfo is not None:
            completed_at = completed_at.astimezone(timezone.utc).replace(tzinfo=None)
        self._store(ProductAssessmentRecord(
            id=assessment.assessment_id,
            product_id=assessment.product_id,
            organization_id=assessment.organization_id,
            status=assessment.status.value,
            scope3_per_unit=assessment.scope3_per_unit,
            scope1_2_per_unit=assessment.scope1_2_per_unit,
            data_quality_tag=assessment.data_quality_tag,
            completed_at=completed_at,
        ), ProductAssessmentRecord.__tablename__)

    def add_overhead(self, entry: OverheadEntry) -> None:
        self._store(CorporateOverhead(
            id=entry.entry_id,
            organization_id=entry.organization_id,
            year=entry.year,
            category=entry.category,
            computed_co2e=entry.computed_co2e,
            material_type=entry.material_type,
            description=entry.description,
        ), CorporateOverhead.__tablename__)

    def add_scope_activity(self, activity: ScopeActivity) -> None:
        self._store(FacilityActivity(
            id=activity.activity_id,
            organization_id=activity.organization_id,
            facility_id=activity.facility_id,
            scope=activity.scope.value,
            quantity=activity.quantity,
            emission_factor=activity.emission_factor,
            activity_date=activity.activity_date,
        ), FacilityActivity.__tablename__)

    def add_fleet_activity(self, activity: FleetActivity) -> None:
        self._store(FleetActivityRecord(
            id=activity.activity_id,
            organization_id=activity.organization_id,
            scope=activity.scope.value,
            emissions_tco2e=activity.emissions_tco2e,
            activity_date=activity.activity_date,
        ), FleetActivityRecord.__tablename__)

    def add_facility_period(self, impacts: FacilityPeriodImpacts) -> None:
        self._store(FacilityPeriodImpactRecord(
            id=f"{impacts.facility_id}:{impacts.period_start.isoformat()}",
            facility_id=impacts.facility_id,
            organization_id=impacts.organization_id,
            period_start=impacts.period_start,
            period_end=impacts.period_end,
            co2e_kg=impacts.co2e_kg,
            water_litres=impacts.water_litres,
            waste_kg=impacts.waste_kg,
            total_volume=impacts.total_volume,
            volume_unit=impacts.volume_unit,
        ), FacilityPeriodImpactRecord.__tablename__)

    # -- reads ---------------------------------------------------------------

    def production_logs(self, organization_id: str, year: int) -> List[ProductionLogEntry]:
        start, end = year_bounds(year)
        return self._fetch(
            select(ProductionLog)
            .where(ProductionLog.organization_id == organization_id)
            .where(ProductionLog.production_date.between(start, end))
            .order_by(ProductionLog.production_date),
            ProductionLog.__tablename__,
            self._to_production_entry,
        )

    def latest_completed_assessment(
        self, product_id: str, as_of: date,
    ) -> Optional[ProductAssessment]:
        cutoff = datetime(as_of.year, as_of.month, as_of.day, 23, 59, 59, 999999)
        rows = self._fetch(
            select(ProductAssessmentRecord)
            .where(ProductAssessmentRecord.product_id == product_id)
            .where(ProductAssessmentRecord.status == AssessmentStatus.COMPLETED.value)
            .where(ProductAssessmentRecord.completed_at.is_not(None))
            .where(ProductAssessmentRecord.completed_at <= cutoff)
            .order_by(ProductAssessmentRecord.completed_at.desc())
            .limit(1),
            ProductAssessmentRecord.__tablename__,
            self._to_assessment,
        )
        return rows[0] if rows else None

    def overhead_entries(self, organization_id: str, year: int) -> List[OverheadEntry]:
        return self._fetch(
            select(CorporateOverhead)
            .where(CorporateOverhead.organization_id == organization_id)
            .where(CorporateOverhead.year == year),
            CorporateOverhead.__tablename__,
            lambda row: OverheadEntry(
                entry_id=row.id,
                organization_id=row.organization_id,
                year=row.year,
                category=row.category,
                computed_co2e=row.computed_co2e,
                material_type=row.material_type,
                description=row.description,
            ),
        )

    def scope_activities(self, organization_id: str, year: int) -> List[ScopeActivity]:
        start, end = year_bounds(year)
        return self._fetch(
            select(FacilityActivity)
            .where(FacilityActivity.organization_id == organization_id)
            .where(FacilityActivity.activity_date.between(start, end)),
            FacilityActivity.__tablename__,
            lambda row: ScopeActivity(
                activity_id=row.id,
                organization_id=row.organization_id,
                facility_id=row.facility_id,
                scope=EmissionScope(row.scope),
                quantity=row.quantity,
                emission_factor=row.emission_factor,
                activity_date=row.activity_date,
            ),
        )

    def fleet_activities(self, organization_id: str, year: int) -> List[FleetActivity]:
        start, end = year_bounds(year)
        return self._fetch(
            select(FleetActivityRecord)
            .where(FleetActivityRecord.organization_id == organization_id)
            .where(FleetActivityRecord.activity_date.between(start, end)),
            FleetActivityRecord.__tablename__,
            lambda row: FleetActivity(
                activity_id=row.id,
                organization_id=row.organization_id,
                scope=EmissionScope(row.scope),
                emissions_tco2e=row.emissions_tco2e,
                activity_date=row.activity_date,
            ),
        )

    def facility_period_impacts(
        self, facility_id: str, period_start: Optional[date] = None,
    ) -> Optional[FacilityPeriodImpacts]:
        stmt = select(FacilityPeriodImpactRecord).where(
            FacilityPeriodImpactRecord.facility_id == facility_id,
        )
        if period_start is not None:
            stmt = stmt.where(FacilityPeriodImpactRecord.period_start == period_start)
        rows = self._fetch(
            stmt.order_by(FacilityPeriodImpactRecord.period_start.desc()).limit(1),
            FacilityPeriodImpactRecord.__tablename__,
            lambda row: FacilityPeriodImpacts(
                facility_id=row.facility_id,
                organization_id=row.organization_id,
                period_start=row.period_start,
                period_end=row.period_end,
                co2e_kg=row.co2e_kg,
                water_litres=row.water_litres,
                waste_kg=row.waste_kg,
                total_volume=row.total_volume,
                volume_unit=row.volume_unit,
            ),
        )
        return rows[0] if rows else None

    # -- converters ----------------------------------------------------------

    @staticmethod
    def _to_production_entry(row: ProductionLog) -> ProductionLogEntry:
        bulk = None
        if row.bulk_volume is not None and row.bulk_unit:
            bulk = BulkQuantity(value=row.bulk_volume, unit=row.bulk_unit)
        units = UnitCount(row.units_produced) if row.units_produced is not None else None
        return ProductionLogEntry(
            entry_id=row.id,
            organization_id=row.organization_id,
            product_id=row.product_id,
            facility_id=row.facility_id,
            production_date=row.production_date,
            units_produced=units,
            bulk_volume=bulk,
        )

    @staticmethod
    def _to_assessment(row: ProductAssessmentRecord) -> ProductAssessment:
        return ProductAssessment(
            assessment_id=row.id,
            product_id=row.product_id,
            organization_id=row.organization_id,
            status=AssessmentStatus(row.status),
            scope3_per_unit=row.scope3_per_unit,
            scope1_2_per_unit=row.scope1_2_per_unit,
            data_quality_tag=row.data_quality_tag,
            completed_at=row.completed_at.replace(tzinfo=timezone.utc),
        )


__all__ = [
    "ImpactRecordRepository",
    "InMemoryImpactRepository",
    "SqlImpactRepository",
    "year_bounds",
]

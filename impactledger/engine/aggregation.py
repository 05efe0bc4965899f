# -*- coding: utf-8 -*-
"""
Scope Aggregator

Builds an organisation's Scope 3 breakdown for a calendar year from two
independent streams:

- Product stream: each production-log entry contributes
  ``assessment.scope3_per_unit * entry.units_produced`` to ``products``,
  using the product's most recently completed assessment as of the year
  end. Only the Scope-3-only figure is read; the product's own facility
  Scope 1/2 share is counted under Scope 1/2 and never here. Bulk volume
  is never used. Entries without a unit count are skipped and reported.
- Overhead stream: corporate overhead entries are mapped onto the other
  seven buckets. Grey-fleet journeys (Scope 3 Cat 6) are added to
  ``business_travel``.

``CorporateEmissionsCalculator`` adds Scope 1 and Scope 2 from facility
activity and fleet records for a full inventory.

Example:
    >>> aggregator = ScopeAggregator(repository)
    >>> result = aggregator.aggregate("org-1", 2025)
    >>> result.breakdown.products, result.breakdown.total

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from impactledger.engine.categories import classify_overhead
from impactledger.engine.metrics import record_aggregation, record_skipped_entry
from impactledger.engine.models import (
    AggregationResult,
    CorporateEmissions,
    EmissionScope,
    ProductAssessment,
    ProductionLogEntry,
    QualityAssessment,
    Scope3Breakdown,
    Scope3Category,
    ScopeBreakdown,
)
from impactledger.engine.provenance import ProvenanceTracker
from impactledger.engine.quality import DataQualityClassifier
from impactledger.engine.repository import ImpactRecordRepository, year_bounds

logger = logging.getLogger(__name__)


@dataclass
class _ProductPartial:
    """Per-worker partial sum of the product stream."""
    breakdown: Scope3Breakdown = field(default_factory=Scope3Breakdown)
    missing: List[str] = field(default_factory=list)
    quality: List[Tuple[QualityAssessment, float]] = field(default_factory=list)


class _AssessmentLookup:
    """Memoises assessment reads for one aggregation run."""

    def __init__(self, repository: ImpactRecordRepository, as_of: date) -> None:
        self._repository = repository
        self._as_of = as_of
        self._memo: Dict[str, Optional[ProductAssessment]] = {}
        self._lock = threading.Lock()

    def get(self, product_id: str) -> Optional[ProductAssessment]:
        with self._lock:
            if product_id in self._memo:
                return self._memo[product_id]
        assessment = self._repository.latest_completed_assessment(product_id, self._as_of)
        with self._lock:
            self._memo[product_id] = assessment
        return assessment


class ScopeAggregator:
    """Scope 3 aggregation for one organisation and year."""

    def __init__(
        self,
        repository: ImpactRecordRepository,
        classifier: Optional[DataQualityClassifier] = None,
        provenance: Optional[ProvenanceTracker] = None,
        max_workers: int = 1,
    ) -> None:
        self._repository = repository
        self._classifier = classifier or DataQualityClassifier()
        self._provenance = provenance
        self.max_workers = max(1, max_workers)

    def aggregate_scope3(self, organization_id: str, year: int) -> Scope3Breakdown:
        """Scope 3 breakdown only."""
        return self.aggregate(organization_id, year).breakdown

    def aggregate(self, organization_id: str, year: int) -> AggregationResult:
        """Aggregate both streams into a Scope 3 breakdown with run notes."""
        start = time.monotonic()
        _, year_end = year_bounds(year)
        result = AggregationResult(organization_id=organization_id, year=year)

        # Product stream
        countable: List[ProductionLogEntry] = []
        for entry in self._repository.production_logs(organization_id, year):
            if not entry.units_produced:
                logger.info(
                    "Skipping production entry %s (product %s, %s): no units produced",
                    entry.entry_id, entry.product_id, entry.production_date,
                )
                record_skipped_entry()
                result.skipped_entries.append(entry.entry_id)
                continue
            countable.append(entry)

        product_partial = self._product_stream(countable, year_end)
        breakdown = product_partial.breakdown
        result.missing_assessments = list(dict.fromkeys(product_partial.missing))
        for product_id in result.missing_assessments:
            logger.info(
                "Product %s has no completed assessment as of %s; no product contribution",
                product_id, year_end,
            )
        result.product_quality = self._classifier.summarize(product_partial.quality)

        # Overhead stream
        for overhead in self._repository.overhead_entries(organization_id, year):
            bucket, recognised = classify_overhead(overhead.category, overhead.material_type)
            if not recognised:
                result.notes.append(
                    f"Overhead entry {overhead.entry_id} has unrecognised category "
                    f"'{overhead.category}'; counted as {bucket.value}"
                )
            breakdown.add(bucket, overhead.computed_co2e)

        for activity in self._repository.fleet_activities(organization_id, year):
            if activity.scope == EmissionScope.SCOPE_3_CAT_6:
                breakdown.add(Scope3Category.BUSINESS_TRAVEL, activity.co2e_kg)

        result.breakdown = breakdown
        if self._provenance is not None:
            result.provenance_hash = self._provenance.record(
                operation="aggregate_scope3",
                subject_id=f"{organization_id}:{year}",
                payload={
                    "breakdown": breakdown.as_dict(),
                    "skipped_entries": result.skipped_entries,
                    "missing_assessments": result.missing_assessments,
                },
            )

        duration = time.monotonic() - start
        record_aggregation("scope3", duration)
        logger.info(
            "Aggregated Scope 3 for %s/%d: total=%.3f kg CO2e "
            "(%d entries, %d skipped, %d products without assessment) in %.3fs",
            organization_id, year, breakdown.total, len(countable),
            len(result.skipped_entries), len(result.missing_assessments), duration,
        )
        return result

    def _product_stream(
        self, entries: List[ProductionLogEntry], as_of: date,
    ) -> _ProductPartial:
        lookup = _AssessmentLookup(self._repository, as_of)
        workers = min(self.max_workers, len(entries))
        if workers <= 1:
            return self._product_partial(entries, lookup)

        chunks = [entries[i::workers] for i in range(workers)]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            partials = list(executor.map(
                lambda chunk: self._product_partial(chunk, lookup), chunks,
            ))

        merged = _ProductPartial()
        for partial in partials:
            merged.breakdown = merged.breakdown.merge(partial.breakdown)
            merged.missing.extend(partial.missing)
            merged.quality.extend(partial.quality)
        return merged

    def _product_partial(
        self, entries: List[ProductionLogEntry], lookup: _AssessmentLookup,
    ) -> _ProductPartial:
        partial = _ProductPartial()
        for entry in entries:
            assessment = lookup.get(entry.product_id)
            if assessment is None:
                partial.missing.append(entry.product_id)
                continue
            contribution = assessment.scope3_per_unit * entry.units_produced
            partial.breakdown.add(Scope3Category.PRODUCTS, contribution)
            partial.quality.append(
                (self._classifier.classify_tag(assessment.data_quality_tag), contribution),
            )
            logger.debug(
                "Product %s: %d units x %.6f kg = %.3f kg CO2e",
                entry.product_id, entry.units_produced,
                assessment.scope3_per_unit, contribution,
            )
        return partial


class CorporateEmissionsCalculator:
    """Full Scope 1/2/3 inventory for an organisation and year."""

    def __init__(
        self,
        repository: ImpactRecordRepository,
        aggregator: ScopeAggregator,
        provenance: Optional[ProvenanceTracker] = None,
    ) -> None:
        self._repository = repository
        self._aggregator = aggregator
        self._provenance = provenance

    def calculate(self, organization_id: str, year: int) -> CorporateEmissions:
        start = time.monotonic()
        totals = {EmissionScope.SCOPE_1: 0.0, EmissionScope.SCOPE_2: 0.0}

        for activity in self._repository.scope_activities(organization_id, year):
            if activity.scope in totals:
                totals[activity.scope] += activity.co2e_kg
        for fleet in self._repository.fleet_activities(organization_id, year):
            if fleet.scope in totals:
                totals[fleet.scope] += fleet.co2e_kg

        scope3 = self._aggregator.aggregate_scope3(organization_id, year)
        breakdown = ScopeBreakdown(
            scope1=totals[EmissionScope.SCOPE_1],
            scope2=totals[EmissionScope.SCOPE_2],
            scope3=scope3,
        )
        emissions = CorporateEmissions(
            organization_id=organization_id, year=year, breakdown=breakdown,
        )
        if self._provenance is not None:
            emissions.provenance_hash = self._provenance.record(
                operation="corporate_emissions",
                subject_id=f"{organization_id}:{year}",
                payload={
                    "scope1": breakdown.scope1,
                    "scope2": breakdown.scope2,
                    "scope3": scope3.as_dict(),
                    "total": breakdown.total,
                },
            )

        record_aggregation("corporate", time.monotonic() - start)
        logger.info(
            "Corporate emissions for %s/%d: scope1=%.3f scope2=%.3f scope3=%.3f total=%.3f",
            organization_id, year, breakdown.scope1, breakdown.scope2,
            scope3.total, breakdown.total,
        )
        return emissions


__all__ = ["ScopeAggregator", "CorporateEmissionsCalculator"]

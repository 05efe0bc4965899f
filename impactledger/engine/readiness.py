# -*- coding: utf-8 -*-
"""
Calculation Readiness

Checks whether every material line of a product can be given a factor
before a calculation runs. Materials are normalised to kilograms and
resolved through the waterfall in parallel. A material without a category
is looked up by name alone. Materials without a factor are collected
rather than raised, and the report summarises them in aggregate.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from impactledger.engine.models import (
    FactorQuery,
    MaterialInput,
    MissingMaterial,
    QualityAssessment,
    ReadinessReport,
    ResolvedMaterial,
)
from impactledger.engine.quality import DataQualityClassifier
from impactledger.engine.units import normalize_to_kg
from impactledger.engine.waterfall import WaterfallResolver

logger = logging.getLogger(__name__)


class CalculationReadinessValidator:
    """Resolves all materials and reports which ones have no factor."""

    def __init__(
        self,
        resolver: WaterfallResolver,
        classifier: Optional[DataQualityClassifier] = None,
    ) -> None:
        self._resolver = resolver
        self._classifier = classifier or DataQualityClassifier()

    def validate(self, materials: Sequence[MaterialInput]) -> ReadinessReport:
        queries = [
            FactorQuery(
                name=m.name,
                category=m.category,
                organization_id=m.organization_id,
            )
            for m in materials
        ]
        factors = self._resolver.resolve_many(queries)

        resolved: List[ResolvedMaterial] = []
        missing: List[MissingMaterial] = []
        weighted = []
        for material, factor in zip(materials, factors):
            if factor is None:
                missing.append(MissingMaterial(
                    material_id=material.material_id,
                    name=material.name,
                    reason="No factor found in curated data, cache or external source",
                ))
                continue
            quantity_kg = normalize_to_kg(material.quantity, material.unit)
            co2e = quantity_kg * factor.value
            resolved.append(ResolvedMaterial(
                material=material,
                factor=factor,
                quantity_kg=quantity_kg,
                co2e_kg=co2e,
            ))
            weighted.append((QualityAssessment(
                tag=factor.data_quality_tag,
                confidence=factor.confidence,
                grade=factor.quality_grade,
                source_label=factor.source,
            ), co2e))

        total = len(materials)
        if missing:
            summary = f"{len(missing)} of {total} materials had no factor"
            logger.warning("%s: %s", summary, ", ".join(m.name for m in missing))
        else:
            summary = f"All {total} materials have a factor"

        return ReadinessReport(
            valid=not missing,
            total_materials=total,
            resolved=resolved,
            missing=missing,
            total_co2e_kg=sum(r.co2e_kg for r in resolved),
            quality=self._classifier.summarize(weighted),
            summary=summary,
        )


__all__ = ["CalculationReadinessValidator"]

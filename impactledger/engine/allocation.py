# -*- coding: utf-8 -*-
"""
Facility Impact Allocator

Distributes a facility's measured period impacts (CO2e, water, waste) to
one product in proportion to production volume:

    ratio         = product_volume / total_volume
    metric/unit   = (metric * ratio) / product_volume

which is the facility metric per unit of facility output. Inputs are
checked before any arithmetic; an invalid volume raises ValidationError
and is never clamped.

Example:
    >>> from impactledger.engine.allocation import FacilityImpactAllocator
    >>> allocator = FacilityImpactAllocator()
    >>> result = allocator.allocate(impacts, product_volume=125_000)
    >>> result.allocation_ratio, result.co2e_per_unit
    (0.125, 0.05)

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Optional

from impactledger.engine.metrics import record_allocation
from impactledger.engine.models import AllocatedImpact, FacilityPeriodImpacts
from impactledger.engine.provenance import ProvenanceTracker
from impactledger.exceptions import ValidationError

logger = logging.getLogger(__name__)

_COMPONENT = "FacilityImpactAllocator"


class FacilityImpactAllocator:
    """Volume-based allocation of facility impacts. Stateless apart from
    the optional provenance tracker."""

    def __init__(self, provenance: Optional[ProvenanceTracker] = None) -> None:
        self._provenance = provenance

    def allocate(
        self,
        facility_impacts: FacilityPeriodImpacts,
        product_volume: float,
        product_id: Optional[str] = None,
    ) -> AllocatedImpact:
        """Allocate facility impacts to one product.

        Args:
            facility_impacts: Finalised facility readings for the period.
            product_volume: The product's production volume in the same
                unit as ``facility_impacts.total_volume``.
            product_id: Optional product identifier for the result.

        Returns:
            AllocatedImpact with per-unit figures, ratio and provenance.

        Raises:
            ValidationError: If either volume is not a positive finite
                number, or the product volume exceeds the facility volume.
        """
        try:
            self._validate(facility_impacts.total_volume, product_volume)
        except ValidationError:
            record_allocation("rejected")
            raise

        total_volume = facility_impacts.total_volume
        ratio = product_volume / total_volume
        co2e_per_unit = (facility_impacts.co2e_kg * ratio) / product_volume
        water_per_unit = (facility_impacts.water_litres * ratio) / product_volume
        waste_per_unit = (facility_impacts.waste_kg * ratio) / product_volume

        provenance = (
            f"Allocated {ratio:.2%} of facility {facility_impacts.facility_id} impacts "
            f"for {facility_impacts.period_start.isoformat()} to "
            f"{facility_impacts.period_end.isoformat()} "
            f"({product_volume:g} of {total_volume:g} {facility_impacts.volume_unit}; "
            f"facility totals {facility_impacts.co2e_kg:g} kg CO2e, "
            f"{facility_impacts.water_litres:g} L water, "
            f"{facility_impacts.waste_kg:g} kg waste)"
        )

        chain_hash = ""
        if self._provenance is not None:
            chain_hash = self._provenance.record(
                operation="allocate",
                subject_id=facility_impacts.facility_id,
                payload={
                    "product_id": product_id,
                    "period_start": facility_impacts.period_start,
                    "period_end": facility_impacts.period_end,
                    "product_volume": product_volume,
                    "total_volume": total_volume,
                    "ratio": ratio,
                    "co2e_per_unit": co2e_per_unit,
                    "water_per_unit": water_per_unit,
                    "waste_per_unit": waste_per_unit,
                },
            )

        record_allocation("success")
        logger.debug(
            "Allocated facility %s to product %s: ratio=%.6f co2e/unit=%.6f",
            facility_impacts.facility_id, product_id, ratio, co2e_per_unit,
        )
        return AllocatedImpact(
            product_id=product_id,
            facility_id=facility_impacts.facility_id,
            period_start=facility_impacts.period_start,
            period_end=facility_impacts.period_end,
            co2e_per_unit=co2e_per_unit,
            water_per_unit=water_per_unit,
            waste_per_unit=waste_per_unit,
            allocation_ratio=ratio,
            product_volume=product_volume,
            total_volume=total_volume,
            provenance=provenance,
            provenance_hash=chain_hash,
        )

    def allocate_many(
        self,
        facility_impacts: FacilityPeriodImpacts,
        product_volumes: Dict[str, float],
    ) -> Dict[str, AllocatedImpact]:
        """Allocate one facility period across several products.

        Raises:
            ValidationError: If the product volumes together exceed the
                facility volume, or any single allocation is invalid.
        """
        combined = sum(product_volumes.values())
        if combined > facility_impacts.total_volume:
            record_allocation("rejected")
            raise ValidationError(
                "Combined product volume cannot exceed total facility volume",
                component=_COMPONENT,
                context={
                    "facility_id": facility_impacts.facility_id,
                    "combined_product_volume": combined,
                    "total_volume": facility_impacts.total_volume,
                },
                invalid_fields={"product_volumes": "sum exceeds total_volume"},
            )
        return {
            product_id: self.allocate(facility_impacts, volume, product_id=product_id)
            for product_id, volume in product_volumes.items()
        }

    @staticmethod
    def _validate(total_volume: float, product_volume: float) -> None:
        context = {"total_volume": total_volume, "product_volume": product_volume}
        if total_volume is None or not math.isfinite(total_volume) or total_volume <= 0:
            raise ValidationError(
                "Total facility volume must be greater than zero",
                component=_COMPONENT,
                context=context,
                invalid_fields={"total_volume": "must be a finite number > 0"},
            )
        if product_volume is None or not math.isfinite(product_volume) or product_volume <= 0:
            raise ValidationError(
                "Product volume must be greater than zero",
                component=_COMPONENT,
                context=context,
                invalid_fields={"product_volume": "must be a finite number > 0"},
            )
        if product_volume > total_volume:
            raise ValidationError(
                "Product volume cannot exceed total facility volume",
                component=_COMPONENT,
                context=context,
                invalid_fields={"product_volume": "must be <= total_volume"},
            )


__all__ = ["FacilityImpactAllocator"]

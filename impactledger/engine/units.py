# -*- coding: utf-8 -*-
"""
Quantity types for the impact engine.

Production figures arrive in two shapes that must never be interchanged:

- ``UnitCount``: a discrete number of finished items (bottles, cans, packs).
  Per-unit assessment figures are defined against this.
- ``BulkQuantity``: a bulk measure with a unit (litres, hectolitres, kg).

The only sanctioned route from a bulk measure to a unit count is
:func:`units_from_bulk`, which needs the size of one finished item.

Example:
    >>> from impactledger.engine.units import BulkQuantity, units_from_bulk
    >>> units_from_bulk(BulkQuantity(value=100, unit="hL"), unit_size_litres=0.1)
    100000

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
from typing import NewType

from pydantic import BaseModel, Field, field_validator

from impactledger.exceptions import ValidationError

logger = logging.getLogger(__name__)

UnitCount = NewType("UnitCount", int)

# Conversion factors to litres for volume units
_LITRES_PER_UNIT = {
    "ml": 0.001,
    "l": 1.0,
    "hl": 100.0,
}

# Conversion factors to kilograms for mass units
_KG_PER_UNIT = {
    "g": 0.001,
    "kg": 1.0,
    "t": 1000.0,
    "tonne": 1000.0,
}

BULK_UNITS = ("mL", "L", "hL", "g", "kg", "t")


def _norm(unit: str) -> str:
    return unit.strip().lower()


class BulkQuantity(BaseModel):
    """A bulk measure such as ``100 hL`` of product."""
    value: float = Field(..., ge=0, description="Measured amount")
    unit: str = Field(..., description="Bulk unit (mL, L, hL, g, kg, t)")

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("unit")
    @classmethod
    def validate_unit(cls, v: str) -> str:
        """Accept only known volume or mass units."""
        key = _norm(v)
        if key not in _LITRES_PER_UNIT and key not in _KG_PER_UNIT:
            raise ValueError(f"unsupported bulk unit: {v}")
        return v

    @property
    def is_volume(self) -> bool:
        return _norm(self.unit) in _LITRES_PER_UNIT

    def to_litres(self) -> float:
        """Convert a volume measure to litres."""
        key = _norm(self.unit)
        if key not in _LITRES_PER_UNIT:
            raise ValidationError(
                f"Cannot express {self.unit} as litres",
                component="BulkQuantity",
                invalid_fields={"unit": "not a volume unit"},
            )
        return self.value * _LITRES_PER_UNIT[key]


def units_from_bulk(bulk: BulkQuantity, unit_size_litres: float) -> UnitCount:
    """Convert a bulk volume into a count of finished items.

    Args:
        bulk: Bulk volume produced.
        unit_size_litres: Volume of one finished item in litres.

    Returns:
        Whole number of finished items (rounded down).

    Raises:
        ValidationError: If the item size is not positive or the bulk
            quantity is not a volume.
    """
    if unit_size_litres <= 0:
        raise ValidationError(
            "Unit size must be greater than zero",
            component="units_from_bulk",
            invalid_fields={"unit_size_litres": "must be > 0"},
        )
    litres = bulk.to_litres()
    # Guard against 9999.999... from float division
    return UnitCount(int(round(litres / unit_size_litres, 9)))


def normalize_to_kg(quantity: float, unit: str) -> float:
    """Normalise a material quantity to kilograms.

    Grams and millilitres divide by 1000; litres are taken as kilograms
    (density 1); tonnes multiply by 1000. Unknown units pass through
    unchanged with a warning.
    """
    key = _norm(unit)
    if key in _KG_PER_UNIT:
        return quantity * _KG_PER_UNIT[key]
    if key in ("ml", "l"):
        return quantity * _LITRES_PER_UNIT[key]
    logger.warning("Unknown unit '%s', treating quantity %.4f as kg", unit, quantity)
    return quantity


__all__ = [
    "UnitCount",
    "BulkQuantity",
    "BULK_UNITS",
    "units_from_bulk",
    "normalize_to_kg",
]

# -*- coding: utf-8 -*-
"""
Free-text category heuristics.

Curated and external factors carry an explicit :class:`ImpactCategory`.
Two upstream inputs only provide free text, and their keyword matching is
kept here in one place:

- :func:`detect_material_category` guesses a factor category from a
  material name when a material line arrives without one.
- :func:`classify_overhead` maps a corporate-overhead label onto one of
  the Scope 3 buckets.

Both are imprecise by nature; callers record the guess rather than treat
it as authoritative.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

from impactledger.engine.models import ImpactCategory, Scope3Category
from impactledger.engine.quality import normalize_tag

logger = logging.getLogger(__name__)

_ENERGY_PATTERN = re.compile(r"electricity|natural gas|\bgas\b|diesel|petrol|fuel|\blpg\b|steam")
_TRANSPORT_PATTERN = re.compile(r"transport|\bhgv\b|freight|shipping|commut|\bbus\b|\brail\b")
_WASTE_PATTERN = re.compile(r"waste|disposal|landfill")
_PACKAGING_PATTERN = re.compile(
    r"\b(?:bottle|can|carton|label|cap|closure|packaging|pallet|crate|shrink)s?\b"
)


def detect_material_category(name: str) -> ImpactCategory:
    """Guess a factor category from a free-text material name.

    Keyword groups are checked in order energy, transport, waste, packaging;
    anything else is an ingredient.
    """
    text = name.lower()
    if _ENERGY_PATTERN.search(text):
        return ImpactCategory.ENERGY
    if _TRANSPORT_PATTERN.search(text):
        return ImpactCategory.TRANSPORT
    if _WASTE_PATTERN.search(text):
        return ImpactCategory.WASTE
    if _PACKAGING_PATTERN.search(text):
        return ImpactCategory.PACKAGING
    return ImpactCategory.INGREDIENT


# Overhead labels as stored by the data-entry side, normalised
_OVERHEAD_LABELS = {
    "business travel": Scope3Category.BUSINESS_TRAVEL,
    "purchased services": Scope3Category.PURCHASED_SERVICES,
    "employee commuting": Scope3Category.EMPLOYEE_COMMUTING,
    "capital goods": Scope3Category.CAPITAL_GOODS,
    "operational waste": Scope3Category.OPERATIONAL_WASTE,
    "downstream logistics": Scope3Category.DOWNSTREAM_LOGISTICS,
    "marketing materials": Scope3Category.MARKETING_MATERIALS,
}


def classify_overhead(
    category: str, material_type: Optional[str] = None,
) -> Tuple[Scope3Category, bool]:
    """Map an overhead label to a Scope 3 bucket.

    Purchased services that carry a material type are merchandise and go to
    ``marketing_materials``. Unknown labels, including ``products``, fall
    back to ``purchased_services``.

    Returns:
        Tuple of (bucket, recognised).
    """
    key = normalize_tag(category or "")
    bucket = _OVERHEAD_LABELS.get(key)
    if bucket is None:
        logger.warning(
            "Unrecognised overhead category '%s', counting as purchased_services",
            category,
        )
        return Scope3Category.PURCHASED_SERVICES, False
    if bucket is Scope3Category.PURCHASED_SERVICES and material_type and material_type.strip():
        return Scope3Category.MARKETING_MATERIALS, True
    return bucket, True


__all__ = ["detect_material_category", "classify_overhead"]

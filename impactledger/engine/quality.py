# -*- coding: utf-8 -*-
"""
Data-Quality Classifier

Maps a source tag or a resolver priority level onto a normalised
:class:`ImpactSourceTag` and a numeric confidence. The mapping is
deliberately conservative: an unrecognised tag is reported as
``secondary_modelled`` with the lowest confidence in the table and a
logged warning, never as ``primary_verified``.

    ====================  ===================  ==========
    input                 tag                  confidence
    ====================  ===================  ==========
    primary verified / 1  primary_verified     95
    regional standard / 2 secondary_modelled   80
    secondary modelled/ 3 secondary_modelled   70
    hybrid proxy          hybrid_proxy         50
    anything else         secondary_modelled   40
    ====================  ===================  ==========

Example:
    >>> from impactledger.engine.quality import DataQualityClassifier
    >>> DataQualityClassifier().classify("Regional_Standard").confidence
    80.0

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, Optional, Tuple, Union

from impactledger.engine.models import (
    ImpactSourceTag,
    QualityAssessment,
    QualityGrade,
    QualitySummary,
)
from impactledger.exceptions import ValidationError

logger = logging.getLogger(__name__)

PRIMARY_VERIFIED_CONFIDENCE = 95.0
REGIONAL_STANDARD_CONFIDENCE = 80.0
SECONDARY_MODELLED_CONFIDENCE = 70.0
HYBRID_PROXY_CONFIDENCE = 50.0
UNRECOGNISED_CONFIDENCE = 40.0

_TAG_TABLE: Dict[str, Tuple[ImpactSourceTag, float]] = {
    "primary verified": (ImpactSourceTag.PRIMARY_VERIFIED, PRIMARY_VERIFIED_CONFIDENCE),
    "regional standard": (ImpactSourceTag.SECONDARY_MODELLED, REGIONAL_STANDARD_CONFIDENCE),
    "secondary modelled": (ImpactSourceTag.SECONDARY_MODELLED, SECONDARY_MODELLED_CONFIDENCE),
    "secondary modeled": (ImpactSourceTag.SECONDARY_MODELLED, SECONDARY_MODELLED_CONFIDENCE),
    "hybrid proxy": (ImpactSourceTag.HYBRID_PROXY, HYBRID_PROXY_CONFIDENCE),
}

_PRIORITY_LABELS = {
    1: "primary verified",
    2: "regional standard",
    3: "secondary modelled",
}


def normalize_tag(label: str) -> str:
    """Lower-case a tag and collapse ``_``, ``-`` and whitespace runs."""
    return re.sub(r"[\s_\-]+", " ", label.strip().lower())


def grade_for_confidence(confidence: float) -> QualityGrade:
    """HIGH from 90, MEDIUM from 60, otherwise LOW."""
    if confidence >= 90:
        return QualityGrade.HIGH
    if confidence >= 60:
        return QualityGrade.MEDIUM
    return QualityGrade.LOW


class DataQualityClassifier:
    """Pure mapping from source tag or priority to quality tag and confidence."""

    def classify(self, source: Union[str, int]) -> QualityAssessment:
        """Classify a source tag string or a priority level.

        Args:
            source: Tag such as ``"Primary_Verified"`` or a priority 1-3.

        Returns:
            QualityAssessment with tag, confidence and grade.

        Raises:
            ValidationError: If a priority level is outside 1-3.
        """
        if isinstance(source, bool):
            raise ValidationError(
                "Priority level must be an integer, not a boolean",
                component="DataQualityClassifier",
                invalid_fields={"source": repr(source)},
            )
        if isinstance(source, int):
            return self.classify_priority(source)
        return self.classify_tag(source)

    def classify_priority(self, priority: int) -> QualityAssessment:
        label = _PRIORITY_LABELS.get(priority)
        if label is None:
            raise ValidationError(
                f"Unknown priority level: {priority}",
                component="DataQualityClassifier",
                invalid_fields={"priority": "must be 1, 2 or 3"},
            )
        tag, confidence = _TAG_TABLE[label]
        return QualityAssessment(
            tag=tag,
            confidence=confidence,
            grade=grade_for_confidence(confidence),
            source_label=f"priority {priority}",
        )

    def classify_tag(self, label: Optional[str]) -> QualityAssessment:
        key = normalize_tag(label or "")
        entry = _TAG_TABLE.get(key)
        if entry is None:
            log = logger.warning if key else logger.debug
            log(
                "Unrecognised data quality tag '%s', defaulting to %s",
                label, ImpactSourceTag.SECONDARY_MODELLED.value,
            )
            return QualityAssessment(
                tag=ImpactSourceTag.SECONDARY_MODELLED,
                confidence=UNRECOGNISED_CONFIDENCE,
                grade=grade_for_confidence(UNRECOGNISED_CONFIDENCE),
                source_label=label or "",
                recognised=False,
            )
        tag, confidence = entry
        return QualityAssessment(
            tag=tag,
            confidence=confidence,
            grade=grade_for_confidence(confidence),
            source_label=label,
        )

    def summarize(
        self, weighted: Iterable[Tuple[QualityAssessment, float]],
    ) -> QualitySummary:
        """Impact-weighted mean confidence over classified contributions.

        Items with non-positive weight are counted per tag but do not move
        the mean. An empty input yields a LOW summary with zero confidence.
        """
        counts: Dict[str, int] = {}
        total_weight = 0.0
        weighted_sum = 0.0
        for assessment, weight in weighted:
            counts[assessment.tag.value] = counts.get(assessment.tag.value, 0) + 1
            if weight > 0:
                total_weight += weight
                weighted_sum += assessment.confidence * weight

        mean = weighted_sum / total_weight if total_weight > 0 else 0.0
        return QualitySummary(
            weighted_confidence=round(mean, 4),
            grade=grade_for_confidence(mean),
            counts_by_tag=counts,
            total_weight=total_weight,
        )


__all__ = [
    "DataQualityClassifier",
    "grade_for_confidence",
    "normalize_tag",
    "PRIMARY_VERIFIED_CONFIDENCE",
    "REGIONAL_STANDARD_CONFIDENCE",
    "SECONDARY_MODELLED_CONFIDENCE",
    "HYBRID_PROXY_CONFIDENCE",
    "UNRECOGNISED_CONFIDENCE",
]

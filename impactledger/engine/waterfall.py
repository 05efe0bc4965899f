# -*- coding: utf-8 -*-
"""
Waterfall Resolver

Resolves an impact factor for a named material or activity by trying an
ordered list of stages and returning the first hit:

    1. CuratedFactorStage   curated factors, organisation rows preferred
    2. CacheStage           stage-3 results younger than their TTL
    3. ExternalSourceStage  live LCA source or deterministic mock

Every stage implements ``lookup(query) -> Optional[ResolvedFactor]``; the
resolver itself is a loop over them. A full miss returns ``None``, which
callers treat as missing data rather than an error.

Resolving many materials at once fans out over a thread pool; each query
still walks its stages strictly in order.

Example:
    >>> from impactledger.engine.waterfall import WaterfallResolver
    >>> resolver = WaterfallResolver.build(curated_store, cache_store, external)
    >>> factor = resolver.resolve(FactorQuery(name="Glass bottle", organization_id="org-1"))
    >>> factor.stage, factor.data_quality_tag, factor.confidence

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from impactledger.engine.config import EngineConfig
from impactledger.engine.external_source import ExternalFactorSource
from impactledger.engine.factor_store import CuratedFactorStore, FactorCacheStore
from impactledger.engine.metrics import (
    record_cache_expiration,
    record_cache_hit,
    record_cache_miss,
    record_resolution,
)
from impactledger.engine.models import (
    CacheEntry,
    FactorQuery,
    ImpactCategory,
    ImpactFactor,
    ImpactSourceTag,
    ResolutionStage,
    ResolvedFactor,
    normalize_name,
)
from impactledger.engine.provenance import ProvenanceTracker
from impactledger.engine.quality import grade_for_confidence
from impactledger.exceptions import DataAccessError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Stages
# =============================================================================


class FactorStage(ABC):
    """One source in the waterfall."""

    name: str = "stage"

    @abstractmethod
    def lookup(self, query: FactorQuery) -> Optional[ResolvedFactor]:
        """Return a result for ``query`` or None on a miss."""


class CuratedFactorStage(FactorStage):
    """Stage 1: curated factors.

    Among matching rows the best is chosen by, in order: exact name match,
    organisation-scoped over global, shortest name, newest row.
    """

    name = "curated"

    def __init__(self, store: CuratedFactorStore) -> None:
        self._store = store

    @staticmethod
    def rank(query: FactorQuery) -> Callable[[ImpactFactor], Tuple[int, int, int, float]]:
        needle = query.normalized_name

        def key(factor: ImpactFactor) -> Tuple[int, int, int, float]:
            exact = normalize_name(factor.name) == needle
            return (
                0 if exact else 1,
                0 if factor.organization_id is not None else 1,
                len(factor.name),
                -factor.created_at.timestamp(),
            )

        return key

    def lookup(self, query: FactorQuery) -> Optional[ResolvedFactor]:
        matches = self._store.find_matches(
            query.name, query.category, query.organization_id,
        )
        if not matches:
            return None

        best = min(matches, key=self.rank(query))
        tag = (
            ImpactSourceTag.PRIMARY_VERIFIED
            if best.is_primary_verified
            else ImpactSourceTag.SECONDARY_MODELLED
        )
        logger.debug(
            "Curated match for '%s': %s (%s, org=%s, %d candidates)",
            query.name, best.name, best.factor_id, best.organization_id, len(matches),
        )
        return ResolvedFactor(
            query=query,
            name=best.name,
            category=best.category,
            value=best.value,
            reference_unit=best.reference_unit,
            source=best.source,
            stage=ResolutionStage.CURATED,
            data_quality_tag=tag,
            quality_grade=grade_for_confidence(best.confidence),
            confidence=best.confidence,
            factor_id=best.factor_id,
            metadata={
                **best.metadata,
                "organization_scoped": best.organization_id is not None,
            },
        )


class CacheStage(FactorStage):
    """Stage 2: persisted cache of stage-3 results.

    An entry older than its TTL is deleted and reported as a miss.
    """

    name = "cache"

    def __init__(
        self,
        store: FactorCacheStore,
        ttl_seconds: int = 86400,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock or _utcnow

    def lookup(self, query: FactorQuery) -> Optional[ResolvedFactor]:
        key = query.cache_key()
        entry = self._store.get(key)
        if entry is None:
            record_cache_miss()
            return None

        now = self._clock()
        if entry.is_expired(now):
            logger.debug("Cache entry '%s' expired at %s", key, entry.expires_at)
            self._store.delete(key)
            record_cache_expiration()
            record_cache_miss()
            return None

        record_cache_hit()
        payload = entry.payload
        return payload.model_copy(update={
            "query": query,
            "stage": ResolutionStage.CACHE,
            "resolved_at": now,
            "metadata": {**payload.metadata, "cached_at": entry.created_at.isoformat()},
        })

    def write(self, query: FactorQuery, result: ResolvedFactor) -> None:
        """Upsert a completed stage-3 result."""
        self._store.put(CacheEntry(
            cache_key=query.cache_key(),
            payload=result,
            created_at=self._clock(),
            ttl_seconds=self.ttl_seconds,
        ))


class ExternalSourceStage(FactorStage):
    """Stage 3: external LCA source with mock degradation.

    Every complete result, live or mock, is written to the cache before it
    is returned. A cached mock keeps its ``hybrid_proxy`` tag and low
    confidence, and the cache TTL bounds how long it hides a recovered
    live source.
    """

    name = "external"

    def __init__(
        self,
        source: ExternalFactorSource,
        cache: Optional[CacheStage] = None,
    ) -> None:
        self._source = source
        self._cache = cache

    def lookup(self, query: FactorQuery) -> Optional[ResolvedFactor]:
        result = self._source.lookup(query)
        if result is None or self._cache is None:
            return result

        try:
            self._cache.write(query, result)
        except DataAccessError as e:
            logger.warning("Could not cache factor for '%s': %s", query.name, e.message)
        return result


# =============================================================================
# Resolver
# =============================================================================


class WaterfallResolver:
    """Ordered, short-circuiting factor lookup across stages."""

    def __init__(
        self,
        stages: Sequence[FactorStage],
        provenance: Optional[ProvenanceTracker] = None,
        max_workers: int = 8,
    ) -> None:
        if not stages:
            raise ValueError("WaterfallResolver needs at least one stage")
        self._stages = list(stages)
        self._provenance = provenance
        self.max_workers = max_workers

    @classmethod
    def build(
        cls,
        curated_store: CuratedFactorStore,
        cache_store: FactorCacheStore,
        external_source: ExternalFactorSource,
        config: Optional[EngineConfig] = None,
        provenance: Optional[ProvenanceTracker] = None,
        clock: Optional[Clock] = None,
    ) -> WaterfallResolver:
        """Assemble the standard three-stage resolver."""
        config = config or EngineConfig()
        stages: List[FactorStage] = [CuratedFactorStage(curated_store)]
        cache_stage = None
        if config.cache_enabled:
            cache_stage = CacheStage(cache_store, config.cache_ttl_seconds, clock)
            stages.append(cache_stage)
        stages.append(ExternalSourceStage(external_source, cache_stage))
        return cls(stages, provenance=provenance, max_workers=config.resolver_max_workers)

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self._stages]

    def resolve(self, query: FactorQuery) -> Optional[ResolvedFactor]:
        """Return the first stage hit for ``query``, or None if all miss."""
        start = time.monotonic()
        for stage in self._stages:
            result = stage.lookup(query)
            if result is None:
                continue

            result = self._stamp(query, result)
            record_resolution(stage.name, time.monotonic() - start)
            logger.debug(
                "Resolved '%s' at stage %s (%s, confidence %.0f)",
                query.name, stage.name, result.data_quality_tag.value, result.confidence,
            )
            return result

        record_resolution("miss", time.monotonic() - start)
        logger.info("No factor found for '%s' in any stage", query.name)
        return None

    def resolve_name(
        self,
        name: str,
        category: Optional[ImpactCategory] = None,
        organization_id: Optional[str] = None,
    ) -> Optional[ResolvedFactor]:
        return self.resolve(FactorQuery(
            name=name, category=category, organization_id=organization_id,
        ))

    def resolve_many(
        self,
        queries: Sequence[FactorQuery],
        max_workers: Optional[int] = None,
    ) -> List[Optional[ResolvedFactor]]:
        """Resolve independent queries concurrently, preserving input order."""
        if not queries:
            return []
        workers = max(1, min(max_workers or self.max_workers, len(queries)))
        if workers == 1:
            return [self.resolve(q) for q in queries]

        logger.info("Resolving %d factors with %d workers", len(queries), workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self.resolve, queries))

    def _stamp(self, query: FactorQuery, result: ResolvedFactor) -> ResolvedFactor:
        if self._provenance is None:
            return result
        chain_hash = self._provenance.record(
            operation="resolve",
            subject_id=query.cache_key(),
            payload={
                "stage": int(result.stage),
                "name": result.name,
                "value": result.value,
                "source": result.source,
                "confidence": result.confidence,
                "tag": result.data_quality_tag.value,
                "factor_id": result.factor_id,
                "is_mock": result.is_mock,
            },
        )
        return result.model_copy(update={"provenance_hash": chain_hash})


__all__ = [
    "FactorStage",
    "CuratedFactorStage",
    "CacheStage",
    "ExternalSourceStage",
    "WaterfallResolver",
]

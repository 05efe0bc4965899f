# -*- coding: utf-8 -*-
"""
Factor Store

Storage behind the first two waterfall stages:

- ``CuratedFactorStore``: curated ("staging") factors, global or scoped to
  one organisation. Lookups are case-insensitive substring matches on the
  factor name; rows owned by other organisations are never returned.
- ``FactorCacheStore``: persisted stage-2 cache of external resolutions,
  keyed by :meth:`FactorQuery.cache_key`. Writes are upserts and the last
  write wins on a key collision.

Each comes in an in-memory flavour (tests, single process) and a
SQLAlchemy flavour (shared across processes, survives restarts).

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from impactledger.db.base import session_scope
from impactledger.db.models import FactorCacheEntry, StagingEmissionFactor
from impactledger.engine.models import (
    CacheEntry,
    ImpactCategory,
    ImpactFactor,
    ResolvedFactor,
    normalize_name,
)
from impactledger.exceptions import DataAccessError

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored timestamps are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Curated factors
# =============================================================================


class CuratedFactorStore(ABC):
    """Read access to curated impact factors."""

    @abstractmethod
    def find_matches(
        self,
        name: str,
        category: Optional[ImpactCategory] = None,
        organization_id: Optional[str] = None,
    ) -> List[ImpactFactor]:
        """Return factors whose name contains ``name`` (case-insensitive).

        Only global rows and rows owned by ``organization_id`` are returned.
        """

    @abstractmethod
    def add(self, factor: ImpactFactor) -> ImpactFactor:
        """Insert a new curated factor row."""


class InMemoryCuratedFactorStore(CuratedFactorStore):
    """Curated factors held in a list."""

    def __init__(self, factors: Optional[Iterable[ImpactFactor]] = None) -> None:
        self._factors: List[ImpactFactor] = list(factors or [])
        self._lock = RLock()

    def find_matches(
        self,
        name: str,
        category: Optional[ImpactCategory] = None,
        organization_id: Optional[str] = None,
    ) -> List[ImpactFactor]:
        needle = normalize_name(name)
        with self._lock:
            factors = list(self._factors)
        return [
            f for f in factors
            if needle in normalize_name(f.name)
            and (category is None or f.category == category)
            and (f.organization_id is None or f.organization_id == organization_id)
        ]

    def add(self, factor: ImpactFactor) -> ImpactFactor:
        with self._lock:
            self._factors.append(factor)
        return factor

    def remove(self, factor_id: str) -> bool:
        """Drop a row; used when retiring seed data."""
        with self._lock:
            before = len(self._factors)
            self._factors = [f for f in self._factors if f.factor_id != factor_id]
            return len(self._factors) < before

    def __len__(self) -> int:
        return len(self._factors)


class SqlCuratedFactorStore(CuratedFactorStore):
    """Curated factors in the ``staging_emission_factors`` table."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def find_matches(
        self,
        name: str,
        category: Optional[ImpactCategory] = None,
        organization_id: Optional[str] = None,
    ) -> List[ImpactFactor]:
        needle = normalize_name(name)
        stmt = select(StagingEmissionFactor).where(
            func.lower(StagingEmissionFactor.name).contains(needle, autoescape=True),
        )
        if category is not None:
            stmt = stmt.where(StagingEmissionFactor.category == category.value)
        if organization_id is None:
            stmt = stmt.where(StagingEmissionFactor.organization_id.is_(None))
        else:
            stmt = stmt.where(or_(
                StagingEmissionFactor.organization_id.is_(None),
                StagingEmissionFactor.organization_id == organization_id,
            ))

        try:
            with session_scope(self._session_factory) as session:
                rows = session.execute(stmt).scalars().all()
                return [self._to_model(row) for row in rows]
        except SQLAlchemyError as e:
            raise DataAccessError(
                "Failed to read curated factors",
                data_source=StagingEmissionFactor.__tablename__,
                operation="select",
                cause=e,
            ) from e

    def add(self, factor: ImpactFactor) -> ImpactFactor:
        row = StagingEmissionFactor(
            id=factor.factor_id,
            name=factor.name,
            category=factor.category.value,
            value=factor.value,
            reference_unit=factor.reference_unit,
            source=factor.source,
            organization_id=factor.organization_id,
            is_primary_verified=factor.is_primary_verified,
            confidence=factor.confidence,
            factor_metadata=factor.metadata,
            created_at=_to_naive_utc(factor.created_at),
        )
        try:
            with session_scope(self._session_factory) as session:
                session.add(row)
        except SQLAlchemyError as e:
            raise DataAccessError(
                "Failed to insert curated factor",
                data_source=StagingEmissionFactor.__tablename__,
                operation="insert",
                cause=e,
            ) from e
        return factor

    @staticmethod
    def _to_model(row: StagingEmissionFactor) -> ImpactFactor:
        return ImpactFactor(
            factor_id=row.id,
            name=row.name,
            category=ImpactCategory(row.category),
            value=row.value,
            reference_unit=row.reference_unit,
            source=row.source,
            organization_id=row.organization_id,
            is_primary_verified=row.is_primary_verified,
            confidence=row.confidence,
            metadata=row.factor_metadata or {},
            created_at=_as_utc(row.created_at),
        )


# =============================================================================
# Factor cache
# =============================================================================


class FactorCacheStore(ABC):
    """Stage-2 cache storage. Expiry is judged by the caller."""

    @abstractmethod
    def get(self, cache_key: str) -> Optional[CacheEntry]:
        """Return the stored entry for ``cache_key``, expired or not."""

    @abstractmethod
    def put(self, entry: CacheEntry) -> None:
        """Insert or overwrite the entry for ``entry.cache_key``."""

    @abstractmethod
    def delete(self, cache_key: str) -> bool:
        """Remove one entry. Returns True if it existed."""

    @abstractmethod
    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Remove every expired entry. Returns the number removed."""


class InMemoryFactorCacheStore(FactorCacheStore):
    """Thread-safe in-process cache with LRU eviction."""

    def __init__(self, max_size: int = 10000) -> None:
        self.max_size = max_size
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = RLock()
        self._evictions = 0

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._cache.get(cache_key)
            if entry is not None:
                self._cache.move_to_end(cache_key)
            return entry

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            if entry.cache_key not in self._cache and len(self._cache) >= self.max_size:
                self._cache.popitem(last=False)
                self._evictions += 1
            self._cache[entry.cache_key] = entry
            self._cache.move_to_end(entry.cache_key)

    def delete(self, cache_key: str) -> bool:
        with self._lock:
            return self._cache.pop(cache_key, None) is not None

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            expired = [k for k, e in self._cache.items() if e.is_expired(now)]
            for key in expired:
                del self._cache[key]
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        return len(self._cache)


class SqlFactorCacheStore(FactorCacheStore):
    """Cache entries in the ``factor_cache_entries`` table."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        try:
            with session_scope(self._session_factory) as session:
                row = session.get(FactorCacheEntry, cache_key)
                if row is None:
                    return None
                return CacheEntry(
                    cache_key=row.cache_key,
                    payload=ResolvedFactor.model_validate(row.payload),
                    created_at=_as_utc(row.created_at),
                    ttl_seconds=row.ttl_seconds,
                )
        except SQLAlchemyError as e:
            raise DataAccessError(
                "Failed to read cache entry",
                data_source=FactorCacheEntry.__tablename__,
                operation="select",
                cause=e,
            ) from e

    def put(self, entry: CacheEntry) -> None:
        row = FactorCacheEntry(
            cache_key=entry.cache_key,
            payload=entry.payload.model_dump(mode="json"),
            created_at=_to_naive_utc(entry.created_at),
            ttl_seconds=entry.ttl_seconds,
        )
        try:
            with session_scope(self._session_factory) as session:
                session.merge(row)
        except SQLAlchemyError as e:
            raise DataAccessError(
                "Failed to write cache entry",
                data_source=FactorCacheEntry.__tablename__,
                operation="upsert",
                cause=e,
            ) from e

    def delete(self, cache_key: str) -> bool:
        try:
            with session_scope(self._session_factory) as session:
                result = session.execute(
                    delete(FactorCacheEntry).where(FactorCacheEntry.cache_key == cache_key),
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise DataAccessError(
                "Failed to delete cache entry",
                data_source=FactorCacheEntry.__tablename__,
                operation="delete",
                cause=e,
            ) from e

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        removed = 0
        try:
            with session_scope(self._session_factory) as session:
                rows = session.execute(select(FactorCacheEntry)).scalars().all()
                for row in rows:
                    age = (now - _as_utc(row.created_at)).total_seconds()
                    if age > row.ttl_seconds:
                        session.delete(row)
                        removed += 1
        except SQLAlchemyError as e:
            raise DataAccessError(
                "Failed to purge expired cache entries",
                data_source=FactorCacheEntry.__tablename__,
                operation="delete",
                cause=e,
            ) from e
        return removed


__all__ = [
    "CuratedFactorStore",
    "InMemoryCuratedFactorStore",
    "SqlCuratedFactorStore",
    "FactorCacheStore",
    "InMemoryFactorCacheStore",
    "SqlFactorCacheStore",
]

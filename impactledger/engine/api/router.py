# -*- coding: utf-8 -*-
"""
Impact Engine REST API

FastAPI router mounted at ``/api/v1/impact``. Route handlers delegate to the
``EngineService`` stored on ``app.state`` by ``configure_engine_service``.

Endpoints:
    POST /factors/resolve                      Resolve one factor
    POST /factors/resolve-batch                Resolve many factors, order kept
    POST /allocations                          Allocate facility impacts
    GET  /organizations/{org}/scope3/{year}    Scope 3 breakdown
    GET  /organizations/{org}/emissions/{year} Scope 1/2/3 totals
    POST /readiness                            Calculation readiness check
    GET  /health                               Service health
    GET  /provenance                           Recent audit entries

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, NoReturn, Optional

from fastapi import APIRouter, HTTPException, Path, Query, Request
from pydantic import BaseModel, Field

from impactledger.engine.models import (
    AggregationResult,
    AllocatedImpact,
    CorporateEmissions,
    FacilityPeriodImpacts,
    FactorQuery,
    MaterialInput,
    ReadinessReport,
    ResolvedFactor,
)
from impactledger.engine.provenance import ProvenanceEntry
from impactledger.exceptions import (
    DataAccessError,
    ImpactLedgerException,
    MissingData,
    ValidationError,
    format_exception_chain,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Request / response models
# =============================================================================


class BatchResolveRequest(BaseModel):
    """Several factor queries resolved in one call."""
    queries: List[FactorQuery] = Field(..., min_length=1, description="Queries to resolve")

    model_config = {"extra": "forbid"}


class BatchResolveResponse(BaseModel):
    results: List[Optional[ResolvedFactor]] = Field(
        default_factory=list, description="One entry per query, null when unresolved",
    )
    unresolved: List[str] = Field(default_factory=list, description="Names with no factor")

    model_config = {"extra": "forbid"}


class AllocationRequest(BaseModel):
    """Allocate either inline facility impacts or stored readings for a facility."""
    facility_impacts: Optional[FacilityPeriodImpacts] = Field(
        None, description="Inline facility period impacts",
    )
    facility_id: Optional[str] = Field(None, description="Facility with stored readings")
    period_start: Optional[date] = Field(None, description="Stored period to use")
    product_volume: float = Field(..., description="Product production volume")
    product_id: Optional[str] = Field(None, description="Product receiving the allocation")

    model_config = {"extra": "forbid"}


class ReadinessRequest(BaseModel):
    materials: List[MaterialInput] = Field(default_factory=list, description="Material lines")

    model_config = {"extra": "forbid"}


# =============================================================================
# Router
# =============================================================================


router = APIRouter(prefix="/api/v1/impact", tags=["impact-engine"])


def _svc(request: Request) -> Any:
    """Get the engine service for route handlers."""
    from impactledger.engine.setup import get_engine_service

    try:
        return get_engine_service(request.app)
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


def _raise_http(exc: ImpactLedgerException) -> NoReturn:
    if exc.http_status >= 500:
        logger.error("Impact engine request failed: %s", format_exception_chain(exc))
    raise HTTPException(status_code=exc.http_status, detail=exc.message) from exc


# ------------------------------------------------------------------
# 1. POST /factors/resolve - Resolve one factor through the waterfall
# ------------------------------------------------------------------
@router.post("/factors/resolve", response_model=ResolvedFactor)
def post_resolve_factor(query: FactorQuery, request: Request) -> ResolvedFactor:
    """Resolve a factor through curated, cache and external stages."""
    try:
        result = _svc(request).resolve(query)
    except (ValidationError, DataAccessError) as exc:
        _raise_http(exc)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No factor found for '{query.name}'")
    return result


# ------------------------------------------------------------------
# 2. POST /factors/resolve-batch - Resolve many factors
# ------------------------------------------------------------------
@router.post("/factors/resolve-batch", response_model=BatchResolveResponse)
def post_resolve_batch(body: BatchResolveRequest, request: Request) -> BatchResolveResponse:
    """Resolve several queries; results keep request order."""
    try:
        results = _svc(request).resolve_many(body.queries)
    except (ValidationError, DataAccessError) as exc:
        _raise_http(exc)
    unresolved = [q.name for q, r in zip(body.queries, results) if r is None]
    return BatchResolveResponse(results=results, unresolved=unresolved)


# ------------------------------------------------------------------
# 3. POST /allocations - Allocate facility impacts to a product
# ------------------------------------------------------------------
@router.post("/allocations", response_model=AllocatedImpact, status_code=201)
def post_allocation(body: AllocationRequest, request: Request) -> AllocatedImpact:
    """Allocate facility totals by production-volume ratio."""
    service = _svc(request)
    try:
        if body.facility_impacts is not None:
            return service.allocate(body.facility_impacts, body.product_volume, body.product_id)
        if body.facility_id:
            return service.allocate_for_facility(
                body.facility_id,
                body.product_volume,
                product_id=body.product_id,
                period_start=body.period_start,
            )
    except (ValidationError, MissingData, DataAccessError) as exc:
        _raise_http(exc)
    raise HTTPException(
        status_code=422, detail="Either facility_impacts or facility_id is required",
    )


# ------------------------------------------------------------------
# 4. GET /organizations/{org}/scope3/{year} - Scope 3 breakdown
# ------------------------------------------------------------------
@router.get("/organizations/{organization_id}/scope3/{year}", response_model=AggregationResult)
def get_scope3_breakdown(
    request: Request,
    organization_id: str,
    year: int = Path(..., ge=1900, le=2200),
) -> AggregationResult:
    """Aggregate an organisation's Scope 3 emissions for a year."""
    try:
        return _svc(request).aggregate_scope3(organization_id, year)
    except (ValidationError, DataAccessError) as exc:
        _raise_http(exc)


# ------------------------------------------------------------------
# 5. GET /organizations/{org}/emissions/{year} - Corporate emissions
# ------------------------------------------------------------------
@router.get("/organizations/{organization_id}/emissions/{year}", response_model=CorporateEmissions)
def get_corporate_emissions(
    request: Request,
    organization_id: str,
    year: int = Path(..., ge=1900, le=2200),
) -> CorporateEmissions:
    """Scope 1, Scope 2 and Scope 3 totals for an organisation."""
    try:
        return _svc(request).corporate_emissions(organization_id, year)
    except (ValidationError, DataAccessError) as exc:
        _raise_http(exc)


# ------------------------------------------------------------------
# 6. POST /readiness - Calculation readiness check
# ------------------------------------------------------------------
@router.post("/readiness", response_model=ReadinessReport)
def post_readiness(body: ReadinessRequest, request: Request) -> ReadinessReport:
    """Check that every material line resolves to a factor."""
    try:
        return _svc(request).validate_materials(body.materials)
    except (ValidationError, DataAccessError) as exc:
        _raise_http(exc)


# ------------------------------------------------------------------
# 7. GET /health - Service health
# ------------------------------------------------------------------
@router.get("/health")
def get_health(request: Request) -> Dict[str, Any]:
    """Service health and provenance chain status."""
    return _svc(request).get_health()


# ------------------------------------------------------------------
# 8. GET /provenance - Recent audit entries
# ------------------------------------------------------------------
@router.get("/provenance", response_model=List[ProvenanceEntry])
def get_provenance(
    request: Request,
    operation: Optional[str] = Query(None, description="Filter by operation name"),
    limit: int = Query(100, ge=1, le=1000),
) -> List[ProvenanceEntry]:
    """Recent provenance entries, newest first."""
    return _svc(request).get_provenance(operation=operation, limit=limit)


__all__ = [
    "AllocationRequest",
    "BatchResolveRequest",
    "BatchResolveResponse",
    "ReadinessRequest",
    "router",
]

# -*- coding: utf-8 -*-
"""Tests for the impact engine REST API and service facade.

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

import logging
from datetime import date

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from impactledger.engine.config import EngineConfig
from impactledger.engine.repository import InMemoryImpactRepository
from impactledger.engine.setup import (
    EngineService,
    configure_engine_service,
    get_engine_service,
    get_engine_service_singleton,
)
from impactledger.exceptions import DataAccessError


PREFIX = "/api/v1/impact"


@pytest.fixture
def service(curated_store, scenario_repository, facility_impacts):
    scenario_repository.add_facility_period(facility_impacts)
    return EngineService(
        config=EngineConfig(),
        curated_store=curated_store,
        repository=scenario_repository,
    )


@pytest.fixture
def client(service):
    app = FastAPI()
    configure_engine_service(app, service=service)
    with TestClient(app) as test_client:
        yield test_client
    service.shutdown()


class TestServiceSetup:
    """Tests for wiring the service onto an app."""

    def test_service_on_app_state(self, client, service):
        """The configured service is reachable from the app."""
        assert get_engine_service(client.app) is service

    def test_unconfigured_app(self):
        """Apps without the service raise a clear error."""
        with pytest.raises(RuntimeError):
            get_engine_service(FastAPI())

    def test_sql_backed_service(self):
        """A database URL switches the service to the SQL stores."""
        service = EngineService(config=EngineConfig(database_url="sqlite://"))
        service.startup()
        try:
            result = service.resolve_many([])
            assert result == []
            assert service.get_health()["status"] == "healthy"
        finally:
            service.shutdown()

    def test_configured_service_is_singleton(self, client, service):
        """Configuring an app also sets the process-wide service."""
        assert get_engine_service_singleton() is service

    def test_metrics_snapshot(self, service):
        """Metrics report the configured TTL and worker count."""
        metrics = service.get_metrics()

        assert metrics["cache_ttl_seconds"] == 86400
        assert metrics["resolver_max_workers"] == service.config.resolver_max_workers
        assert metrics["started"] is False


class TestFactorEndpoints:
    """Tests for factor resolution over HTTP."""

    def test_resolve(self, client):
        """A curated factor resolves at stage 1."""
        response = client.post(f"{PREFIX}/factors/resolve", json={"name": "oat milk"})

        assert response.status_code == 200
        body = response.json()
        assert body["stage"] == 1
        assert body["data_quality_tag"] == "primary_verified"
        assert body["value"] == pytest.approx(0.9)

    def test_resolve_not_found(self, curated_store, scenario_repository):
        """Unresolvable names are 404 when the mock is off."""
        service = EngineService(
            config=EngineConfig(mock_fallback_enabled=False),
            curated_store=curated_store,
            repository=scenario_repository,
        )
        app = FastAPI()
        configure_engine_service(app, service=service)
        with TestClient(app) as client:
            response = client.post(f"{PREFIX}/factors/resolve", json={"name": "cardamom"})
        assert response.status_code == 404

    def test_resolve_rejects_blank_name(self, client):
        """Request validation failures are 422."""
        response = client.post(f"{PREFIX}/factors/resolve", json={"name": "  "})
        assert response.status_code == 422

    def test_resolve_batch(self, client):
        """Batch results keep request order."""
        response = client.post(f"{PREFIX}/factors/resolve-batch", json={"queries": [
            {"name": "glass bottle"}, {"name": "yuzu peel"},
        ]})

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["query"]["name"] for r in results] == ["glass bottle", "yuzu peel"]
        assert results[1]["is_mock"] is True
        assert response.json()["unresolved"] == []


class TestAllocationEndpoint:
    """Tests for allocation over HTTP."""

    def test_inline_allocation(self, client, facility_impacts):
        """Inline facility impacts are allocated."""
        response = client.post(f"{PREFIX}/allocations", json={
            "facility_impacts": facility_impacts.model_dump(mode="json"),
            "product_volume": 1000,
            "product_id": "prod-1",
        })

        assert response.status_code == 201
        assert response.json()["allocation_ratio"] == pytest.approx(0.125)

    def test_stored_facility_allocation(self, client):
        """Stored readings are used when only a facility id is given."""
        response = client.post(f"{PREFIX}/allocations", json={
            "facility_id": "fac-1",
            "period_start": date(2025, 1, 1).isoformat(),
            "product_volume": 400,
        })
        assert response.status_code == 201
        assert response.json()["allocation_ratio"] == pytest.approx(0.05)

    def test_unknown_facility(self, client):
        """Missing facility readings are 404."""
        response = client.post(f"{PREFIX}/allocations", json={
            "facility_id": "fac-9", "product_volume": 10,
        })
        assert response.status_code == 404

    def test_product_exceeds_facility(self, client, facility_impacts):
        """Allocator validation errors are 422 with the message."""
        response = client.post(f"{PREFIX}/allocations", json={
            "facility_impacts": facility_impacts.model_dump(mode="json"),
            "product_volume": 9000,
        })
        assert response.status_code == 422
        assert response.json()["detail"] == "Product volume cannot exceed total facility volume"

    def test_nothing_to_allocate(self, client):
        """A request with neither input is 422."""
        response = client.post(f"{PREFIX}/allocations", json={"product_volume": 10})
        assert response.status_code == 422


class TestAggregationEndpoints:
    """Tests for Scope 3 and corporate totals over HTTP."""

    def test_scope3(self, client):
        """The scenario breakdown totals 10,172 kg."""
        response = client.get(f"{PREFIX}/organizations/org-1/scope3/2025")

        assert response.status_code == 200
        breakdown = response.json()["breakdown"]
        assert breakdown["products"] == pytest.approx(10000.0)
        assert breakdown["business_travel"] == pytest.approx(172.0)
        assert breakdown["total"] == pytest.approx(10172.0)

    def test_corporate_emissions(self, client):
        """Corporate totals include Scope 3."""
        response = client.get(f"{PREFIX}/organizations/org-1/emissions/2025")

        assert response.status_code == 200
        body = response.json()
        assert body["breakdown"]["total"] == pytest.approx(10172.0)
        assert body["has_data"] is True

    def test_bad_year(self, client):
        """Years outside the accepted range are 422."""
        assert client.get(f"{PREFIX}/organizations/org-1/scope3/99").status_code == 422


class TestReadinessAndHealth:
    """Tests for readiness and health endpoints."""

    def test_readiness(self, client):
        """Readiness reports every material."""
        response = client.post(f"{PREFIX}/readiness", json={"materials": [
            {"name": "Oat milk", "quantity": 500, "unit": "g"},
        ]})

        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert response.json()["resolved"][0]["co2e_kg"] == pytest.approx(0.45)

    def test_health(self, client):
        """Health reports the stage layout and chain status."""
        client.post(f"{PREFIX}/factors/resolve", json={"name": "oat milk"})
        body = client.get(f"{PREFIX}/health").json()

        assert body["status"] == "healthy"
        assert body["stages"] == ["curated", "cache", "external"]
        assert body["external_live"] is False
        assert body["provenance_entries"] >= 1

    def test_provenance_entries(self, client):
        """Recorded operations are listed newest first and can be filtered."""
        client.post(f"{PREFIX}/factors/resolve", json={"name": "oat milk"})
        client.get(f"{PREFIX}/organizations/org-1/scope3/2025")

        entries = client.get(f"{PREFIX}/provenance").json()
        resolves = client.get(f"{PREFIX}/provenance", params={"operation": "resolve"}).json()

        assert entries[0]["operation"] == "aggregate_scope3"
        assert [e["operation"] for e in resolves] == ["resolve"]
        assert resolves[0]["subject_id"] == "oat milk|*|global"
        assert resolves[0]["provenance_hash"]

    def test_provenance_limit_bounds(self, client):
        """The entry limit must be between 1 and 1000."""
        assert client.get(f"{PREFIX}/provenance", params={"limit": 0}).status_code == 422


class UnreachableRepository(InMemoryImpactRepository):
    def production_logs(self, organization_id, year):
        raise DataAccessError(
            "production log query failed", data_source="production_logs", operation="select",
        )


class TestErrorMapping:
    """Tests for mapping engine errors onto HTTP statuses."""

    def test_data_access_error_is_503(self, curated_store, caplog):
        """A failing record store answers 503 and logs the error chain."""
        service = EngineService(
            config=EngineConfig(), curated_store=curated_store,
            repository=UnreachableRepository(),
        )
        app = FastAPI()
        configure_engine_service(app, service=service)

        with caplog.at_level(logging.ERROR, logger="impactledger.engine.api.router"):
            with TestClient(app) as test_client:
                response = test_client.get(f"{PREFIX}/organizations/org-1/scope3/2025")
        service.shutdown()

        assert response.status_code == 503
        assert response.json()["detail"] == "production log query failed"
        assert "IL_DATA_DATA_ACCESS_ERROR" in caplog.text
        assert "production_logs" in caplog.text

# -*- coding: utf-8 -*-
"""
External LCA Source

Stage 3 of the waterfall. Queries an OpenLCA IPC server over JSON-RPC 2.0
and, when the server is unconfigured, unreachable or too slow, degrades to
a deterministic mock generator seeded by the query name.

Failure handling:
    - Unconfigured server: logged once, mock result returned.
    - Connection error, HTTP error, JSON-RPC error, malformed response or
      timeout: logged, mock result returned. A dropped connection is tried
      once more if the lookup budget allows.
    - Server answers but has no matching process: genuine miss (None).
    - Mock fallback disabled by config: unavailability is a miss.

A whole lookup, every request and poll included, is bounded by the
client's ``timeout_seconds``.

Nothing in this module writes to the cache; the waterfall stage does that
once a lookup has returned a complete result.

Example:
    >>> from impactledger.engine.external_source import ExternalFactorSource
    >>> from impactledger.engine.models import FactorQuery
    >>> source = ExternalFactorSource(client=None)
    >>> source.lookup(FactorQuery(name="Barley malt")).metadata["mock"]
    True

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import hashlib
import itertools
import logging
import re
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from impactledger.engine.categories import detect_material_category
from impactledger.engine.config import EngineConfig
from impactledger.engine.metrics import record_external_fallback
from impactledger.engine.models import (
    FactorQuery,
    ImpactSourceTag,
    ResolutionStage,
    ResolvedFactor,
    normalize_name,
)
from impactledger.engine.quality import grade_for_confidence
from impactledger.exceptions import ExternalSourceError, format_exception_chain, is_retriable

logger = logging.getLogger(__name__)

CLIMATE_CATEGORY_MARKERS = ("climate change", "global warming", "gwp100")


# =============================================================================
# OpenLCA JSON-RPC client
# =============================================================================


def _malformed(method: str, detail: str) -> ExternalSourceError:
    return ExternalSourceError(
        f"OpenLCA returned a malformed response: {detail}",
        method=method,
        context={"malformed": True},
    )


def _records(result: Any, method: str) -> List[Dict[str, Any]]:
    """A JSON-RPC result that must be a list of objects (None reads as empty)."""
    if result is None:
        return []
    if not isinstance(result, list) or not all(isinstance(r, dict) for r in result):
        raise _malformed(method, f"expected a list of objects, got {type(result).__name__}")
    return result


def _ref_id(ref: Any, method: str) -> str:
    """The ``@id`` of a descriptor or result reference."""
    ref_id = ref.get("@id") if isinstance(ref, dict) else None
    if not ref_id:
        raise _malformed(method, "reference has no @id")
    return str(ref_id)


class OpenLCAClient:
    """Minimal JSON-RPC 2.0 client for the OpenLCA 2.x IPC server.

    Every call accepts an optional ``deadline`` (a ``time.monotonic()``
    value). Calls sharing a deadline are together bounded by it, and each
    single call by ``timeout_seconds``.
    """

    # Disposal runs after the lookup deadline may have passed
    DISPOSE_TIMEOUT_SECONDS = 1.0

    def __init__(
        self,
        server_url: str,
        timeout_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
        poll_interval_seconds: float = 0.25,
    ) -> None:
        """
        Args:
            server_url: Base URL of the IPC server, e.g. ``http://lca:8080``.
            timeout_seconds: Bound on one request, and the budget of one
                whole factor lookup.
            session: Optional pre-configured requests session.
            poll_interval_seconds: Delay between result state polls.
        """
        self.base_url = server_url if server_url.endswith("/") else f"{server_url}/"
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._session = session or requests.Session()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def new_deadline(self) -> float:
        return time.monotonic() + self.timeout_seconds

    def _timeout_for(self, method: str, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.timeout_seconds
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ExternalSourceError(
                f"OpenLCA lookup exceeded its {self.timeout_seconds}s budget",
                method=method,
                retriable=True,
                context={"timed_out": True},
            )
        return min(self.timeout_seconds, remaining)

    def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        deadline: Optional[float] = None,
    ) -> Any:
        """Send one JSON-RPC request and return its ``result``.

        Raises:
            ExternalSourceError: On transport failure, timeout, HTTP error,
                JSON-RPC error or a response that is not a JSON-RPC object.
        """
        timeout = self._timeout_for(method, deadline)
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params or {},
        }
        try:
            response = self._session.post(
                f"{self.base_url}data",
                json=payload,
                timeout=timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.Timeout as e:
            raise ExternalSourceError(
                f"OpenLCA request timed out after {timeout:.1f}s",
                method=method,
                retriable=True,
                cause=e,
                context={"timed_out": True},
            ) from e
        except requests.RequestException as e:
            raise ExternalSourceError(
                f"OpenLCA request failed: {e}",
                method=method,
                retriable=True,
                cause=e,
            ) from e
        except ValueError as e:
            raise ExternalSourceError(
                "OpenLCA returned a non-JSON response",
                method=method,
                cause=e,
            ) from e

        if not isinstance(body, dict):
            raise _malformed(method, f"body is a JSON {type(body).__name__}")
        if body.get("error"):
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise ExternalSourceError(f"OpenLCA error: {message}", method=method)
        if "result" not in body:
            raise ExternalSourceError("OpenLCA returned no result", method=method)
        return body["result"]

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    def search_processes(
        self, query: str, page_size: int = 50, deadline: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        method = "search/processes"
        return _records(
            self.request(method, {"query": query, "pageSize": page_size}, deadline), method,
        )

    def get_impact_methods(self, deadline: Optional[float] = None) -> List[Dict[str, Any]]:
        method = "data/get/descriptors"
        return _records(self.request(method, {"@type": "ImpactMethod"}, deadline), method)

    def find_impact_method(
        self, name: str, deadline: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        """Exact name first, then a midpoint variant, then any partial match."""
        methods = self.get_impact_methods(deadline)
        for method in methods:
            if method.get("name") == name:
                return method
        needle = name.lower()
        partial = [m for m in methods if needle in str(m.get("name") or "").lower()]
        for method in partial:
            if "midpoint" in str(method.get("name") or "").lower():
                return method
        return partial[0] if partial else None

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def wait_for_result(self, result_id: str, deadline: Optional[float] = None) -> None:
        """Poll ``result/state`` until ready, bounded by the deadline."""
        deadline = deadline if deadline is not None else self.new_deadline()
        while True:
            state = self.request("result/state", {"@id": result_id}, deadline) or {}
            if not isinstance(state, dict):
                raise _malformed("result/state", f"state is a JSON {type(state).__name__}")
            if state.get("error"):
                raise ExternalSourceError(
                    f"OpenLCA calculation failed: {state['error']}",
                    method="result/state",
                )
            if state.get("isReady"):
                return
            if time.monotonic() + self.poll_interval_seconds >= deadline:
                raise ExternalSourceError(
                    f"OpenLCA calculation not ready within {self.timeout_seconds}s",
                    method="result/state",
                    retriable=True,
                    context={"timed_out": True, "result_id": result_id},
                )
            time.sleep(self.poll_interval_seconds)

    def dispose(self, result_id: str) -> None:
        """Release a server-side result. Failures are logged, not raised."""
        deadline = time.monotonic() + min(self.timeout_seconds, self.DISPOSE_TIMEOUT_SECONDS)
        try:
            self.request("result/dispose", {"@id": result_id}, deadline)
        except ExternalSourceError as e:
            logger.warning("Failed to dispose OpenLCA result %s: %s", result_id, e.message)

    def calculate_process(
        self,
        process_id: str,
        impact_method_name: str,
        amount: float = 1.0,
        deadline: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Calculate total impacts for ``amount`` of a process.

        The server-side result is always disposed, including on failure.
        """
        deadline = deadline if deadline is not None else self.new_deadline()
        method = self.find_impact_method(impact_method_name, deadline)
        if method is None:
            raise ExternalSourceError(
                f"Impact method not found: {impact_method_name}",
                method="data/get/descriptors",
            )
        method_id = _ref_id(method, "data/get/descriptors")

        result_ref = self.request("result/calculate", {
            "target": {"@type": "Process", "@id": process_id},
            "impactMethod": {"@type": "ImpactMethod", "@id": method_id},
            "amount": amount,
        }, deadline)
        result_id = _ref_id(result_ref, "result/calculate")
        try:
            self.wait_for_result(result_id, deadline)
            return _records(
                self.request("result/total-impacts", {"@id": result_id}, deadline),
                "result/total-impacts",
            )
        finally:
            self.dispose(result_id)

    def health_check(self) -> bool:
        try:
            self.get_impact_methods()
            return True
        except ExternalSourceError as e:
            logger.warning("OpenLCA health check failed: %s", e.message)
            return False


def extract_climate_impact(impacts: List[Dict[str, Any]]) -> Optional[float]:
    """Return the climate change amount (kg CO2e) from total impacts.

    Raises:
        ExternalSourceError: If the climate change amount is not a number.
    """
    for impact in impacts:
        category = impact.get("impactCategory")
        name = str(category.get("name") or "").lower() if isinstance(category, dict) else ""
        if not any(marker in name for marker in CLIMATE_CATEGORY_MARKERS):
            continue
        amount = impact.get("amount")
        if amount is None:
            return None
        try:
            return float(amount)
        except (TypeError, ValueError) as e:
            raise ExternalSourceError(
                f"Climate change amount is not numeric: {amount!r}",
                method="result/total-impacts",
                cause=e,
                context={"malformed": True},
            ) from e
    return None


# =============================================================================
# Deterministic mock
# =============================================================================


class MockFactorGenerator:
    """Stable stand-in factors seeded by the query name.

    The same normalised name always yields the same value, in
    [0.1, 5.0) kg CO2e/kg. Results are tagged ``hybrid_proxy`` with a low
    confidence and ``metadata["mock"] = True``.
    """

    MIN_VALUE = 0.1
    MAX_VALUE = 5.0

    def __init__(self, confidence: float = 30.0) -> None:
        self.confidence = confidence

    def value_for(self, name: str) -> float:
        normalised = normalize_name(name)
        digest = hashlib.sha256(normalised.encode("utf-8")).digest()
        fraction = int.from_bytes(digest[:8], "big") / float(2 ** 64)
        return round(self.MIN_VALUE + fraction * (self.MAX_VALUE - self.MIN_VALUE), 4)

    def generate(self, query: FactorQuery) -> ResolvedFactor:
        slug = re.sub(r"[^a-z0-9]+", "-", query.normalized_name).strip("-")
        return ResolvedFactor(
            query=query,
            name=query.name,
            category=query.category or detect_material_category(query.name),
            value=self.value_for(query.name),
            source="mock",
            stage=ResolutionStage.EXTERNAL,
            data_quality_tag=ImpactSourceTag.HYBRID_PROXY,
            quality_grade=grade_for_confidence(self.confidence),
            confidence=self.confidence,
            factor_id=f"mock-{slug}",
            is_mock=True,
            metadata={"mock": True, "generator": "sha256-name-seed"},
        )


# =============================================================================
# Stage-3 source
# =============================================================================


class ExternalFactorSource:
    """Live external lookup with mock degradation.

    One lookup is bounded by the client's ``timeout_seconds`` across all of
    its requests. A retriable failure that is not a timeout (a dropped
    connection, say) is tried again while the budget lasts, up to
    ``max_attempts`` in total.
    """

    def __init__(
        self,
        client: Optional[OpenLCAClient],
        mock: Optional[MockFactorGenerator] = None,
        impact_method: str = "ReCiPe 2016",
        confidence: float = 80.0,
        mock_fallback_enabled: bool = True,
        max_attempts: int = 2,
    ) -> None:
        self._client = client
        self._mock = mock or MockFactorGenerator()
        self.impact_method = impact_method
        self.confidence = confidence
        self.mock_fallback_enabled = mock_fallback_enabled
        self.max_attempts = max(1, max_attempts)
        self._unconfigured_logged = False

    @classmethod
    def from_config(
        cls, config: EngineConfig, session: Optional[requests.Session] = None,
    ) -> ExternalFactorSource:
        client = None
        if config.external_configured:
            client = OpenLCAClient(
                config.external_server_url,
                timeout_seconds=config.external_timeout_seconds,
                session=session,
            )
        return cls(
            client=client,
            mock=MockFactorGenerator(confidence=config.mock_confidence),
            impact_method=config.external_impact_method,
            confidence=config.external_confidence,
            mock_fallback_enabled=config.mock_fallback_enabled,
        )

    @property
    def is_live(self) -> bool:
        return self._client is not None

    def lookup(self, query: FactorQuery) -> Optional[ResolvedFactor]:
        """Resolve from the live source, degrading to the mock on failure."""
        if self._client is None:
            if not self._unconfigured_logged:
                logger.warning(
                    "External LCA source not configured; using mock factors "
                    "(set IL_ENGINE_EXTERNAL_ENABLED and IL_ENGINE_EXTERNAL_SERVER_URL)",
                )
                self._unconfigured_logged = True
            record_external_fallback("unconfigured")
            return self._fallback(query)

        deadline = self._client.new_deadline()
        attempt = 1
        while True:
            try:
                return self._lookup_live(query, deadline)
            except ExternalSourceError as e:
                if (
                    attempt < self.max_attempts
                    and is_retriable(e)
                    and not e.timed_out
                    and time.monotonic() < deadline
                ):
                    logger.info(
                        "External lookup for '%s' failed on attempt %d, retrying: %s",
                        query.name, attempt, e.message,
                    )
                    attempt += 1
                    continue
                reason = "timeout" if e.timed_out else "error"
                logger.warning(
                    "External lookup for '%s' failed (%s), falling back to mock: %s",
                    query.name, reason, format_exception_chain(e),
                )
                record_external_fallback(reason)
                return self._fallback(query)

    def _fallback(self, query: FactorQuery) -> Optional[ResolvedFactor]:
        if not self.mock_fallback_enabled:
            return None
        return self._mock.generate(query)

    def _lookup_live(self, query: FactorQuery, deadline: float) -> Optional[ResolvedFactor]:
        refs = self._client.search_processes(query.name, page_size=10, deadline=deadline)
        if not refs:
            logger.info("No external process matches '%s'", query.name)
            return None

        needle = query.normalized_name
        ref = next(
            (r for r in refs if needle in str(r.get("name") or "").lower()),
            refs[0],
        )
        process_id = _ref_id(ref, "search/processes")
        impacts = self._client.calculate_process(
            process_id, self.impact_method, deadline=deadline,
        )
        co2e = extract_climate_impact(impacts)
        if co2e is None:
            logger.info("External process %s has no climate change result", process_id)
            return None

        return ResolvedFactor(
            query=query,
            name=str(ref.get("name") or query.name),
            category=query.category or detect_material_category(query.name),
            value=max(co2e, 0.0),
            source="OpenLCA",
            stage=ResolutionStage.EXTERNAL,
            data_quality_tag=ImpactSourceTag.SECONDARY_MODELLED,
            quality_grade=grade_for_confidence(self.confidence),
            confidence=self.confidence,
            factor_id=process_id,
            is_mock=False,
            metadata={
                "mock": False,
                "process_id": process_id,
                "process_name": ref.get("name"),
                "location": ref.get("location"),
                "impact_method": self.impact_method,
            },
        )


__all__ = [
    "OpenLCAClient",
    "MockFactorGenerator",
    "ExternalFactorSource",
    "extract_climate_impact",
    "CLIMATE_CATEGORY_MARKERS",
]

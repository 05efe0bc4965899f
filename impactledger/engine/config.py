# -*- coding: utf-8 -*-
"""
Impact Engine Configuration

Centralized configuration for the impact resolution and aggregation engine
covering:
- Factor cache settings (enable, TTL)
- External LCA source connection (server URL, timeout, impact method)
- Mock fallback toggle and stage confidence levels
- Worker fan-out for batch resolution and aggregation
- Database URL for the persisted stores

All settings can be overridden via environment variables with the
``IL_ENGINE_`` prefix (e.g. ``IL_ENGINE_CACHE_TTL_SECONDS``).

Example:
    >>> from impactledger.engine.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.cache_ttl_seconds, cfg.external_enabled)

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional

from impactledger.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "IL_ENGINE_"


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Complete configuration for the ImpactLedger engine.

    All attributes can be overridden via environment variables using the
    ``IL_ENGINE_`` prefix.

    Attributes:
        cache_enabled: Whether stage 2 (the factor cache) participates.
        cache_ttl_seconds: Age after which a cache entry is treated as a miss.
        external_enabled: Whether the live external LCA source is configured.
        external_server_url: Base URL of the OpenLCA IPC server.
        external_timeout_seconds: Per-request timeout for the external source.
        external_impact_method: Name of the LCIA method used for calculations.
        mock_fallback_enabled: Whether the deterministic mock stands in when
            the external source is unavailable.
        external_confidence: Confidence reported for live external factors.
        mock_confidence: Confidence reported for mock factors.
        resolver_max_workers: Thread fan-out for batch resolution.
        aggregator_max_workers: Thread fan-out for assessment reads.
        database_url: SQLAlchemy URL for the persisted stores. Empty means
            the in-memory stores are used.
    """

    # -- Cache ---------------------------------------------------------------
    cache_enabled: bool = True
    cache_ttl_seconds: int = 86400

    # -- External source -----------------------------------------------------
    external_enabled: bool = False
    external_server_url: str = ""
    external_timeout_seconds: float = 5.0
    external_impact_method: str = "ReCiPe 2016"

    # -- Fallback and confidence ---------------------------------------------
    mock_fallback_enabled: bool = True
    external_confidence: float = 80.0
    mock_confidence: float = 30.0

    # -- Concurrency ---------------------------------------------------------
    resolver_max_workers: int = 8
    aggregator_max_workers: int = 1

    # -- Persistence ---------------------------------------------------------
    database_url: str = ""

    @property
    def external_configured(self) -> bool:
        """True when the live external source can be called."""
        return self.external_enabled and bool(self.external_server_url)

    def validate(self) -> None:
        """Reject settings that would break the resolver's invariants.

        Raises:
            ConfigurationError: If any setting is out of range.
        """
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError(
                "Cache TTL must be positive",
                context={"cache_ttl_seconds": self.cache_ttl_seconds},
            )
        if self.external_timeout_seconds <= 0:
            raise ConfigurationError(
                "External timeout must be positive",
                context={"external_timeout_seconds": self.external_timeout_seconds},
            )
        if not 0 <= self.mock_confidence <= self.external_confidence <= 80:
            raise ConfigurationError(
                "Confidence levels must satisfy 0 <= mock <= external <= 80",
                context={
                    "mock_confidence": self.mock_confidence,
                    "external_confidence": self.external_confidence,
                },
            )
        if self.resolver_max_workers < 1 or self.aggregator_max_workers < 1:
            raise ConfigurationError(
                "Worker counts must be at least 1",
                context={
                    "resolver_max_workers": self.resolver_max_workers,
                    "aggregator_max_workers": self.aggregator_max_workers,
                },
            )

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build an EngineConfig from environment variables.

        Every field can be overridden via ``IL_ENGINE_<FIELD_UPPER>``.
        Boolean values accept ``true/1/yes`` (case-insensitive).

        Returns:
            Populated EngineConfig instance.
        """
        prefix = _ENV_PREFIX

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _bool(name: str, default: bool) -> bool:
            val = _env(name)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _float(name: str, default: float) -> float:
            val = _env(name)
            if val is None:
                return default
            try:
                return float(val)
            except ValueError:
                logger.warning(
                    "Invalid float for %s%s=%s, using default %.1f",
                    prefix, name, val, default,
                )
                return default

        def _str(name: str, default: str) -> str:
            val = _env(name)
            if val is None:
                return default
            return val

        config = cls(
            cache_enabled=_bool("CACHE_ENABLED", cls.cache_enabled),
            cache_ttl_seconds=_int("CACHE_TTL_SECONDS", cls.cache_ttl_seconds),
            external_enabled=_bool("EXTERNAL_ENABLED", cls.external_enabled),
            external_server_url=_str(
                "EXTERNAL_SERVER_URL", cls.external_server_url,
            ),
            external_timeout_seconds=_float(
                "EXTERNAL_TIMEOUT_SECONDS", cls.external_timeout_seconds,
            ),
            external_impact_method=_str(
                "EXTERNAL_IMPACT_METHOD", cls.external_impact_method,
            ),
            mock_fallback_enabled=_bool(
                "MOCK_FALLBACK_ENABLED", cls.mock_fallback_enabled,
            ),
            external_confidence=_float(
                "EXTERNAL_CONFIDENCE", cls.external_confidence,
            ),
            mock_confidence=_float("MOCK_CONFIDENCE", cls.mock_confidence),
            resolver_max_workers=_int(
                "RESOLVER_MAX_WORKERS", cls.resolver_max_workers,
            ),
            aggregator_max_workers=_int(
                "AGGREGATOR_MAX_WORKERS", cls.aggregator_max_workers,
            ),
            database_url=_str("DATABASE_URL", cls.database_url),
        )

        logger.info(
            "EngineConfig loaded: cache=%s/%ds, external=%s (timeout=%.1fs), "
            "mock_fallback=%s, workers=%d/%d",
            config.cache_enabled,
            config.cache_ttl_seconds,
            config.external_configured,
            config.external_timeout_seconds,
            config.mock_fallback_enabled,
            config.resolver_max_workers,
            config.aggregator_max_workers,
        )
        return config


# ---------------------------------------------------------------------------
# Thread-safe singleton accessor
# ---------------------------------------------------------------------------

_config_instance: Optional[EngineConfig] = None
_config_lock = threading.Lock()


def get_config() -> EngineConfig:
    """Return the singleton EngineConfig, creating from env if needed."""
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = EngineConfig.from_env()
    return _config_instance


def set_config(config: EngineConfig) -> None:
    """Replace the singleton EngineConfig (useful for testing).

    Args:
        config: New configuration to install.
    """
    global _config_instance
    with _config_lock:
        _config_instance = config
    logger.info("EngineConfig replaced programmatically")


def reset_config() -> None:
    """Reset the singleton (primarily for test teardown)."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "EngineConfig",
    "get_config",
    "set_config",
    "reset_config",
]

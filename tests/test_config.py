# -*- coding: utf-8 -*-
"""Tests for engine configuration."""

import pytest

from impactledger.engine.config import EngineConfig, get_config, reset_config, set_config
from impactledger.exceptions import ConfigurationError


class TestEngineConfig:
    """Tests for defaults, validation and env loading."""

    def test_defaults(self):
        """Defaults give a 24h cache and the mock fallback."""
        config = EngineConfig()
        assert config.cache_ttl_seconds == 86400
        assert config.mock_fallback_enabled is True
        assert config.external_configured is False
        config.validate()

    def test_external_needs_url(self):
        """Enabling the external source without a URL leaves it unconfigured."""
        assert EngineConfig(external_enabled=True).external_configured is False
        assert EngineConfig(
            external_enabled=True, external_server_url="http://lca:8080",
        ).external_configured is True

    @pytest.mark.parametrize("overrides", [
        {"cache_ttl_seconds": 0},
        {"external_timeout_seconds": 0},
        {"mock_confidence": 90},
        {"external_confidence": 85},
        {"mock_confidence": -1},
        {"resolver_max_workers": 0},
        {"aggregator_max_workers": 0},
    ])
    def test_invalid_settings_rejected(self, overrides):
        """Out-of-range settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            EngineConfig(**overrides).validate()

    def test_from_env(self, monkeypatch):
        """IL_ENGINE_ variables override defaults."""
        monkeypatch.setenv("IL_ENGINE_CACHE_TTL_SECONDS", "3600")
        monkeypatch.setenv("IL_ENGINE_EXTERNAL_ENABLED", "yes")
        monkeypatch.setenv("IL_ENGINE_EXTERNAL_SERVER_URL", "http://lca:8080")
        monkeypatch.setenv("IL_ENGINE_MOCK_FALLBACK_ENABLED", "false")
        monkeypatch.setenv("IL_ENGINE_EXTERNAL_TIMEOUT_SECONDS", "2.5")

        config = EngineConfig.from_env()

        assert config.cache_ttl_seconds == 3600
        assert config.external_configured is True
        assert config.mock_fallback_enabled is False
        assert config.external_timeout_seconds == 2.5

    def test_from_env_bad_number_uses_default(self, monkeypatch):
        """Unparseable numbers fall back to the default."""
        monkeypatch.setenv("IL_ENGINE_RESOLVER_MAX_WORKERS", "many")
        assert EngineConfig.from_env().resolver_max_workers == 8

    def test_singleton(self):
        """set_config replaces and reset_config clears the singleton."""
        custom = EngineConfig(cache_ttl_seconds=60)
        set_config(custom)
        assert get_config() is custom
        reset_config()
        assert get_config() is not custom

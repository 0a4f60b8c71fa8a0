"""Tests for beacon.config: env loading and flat serialization."""

import logging

from beacon.config import Config, config_to_flat, load_config


class TestLoadConfig:
    def test_defaults(self, monkeypatch):
        for key in ("BEACON_RATE_LIMIT_BACKEND", "BEACON_MAX_STAT_ROWS", "BEACON_AUTH_ENABLED"):
            monkeypatch.delenv(key, raising=False)
        config = load_config()
        assert config.rate_limit.backend == "memory"
        assert config.rate_limit.export_max_requests == 5
        assert config.rate_limit.bulk_export_max_requests == 2
        assert config.analytics.max_stat_rows == 10000
        assert config.auth.enabled is False
        assert config.auth.user_header == "X-User-Id"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("BEACON_RATE_LIMIT_BACKEND", "Postgres")
        monkeypatch.setenv("BEACON_EXPORT_MAX_REQUESTS", "10")
        monkeypatch.setenv("BEACON_TRACKING_ENABLED", "no")
        monkeypatch.setenv("BEACON_CORS_ORIGINS", "https://a.example, https://b.example")
        monkeypatch.setenv("BEACON_LOG_LEVEL", "debug")
        config = load_config()
        assert config.rate_limit.backend == "postgres"
        assert config.rate_limit.export_max_requests == 10
        assert config.analytics.tracking_enabled is False
        assert config.cors_origins == ["https://a.example", "https://b.example"]
        assert config.log_level == "DEBUG"

    def test_unknown_backend_falls_back(self, monkeypatch, caplog):
        monkeypatch.setenv("BEACON_RATE_LIMIT_BACKEND", "redis")
        with caplog.at_level(logging.WARNING, logger="beacon.config"):
            config = load_config()
        assert config.rate_limit.backend == "memory"
        assert "redis" in caplog.text

    def test_empty_api_key_is_none(self, monkeypatch):
        monkeypatch.setenv("BEACON_API_KEY", "")
        assert load_config().auth.api_key is None


class TestConfigToFlat:
    def test_dot_keys(self):
        flat = config_to_flat(Config())
        assert flat["rate_limit.backend"] == "memory"
        assert flat["analytics.max_stat_rows"] == 10000
        assert flat["http_port"] == 8000
        assert "cors_origins" not in flat

    def test_masks_secrets(self):
        flat = config_to_flat(Config())
        assert flat["db.password"] != Config().db.password
        assert flat["auth.api_key"] is None

    def test_unmasked(self):
        flat = config_to_flat(Config(), mask_secrets=False)
        assert flat["db.password"] == Config().db.password

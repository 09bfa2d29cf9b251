"""
Unit tests for gateway configuration.
"""

import pytest
from pydantic import ValidationError

from shared.config import DEFAULT_PROGRAM_ID, GatewayConfig


class TestGatewayConfig:
    """Test cases for GatewayConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("TOKENGATE_PORT", "TOKENGATE_LEDGER_BACKEND", "TOKENGATE_RATE_LIMIT_SCOPE"):
            monkeypatch.delenv(name, raising=False)
        config = GatewayConfig()

        assert config.port == 3001
        assert config.ledger_backend == "memory"
        assert config.program_id == DEFAULT_PROGRAM_ID
        assert config.rate_limit_scope == "holder_resource"
        assert config.rate_limit_window_seconds == 60.0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TOKENGATE_PORT", "8080")
        monkeypatch.setenv("TOKENGATE_RATE_LIMIT_BACKEND", "redis")
        monkeypatch.setenv("TOKENGATE_CORS_ORIGIN", "https://a.example.com, https://b.example.com,")

        config = GatewayConfig()
        assert config.port == 8080
        assert config.rate_limit_backend == "redis"
        assert config.cors_origins_list == ["https://a.example.com", "https://b.example.com"]

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            GatewayConfig(ledger_backend="postgres")

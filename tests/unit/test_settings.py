"""Tests for configuration settings."""
import pytest
from pydantic import ValidationError

from agent_orchestrator.config.settings import Settings, get_settings, reset_settings


class TestSettings:
    """Test Settings configuration."""

    def test_settings_default_values(self, monkeypatch):
        """Test default values are set correctly."""
        monkeypatch.delenv("ORCH_MAX_WORKERS", raising=False)

        settings = Settings()

        # env is 'test' when conftest.py has run
        assert settings.env in ("development", "test")
        assert settings.log_level == "INFO"
        assert settings.snapshot_backend == "memory"
        assert settings.snapshot_key_prefix == "orchestration:"
        assert settings.max_workers == 8
        assert settings.enforce_deadlines is True
        assert settings.default_workflow_timeout_ms == 300_000
        assert settings.max_node_visits == 1000
        assert settings.finished_saga_retention == 1000
        assert settings.tool_node_cost == pytest.approx(0.1)
        assert settings.condition_branching is False
        assert settings.large_workflow_node_threshold == 10
        assert settings.high_cost_threshold == pytest.approx(100.0)

    def test_settings_env_prefix(self, monkeypatch):
        """Test that ORCH_ prefix works for environment variables."""
        monkeypatch.setenv("ORCH_ENV", "production")
        monkeypatch.setenv("ORCH_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("ORCH_CONDITION_BRANCHING", "true")
        monkeypatch.setenv("ORCH_SNAPSHOT_BACKEND", "redis")

        settings = Settings()

        assert settings.env == "production"
        assert settings.log_level == "DEBUG"
        assert settings.condition_branching is True
        assert settings.snapshot_backend == "redis"

    def test_max_workers_must_be_positive(self, monkeypatch):
        """Test that a non-positive worker count is rejected."""
        monkeypatch.setenv("ORCH_MAX_WORKERS", "0")

        with pytest.raises(ValidationError) as exc_info:
            Settings()

        assert "value must be positive" in str(exc_info.value)

    def test_max_node_visits_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(max_node_visits=-1)

    def test_negative_tool_cost_rejected(self, monkeypatch):
        """Test that a negative tool node cost is rejected."""
        monkeypatch.setenv("ORCH_TOOL_NODE_COST", "-0.5")

        with pytest.raises(ValidationError) as exc_info:
            Settings()

        assert "cost must not be negative" in str(exc_info.value)

    def test_unknown_snapshot_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(snapshot_backend="postgres")

    def test_get_settings_singleton(self):
        """Test that get_settings returns the same instance."""
        reset_settings()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

    def test_reset_settings(self):
        """Test that reset_settings creates new instance."""
        settings1 = get_settings()
        reset_settings()
        settings2 = get_settings()

        assert settings1 is not settings2

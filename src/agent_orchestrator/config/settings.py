"""Configuration and settings management using pydantic-settings."""
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Orchestrator settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="ORCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core service settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")

    # Snapshot persistence
    snapshot_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Where saga/workflow snapshots are mirrored",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (redis snapshot backend only)",
    )
    snapshot_key_prefix: str = Field(
        default="orchestration:",
        description="Key prefix for persisted snapshots",
    )

    # Execution
    max_workers: int = Field(
        default=8,
        description="Thread pool size for background saga/workflow tasks",
    )
    enforce_deadlines: bool = Field(
        default=True,
        description="Fail sagas/executions that run past their declared max execution time",
    )
    default_workflow_timeout_ms: int = Field(
        default=300_000,
        description="Max execution time for workflows that do not declare one",
    )
    max_node_visits: int = Field(
        default=1000,
        description="Safety limit on node visits per workflow execution",
    )
    finished_saga_retention: int = Field(
        default=1000,
        description="How many finished saga loops keep their final instance for wait()",
    )

    # Workflow node behaviour
    tool_node_cost: float = Field(
        default=0.1,
        description="Fixed cost charged for each TOOL node execution",
    )
    condition_branching: bool = Field(
        default=False,
        description="Let CONDITION results pick among guarded outgoing edges",
    )

    # Validation suggestions
    large_workflow_node_threshold: int = Field(
        default=10,
        description="Suggest decomposition above this many nodes",
    )
    high_cost_threshold: float = Field(
        default=100.0,
        description="Suggest optimization above this estimated cost",
    )

    @field_validator("max_workers", "max_node_visits", "finished_saga_retention")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that worker and visit limits are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("tool_node_cost", "high_cost_threshold")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate that costs are not negative."""
        if v < 0:
            raise ValueError("cost must not be negative")
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None

"""Observability package."""
from agent_orchestrator.observability.logging import (
    get_logger,
    setup_logging,
    with_trace_context,
)
from agent_orchestrator.observability.metrics import (
    InMemoryMetrics,
    MetricsSink,
    NullMetrics,
)

__all__ = [
    "get_logger",
    "InMemoryMetrics",
    "MetricsSink",
    "NullMetrics",
    "setup_logging",
    "with_trace_context",
]

"""Pytest configuration and fixtures."""
import os

import pytest

# Set test environment variables
os.environ["ORCH_ENV"] = "test"
os.environ["ORCH_SNAPSHOT_BACKEND"] = "memory"
os.environ["ORCH_REDIS_URL"] = "redis://localhost:6379/1"  # Test DB
os.environ["ORCH_MAX_WORKERS"] = "4"


class FakeAgentExecutor:
    """Agent executor returning a canned answer and cost, recording each call."""

    def __init__(self, cost: float = 10.0, output=None, error: Exception | None = None):
        self.cost = cost
        self.output = output
        self.error = error
        self.calls = []

    def run(self, config, input_data, context):
        from agent_orchestrator.runtime import ActionResult

        self.calls.append((config, input_data, context))
        if self.error is not None:
            raise self.error
        output = self.output if self.output is not None else {"answer": f"ran {context.unit_id}"}
        return ActionResult(output=output, cost=self.cost)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop the cached global settings around every test."""
    from agent_orchestrator.config import reset_settings

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings():
    """Test settings."""
    from agent_orchestrator.config import Settings

    return Settings(max_workers=4)


@pytest.fixture
def snapshot_store():
    """In-memory snapshot store."""
    from agent_orchestrator.storage import InMemorySnapshotStore

    return InMemorySnapshotStore()


@pytest.fixture
def metrics():
    """In-memory metrics sink."""
    from agent_orchestrator.observability import InMemoryMetrics

    return InMemoryMetrics()


@pytest.fixture
def execution_context():
    """Create a test execution context."""
    from agent_orchestrator.runtime import ExecutionContext

    return ExecutionContext(
        correlation_id="test-correlation-123",
        instance_id="test-instance-456",
        unit_id="test-unit",
    )


@pytest.fixture
def agent_executor():
    """Agent executor charging 10 per call."""
    return FakeAgentExecutor()


@pytest.fixture
def saga_registry():
    """Registry with the built-in saga handlers."""
    from agent_orchestrator.runtime import HandlerRegistry
    from agent_orchestrator.saga import register_default_handlers

    return register_default_handlers(HandlerRegistry("saga-test"))


@pytest.fixture
def coordinator(saga_registry, snapshot_store, metrics, settings):
    """Saga coordinator wired to in-memory collaborators."""
    from agent_orchestrator.saga import SagaCoordinator

    coordinator = SagaCoordinator(
        registry=saga_registry,
        snapshot_store=snapshot_store,
        metrics=metrics,
        settings=settings,
    )
    yield coordinator
    coordinator.shutdown()


@pytest.fixture
def workflow_executor(snapshot_store, metrics, settings, agent_executor):
    """Workflow executor with the built-in node handlers."""
    from agent_orchestrator.workflow import WorkflowExecutor

    return WorkflowExecutor(
        snapshot_store=snapshot_store,
        metrics=metrics,
        settings=settings,
        agent_executor=agent_executor,
    )


@pytest.fixture
def workflow_manager(snapshot_store, metrics, settings, agent_executor):
    """Workflow manager wired to in-memory collaborators."""
    from agent_orchestrator.workflow import WorkflowManager

    manager = WorkflowManager(
        settings=settings,
        snapshot_store=snapshot_store,
        metrics=metrics,
        agent_executor=agent_executor,
    )
    yield manager
    manager.shutdown()


@pytest.fixture
def make_agent_executor():
    """Factory for agent executors with custom cost, output or error."""
    return FakeAgentExecutor

"""Saga package: coordinator, compensation engine and step handlers."""
from agent_orchestrator.saga.compensation import CompensationEngine
from agent_orchestrator.saga.coordinator import SagaCoordinator
from agent_orchestrator.saga.handlers import register_default_handlers
from agent_orchestrator.saga.models import (
    CompensationPlan,
    CompensationResult,
    CompensationStatus,
    CompensationStep,
    CompensationStrategy,
    FailureHandling,
    ResourceRequirements,
    SagaAction,
    SagaDefinition,
    SagaEvent,
    SagaEventType,
    SagaInstance,
    SagaResult,
    SagaStatus,
    SagaStep,
)

__all__ = [
    "CompensationEngine",
    "CompensationPlan",
    "CompensationResult",
    "CompensationStatus",
    "CompensationStep",
    "CompensationStrategy",
    "FailureHandling",
    "register_default_handlers",
    "ResourceRequirements",
    "SagaAction",
    "SagaCoordinator",
    "SagaDefinition",
    "SagaEvent",
    "SagaEventType",
    "SagaInstance",
    "SagaResult",
    "SagaStatus",
    "SagaStep",
]

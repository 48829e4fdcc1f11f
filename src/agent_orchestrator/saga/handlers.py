"""Built-in saga step handlers.

Each handler is registered under its action kind; callers can replace any of
them or add new kinds without touching the coordinator.
"""
import uuid
from typing import Any

from agent_orchestrator.errors import StepExecutionError
from agent_orchestrator.observability import get_logger, with_trace_context
from agent_orchestrator.runtime import (
    ActionHandler,
    ActionResult,
    AgentExecutor,
    ExecutionContext,
    HandlerRegistry,
)
from agent_orchestrator.saga.compensation import GENERIC_COMPENSATION_KIND

logger = get_logger(__name__)

AGENT_INITIALIZATION = "agent_initialization"
RESOURCE_ALLOCATION = "resource_allocation"
TASK_EXECUTION = "task_execution"
RESULT_VALIDATION = "result_validation"

DEFAULT_RESOURCES = ("cpu", "memory", "credits")


class AgentInitializationHandler(ActionHandler):
    """Reserve an agent identity for the saga."""

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        agent_id = parameters.get("agent_id") or f"agent_{uuid.uuid4().hex[:12]}"
        return ActionResult(
            output={
                "initialized": True,
                "agent_id": agent_id,
                "agent_type": context.variables.get("agent_type"),
            }
        )


class ResourceAllocationHandler(ActionHandler):
    """Record the resources the saga holds until it finishes or compensates."""

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        resources = list(parameters.get("resources", DEFAULT_RESOURCES))
        if not resources:
            raise StepExecutionError("resource_allocation requires at least one resource")
        return ActionResult(output={"allocated": True, "resources": resources})


class TaskExecutionHandler(ActionHandler):
    """
    Run the saga's task through an agent executor.

    Without an executor the parameters' `task` is echoed back, which keeps
    dry runs and tests free of external calls.
    """

    def __init__(self, agent_executor: AgentExecutor | None = None):
        self._agent_executor = agent_executor

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        if self._agent_executor is None:
            return ActionResult(output={"executed": True, "result": parameters.get("task")})

        result = self._agent_executor.run(parameters, dict(context.results), context)
        output = result.output if isinstance(result.output, dict) else {"result": result.output}
        return ActionResult(output={"executed": True, **output}, cost=result.cost)


class ResultValidationHandler(ActionHandler):
    """
    Check the output of an earlier step.

    Parameters:
        source_step: step whose result is validated (defaults to the latest)
        required_keys: keys that must be present in that result
        min_quality: lower bound for the result's `quality` value
    """

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        if not context.results:
            raise StepExecutionError("Nothing to validate: no prior step results")

        source_step = parameters.get("source_step") or list(context.results)[-1]
        if source_step not in context.results:
            raise StepExecutionError(f"No result recorded for step {source_step}")
        result = context.results[source_step]

        required = parameters.get("required_keys", [])
        if required:
            if not isinstance(result, dict):
                raise StepExecutionError(f"Result of {source_step} is not a mapping")
            missing = [key for key in required if key not in result]
            if missing:
                raise StepExecutionError(f"Result of {source_step} is missing {missing}")

        quality = result.get("quality") if isinstance(result, dict) else None
        min_quality = parameters.get("min_quality")
        if min_quality is not None and (quality is None or quality < min_quality):
            raise StepExecutionError(
                f"Result quality {quality} of {source_step} is below {min_quality}"
            )

        return ActionResult(
            output={"validated": True, "source_step": source_step, "quality": quality}
        )


class LoggingCompensationHandler(ActionHandler):
    """Generic undo: records that the original step was compensated."""

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        original_step_id = parameters.get("original_step_id") or context.metadata.get(
            "original_step_id"
        )
        logger.info(
            "Compensating step",
            extra=with_trace_context(
                logger,
                correlation_id=context.correlation_id,
                saga_id=context.instance_id,
                step_id=original_step_id,
            ),
        )
        return ActionResult(output={"compensated": True, "original_step_id": original_step_id})


def register_default_handlers(
    registry: HandlerRegistry,
    agent_executor: AgentExecutor | None = None,
) -> HandlerRegistry:
    """
    Register the built-in step and compensation handlers.

    Args:
        registry: Registry to populate
        agent_executor: Optional collaborator used by task_execution

    Returns:
        The same registry, for chaining
    """
    registry.register(AGENT_INITIALIZATION, AgentInitializationHandler())
    registry.register(RESOURCE_ALLOCATION, ResourceAllocationHandler())
    registry.register(TASK_EXECUTION, TaskExecutionHandler(agent_executor))
    registry.register(RESULT_VALIDATION, ResultValidationHandler())
    registry.register(GENERIC_COMPENSATION_KIND, LoggingCompensationHandler())
    return registry

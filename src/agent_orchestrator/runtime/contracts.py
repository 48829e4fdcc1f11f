"""Runtime contracts shared by saga steps and workflow nodes."""
from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol

from pydantic import BaseModel, Field


class ExecutionContext(BaseModel):
    """Context handed to a step or node handler."""

    correlation_id: str = Field(..., description="Correlation ID for observability")
    instance_id: str = Field(..., description="Saga ID or workflow execution ID")
    unit_id: str = Field(..., description="Step ID or node ID being executed")
    variables: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form variables of the running instance",
    )
    results: dict[str, Any] = Field(
        default_factory=dict,
        description="Prior step results (sagas) or merged working data (workflows)",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context metadata",
    )

    def with_metadata(self, **kwargs: Any) -> "ExecutionContext":
        """
        Create a new context with additional metadata.

        Args:
            **kwargs: Metadata key-value pairs

        Returns:
            New ExecutionContext with merged metadata
        """
        new_metadata = {**self.metadata, **kwargs}
        return self.model_copy(update={"metadata": new_metadata})


class ActionResult(BaseModel):
    """What a handler reports back: its output and the cost it incurred."""

    output: Any = Field(default=None, description="Handler output")
    cost: float = Field(default=0.0, ge=0, description="Cost incurred by the action")


class ActionHandler(ABC):
    """
    Base class for pluggable step/node handlers.

    Handlers must be safe to retry at the caller's discretion; the core
    itself never retries.
    """

    @abstractmethod
    def execute(
        self,
        parameters: dict[str, Any],
        context: ExecutionContext,
    ) -> ActionResult:
        """
        Perform the action.

        Args:
            parameters: Action parameters from the definition
            context: Execution context

        Returns:
            ActionResult with output and cost

        Raises:
            Exception: Any failure; callers convert it into a state transition
        """
        pass


class AgentExecutor(Protocol):
    """External collaborator that actually runs an agent."""

    def run(
        self,
        config: dict[str, Any],
        input_data: dict[str, Any],
        context: ExecutionContext,
    ) -> ActionResult:
        """
        Run an agent.

        Args:
            config: Agent configuration (model, prompt, tools, ...)
            input_data: Data the agent works on
            context: Execution context

        Returns:
            ActionResult whose cost is the agent's reported cost
        """
        ...


class ToolExecutor(Protocol):
    """External collaborator that performs tool calls."""

    def call(
        self,
        tool_id: str,
        parameters: dict[str, Any],
        input_data: dict[str, Any],
        context: ExecutionContext,
    ) -> Any:
        ...


HandlerFn = Callable[[dict[str, Any], ExecutionContext], Any]


class FunctionHandler(ActionHandler):
    """Adapter turning a plain callable into an ActionHandler."""

    def __init__(self, fn: HandlerFn):
        self._fn = fn

    def execute(
        self,
        parameters: dict[str, Any],
        context: ExecutionContext,
    ) -> ActionResult:
        return as_action_result(self._fn(parameters, context))


def as_action_result(value: Any) -> ActionResult:
    """Normalize a handler return value; non-ActionResult values become zero-cost output."""
    if isinstance(value, ActionResult):
        return value
    return ActionResult(output=value)

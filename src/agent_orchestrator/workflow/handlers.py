"""Node handlers, one per workflow node type."""
from typing import Any

from agent_orchestrator.errors import NodeExecutionError
from agent_orchestrator.runtime import (
    ActionHandler,
    ActionResult,
    AgentExecutor,
    ExecutionContext,
    HandlerRegistry,
    ToolExecutor,
)
from agent_orchestrator.workflow.expressions import SafeExpressionEvaluator
from agent_orchestrator.workflow.models import NodeType


class PassThroughHandler(ActionHandler):
    """START and END nodes: hand the working data on unchanged, at zero cost."""

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        return ActionResult(output=dict(context.results))


class AgentNodeHandler(ActionHandler):
    """Delegate to the agent executor and fold in its reported cost."""

    def __init__(self, agent_executor: AgentExecutor | None = None):
        self._agent_executor = agent_executor

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        config = parameters.get("agent")
        if not config:
            raise NodeExecutionError(f"Agent node {context.unit_id} has no agent configuration")
        if self._agent_executor is None:
            raise NodeExecutionError("No agent executor configured")

        result = self._agent_executor.run(config, dict(context.results), context)
        output = result.output if isinstance(result.output, dict) else {"agent_output": result.output}
        return ActionResult(output=output, cost=result.cost)


class ToolNodeHandler(ActionHandler):
    """
    Call a tool at a fixed cost.

    Without a tool executor the call is recorded but not performed.
    """

    def __init__(self, tool_executor: ToolExecutor | None = None, cost: float = 0.1):
        self._tool_executor = tool_executor
        self._cost = cost

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        config = parameters.get("tool")
        if not config:
            raise NodeExecutionError(f"Tool node {context.unit_id} has no tool configuration")

        tool_id = config["tool_id"]
        tool_result = None
        if self._tool_executor is not None:
            tool_result = self._tool_executor.call(
                tool_id,
                dict(config.get("parameters") or {}),
                dict(context.results),
                context,
            )
        return ActionResult(
            output={"tool_id": tool_id, "tool_result": tool_result},
            cost=self._cost,
        )


class ConditionNodeHandler(ActionHandler):
    """Evaluate the node's expression over the working data; records `condition_result`."""

    def __init__(self, evaluator: SafeExpressionEvaluator | None = None):
        self._evaluator = evaluator or SafeExpressionEvaluator()

    def execute(self, parameters: dict[str, Any], context: ExecutionContext) -> ActionResult:
        config = parameters.get("condition")
        if not config:
            raise NodeExecutionError(
                f"Condition node {context.unit_id} has no condition configuration"
            )

        outcome = self._evaluator.evaluate_bool(config["expression"], dict(context.results))
        return ActionResult(output={"condition_result": outcome})


def register_node_handlers(
    registry: HandlerRegistry,
    agent_executor: AgentExecutor | None = None,
    tool_executor: ToolExecutor | None = None,
    tool_node_cost: float = 0.1,
) -> HandlerRegistry:
    """
    Register a handler for every node type.

    Args:
        registry: Registry to populate
        agent_executor: Collaborator for AGENT nodes
        tool_executor: Collaborator for TOOL nodes
        tool_node_cost: Fixed cost per TOOL node

    Returns:
        The same registry, for chaining
    """
    passthrough = PassThroughHandler()
    registry.register(NodeType.START.value, passthrough)
    registry.register(NodeType.END.value, passthrough)
    registry.register(NodeType.AGENT.value, AgentNodeHandler(agent_executor))
    registry.register(NodeType.TOOL.value, ToolNodeHandler(tool_executor, tool_node_cost))
    registry.register(NodeType.CONDITION.value, ConditionNodeHandler())
    return registry

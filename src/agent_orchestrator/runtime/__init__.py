"""Runtime package."""
from agent_orchestrator.runtime.contracts import (
    ActionHandler,
    ActionResult,
    AgentExecutor,
    ExecutionContext,
    FunctionHandler,
    ToolExecutor,
)
from agent_orchestrator.runtime.registry import HandlerRegistry

__all__ = [
    "ActionHandler",
    "ActionResult",
    "AgentExecutor",
    "ExecutionContext",
    "FunctionHandler",
    "HandlerRegistry",
    "ToolExecutor",
]

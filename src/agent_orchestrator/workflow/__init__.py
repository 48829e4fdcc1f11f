"""Workflow graph package: models, validation, execution and optimization."""
from agent_orchestrator.workflow.executor import WorkflowExecutor
from agent_orchestrator.workflow.expressions import SafeExpressionEvaluator
from agent_orchestrator.workflow.handlers import register_node_handlers
from agent_orchestrator.workflow.manager import ExecutionHandle, WorkflowManager
from agent_orchestrator.workflow.models import (
    AgentConfig,
    ConditionConfig,
    ExecutionStatus,
    NodeConfig,
    NodeExecution,
    NodeExecutionStatus,
    NodeType,
    ToolConfig,
    ValidationErrorType,
    ValidationIssue,
    ValidationSeverity,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowExecution,
    WorkflowInput,
    WorkflowNode,
    WorkflowOutput,
    WorkflowSpec,
    WorkflowValidation,
)
from agent_orchestrator.workflow.optimizer import GraphOptimizer
from agent_orchestrator.workflow.validator import GraphValidator

__all__ = [
    "AgentConfig",
    "ConditionConfig",
    "ExecutionHandle",
    "ExecutionStatus",
    "GraphOptimizer",
    "GraphValidator",
    "NodeConfig",
    "NodeExecution",
    "NodeExecutionStatus",
    "NodeType",
    "register_node_handlers",
    "SafeExpressionEvaluator",
    "ToolConfig",
    "ValidationErrorType",
    "ValidationIssue",
    "ValidationSeverity",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowExecution",
    "WorkflowExecutor",
    "WorkflowInput",
    "WorkflowManager",
    "WorkflowNode",
    "WorkflowOutput",
    "WorkflowSpec",
    "WorkflowValidation",
]

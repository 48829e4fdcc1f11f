"""
Workflow Models - graph definitions, executions and validation findings.

A workflow is a directed graph of typed nodes. Executions walk it from a
START node to an END node along edges.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_orchestrator.storage import utc_now


# Base cost per node type used for estimates
NODE_BASE_COST = {
    "agent": 10.0,
    "tool": 1.0,
}
DEFAULT_NODE_BASE_COST = 0.1
DEFAULT_MAX_EXECUTION_TIME_MS = 300_000


class NodeType(str, Enum):
    """Workflow node types."""
    START = "start"
    END = "end"
    AGENT = "agent"
    TOOL = "tool"
    CONDITION = "condition"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeType.START, NodeType.END)


class AgentConfig(BaseModel):
    """Configuration of an AGENT node."""
    model_id: str = Field(..., description="Model the agent runs on")
    system_prompt: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: Optional[int] = Field(None, gt=0)


class ToolConfig(BaseModel):
    """Configuration of a TOOL node."""
    tool_id: str = Field(..., description="Tool to call")
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ConditionConfig(BaseModel):
    """
    Configuration of a CONDITION node.

    Example: {"expression": "score >= 0.8 and status == 'ok'"}
    """
    expression: str = Field(..., description="Boolean expression over working data")


class NodeConfig(BaseModel):
    """Type-specific node configuration."""
    agent: Optional[AgentConfig] = None
    tool: Optional[ToolConfig] = None
    condition: Optional[ConditionConfig] = None
    timeout_ms: Optional[int] = Field(None, gt=0)
    # Declarative only; the executor never retries
    retries: int = Field(0, ge=0)


class NodePosition(BaseModel):
    """Node position in the canvas."""
    x: float = 0
    y: float = 0


class WorkflowNode(BaseModel):
    """A node in a workflow graph."""
    id: str = Field(..., description="Node ID (unique within workflow)")
    type: NodeType
    name: str = Field(..., description="Display name")
    description: Optional[str] = None
    config: NodeConfig = Field(default_factory=NodeConfig)
    position: Optional[NodePosition] = None

    @property
    def base_cost(self) -> float:
        return NODE_BASE_COST.get(self.type.value, DEFAULT_NODE_BASE_COST)


class WorkflowEdge(BaseModel):
    """
    Directed edge between two nodes.

    `condition` is a guard label; with condition branching enabled a
    CONDITION node follows the edge whose guard is "true" or "false".
    """
    id: str = Field(default_factory=lambda: f"edge_{uuid.uuid4().hex[:8]}")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    condition: Optional[str] = None
    label: Optional[str] = None


def _require_unique_node_ids(nodes: List[WorkflowNode]) -> List[WorkflowNode]:
    """Node IDs address nodes in edges and execution records; they must be unique."""
    ids = [n.id for n in nodes]
    if len(ids) != len(set(ids)):
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        raise ValueError(f"Duplicate node IDs: {duplicates}")
    return nodes


class WorkflowSpec(BaseModel):
    """Request to create (or replace) a workflow."""
    name: str
    description: str = ""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    timeout_ms: Optional[int] = Field(None, gt=0)

    @field_validator("nodes")
    @classmethod
    def validate_unique_node_ids(cls, v: List[WorkflowNode]) -> List[WorkflowNode]:
        return _require_unique_node_ids(v)


class WorkflowDefinition(BaseModel):
    """
    A registered workflow graph.

    Helper methods answer the graph questions the validator, executor and
    optimizer ask repeatedly.
    """
    id: str = Field(default_factory=lambda: f"workflow_{uuid.uuid4().hex[:12]}")
    name: str
    description: str = ""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    estimated_cost: float = 0.0
    max_execution_time_ms: int = Field(DEFAULT_MAX_EXECUTION_TIME_MS, gt=0)
    version: int = 1
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("nodes")
    @classmethod
    def validate_unique_node_ids(cls, v: List[WorkflowNode]) -> List[WorkflowNode]:
        return _require_unique_node_ids(v)

    @classmethod
    def from_spec(
        cls,
        spec: WorkflowSpec,
        workflow_id: Optional[str] = None,
        default_timeout_ms: int = DEFAULT_MAX_EXECUTION_TIME_MS,
    ) -> "WorkflowDefinition":
        """Build a definition from a creation request, estimating its cost."""
        data: Dict[str, Any] = {
            "name": spec.name,
            "description": spec.description,
            "nodes": [n.model_copy(deep=True) for n in spec.nodes],
            "edges": [e.model_copy(deep=True) for e in spec.edges],
            "variables": dict(spec.variables),
            "estimated_cost": estimate_cost(spec.nodes),
            "max_execution_time_ms": spec.timeout_ms or default_timeout_ms,
        }
        if workflow_id:
            data["id"] = workflow_id
        return cls(**data)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Get node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[WorkflowEdge]:
        """Edges leaving a node, in definition order."""
        return [e for e in self.edges if e.source == node_id]

    def nodes_of_type(self, node_type: NodeType) -> List[WorkflowNode]:
        return [n for n in self.nodes if n.type == node_type]

    def start_nodes(self) -> List[WorkflowNode]:
        return self.nodes_of_type(NodeType.START)

    def end_nodes(self) -> List[WorkflowNode]:
        return self.nodes_of_type(NodeType.END)


def estimate_cost(nodes: List[WorkflowNode]) -> float:
    """Sum of per-node base costs (AGENT 10, TOOL 1, others 0.1)."""
    return round(sum(n.base_cost for n in nodes), 6)


class WorkflowInputContext(BaseModel):
    """Caller context attached to an execution request."""
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)


class WorkflowInput(BaseModel):
    """Input of a workflow execution."""
    data: Dict[str, Any] = Field(default_factory=dict)
    context: Optional[WorkflowInputContext] = None


class ExecutionStatus(str, Enum):
    """Workflow execution status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED)


class NodeExecutionStatus(str, Enum):
    """Status of a single node run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class NodeExecution(BaseModel):
    """Record of one node visit."""
    node_id: str
    node_name: str
    status: NodeExecutionStatus = NodeExecutionStatus.PENDING
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None
    cost: float = 0.0
    error: Optional[str] = None
    retry_count: int = 0


class ExecutionError(BaseModel):
    """Terminal error of a failed execution."""
    node_id: Optional[str] = None
    error_type: str
    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    recoverable: bool = False


class OutputMetadata(BaseModel):
    """Summary attached to a successful execution's output."""
    execution_path: List[str] = Field(default_factory=list)
    total_nodes: int = 0
    successful_nodes: int = 0
    failed_nodes: int = 0
    total_cost: float = 0.0
    execution_time_ms: float = 0.0


class WorkflowOutput(BaseModel):
    """Final working data plus execution summary."""
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: OutputMetadata = Field(default_factory=OutputMetadata)


class WorkflowExecution(BaseModel):
    """A run of a workflow."""
    id: str = Field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    input: WorkflowInput = Field(default_factory=WorkflowInput)
    output: Optional[WorkflowOutput] = None
    current_node: Optional[str] = None
    executed_nodes: List[NodeExecution] = Field(default_factory=list)
    cost: float = 0.0
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None
    error: Optional[ExecutionError] = None

    @property
    def correlation_id(self) -> str:
        return self.id

    @property
    def execution_path(self) -> List[str]:
        return [ne.node_id for ne in self.executed_nodes]


class ValidationSeverity(str, Enum):
    """How serious a validation finding is. Only CRITICAL blocks activation."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ValidationErrorType(str, Enum):
    """Category of a validation finding."""
    MISSING_START = "missing_start"
    MULTIPLE_START = "multiple_start"
    MISSING_END = "missing_end"
    DISCONNECTED_NODE = "disconnected_node"
    CYCLE_DETECTED = "cycle_detected"
    MISSING_CONFIGURATION = "missing_configuration"
    DANGLING_EDGE = "dangling_edge"
    INVALID_CONDITION = "invalid_condition"


class ValidationIssue(BaseModel):
    """One validation finding."""
    model_config = ConfigDict(frozen=True)

    type: ValidationErrorType
    severity: ValidationSeverity
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None


class WorkflowValidation(BaseModel):
    """Result of validating a workflow graph."""
    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    @property
    def critical(self) -> List[ValidationIssue]:
        return [e for e in self.errors if e.severity == ValidationSeverity.CRITICAL]

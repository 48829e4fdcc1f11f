"""
Workflow Executor - walks a workflow graph from its start node.

Each node runs through the handler registered for its type. Outputs are
merged into one working-data dict that is handed to the next node, and the
node's cost is added to the execution total. The walk ends at an END node,
at a node without an outgoing edge, or at the first node failure.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Optional

from agent_orchestrator.config import get_settings, Settings
from agent_orchestrator.errors import WorkflowDeadlineExceeded, WorkflowRoutingError
from agent_orchestrator.observability import (
    get_logger,
    InMemoryMetrics,
    MetricsSink,
    with_trace_context,
)
from agent_orchestrator.runtime import (
    AgentExecutor,
    ExecutionContext,
    HandlerRegistry,
    ToolExecutor,
)
from agent_orchestrator.storage import (
    get_snapshot_store,
    Snapshot,
    SnapshotKind,
    SnapshotStore,
    utc_now,
)
from agent_orchestrator.workflow.handlers import register_node_handlers
from agent_orchestrator.workflow.models import (
    ExecutionError,
    ExecutionStatus,
    NodeExecution,
    NodeExecutionStatus,
    NodeType,
    OutputMetadata,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowInput,
    WorkflowNode,
    WorkflowOutput,
)


logger = get_logger(__name__)


class WorkflowExecutor:
    """
    Executes workflow graphs one node at a time.

    The executor keeps no per-execution state, so one instance can run many
    executions concurrently from different threads.
    """

    def __init__(
        self,
        registry: Optional[HandlerRegistry] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        metrics: Optional[MetricsSink] = None,
        settings: Optional[Settings] = None,
        agent_executor: Optional[AgentExecutor] = None,
        tool_executor: Optional[ToolExecutor] = None,
    ):
        """
        Initialize executor.

        Args:
            registry: Node handlers keyed by node type (built-in handlers if not provided)
            snapshot_store: Snapshot store (selected from settings if not provided)
            metrics: Metrics sink (in-memory if not provided)
            settings: Settings (global settings if not provided)
            agent_executor: Collaborator for AGENT nodes (built-in handlers only)
            tool_executor: Collaborator for TOOL nodes (built-in handlers only)
        """
        self.settings = settings or get_settings()
        self.registry = registry or register_node_handlers(
            HandlerRegistry("nodes"),
            agent_executor=agent_executor,
            tool_executor=tool_executor,
            tool_node_cost=self.settings.tool_node_cost,
        )
        self.snapshot_store = snapshot_store or get_snapshot_store(self.settings)
        self.metrics = metrics or InMemoryMetrics()

    def execute(
        self,
        workflow: WorkflowDefinition,
        workflow_input: Optional[WorkflowInput] = None,
        execution: Optional[WorkflowExecution] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> WorkflowExecution:
        """
        Run a workflow to completion.

        Args:
            workflow: Workflow to run
            workflow_input: Input data and caller context
            execution: Pre-created execution record to fill in (created if not provided)
            cancel_event: Set to cancel the execution at the next node boundary

        Returns:
            The finished WorkflowExecution (COMPLETED, FAILED or CANCELLED)
        """
        workflow_input = workflow_input or WorkflowInput()
        if execution is None:
            execution = WorkflowExecution(workflow_id=workflow.id, input=workflow_input)

        execution.status = ExecutionStatus.RUNNING
        execution.start_time = utc_now()
        started = time.monotonic()
        deadline = None
        if self.settings.enforce_deadlines:
            deadline = started + workflow.max_execution_time_ms / 1000.0

        log_extra = with_trace_context(
            logger,
            correlation_id=execution.correlation_id,
            workflow_id=workflow.id,
            execution_id=execution.id,
        )
        logger.info("Workflow execution started", extra=log_extra)
        self._persist(execution)

        variables = dict(workflow.variables)
        if workflow_input.context is not None:
            variables.update(workflow_input.context.variables)
        data: Dict[str, Any] = {**variables, **workflow_input.data}

        starts = workflow.start_nodes()
        node: Optional[WorkflowNode] = starts[0] if starts else None
        if node is None:
            self._fail(execution, None, WorkflowRoutingError("Workflow has no start node"))

        visits = 0
        while node is not None:
            if cancel_event is not None and cancel_event.is_set():
                execution.status = ExecutionStatus.CANCELLED
                logger.info("Workflow execution cancelled", extra={**log_extra, "node_id": node.id})
                break
            if deadline is not None and time.monotonic() > deadline:
                self._fail(execution, node.id, WorkflowDeadlineExceeded(
                    f"Execution exceeded max execution time of {workflow.max_execution_time_ms}ms"
                ))
                break
            if visits >= self.settings.max_node_visits:
                self._fail(execution, node.id, WorkflowRoutingError(
                    f"Execution exceeded {self.settings.max_node_visits} node visits"
                ))
                break
            visits += 1

            execution.current_node = node.id
            record = self._run_node(workflow, execution, node, data, variables)
            execution.executed_nodes.append(record)
            if record.status == NodeExecutionStatus.FAILED:
                break

            execution.cost += record.cost
            data.update(record.output or {})
            self._persist(execution)

            if node.type == NodeType.END:
                execution.status = ExecutionStatus.COMPLETED
                break

            try:
                node = self._next_node(workflow, node, record.output or {})
            except WorkflowRoutingError as e:
                self._fail(execution, node.id, e)
                break

        execution.end_time = utc_now()
        execution.duration_ms = (time.monotonic() - started) * 1000
        if execution.status == ExecutionStatus.COMPLETED:
            execution.output = WorkflowOutput(data=data, metadata=self._output_metadata(execution))

        self._record_metrics(workflow, execution)
        self._persist(execution)
        logger.info(
            "Workflow execution finished",
            extra={
                **log_extra,
                "status": execution.status.value,
                "cost": execution.cost,
                "nodes": len(execution.executed_nodes),
                "duration_ms": execution.duration_ms,
            },
        )
        return execution

    def _run_node(
        self,
        workflow: WorkflowDefinition,
        execution: WorkflowExecution,
        node: WorkflowNode,
        data: Dict[str, Any],
        variables: Dict[str, Any],
    ) -> NodeExecution:
        """Run one node; handler exceptions become a FAILED record and fail the execution."""
        record = NodeExecution(
            node_id=node.id,
            node_name=node.name,
            status=NodeExecutionStatus.RUNNING,
            input=dict(data),
        )
        node_started = time.monotonic()
        context = ExecutionContext(
            correlation_id=execution.correlation_id,
            instance_id=execution.id,
            unit_id=node.id,
            variables=dict(variables),
            results=dict(data),
            metadata={
                "workflow_id": workflow.id,
                "node_type": node.type.value,
                "node_name": node.name,
            },
        )

        try:
            result = self.registry.execute(node.type.value, node.config.model_dump(), context)
            output = result.output
            if output is None:
                output = {}
            elif not isinstance(output, dict):
                output = {"output": output}
            record.output = output
            record.cost = result.cost
            record.status = NodeExecutionStatus.COMPLETED
        except Exception as e:
            record.status = NodeExecutionStatus.FAILED
            record.error = str(e)
            self._fail(execution, node.id, e)
            logger.error(
                "Node execution failed",
                extra=with_trace_context(
                    logger,
                    correlation_id=execution.correlation_id,
                    workflow_id=workflow.id,
                    execution_id=execution.id,
                    node_id=node.id,
                    error=str(e),
                    error_type=type(e).__name__,
                ),
            )

        record.end_time = utc_now()
        record.duration_ms = (time.monotonic() - node_started) * 1000
        self.metrics.increment(
            "workflow.node.executions",
            tags={"type": node.type.value, "status": record.status.value},
        )
        return record

    def _next_node(
        self,
        workflow: WorkflowDefinition,
        node: WorkflowNode,
        output: Dict[str, Any],
    ) -> WorkflowNode:
        """
        Pick the node to run next.

        The first outgoing edge is taken. With condition branching enabled a
        CONDITION node instead takes the first edge guarded by its outcome
        ("true"/"false"), falling back to unguarded edges.
        """
        edges = workflow.outgoing_edges(node.id)
        if not edges:
            raise WorkflowRoutingError(f"No outgoing edge from node {node.id}")

        edge = edges[0]
        if self.settings.condition_branching and node.type == NodeType.CONDITION:
            outcome = "true" if output.get("condition_result") else "false"
            guarded = [
                e for e in edges
                if e.condition is not None and e.condition.strip().lower() == outcome
            ]
            candidates = guarded or [e for e in edges if e.condition is None]
            if not candidates:
                raise WorkflowRoutingError(
                    f"No edge from node {node.id} matches condition result {outcome}"
                )
            edge = candidates[0]

        target = workflow.get_node(edge.target)
        if target is None:
            raise WorkflowRoutingError(f"Edge {edge.id} targets unknown node {edge.target}")
        return target

    def _fail(
        self,
        execution: WorkflowExecution,
        node_id: Optional[str],
        error: Exception,
    ) -> None:
        execution.status = ExecutionStatus.FAILED
        execution.error = ExecutionError(
            node_id=node_id,
            error_type=type(error).__name__,
            message=str(error),
        )

    def _output_metadata(self, execution: WorkflowExecution) -> OutputMetadata:
        records = execution.executed_nodes
        return OutputMetadata(
            execution_path=execution.execution_path,
            total_nodes=len(records),
            successful_nodes=sum(1 for r in records if r.status == NodeExecutionStatus.COMPLETED),
            failed_nodes=sum(1 for r in records if r.status == NodeExecutionStatus.FAILED),
            total_cost=execution.cost,
            execution_time_ms=execution.duration_ms or 0.0,
        )

    def _record_metrics(self, workflow: WorkflowDefinition, execution: WorkflowExecution) -> None:
        tags = {"workflow": workflow.id, "status": execution.status.value}
        self.metrics.increment("workflow.executions", tags=tags)
        self.metrics.histogram("workflow.duration_ms", execution.duration_ms or 0.0, tags=tags)
        self.metrics.histogram("workflow.cost", execution.cost, tags=tags)

    def _persist(self, execution: WorkflowExecution) -> None:
        """Mirror the execution to the snapshot store; failures are logged and swallowed."""
        snapshot = Snapshot(
            id=execution.id,
            kind=SnapshotKind.WORKFLOW_EXECUTION,
            definition_id=execution.workflow_id,
            status=execution.status.value,
            cursor=execution.current_node,
            correlation_id=execution.correlation_id,
            started_at=execution.start_time,
            completed_at=execution.end_time,
            error=execution.error.message if execution.error else None,
            metadata={
                "executed_nodes": len(execution.executed_nodes),
                "cost": execution.cost,
            },
        )
        try:
            self.snapshot_store.put(execution.id, snapshot)
        except Exception as e:
            self.metrics.increment(
                "snapshot.failures",
                tags={"kind": SnapshotKind.WORKFLOW_EXECUTION.value},
            )
            logger.warning(
                "Failed to persist execution snapshot",
                extra=with_trace_context(
                    logger,
                    workflow_id=execution.workflow_id,
                    execution_id=execution.id,
                    error=str(e),
                ),
            )

"""
Workflow Manager - registry and execution front door for workflow graphs.

Workflows are validated on create/update, stored by ID, and executed either
inline or on a background thread pool. Active executions can be cancelled.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agent_orchestrator.config import get_settings, Settings
from agent_orchestrator.errors import (
    ExecutionNotFoundError,
    ShutdownError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from agent_orchestrator.observability import (
    get_logger,
    InMemoryMetrics,
    MetricsSink,
    with_trace_context,
)
from agent_orchestrator.runtime import AgentExecutor, HandlerRegistry, ToolExecutor
from agent_orchestrator.storage import (
    get_snapshot_store,
    RecoveryCandidate,
    SnapshotKind,
    SnapshotStore,
    utc_now,
)
from agent_orchestrator.workflow.executor import WorkflowExecutor
from agent_orchestrator.workflow.models import (
    ExecutionError,
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowInput,
    WorkflowSpec,
    WorkflowValidation,
)
from agent_orchestrator.workflow.optimizer import GraphOptimizer
from agent_orchestrator.workflow.validator import GraphValidator


logger = get_logger(__name__)

RESUMABLE_STATUSES = (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)


@dataclass
class ActiveExecution:
    """An execution that has been submitted or is running."""
    execution: WorkflowExecution
    cancel_event: threading.Event = field(default_factory=threading.Event)


@dataclass
class ExecutionHandle:
    """Handle returned by submit_workflow."""
    execution_id: str
    workflow_id: str
    future: Future

    def result(self, timeout: Optional[float] = None) -> WorkflowExecution:
        """Wait for the execution to finish and return it."""
        return self.future.result(timeout=timeout)

    def done(self) -> bool:
        return self.future.done()


class WorkflowManager:
    """
    Creates, stores and runs workflows.

    Lookups of unknown workflows or executions raise; everything that goes
    wrong inside an execution is reported on the returned WorkflowExecution.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[HandlerRegistry] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        metrics: Optional[MetricsSink] = None,
        agent_executor: Optional[AgentExecutor] = None,
        tool_executor: Optional[ToolExecutor] = None,
    ):
        """
        Initialize manager.

        Args:
            settings: Settings (global settings if not provided)
            registry: Node handler registry passed to the executor
            snapshot_store: Snapshot store (selected from settings if not provided)
            metrics: Metrics sink (in-memory if not provided)
            agent_executor: Collaborator for AGENT nodes
            tool_executor: Collaborator for TOOL nodes
        """
        self.settings = settings or get_settings()
        self.snapshot_store = snapshot_store or get_snapshot_store(self.settings)
        self.metrics = metrics or InMemoryMetrics()
        self.validator = GraphValidator(settings=self.settings)
        self.optimizer = GraphOptimizer()
        self.executor = WorkflowExecutor(
            registry=registry,
            snapshot_store=self.snapshot_store,
            metrics=self.metrics,
            settings=self.settings,
            agent_executor=agent_executor,
            tool_executor=tool_executor,
        )

        self._lock = threading.Lock()
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._active: Dict[str, ActiveExecution] = {}
        self._closed = False
        self._pool = ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="workflow",
        )

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def create_workflow(self, spec: WorkflowSpec) -> WorkflowDefinition:
        """
        Validate and register a workflow.

        Raises:
            WorkflowValidationError: If validation reports CRITICAL findings
        """
        self._require_valid(spec)
        workflow = WorkflowDefinition.from_spec(
            spec,
            default_timeout_ms=self.settings.default_workflow_timeout_ms,
        )
        with self._lock:
            self._workflows[workflow.id] = workflow

        logger.info(
            "Workflow created",
            extra=with_trace_context(
                logger,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                nodes=len(workflow.nodes),
                estimated_cost=workflow.estimated_cost,
            ),
        )
        return workflow

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """
        Get workflow by ID.

        Raises:
            WorkflowNotFoundError: If no workflow has the ID
        """
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return workflow

    def list_workflows(self) -> List[WorkflowDefinition]:
        with self._lock:
            return list(self._workflows.values())

    def update_workflow(self, workflow_id: str, spec: WorkflowSpec) -> WorkflowDefinition:
        """
        Replace a workflow's graph, bumping its version.

        Raises:
            WorkflowNotFoundError: If no workflow has the ID
            WorkflowValidationError: If the new graph is invalid
        """
        current = self.get_workflow(workflow_id)
        self._require_valid(spec)

        updated = WorkflowDefinition.from_spec(
            spec,
            workflow_id=workflow_id,
            default_timeout_ms=self.settings.default_workflow_timeout_ms,
        ).model_copy(update={
            "version": current.version + 1,
            "created_at": current.created_at,
            "is_active": current.is_active,
        })
        with self._lock:
            self._workflows[workflow_id] = updated

        logger.info(
            "Workflow updated",
            extra=with_trace_context(logger, workflow_id=workflow_id, version=updated.version),
        )
        return updated

    def delete_workflow(self, workflow_id: str) -> None:
        """
        Remove a workflow and cancel its active executions.

        Raises:
            WorkflowNotFoundError: If no workflow has the ID
        """
        self.get_workflow(workflow_id)
        with self._lock:
            self._workflows.pop(workflow_id, None)
            active = [a for a in self._active.values() if a.execution.workflow_id == workflow_id]

        for entry in active:
            entry.cancel_event.set()
        logger.info(
            "Workflow deleted",
            extra=with_trace_context(logger, workflow_id=workflow_id, cancelled=len(active)),
        )

    def validate_workflow(self, workflow_id: str) -> WorkflowValidation:
        return self.validator.validate(self.get_workflow(workflow_id))

    def optimize_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """Optimize a stored workflow in place and return the new definition."""
        optimized = self.optimizer.optimize(self.get_workflow(workflow_id))
        with self._lock:
            if workflow_id in self._workflows:
                self._workflows[workflow_id] = optimized
        return optimized

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def execute_workflow(
        self,
        workflow_id: str,
        workflow_input: Optional[WorkflowInput] = None,
    ) -> WorkflowExecution:
        """
        Run a stored workflow on the calling thread.

        Raises:
            WorkflowNotFoundError: If no workflow has the ID
        """
        workflow = self.get_workflow(workflow_id)
        entry = self._register(workflow, workflow_input)
        return self._run(workflow, entry)

    def execute_definition(
        self,
        spec: WorkflowSpec,
        workflow_input: Optional[WorkflowInput] = None,
    ) -> WorkflowExecution:
        """
        Validate and run a workflow without registering it.

        Raises:
            WorkflowValidationError: If the graph is invalid
        """
        self._require_valid(spec)
        workflow = WorkflowDefinition.from_spec(
            spec,
            workflow_id=f"temp_{utc_now().strftime('%Y%m%d%H%M%S%f')}",
            default_timeout_ms=self.settings.default_workflow_timeout_ms,
        )
        entry = self._register(workflow, workflow_input)
        return self._run(workflow, entry)

    def submit_workflow(
        self,
        workflow_id: str,
        workflow_input: Optional[WorkflowInput] = None,
    ) -> ExecutionHandle:
        """
        Run a stored workflow on the background pool.

        Raises:
            WorkflowNotFoundError: If no workflow has the ID
            ShutdownError: If the manager has been shut down
        """
        if self._closed:
            raise ShutdownError("Workflow manager is shut down")
        workflow = self.get_workflow(workflow_id)
        entry = self._register(workflow, workflow_input)
        try:
            future = self._pool.submit(self._run, workflow, entry)
        except RuntimeError as e:
            with self._lock:
                self._active.pop(entry.execution.id, None)
            raise ShutdownError("Workflow manager is shut down") from e
        return ExecutionHandle(
            execution_id=entry.execution.id,
            workflow_id=workflow_id,
            future=future,
        )

    def cancel_execution(self, execution_id: str) -> None:
        """
        Request cancellation; the execution stops at its next node boundary.

        Raises:
            ExecutionNotFoundError: If the execution is not active
        """
        with self._lock:
            entry = self._active.get(execution_id)
        if entry is None:
            raise ExecutionNotFoundError(f"Execution not active: {execution_id}")

        entry.cancel_event.set()
        logger.info(
            "Execution cancellation requested",
            extra=with_trace_context(
                logger,
                workflow_id=entry.execution.workflow_id,
                execution_id=execution_id,
            ),
        )

    def get_active_executions(self) -> List[WorkflowExecution]:
        """Executions that are pending or running."""
        with self._lock:
            return [a.execution for a in self._active.values()]

    def recover(self) -> List[RecoveryCandidate]:
        """
        Find executions a previous process left pending or running.

        Candidates are logged and returned; they are not resumed.
        """
        try:
            snapshots = self.snapshot_store.scan(
                status_filter=[s.value for s in RESUMABLE_STATUSES],
                kind=SnapshotKind.WORKFLOW_EXECUTION,
            )
        except Exception as e:
            logger.error("Execution recovery scan failed", extra={"error": str(e)})
            return []

        with self._lock:
            active_ids = set(self._active)
        candidates = [
            RecoveryCandidate.from_snapshot(s) for s in snapshots if s.id not in active_ids
        ]
        for candidate in candidates:
            logger.warning(
                "Found interrupted execution; not resuming",
                extra=with_trace_context(
                    logger,
                    workflow_id=candidate.definition_id,
                    execution_id=candidate.id,
                    status=candidate.status,
                    current_node=candidate.cursor,
                ),
            )
        logger.info(f"Execution recovery scan found {len(candidates)} interrupted execution(s)")
        return candidates

    def shutdown(self, wait: bool = True) -> None:
        """Cancel pending background work and stop the pool."""
        self._closed = True
        if not wait:
            with self._lock:
                for entry in self._active.values():
                    entry.cancel_event.set()
        self._pool.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_valid(self, spec: WorkflowSpec) -> WorkflowValidation:
        validation = self.validator.validate(spec)
        if not validation.is_valid:
            messages = "; ".join(i.message for i in validation.critical)
            raise WorkflowValidationError(f"Invalid workflow: {messages}", validation)
        return validation

    def _register(
        self,
        workflow: WorkflowDefinition,
        workflow_input: Optional[WorkflowInput],
    ) -> ActiveExecution:
        execution = WorkflowExecution(
            workflow_id=workflow.id,
            input=workflow_input or WorkflowInput(),
        )
        entry = ActiveExecution(execution=execution)
        with self._lock:
            self._active[execution.id] = entry
        return entry

    def _run(self, workflow: WorkflowDefinition, entry: ActiveExecution) -> WorkflowExecution:
        execution = entry.execution
        try:
            return self.executor.execute(
                workflow,
                execution.input,
                execution=execution,
                cancel_event=entry.cancel_event,
            )
        except Exception as e:
            logger.exception(
                "Workflow execution crashed",
                extra=with_trace_context(logger, workflow_id=workflow.id, execution_id=execution.id),
            )
            execution.status = ExecutionStatus.FAILED
            execution.end_time = utc_now()
            execution.error = ExecutionError(
                node_id=execution.current_node,
                error_type=type(e).__name__,
                message=str(e),
            )
            return execution
        finally:
            with self._lock:
                self._active.pop(entry.execution.id, None)

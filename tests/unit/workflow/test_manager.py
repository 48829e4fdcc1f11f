"""Tests for the workflow manager."""
import threading

import pytest

from agent_orchestrator.errors import (
    ExecutionNotFoundError,
    ShutdownError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from agent_orchestrator.runtime import HandlerRegistry
from agent_orchestrator.storage import Snapshot, SnapshotKind, utc_now
from agent_orchestrator.workflow import (
    AgentConfig,
    ExecutionStatus,
    NodeConfig,
    NodeType,
    register_node_handlers,
    ToolConfig,
    WorkflowEdge,
    WorkflowInput,
    WorkflowManager,
    WorkflowNode,
    WorkflowSpec,
)


def linear_spec(name="linear", timeout_ms=None):
    return WorkflowSpec(
        name=name,
        nodes=[
            WorkflowNode(id="start", type=NodeType.START, name="Start"),
            WorkflowNode(
                id="a",
                type=NodeType.AGENT,
                name="Answer",
                config=NodeConfig(agent=AgentConfig(model_id="test-model")),
            ),
            WorkflowNode(id="end", type=NodeType.END, name="End"),
        ],
        edges=[
            WorkflowEdge(id="e1", source="start", target="a"),
            WorkflowEdge(id="e2", source="a", target="end"),
        ],
        timeout_ms=timeout_ms,
    )


def cyclic_spec():
    spec = linear_spec("cyclic")
    return spec.model_copy(update={"edges": spec.edges + [WorkflowEdge(id="e3", source="a", target="a")]})


class TestDefinitions:
    def test_create_workflow(self, workflow_manager, settings):
        workflow = workflow_manager.create_workflow(linear_spec())

        assert workflow.id.startswith("workflow_")
        assert workflow.version == 1
        assert workflow.estimated_cost == pytest.approx(10.2)
        assert workflow.max_execution_time_ms == settings.default_workflow_timeout_ms
        assert workflow_manager.get_workflow(workflow.id) is workflow
        assert workflow_manager.list_workflows() == [workflow]

    def test_create_uses_requested_timeout(self, workflow_manager):
        workflow = workflow_manager.create_workflow(linear_spec(timeout_ms=5000))

        assert workflow.max_execution_time_ms == 5000

    def test_create_invalid_workflow_raises(self, workflow_manager):
        with pytest.raises(WorkflowValidationError) as exc_info:
            workflow_manager.create_workflow(cyclic_spec())

        assert not exc_info.value.validation.is_valid
        assert "Cycle detected" in str(exc_info.value)
        assert workflow_manager.list_workflows() == []

    def test_unknown_workflow(self, workflow_manager):
        with pytest.raises(WorkflowNotFoundError):
            workflow_manager.get_workflow("workflow_missing")
        with pytest.raises(WorkflowNotFoundError):
            workflow_manager.execute_workflow("workflow_missing")
        with pytest.raises(WorkflowNotFoundError):
            workflow_manager.delete_workflow("workflow_missing")

    def test_update_bumps_version(self, workflow_manager):
        original = workflow_manager.create_workflow(linear_spec())

        updated = workflow_manager.update_workflow(original.id, linear_spec("renamed"))

        assert updated.id == original.id
        assert updated.name == "renamed"
        assert updated.version == 2
        assert updated.created_at == original.created_at
        assert workflow_manager.get_workflow(original.id) is updated

    def test_update_with_invalid_graph_keeps_previous(self, workflow_manager):
        original = workflow_manager.create_workflow(linear_spec())

        with pytest.raises(WorkflowValidationError):
            workflow_manager.update_workflow(original.id, cyclic_spec())

        assert workflow_manager.get_workflow(original.id) is original

    def test_delete_workflow(self, workflow_manager):
        workflow = workflow_manager.create_workflow(linear_spec())

        workflow_manager.delete_workflow(workflow.id)

        with pytest.raises(WorkflowNotFoundError):
            workflow_manager.get_workflow(workflow.id)

    def test_validate_and_optimize_stored_workflow(self, workflow_manager):
        workflow = workflow_manager.create_workflow(linear_spec())

        assert workflow_manager.validate_workflow(workflow.id).is_valid
        optimized = workflow_manager.optimize_workflow(workflow.id)
        assert [n.id for n in optimized.nodes] == ["start", "a", "end"]
        assert workflow_manager.get_workflow(workflow.id) is optimized


class TestExecution:
    def test_execute_workflow(self, workflow_manager, metrics):
        workflow = workflow_manager.create_workflow(linear_spec())

        execution = workflow_manager.execute_workflow(workflow.id, WorkflowInput(data={"q": "hi"}))

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.workflow_id == workflow.id
        assert execution.cost == 10
        assert execution.output.data["answer"] == "ran a"
        assert workflow_manager.get_active_executions() == []
        assert metrics.counter_value(
            "workflow.executions", {"workflow": workflow.id, "status": "completed"}
        ) == 1

    def test_execute_definition_uses_temporary_id(self, workflow_manager):
        execution = workflow_manager.execute_definition(linear_spec())

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.workflow_id.startswith("temp_")
        assert workflow_manager.list_workflows() == []

    def test_execute_definition_rejects_invalid_graph(self, workflow_manager):
        with pytest.raises(WorkflowValidationError):
            workflow_manager.execute_definition(cyclic_spec())

    def test_submit_workflow(self, workflow_manager):
        workflow = workflow_manager.create_workflow(linear_spec())

        handle = workflow_manager.submit_workflow(workflow.id)
        execution = handle.result(timeout=5)

        assert handle.done()
        assert execution.id == handle.execution_id
        assert execution.status == ExecutionStatus.COMPLETED

    def test_submit_after_shutdown_is_rejected(self, workflow_manager):
        workflow = workflow_manager.create_workflow(linear_spec())
        workflow_manager.shutdown()

        with pytest.raises(ShutdownError):
            workflow_manager.submit_workflow(workflow.id)

        assert workflow_manager.get_active_executions() == []

    def test_cancel_unknown_execution(self, workflow_manager):
        with pytest.raises(ExecutionNotFoundError):
            workflow_manager.cancel_execution("exec_missing")

    def test_cancel_running_execution(self, snapshot_store, metrics, settings):
        entered = threading.Event()
        release = threading.Event()
        registry = register_node_handlers(HandlerRegistry("nodes"))

        def blocking_tool(params, ctx):
            entered.set()
            release.wait(5)
            return {"done": True}

        registry.register("tool", blocking_tool)
        manager = WorkflowManager(
            settings=settings,
            registry=registry,
            snapshot_store=snapshot_store,
            metrics=metrics,
        )
        spec = WorkflowSpec(
            name="blocking",
            nodes=[
                WorkflowNode(id="start", type=NodeType.START, name="Start"),
                WorkflowNode(
                    id="t",
                    type=NodeType.TOOL,
                    name="Block",
                    config=NodeConfig(tool=ToolConfig(tool_id="block")),
                ),
                WorkflowNode(id="end", type=NodeType.END, name="End"),
            ],
            edges=[
                WorkflowEdge(id="e1", source="start", target="t"),
                WorkflowEdge(id="e2", source="t", target="end"),
            ],
        )
        try:
            workflow = manager.create_workflow(spec)
            handle = manager.submit_workflow(workflow.id)
            assert entered.wait(5)
            assert [e.id for e in manager.get_active_executions()] == [handle.execution_id]

            manager.cancel_execution(handle.execution_id)
            release.set()
            execution = handle.result(timeout=5)
        finally:
            release.set()
            manager.shutdown()

        assert execution.status == ExecutionStatus.CANCELLED
        assert execution.execution_path == ["start", "t"]
        assert manager.get_active_executions() == []


class TestRecovery:
    def test_recover_reports_interrupted_executions(self, workflow_manager, snapshot_store):
        for snapshot_id, status in [("exec_running", "running"), ("exec_done", "completed")]:
            snapshot_store.put(snapshot_id, Snapshot(
                id=snapshot_id,
                kind=SnapshotKind.WORKFLOW_EXECUTION,
                definition_id="workflow_1",
                status=status,
                cursor="a",
                started_at=utc_now(),
            ))
        snapshot_store.put("saga_running", Snapshot(
            id="saga_running",
            kind=SnapshotKind.SAGA,
            definition_id="saga_def",
            status="in_progress",
            started_at=utc_now(),
        ))

        candidates = workflow_manager.recover()

        assert [c.id for c in candidates] == ["exec_running"]
        assert candidates[0].cursor == "a"
        assert candidates[0].kind == SnapshotKind.WORKFLOW_EXECUTION

    def test_recover_tolerates_store_failure(self, settings):
        class BrokenStore:
            def scan(self, status_filter=None, kind=None):
                raise ConnectionError("offline")

        manager = WorkflowManager(settings=settings, snapshot_store=BrokenStore())
        try:
            assert manager.recover() == []
        finally:
            manager.shutdown()

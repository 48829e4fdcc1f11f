"""
Graph Optimizer - storage/display cleanup of workflow graphs.

The executor always follows edges, so nothing done here changes how a
workflow runs.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Optional, Set

from agent_orchestrator.observability import get_logger, with_trace_context
from agent_orchestrator.storage import utc_now
from agent_orchestrator.workflow.models import (
    estimate_cost,
    WorkflowDefinition,
    WorkflowNode,
)


logger = get_logger(__name__)


class GraphOptimizer:
    """Prunes isolated nodes and stores nodes in topological order."""

    def optimize(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """
        Return an optimized copy of a workflow.

        Isolated non-START/END nodes are dropped and the remaining nodes are
        sorted topologically. If the graph cannot be fully ordered the input
        is returned unchanged.
        """
        kept = self._prune(workflow)
        ordered = self._topological_order(kept, workflow)

        if ordered is None:
            logger.warning(
                "Workflow cannot be topologically ordered; leaving it unchanged",
                extra=with_trace_context(logger, workflow_id=workflow.id),
            )
            return workflow

        pruned = len(workflow.nodes) - len(ordered)
        logger.info(
            "Workflow optimized",
            extra=with_trace_context(logger, workflow_id=workflow.id, pruned_nodes=pruned),
        )
        return workflow.model_copy(
            deep=True,
            update={
                "nodes": [n.model_copy(deep=True) for n in ordered],
                "estimated_cost": estimate_cost(ordered),
                "updated_at": utc_now(),
            },
        )

    def _prune(self, workflow: WorkflowDefinition) -> List[WorkflowNode]:
        connected: Set[str] = set()
        for edge in workflow.edges:
            connected.add(edge.source)
            connected.add(edge.target)
        return [n for n in workflow.nodes if n.type.is_terminal or n.id in connected]

    def _topological_order(
        self,
        nodes: List[WorkflowNode],
        workflow: WorkflowDefinition,
    ) -> Optional[List[WorkflowNode]]:
        """
        Kahn's algorithm with a FIFO ready queue; ties keep input order.

        Returns None when nodes remain after the queue empties (a cycle).
        """
        by_id: Dict[str, WorkflowNode] = {n.id: n for n in nodes}
        in_degree: Dict[str, int] = {n.id: 0 for n in nodes}
        downstream: Dict[str, List[str]] = {n.id: [] for n in nodes}

        for edge in workflow.edges:
            if edge.source in by_id and edge.target in by_id:
                downstream[edge.source].append(edge.target)
                in_degree[edge.target] += 1

        queue: Deque[str] = deque(n.id for n in nodes if in_degree[n.id] == 0)
        order: List[WorkflowNode] = []

        while queue:
            node_id = queue.popleft()
            order.append(by_id[node_id])
            for target in downstream[node_id]:
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    queue.append(target)

        if len(order) != len(nodes):
            return None
        return order

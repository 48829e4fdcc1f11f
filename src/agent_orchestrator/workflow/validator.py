"""
Graph Validator - structural checks on workflow graphs.

Findings are tagged WARNING, ERROR or CRITICAL. Only CRITICAL findings make
a graph invalid; the rest are advisory.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from agent_orchestrator.config import get_settings, Settings
from agent_orchestrator.errors import ExpressionError
from agent_orchestrator.observability import get_logger, with_trace_context
from agent_orchestrator.workflow.expressions import SafeExpressionEvaluator
from agent_orchestrator.workflow.models import (
    estimate_cost,
    NodeType,
    ValidationErrorType,
    ValidationIssue,
    ValidationSeverity,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowSpec,
    WorkflowValidation,
)


logger = get_logger(__name__)

# Config attribute each node type requires
_REQUIRED_CONFIG = {
    NodeType.AGENT: "agent",
    NodeType.TOOL: "tool",
    NodeType.CONDITION: "condition",
}


class GraphValidator:
    """
    Validates workflow graphs.

    Validation is a pure function of the node and edge lists: validating an
    unchanged graph twice yields identical findings in identical order.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        evaluator: Optional[SafeExpressionEvaluator] = None,
    ):
        self.settings = settings or get_settings()
        self.evaluator = evaluator or SafeExpressionEvaluator()

    def validate(self, workflow: Union[WorkflowDefinition, WorkflowSpec]) -> WorkflowValidation:
        """
        Validate a workflow graph.

        Args:
            workflow: Definition or creation request (anything with nodes and edges)

        Returns:
            WorkflowValidation; ERROR/CRITICAL findings in `errors`,
            WARNING findings in `warnings`
        """
        nodes = list(workflow.nodes)
        edges = list(workflow.edges)

        issues: List[ValidationIssue] = []
        issues.extend(self._check_start_end(nodes))
        issues.extend(self._check_dangling_edges(nodes, edges))
        issues.extend(self._check_disconnected(nodes, edges))
        issues.extend(self._check_cycles(nodes, edges))
        issues.extend(self._check_node_config(nodes))

        errors = [i for i in issues if i.severity != ValidationSeverity.WARNING]
        warnings = [i for i in issues if i.severity == ValidationSeverity.WARNING]
        is_valid = not any(i.severity == ValidationSeverity.CRITICAL for i in issues)

        result = WorkflowValidation(
            is_valid=is_valid,
            errors=errors,
            warnings=warnings,
            suggestions=self._suggestions(nodes),
        )

        logger.info(
            "Workflow validated",
            extra=with_trace_context(
                logger,
                workflow_id=getattr(workflow, "id", None),
                is_valid=is_valid,
                errors=len(errors),
                warnings=len(warnings),
            ),
        )
        return result

    def _check_start_end(self, nodes: List[WorkflowNode]) -> List[ValidationIssue]:
        issues = []
        starts = [n for n in nodes if n.type == NodeType.START]
        ends = [n for n in nodes if n.type == NodeType.END]

        if not starts:
            issues.append(ValidationIssue(
                type=ValidationErrorType.MISSING_START,
                severity=ValidationSeverity.CRITICAL,
                message="Workflow must have a start node",
            ))
        elif len(starts) > 1:
            issues.append(ValidationIssue(
                type=ValidationErrorType.MULTIPLE_START,
                severity=ValidationSeverity.WARNING,
                message=f"Workflow has {len(starts)} start nodes; only {starts[0].id} is used",
                node_id=starts[0].id,
            ))

        if not ends:
            issues.append(ValidationIssue(
                type=ValidationErrorType.MISSING_END,
                severity=ValidationSeverity.CRITICAL,
                message="Workflow must have an end node",
            ))
        return issues

    def _check_dangling_edges(
        self,
        nodes: List[WorkflowNode],
        edges: List[WorkflowEdge],
    ) -> List[ValidationIssue]:
        known = {n.id for n in nodes}
        issues = []
        for edge in edges:
            for end, node_id in (("source", edge.source), ("target", edge.target)):
                if node_id not in known:
                    issues.append(ValidationIssue(
                        type=ValidationErrorType.DANGLING_EDGE,
                        severity=ValidationSeverity.ERROR,
                        message=f"Edge {edge.id} {end} references unknown node {node_id}",
                        edge_id=edge.id,
                    ))
        return issues

    def _check_disconnected(
        self,
        nodes: List[WorkflowNode],
        edges: List[WorkflowEdge],
    ) -> List[ValidationIssue]:
        connected: Set[str] = set()
        for edge in edges:
            connected.add(edge.source)
            connected.add(edge.target)

        return [
            ValidationIssue(
                type=ValidationErrorType.DISCONNECTED_NODE,
                severity=ValidationSeverity.ERROR,
                message=f"Node {node.id} is not connected to the workflow",
                node_id=node.id,
            )
            for node in nodes
            if not node.type.is_terminal and node.id not in connected
        ]

    def _check_cycles(
        self,
        nodes: List[WorkflowNode],
        edges: List[WorkflowEdge],
    ) -> List[ValidationIssue]:
        """
        Iterative depth-first search with an explicit recursion stack.

        A child that is still on the stack closes a cycle; one CRITICAL
        finding is reported per back edge.
        """
        adjacency: Dict[str, List[str]] = {n.id: [] for n in nodes}
        for edge in edges:
            if edge.source in adjacency and edge.target in adjacency:
                adjacency[edge.source].append(edge.target)

        issues = []
        visited: Set[str] = set()
        on_stack: Set[str] = set()

        for root in adjacency:
            if root in visited:
                continue

            path = [root]
            visited.add(root)
            on_stack.add(root)
            stack: List[Tuple[str, Iterator[str]]] = [(root, iter(adjacency[root]))]

            while stack:
                node_id, children = stack[-1]
                child = next(children, None)

                if child is None:
                    stack.pop()
                    on_stack.discard(node_id)
                    path.pop()
                elif child in on_stack:
                    cycle = path[path.index(child):] + [child]
                    issues.append(ValidationIssue(
                        type=ValidationErrorType.CYCLE_DETECTED,
                        severity=ValidationSeverity.CRITICAL,
                        message=f"Cycle detected: {' -> '.join(cycle)}",
                        node_id=child,
                    ))
                elif child not in visited:
                    visited.add(child)
                    on_stack.add(child)
                    path.append(child)
                    stack.append((child, iter(adjacency[child])))

        return issues

    def _check_node_config(self, nodes: List[WorkflowNode]) -> List[ValidationIssue]:
        issues = []
        for node in nodes:
            attr = _REQUIRED_CONFIG.get(node.type)
            if attr is None:
                continue

            if getattr(node.config, attr) is None:
                issues.append(ValidationIssue(
                    type=ValidationErrorType.MISSING_CONFIGURATION,
                    severity=ValidationSeverity.ERROR,
                    message=f"{node.type.value.capitalize()} node {node.id} is missing {attr} configuration",
                    node_id=node.id,
                ))
                continue

            if node.type == NodeType.CONDITION:
                try:
                    self.evaluator.parse(node.config.condition.expression)
                except ExpressionError as e:
                    issues.append(ValidationIssue(
                        type=ValidationErrorType.INVALID_CONDITION,
                        severity=ValidationSeverity.ERROR,
                        message=f"Condition node {node.id} has an invalid expression: {e}",
                        node_id=node.id,
                    ))
        return issues

    def _suggestions(self, nodes: List[WorkflowNode]) -> List[str]:
        suggestions = []
        if len(nodes) > self.settings.large_workflow_node_threshold:
            suggestions.append(
                f"Workflow has {len(nodes)} nodes; consider breaking it into smaller workflows"
            )

        cost = estimate_cost(nodes)
        if cost > self.settings.high_cost_threshold:
            suggestions.append(
                f"Estimated cost {cost:g} is high; consider cheaper models or fewer agent nodes"
            )
        return suggestions

"""Tests for the graph validator."""
import pytest
from pydantic import ValidationError

from agent_orchestrator.workflow import (
    AgentConfig,
    ConditionConfig,
    GraphValidator,
    NodeConfig,
    NodeType,
    ToolConfig,
    ValidationErrorType,
    ValidationSeverity,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowSpec,
)


def start(node_id="start"):
    return WorkflowNode(id=node_id, type=NodeType.START, name=node_id)


def end(node_id="end"):
    return WorkflowNode(id=node_id, type=NodeType.END, name=node_id)


def agent(node_id, configured=True):
    config = NodeConfig(agent=AgentConfig(model_id="test-model")) if configured else NodeConfig()
    return WorkflowNode(id=node_id, type=NodeType.AGENT, name=node_id, config=config)


def edges(*pairs):
    return [WorkflowEdge(id=f"{s}->{t}", source=s, target=t) for s, t in pairs]


def spec(nodes, edge_list):
    return WorkflowSpec(name="test", nodes=nodes, edges=edge_list)


@pytest.fixture
def validator(settings):
    return GraphValidator(settings=settings)


def types_of(issues):
    return [i.type for i in issues]


class TestStructure:
    def test_linear_workflow_is_valid(self, validator):
        result = validator.validate(spec(
            [start(), agent("a"), end()],
            edges(("start", "a"), ("a", "end")),
        ))

        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []
        assert result.suggestions == []

    def test_missing_start_is_critical(self, validator):
        result = validator.validate(spec([agent("a"), end()], edges(("a", "end"))))

        assert not result.is_valid
        assert result.errors[0].type == ValidationErrorType.MISSING_START
        assert result.errors[0].severity == ValidationSeverity.CRITICAL

    def test_missing_end_is_critical(self, validator):
        result = validator.validate(spec([start(), agent("a")], edges(("start", "a"))))

        assert not result.is_valid
        assert ValidationErrorType.MISSING_END in types_of(result.critical)

    def test_multiple_starts_is_warning(self, validator):
        result = validator.validate(spec(
            [start("s1"), start("s2"), agent("a"), end()],
            edges(("s1", "a"), ("s2", "a"), ("a", "end")),
        ))

        assert result.is_valid
        assert types_of(result.warnings) == [ValidationErrorType.MULTIPLE_START]
        assert result.warnings[0].node_id == "s1"

    def test_disconnected_node_is_error(self, validator):
        """Test that node B with no edges is reported but does not invalidate."""
        result = validator.validate(spec(
            [start(), agent("a"), agent("b"), end()],
            edges(("start", "a"), ("a", "end")),
        ))

        assert result.is_valid
        disconnected = [i for i in result.errors if i.type == ValidationErrorType.DISCONNECTED_NODE]
        assert [i.node_id for i in disconnected] == ["b"]
        assert disconnected[0].severity == ValidationSeverity.ERROR

    def test_isolated_start_and_end_are_not_disconnected(self, validator):
        result = validator.validate(spec([start(), end()], []))

        assert ValidationErrorType.DISCONNECTED_NODE not in types_of(result.errors)

    def test_dangling_edge_is_error(self, validator):
        result = validator.validate(spec(
            [start(), agent("a"), end()],
            edges(("start", "a"), ("a", "end"), ("a", "ghost")),
        ))

        dangling = [i for i in result.errors if i.type == ValidationErrorType.DANGLING_EDGE]
        assert [i.edge_id for i in dangling] == ["a->ghost"]
        assert result.is_valid

    def test_duplicate_node_ids_are_rejected(self):
        """Test that a graph reusing a node ID cannot be built at all."""
        nodes = [start(), agent("a"), agent("a"), end()]
        edge_list = edges(("start", "a"), ("a", "end"))

        with pytest.raises(ValidationError) as exc_info:
            spec(nodes, edge_list)
        assert "Duplicate node IDs: ['a']" in str(exc_info.value)

        with pytest.raises(ValidationError):
            WorkflowDefinition(name="test", nodes=nodes, edges=edge_list)


class TestCycles:
    def test_cycle_between_agents_is_critical(self, validator):
        result = validator.validate(spec(
            [start(), agent("a"), agent("b"), end()],
            edges(("start", "a"), ("a", "b"), ("b", "a"), ("b", "end")),
        ))

        assert not result.is_valid
        cycles = [i for i in result.errors if i.type == ValidationErrorType.CYCLE_DETECTED]
        assert len(cycles) == 1
        assert cycles[0].severity == ValidationSeverity.CRITICAL
        assert cycles[0].message == "Cycle detected: a -> b -> a"

    def test_self_loop_is_cycle(self, validator):
        result = validator.validate(spec(
            [start(), agent("a"), end()],
            edges(("start", "a"), ("a", "a"), ("a", "end")),
        ))

        assert not result.is_valid
        assert ValidationErrorType.CYCLE_DETECTED in types_of(result.critical)

    def test_diamond_is_not_a_cycle(self, validator):
        result = validator.validate(spec(
            [start(), agent("a"), agent("b"), agent("c"), end()],
            edges(("start", "a"), ("start", "b"), ("a", "c"), ("b", "c"), ("c", "end")),
        ))

        assert result.is_valid
        assert ValidationErrorType.CYCLE_DETECTED not in types_of(result.errors)

    def test_long_chain_does_not_recurse(self, validator):
        chain = [agent(f"n{i}") for i in range(3000)]
        pairs = [("start", "n0")] + [(f"n{i}", f"n{i + 1}") for i in range(2999)] + [("n2999", "end")]

        result = validator.validate(spec([start(), *chain, end()], edges(*pairs)))

        assert result.is_valid


class TestNodeConfiguration:
    def test_missing_configs_are_errors(self, validator):
        nodes = [
            start(),
            agent("a", configured=False),
            WorkflowNode(id="t", type=NodeType.TOOL, name="t"),
            WorkflowNode(id="c", type=NodeType.CONDITION, name="c"),
            end(),
        ]
        result = validator.validate(spec(
            nodes,
            edges(("start", "a"), ("a", "t"), ("t", "c"), ("c", "end")),
        ))

        missing = [i for i in result.errors if i.type == ValidationErrorType.MISSING_CONFIGURATION]
        assert [i.node_id for i in missing] == ["a", "t", "c"]
        assert result.is_valid

    def test_configured_nodes_pass(self, validator):
        nodes = [
            start(),
            WorkflowNode(id="t", type=NodeType.TOOL, name="t", config=NodeConfig(tool=ToolConfig(tool_id="search"))),
            WorkflowNode(
                id="c",
                type=NodeType.CONDITION,
                name="c",
                config=NodeConfig(condition=ConditionConfig(expression="score > 0.5")),
            ),
            end(),
        ]

        result = validator.validate(spec(nodes, edges(("start", "t"), ("t", "c"), ("c", "end"))))

        assert result.errors == []

    def test_unparseable_condition_is_error(self, validator):
        nodes = [
            start(),
            WorkflowNode(
                id="c",
                type=NodeType.CONDITION,
                name="c",
                config=NodeConfig(condition=ConditionConfig(expression="score >")),
            ),
            end(),
        ]

        result = validator.validate(spec(nodes, edges(("start", "c"), ("c", "end"))))

        assert types_of(result.errors) == [ValidationErrorType.INVALID_CONDITION]


class TestSuggestionsAndIdempotence:
    def test_large_expensive_workflow_gets_suggestions(self, validator):
        agents = [agent(f"a{i}") for i in range(11)]
        pairs = [("start", "a0")] + [(f"a{i}", f"a{i + 1}") for i in range(10)] + [("a10", "end")]

        result = validator.validate(spec([start(), *agents, end()], edges(*pairs)))

        assert result.is_valid
        assert len(result.suggestions) == 2
        assert "13 nodes" in result.suggestions[0]
        assert "110" in result.suggestions[1]

    def test_validation_is_idempotent(self, validator):
        workflow = spec(
            [start(), start("s2"), agent("a"), agent("b", configured=False), agent("x"), end()],
            edges(("start", "a"), ("a", "b"), ("b", "a"), ("b", "end"), ("a", "ghost")),
        )

        first = validator.validate(workflow)
        second = validator.validate(workflow)

        assert first == second

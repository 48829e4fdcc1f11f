"""Tests for the handler registry."""
import pytest

from agent_orchestrator.errors import HandlerNotFoundError
from agent_orchestrator.runtime import ActionHandler, ActionResult, HandlerRegistry


class DoubleHandler(ActionHandler):
    def execute(self, parameters, context):
        return ActionResult(output=parameters["value"] * 2, cost=1.5)


class TestHandlerRegistry:
    def test_register_and_execute_handler(self, execution_context):
        registry = HandlerRegistry("test")
        registry.register("double", DoubleHandler())

        result = registry.execute("double", {"value": 21}, execution_context)

        assert result.output == 42
        assert result.cost == 1.5

    def test_plain_callable_becomes_zero_cost_handler(self, execution_context):
        """Test that a callable returning a plain value is wrapped."""
        registry = HandlerRegistry("test")
        registry.register("echo", lambda params, ctx: {"unit": ctx.unit_id, **params})

        result = registry.execute("echo", {"a": 1}, execution_context)

        assert result.output == {"unit": "test-unit", "a": 1}
        assert result.cost == 0.0

    def test_callable_may_return_action_result(self, execution_context):
        registry = HandlerRegistry("test")
        registry.register("priced", lambda params, ctx: ActionResult(output="ok", cost=3))

        assert registry.execute("priced", {}, execution_context).cost == 3

    def test_missing_handler_raises(self, execution_context):
        registry = HandlerRegistry("test")

        with pytest.raises(HandlerNotFoundError) as exc_info:
            registry.execute("unknown", {}, execution_context)

        assert "test/unknown" in str(exc_info.value)

    def test_register_replaces_existing_handler(self, execution_context):
        registry = HandlerRegistry("test")
        registry.register("kind", lambda p, c: "first")
        registry.register("kind", lambda p, c: "second")

        assert registry.execute("kind", {}, execution_context).output == "second"
        assert registry.list_kinds() == ["kind"]

    def test_unregister(self):
        registry = HandlerRegistry("test")
        registry.register("kind", DoubleHandler())

        registry.unregister("kind")
        registry.unregister("never-registered")

        assert not registry.has("kind")
        assert registry.get("kind") is None

    def test_context_with_metadata(self, execution_context):
        """Test that with_metadata merges without mutating the original."""
        updated = execution_context.with_metadata(step="a")

        assert updated.metadata == {"step": "a"}
        assert execution_context.metadata == {}

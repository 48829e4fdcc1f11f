"""Handler registry mapping an action kind to its handler."""
from typing import Any

from agent_orchestrator.errors import HandlerNotFoundError
from agent_orchestrator.observability import get_logger
from agent_orchestrator.runtime.contracts import (
    ActionHandler,
    ActionResult,
    as_action_result,
    ExecutionContext,
    FunctionHandler,
    HandlerFn,
)

logger = get_logger(__name__)


class HandlerRegistry:
    """
    Registry for step/node handlers.

    New action kinds are added by registering a handler; the coordinator and
    executor never switch on the kind themselves.
    """

    def __init__(self, name: str = "handlers"):
        """
        Initialize handler registry.

        Args:
            name: Registry name used in log messages
        """
        self.name = name
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, kind: str, handler: ActionHandler | HandlerFn) -> None:
        """
        Register a handler for an action kind, replacing any previous one.

        Args:
            kind: Action kind tag (e.g. "resource_allocation")
            handler: ActionHandler instance or plain callable(parameters, context)
        """
        if not isinstance(handler, ActionHandler):
            handler = FunctionHandler(handler)
        self._handlers[kind] = handler
        logger.info(f"Handler registered: {self.name}/{kind}")

    def unregister(self, kind: str) -> None:
        """Remove the handler for a kind, if any."""
        self._handlers.pop(kind, None)

    def get(self, kind: str) -> ActionHandler | None:
        """
        Get the handler for a kind.

        Args:
            kind: Action kind tag

        Returns:
            Handler or None if not registered
        """
        return self._handlers.get(kind)

    def has(self, kind: str) -> bool:
        """Whether a handler is registered for the kind."""
        return kind in self._handlers

    def execute(
        self,
        kind: str,
        parameters: dict[str, Any],
        context: ExecutionContext,
    ) -> ActionResult:
        """
        Execute the handler registered for a kind.

        Args:
            kind: Action kind tag
            parameters: Action parameters
            context: Execution context

        Returns:
            ActionResult from the handler

        Raises:
            HandlerNotFoundError: If no handler is registered for the kind
        """
        handler = self.get(kind)
        if handler is None:
            raise HandlerNotFoundError(f"No handler registered for {self.name}/{kind}")

        return as_action_result(handler.execute(parameters, context))

    def list_kinds(self) -> list[str]:
        """
        List all registered kinds.

        Returns:
            Registered kind tags in registration order
        """
        return list(self._handlers.keys())

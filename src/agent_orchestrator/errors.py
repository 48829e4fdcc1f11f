"""Exception hierarchy for the orchestration core."""


class OrchestrationError(Exception):
    """Base exception for orchestration errors."""

    pass


class NotFoundError(OrchestrationError):
    """Raised when a lookup by ID fails (client error)."""

    pass


class SagaNotFoundError(NotFoundError):
    """Raised when a saga instance is not known to the coordinator."""

    pass


class WorkflowNotFoundError(NotFoundError):
    """Raised when a workflow definition is not registered."""

    pass


class ExecutionNotFoundError(NotFoundError):
    """Raised when a workflow execution is not active."""

    pass


class HandlerNotFoundError(OrchestrationError):
    """Raised when no handler is registered for an action kind."""

    pass


class StepExecutionError(OrchestrationError):
    """Raised by step handlers to signal a failed saga step."""

    pass


class SagaDeadlineExceeded(StepExecutionError):
    """Raised when a saga runs past its declared max execution time."""

    pass


class NodeExecutionError(OrchestrationError):
    """Raised by node handlers to signal a failed workflow node."""

    pass


class WorkflowRoutingError(OrchestrationError):
    """Raised when the executor cannot find the next node to run."""

    pass


class WorkflowDeadlineExceeded(OrchestrationError):
    """Raised when a workflow execution runs past its max execution time."""

    pass


class WorkflowValidationError(OrchestrationError):
    """Raised when a workflow with CRITICAL findings is created or updated."""

    def __init__(self, message: str, validation=None):
        super().__init__(message)
        self.validation = validation


class ExpressionError(OrchestrationError):
    """Raised when a condition expression cannot be parsed or evaluated."""

    def __init__(self, message: str, expression: str = ""):
        super().__init__(message)
        self.expression = expression


class SnapshotStoreError(OrchestrationError):
    """Raised by snapshot stores when persistence fails."""

    pass


class ShutdownError(OrchestrationError):
    """Raised when work is submitted to a coordinator or manager after shutdown."""

    pass

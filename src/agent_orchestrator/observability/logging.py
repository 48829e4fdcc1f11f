"""Structured JSON logging with orchestration context."""
import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from agent_orchestrator.config import get_settings

CONTEXT_FIELDS = (
    "correlation_id",
    "saga_id",
    "workflow_id",
    "execution_id",
    "step_id",
    "node_id",
)


class TraceContextFilter(logging.Filter):
    """Add orchestration context (and the environment name, if given) to log records."""

    def __init__(self, env: str | None = None):
        super().__init__()
        self.env = env

    def filter(self, record: logging.LogRecord) -> bool:
        """Add default context fields if not present."""
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        if self.env is not None and not hasattr(record, "env"):
            record.env = self.env
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with standardized field names."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the log record."""
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        # Drop context fields the filter defaulted to None
        for name in CONTEXT_FIELDS:
            if log_record.get(name) is None:
                log_record.pop(name, None)


def setup_logging() -> None:
    """Configure structured JSON logging for the process."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)
    handler.addFilter(TraceContextFilter(env=settings.env))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)

    # Reduce noise from third-party libraries
    logging.getLogger("redis").setLevel(logging.WARNING)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call extra with the adapter's own."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str) -> logging.LoggerAdapter:
    """
    Get a logger with orchestration context support.

    Args:
        name: Logger name (typically __name__)

    Returns:
        LoggerAdapter that can accept context in extra dict
    """
    logger = logging.getLogger(name)
    return ContextLoggerAdapter(logger, extra={})


def with_trace_context(
    logger: logging.LoggerAdapter,
    correlation_id: str | None = None,
    saga_id: str | None = None,
    workflow_id: str | None = None,
    execution_id: str | None = None,
    step_id: str | None = None,
    node_id: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Create an extra dict with orchestration context for logging.

    Args:
        logger: Logger adapter
        correlation_id: Saga correlation ID
        saga_id: Saga instance ID
        workflow_id: Workflow definition ID
        execution_id: Workflow execution ID
        step_id: Saga step ID
        node_id: Workflow node ID
        **kwargs: Additional context fields

    Returns:
        Dict to pass as extra parameter to logger methods
    """
    extra = kwargs.copy()
    if correlation_id:
        extra["correlation_id"] = correlation_id
    if saga_id:
        extra["saga_id"] = saga_id
    if workflow_id:
        extra["workflow_id"] = workflow_id
    if execution_id:
        extra["execution_id"] = execution_id
    if step_id:
        extra["step_id"] = step_id
    if node_id:
        extra["node_id"] = node_id
    return extra

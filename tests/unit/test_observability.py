"""Tests for structured logging and metrics sinks."""
import io
import json
import logging
import threading

from agent_orchestrator.observability import (
    get_logger,
    InMemoryMetrics,
    NullMetrics,
    with_trace_context,
)
from agent_orchestrator.observability.logging import CustomJsonFormatter, TraceContextFilter


def make_json_logger(name, env=None):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    handler.addFilter(TraceContextFilter(env=env))

    base = logging.getLogger(name)
    base.handlers.clear()
    base.addHandler(handler)
    base.setLevel(logging.INFO)
    base.propagate = False
    return stream


class TestLogging:
    def test_with_trace_context_skips_empty_fields(self):
        logger = get_logger(__name__)

        extra = with_trace_context(logger, saga_id="saga_1", step_id=None, attempt=2)

        assert extra == {"saga_id": "saga_1", "attempt": 2}

    def test_json_record_carries_context(self):
        stream = make_json_logger("test.json.context")
        logger = get_logger("test.json.context")

        logger.info(
            "Saga step completed",
            extra=with_trace_context(logger, correlation_id="corr_1", saga_id="saga_1", step_id="init"),
        )

        record = json.loads(stream.getvalue())
        assert record["message"] == "Saga step completed"
        assert record["level"] == "INFO"
        assert record["logger"] == "test.json.context"
        assert record["correlation_id"] == "corr_1"
        assert record["saga_id"] == "saga_1"
        assert record["step_id"] == "init"

    def test_unset_context_fields_are_dropped(self):
        stream = make_json_logger("test.json.dropped")
        logger = get_logger("test.json.dropped")

        logger.info("Workflow validated", extra={"workflow_id": "wf_1"})

        record = json.loads(stream.getvalue())
        assert record["workflow_id"] == "wf_1"
        assert "saga_id" not in record
        assert "node_id" not in record
        assert "env" not in record

    def test_environment_name_is_stamped(self):
        stream = make_json_logger("test.json.env", env="staging")
        logger = get_logger("test.json.env")

        logger.info("Saga started", extra={"saga_id": "saga_1"})

        record = json.loads(stream.getvalue())
        assert record["env"] == "staging"
        assert record["saga_id"] == "saga_1"


class TestMetrics:
    def test_counters_are_tagged(self):
        metrics = InMemoryMetrics()

        metrics.increment("saga.started", tags={"definition": "a"})
        metrics.increment("saga.started", tags={"definition": "a"})
        metrics.increment("saga.started", tags={"definition": "b"})

        assert metrics.counter_value("saga.started", {"definition": "a"}) == 2
        assert metrics.counter_value("saga.started", {"definition": "b"}) == 1
        assert metrics.counter_value("saga.started") == 0

    def test_histogram_summary(self):
        metrics = InMemoryMetrics()
        for value in (10, 20, 30):
            metrics.histogram("workflow.cost", value)

        summary = metrics.summary()["histograms"]["workflow.cost"]

        assert summary["count"] == 3
        assert summary["avg"] == 20

    def test_concurrent_increments(self):
        metrics = InMemoryMetrics()

        def bump():
            for _ in range(1000):
                metrics.increment("hits")

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert metrics.counter_value("hits") == 4000

    def test_null_metrics_accepts_everything(self):
        metrics = NullMetrics()

        assert metrics.increment("x", tags={"a": "b"}) is None
        assert metrics.histogram("y", 1.0) is None

"""Saga coordinator: owns saga instances and drives their step loops."""
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from agent_orchestrator.config import get_settings, Settings
from agent_orchestrator.errors import (
    HandlerNotFoundError,
    SagaDeadlineExceeded,
    SagaNotFoundError,
    ShutdownError,
    StepExecutionError,
)
from agent_orchestrator.observability import (
    get_logger,
    InMemoryMetrics,
    MetricsSink,
    with_trace_context,
)
from agent_orchestrator.runtime import ExecutionContext, HandlerRegistry
from agent_orchestrator.saga.compensation import CompensationEngine
from agent_orchestrator.saga.handlers import register_default_handlers
from agent_orchestrator.saga.models import (
    CompensationResult,
    CompensationStatus,
    CompensationStrategy,
    SagaContext,
    SagaDefinition,
    SagaErrorInfo,
    SagaEvent,
    SagaEventType,
    SagaInstance,
    SagaResult,
    SagaStatus,
    SagaStep,
)
from agent_orchestrator.storage import (
    get_snapshot_store,
    RecoveryCandidate,
    Snapshot,
    SnapshotKind,
    SnapshotStore,
    utc_now,
)

logger = get_logger(__name__)

RESUMABLE_STATUSES = (SagaStatus.STARTED, SagaStatus.IN_PROGRESS, SagaStatus.COMPENSATING)


@dataclass
class SagaEntry:
    """Everything the coordinator holds for one live saga."""

    instance: SagaInstance
    definition: SagaDefinition
    lock: threading.RLock = field(default_factory=threading.RLock)
    deadline: float | None = None


class SagaInstanceStore:
    """
    Live sagas addressed by ID.

    Entries are inserted by start_saga and removed on the transition to a
    terminal status. A saga failed under MANUAL_INTERVENTION stays until it
    is compensated.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, SagaEntry] = {}

    def add(self, entry: SagaEntry) -> None:
        with self._lock:
            self._entries[entry.instance.id] = entry

    def get(self, saga_id: str) -> SagaEntry | None:
        with self._lock:
            return self._entries.get(saga_id)

    def remove(self, saga_id: str) -> None:
        with self._lock:
            self._entries.pop(saga_id, None)

    def entries(self) -> list[SagaEntry]:
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, saga_id: str) -> bool:
        with self._lock:
            return saga_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SagaCoordinator:
    """
    Coordinates saga execution.

    Each saga runs its steps sequentially on a shared thread pool. The
    per-saga lock guards instance state only; step handlers run without
    it, and a result is recorded only if the saga is still at that step
    when the handler returns. Step failures become state transitions;
    only lookups of unknown sagas raise to the caller.
    """

    def __init__(
        self,
        registry: HandlerRegistry | None = None,
        snapshot_store: SnapshotStore | None = None,
        metrics: MetricsSink | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize coordinator.

        Args:
            registry: Step/compensation handlers (built-in handlers if not provided)
            snapshot_store: Snapshot store (selected from settings if not provided)
            metrics: Metrics sink (in-memory if not provided)
            settings: Settings (global settings if not provided)
        """
        self.settings = settings or get_settings()
        self.registry = registry or register_default_handlers(HandlerRegistry("saga"))
        self.compensation_engine = CompensationEngine(self.registry)
        self.snapshot_store = snapshot_store or get_snapshot_store(self.settings)
        self.metrics = metrics or InMemoryMetrics()

        self._instances = SagaInstanceStore()
        # Running loops, then the final instance of recently finished loops for wait()
        self._tasks: dict[str, Future] = {}
        self._finished: OrderedDict[str, SagaInstance] = OrderedDict()
        self._tasks_lock = threading.Lock()
        self._closed = False
        self._pool = ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="saga",
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_saga(
        self,
        definition: SagaDefinition,
        variables: dict | None = None,
        correlation_id: str | None = None,
        run_steps: bool = True,
    ) -> SagaInstance:
        """
        Create a saga instance and start its step loop in the background.

        Args:
            definition: Saga definition
            variables: Initial context variables
            correlation_id: Correlation ID (generated if not provided)
            run_steps: Drive steps with the built-in loop; when False, progress
                is reported through continue_saga events

        Returns:
            The instance as created (status STARTED)

        Raises:
            ShutdownError: If the coordinator has been shut down
        """
        if self._closed:
            raise ShutdownError("Saga coordinator is shut down")

        context = SagaContext(variables=dict(variables or {}))
        if correlation_id:
            context.correlation_id = correlation_id
        context.variables.setdefault("agent_type", definition.agent_type)

        instance = SagaInstance(definition_id=definition.id, context=context)
        entry = SagaEntry(instance=instance, definition=definition)

        max_ms = definition.resource_requirements.max_execution_time_ms
        if self.settings.enforce_deadlines and max_ms is not None:
            entry.deadline = time.monotonic() + max_ms / 1000.0

        self._instances.add(entry)
        # The loop blocks on the entry lock, so it cannot move the saga before the
        # STARTED snapshot is written or finish before its future is tracked
        with entry.lock:
            if run_steps:
                self._submit(entry)
            self._persist(instance, definition)
            self.metrics.increment("saga.started", tags={"definition": definition.id})
            logger.info(
                "Saga started",
                extra=with_trace_context(
                    logger,
                    correlation_id=instance.correlation_id,
                    saga_id=instance.id,
                    definition_id=definition.id,
                    total_steps=len(definition.steps),
                ),
            )
            return instance.model_copy(deep=True)

    def continue_saga(self, saga_id: str, event: SagaEvent) -> SagaResult:
        """
        Apply an out-of-band event to a saga.

        Args:
            saga_id: Saga instance ID
            event: Event to apply

        Returns:
            SagaResult describing the saga after the event

        Raises:
            SagaNotFoundError: If the saga is not live
        """
        entry = self._require(saga_id)
        with entry.lock:
            instance = entry.instance
            logger.info(
                "Applying saga event",
                extra=with_trace_context(
                    logger,
                    correlation_id=instance.correlation_id,
                    saga_id=saga_id,
                    step_id=event.step_id,
                    event_type=event.type.value,
                ),
            )

            if event.type == SagaEventType.COMPENSATION_REQUIRED:
                reason = event.data.get("reason", "Compensation required")
                self._compensate(entry, str(reason))
                return self._result(instance)

            if not instance.status.can_run_steps:
                return self._invalid_transition(
                    instance, f"Cannot apply {event.type.value} to a saga in status {instance.status.value}"
                )
            if instance.current_step >= len(entry.definition.steps):
                return self._invalid_transition(instance, "All steps already completed")

            step = entry.definition.steps[instance.current_step]
            if event.step_id is not None and event.step_id != step.id:
                return self._invalid_transition(
                    instance, f"Expected event for step {step.id}, got {event.step_id}"
                )

            instance.status = SagaStatus.IN_PROGRESS
            if event.type == SagaEventType.STEP_COMPLETED:
                self._record_step(entry, step, dict(event.data))
                if instance.current_step >= len(entry.definition.steps):
                    self._complete(entry)
            else:
                message = event.data.get("error", f"Step {step.id} reported failure")
                self._handle_step_failure(entry, step, StepExecutionError(str(message)))

            return self._result(instance)

    def compensate_saga(self, saga_id: str, reason: str) -> CompensationResult:
        """
        Force a saga into compensation and undo its completed steps.

        Args:
            saga_id: Saga instance ID
            reason: Why compensation is needed

        Returns:
            CompensationResult of the pass

        Raises:
            SagaNotFoundError: If the saga is not live
        """
        entry = self._require(saga_id)
        with entry.lock:
            return self._compensate(entry, reason)

    def wait(self, saga_id: str, timeout: float | None = None) -> SagaInstance:
        """
        Block until the saga's background step loop finishes.

        Finished loops keep their final instance for the most recent
        `finished_saga_retention` sagas; older ones are only reachable
        through get_saga().

        Args:
            saga_id: Saga instance ID
            timeout: Seconds to wait (None waits forever)

        Returns:
            Copy of the instance as the loop left it

        Raises:
            SagaNotFoundError: If the saga has no loop and is not live
            concurrent.futures.TimeoutError: If the loop does not finish in time
        """
        with self._tasks_lock:
            future = self._tasks.get(saga_id)
            finished = self._finished.get(saga_id)
        if future is not None:
            return future.result(timeout=timeout).model_copy(deep=True)
        if finished is not None:
            return finished.model_copy(deep=True)

        entry = self._require(saga_id)
        with entry.lock:
            return entry.instance.model_copy(deep=True)

    def get_saga(self, saga_id: str) -> Snapshot:
        """
        Get the state of a saga by ID.

        Live sagas and sagas that have left the instance store are reported
        the same way, as a snapshot. Use active_sagas() or wait() for the
        full instance with its context.

        Raises:
            SagaNotFoundError: If the saga is neither live nor persisted
        """
        entry = self._instances.get(saga_id)
        if entry is not None:
            with entry.lock:
                return self._snapshot(entry.instance, entry.definition)

        try:
            snapshot = self.snapshot_store.get(saga_id)
        except Exception as e:
            logger.warning(
                "Snapshot lookup failed",
                extra=with_trace_context(logger, saga_id=saga_id, error=str(e)),
            )
            snapshot = None
        if snapshot is None or snapshot.kind != SnapshotKind.SAGA:
            raise SagaNotFoundError(f"Saga not found: {saga_id}")
        return snapshot

    def active_sagas(self) -> list[SagaInstance]:
        """Copies of all live sagas (including those parked for manual intervention)."""
        result = []
        for entry in self._instances.entries():
            with entry.lock:
                result.append(entry.instance.model_copy(deep=True))
        return result

    def recover(self) -> list[RecoveryCandidate]:
        """
        Find sagas a previous process left mid-flight.

        Candidates are logged and returned; they are not resumed.
        """
        try:
            snapshots = self.snapshot_store.scan(
                status_filter=[s.value for s in RESUMABLE_STATUSES],
                kind=SnapshotKind.SAGA,
            )
        except Exception as e:
            logger.error("Saga recovery scan failed", extra={"error": str(e)})
            return []

        candidates = [
            RecoveryCandidate.from_snapshot(s) for s in snapshots if s.id not in self._instances
        ]
        for candidate in candidates:
            logger.warning(
                "Found interrupted saga; not resuming",
                extra=with_trace_context(
                    logger,
                    correlation_id=candidate.correlation_id,
                    saga_id=candidate.id,
                    status=candidate.status,
                    cursor=candidate.cursor,
                ),
            )
        logger.info(f"Saga recovery scan found {len(candidates)} interrupted saga(s)")
        return candidates

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting new sagas and optionally wait for running loops."""
        self._closed = True
        self._pool.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Step loop
    # ------------------------------------------------------------------

    def _submit(self, entry: SagaEntry) -> None:
        saga_id = entry.instance.id
        with self._tasks_lock:
            try:
                self._tasks[saga_id] = self._pool.submit(self._supervise, entry)
            except RuntimeError as e:
                # Lost a race with shutdown()
                self._instances.remove(saga_id)
                raise ShutdownError("Saga coordinator is shut down") from e

    def _supervise(self, entry: SagaEntry) -> SagaInstance:
        """Error boundary around one saga's step loop."""
        try:
            self._run_steps(entry)
        except Exception as e:
            with entry.lock:
                instance = entry.instance
                logger.exception(
                    "Saga step loop crashed",
                    extra=with_trace_context(
                        logger,
                        correlation_id=instance.correlation_id,
                        saga_id=instance.id,
                    ),
                )
                instance.status = SagaStatus.FAILED
                instance.completed_at = utc_now()
                instance.error = SagaErrorInfo(
                    code="SAGA_EXECUTION_FAILED",
                    message=str(e),
                    compensation_required=bool(instance.context.step_results),
                )
                self._persist(instance, entry.definition)
                self._record_outcome(entry, "saga.failed")
                self._instances.remove(instance.id)
        finally:
            final = self._finish_task(entry)
        return final

    def _finish_task(self, entry: SagaEntry) -> SagaInstance:
        """Swap the loop's future for a copy of its final instance, evicting the oldest."""
        with entry.lock:
            final = entry.instance.model_copy(deep=True)
        with self._tasks_lock:
            self._tasks.pop(final.id, None)
            self._finished[final.id] = final
            while len(self._finished) > self.settings.finished_saga_retention:
                self._finished.popitem(last=False)
        return final

    def _run_steps(self, entry: SagaEntry) -> None:
        steps = entry.definition.steps
        while True:
            with entry.lock:
                instance = entry.instance
                if not instance.status.can_run_steps:
                    return
                if instance.current_step >= len(steps):
                    self._complete(entry)
                    return

                index = instance.current_step
                step = steps[index]
                if instance.status == SagaStatus.STARTED:
                    instance.status = SagaStatus.IN_PROGRESS

                try:
                    self._check_deadline(entry)
                except SagaDeadlineExceeded as e:
                    self._handle_step_failure(entry, step, e)
                    return
                context = self._step_context(instance, step)

            # The handler runs unlocked so lookups and events are not blocked by slow steps
            error: Exception | None = None
            try:
                result = self.registry.execute(step.action.kind, dict(step.action.parameters), context)
            except Exception as e:
                error = e

            with entry.lock:
                if not self._still_at_step(entry, index):
                    logger.warning(
                        "Discarding step outcome; saga moved on while the step ran",
                        extra=with_trace_context(
                            logger,
                            correlation_id=instance.correlation_id,
                            saga_id=instance.id,
                            step_id=step.id,
                            saga_status=instance.status.value,
                        ),
                    )
                    return
                if error is not None:
                    self._handle_step_failure(entry, step, error)
                    return

                self.metrics.histogram(
                    "saga.step.cost",
                    result.cost,
                    tags={"kind": step.action.kind},
                )
                self._record_step(entry, step, result.output)

    @staticmethod
    def _still_at_step(entry: SagaEntry, index: int) -> bool:
        instance = entry.instance
        return instance.status.can_run_steps and instance.current_step == index

    def _step_context(self, instance: SagaInstance, step: SagaStep) -> ExecutionContext:
        return ExecutionContext(
            correlation_id=instance.correlation_id,
            instance_id=instance.id,
            unit_id=step.id,
            variables=dict(instance.context.variables),
            results=dict(instance.context.step_results),
            metadata={"step_name": step.name, "step_index": instance.current_step},
        )

    def _check_deadline(self, entry: SagaEntry) -> None:
        if entry.deadline is not None and time.monotonic() > entry.deadline:
            max_ms = entry.definition.resource_requirements.max_execution_time_ms
            raise SagaDeadlineExceeded(f"Saga exceeded max execution time of {max_ms}ms")

    def _record_step(self, entry: SagaEntry, step: SagaStep, output) -> None:
        instance = entry.instance
        instance.context.step_results[step.id] = output
        instance.current_step += 1
        logger.info(
            "Saga step completed",
            extra=with_trace_context(
                logger,
                correlation_id=instance.correlation_id,
                saga_id=instance.id,
                step_id=step.id,
                current_step=instance.current_step,
            ),
        )
        self._persist(instance, entry.definition)

    def _handle_step_failure(self, entry: SagaEntry, step: SagaStep, error: Exception) -> None:
        instance = entry.instance
        strategy = entry.definition.failure_handling.compensation_strategy
        manual = strategy == CompensationStrategy.MANUAL_INTERVENTION

        if isinstance(error, HandlerNotFoundError):
            code = "HANDLER_NOT_FOUND"
        elif isinstance(error, SagaDeadlineExceeded):
            code = "DEADLINE_EXCEEDED"
        else:
            code = "STEP_FAILED"

        instance.error = SagaErrorInfo(
            code=code,
            message=str(error),
            step_id=step.id,
            compensation_required=not manual,
        )
        logger.error(
            "Saga step failed",
            extra=with_trace_context(
                logger,
                correlation_id=instance.correlation_id,
                saga_id=instance.id,
                step_id=step.id,
                error=str(error),
                error_code=code,
                strategy=strategy.value,
            ),
        )

        if manual:
            # Parked: stays in the instance store so an operator can compensate it
            instance.status = SagaStatus.FAILED
            instance.completed_at = utc_now()
            self._persist(instance, entry.definition)
            self._record_outcome(entry, "saga.failed")
            return

        self._compensate(entry, f"Step {step.id} failed: {error}")

    def _complete(self, entry: SagaEntry) -> None:
        instance = entry.instance
        instance.status = SagaStatus.COMPLETED
        instance.completed_at = utc_now()
        logger.info(
            "Saga completed",
            extra=with_trace_context(
                logger,
                correlation_id=instance.correlation_id,
                saga_id=instance.id,
                total_steps=instance.current_step,
            ),
        )
        self._persist(instance, entry.definition)
        self._record_outcome(entry, "saga.completed")
        self._instances.remove(instance.id)

    def _compensate(self, entry: SagaEntry, reason: str) -> CompensationResult:
        instance = entry.instance
        strategy = entry.definition.failure_handling.compensation_strategy

        instance.status = SagaStatus.COMPENSATING
        self._persist(instance, entry.definition)

        plan = self.compensation_engine.build_plan(
            instance,
            entry.definition,
            reason=reason,
            strategy=strategy,
        )
        result = self.compensation_engine.execute(plan, instance)

        instance.completed_at = utc_now()
        if result.status == CompensationStatus.SUCCESS:
            instance.status = SagaStatus.COMPENSATED
            outcome = "saga.compensated"
        else:
            instance.status = SagaStatus.FAILED
            outcome = "saga.failed"
            if instance.error is None:
                instance.error = SagaErrorInfo(
                    code="COMPENSATION_FAILED",
                    message=f"Compensation finished with status {result.status.value}",
                    compensation_required=True,
                )

        logger.info(
            "Saga compensation finished",
            extra=with_trace_context(
                logger,
                correlation_id=instance.correlation_id,
                saga_id=instance.id,
                reason=reason,
                compensation_status=result.status.value,
                saga_status=instance.status.value,
            ),
        )
        self._persist(instance, entry.definition)
        self._record_outcome(entry, outcome)
        self._instances.remove(instance.id)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, saga_id: str) -> SagaEntry:
        entry = self._instances.get(saga_id)
        if entry is None:
            raise SagaNotFoundError(f"Saga not found: {saga_id}")
        return entry

    def _result(self, instance: SagaInstance) -> SagaResult:
        return SagaResult(
            saga_id=instance.id,
            status=instance.status,
            result=dict(instance.context.step_results) if instance.status == SagaStatus.COMPLETED else None,
            error=instance.error,
            completed_at=instance.completed_at,
        )

    def _invalid_transition(self, instance: SagaInstance, message: str) -> SagaResult:
        logger.warning(
            "Rejected saga event",
            extra=with_trace_context(logger, saga_id=instance.id, error=message),
        )
        return SagaResult(
            saga_id=instance.id,
            status=instance.status,
            error=SagaErrorInfo(code="INVALID_TRANSITION", message=message),
            completed_at=instance.completed_at,
        )

    def _record_outcome(self, entry: SagaEntry, counter: str) -> None:
        tags = {"definition": entry.definition.id}
        self.metrics.increment(counter, tags=tags)
        instance = entry.instance
        if instance.completed_at is not None:
            duration_ms = (instance.completed_at - instance.started_at).total_seconds() * 1000
            self.metrics.histogram("saga.duration_ms", duration_ms, tags=tags)

    @staticmethod
    def _snapshot(instance: SagaInstance, definition: SagaDefinition) -> Snapshot:
        return Snapshot(
            id=instance.id,
            kind=SnapshotKind.SAGA,
            definition_id=instance.definition_id,
            status=instance.status.value,
            cursor=instance.current_step,
            correlation_id=instance.correlation_id,
            started_at=instance.started_at,
            completed_at=instance.completed_at,
            error=instance.error.message if instance.error else None,
            metadata={
                "definition_name": definition.name,
                "total_steps": len(definition.steps),
                "completed_steps": list(instance.context.step_results),
            },
        )

    def _persist(self, instance: SagaInstance, definition: SagaDefinition) -> None:
        """Mirror the instance to the snapshot store; failures are logged and swallowed."""
        try:
            self.snapshot_store.put(instance.id, self._snapshot(instance, definition))
        except Exception as e:
            self.metrics.increment("snapshot.failures", tags={"kind": SnapshotKind.SAGA.value})
            logger.warning(
                "Failed to persist saga snapshot",
                extra=with_trace_context(
                    logger,
                    correlation_id=instance.correlation_id,
                    saga_id=instance.id,
                    error=str(e),
                ),
            )

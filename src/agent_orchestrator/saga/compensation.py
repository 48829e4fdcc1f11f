"""Compensation engine: reverse-order, best-effort undo of completed saga steps."""
from agent_orchestrator.observability import get_logger, with_trace_context
from agent_orchestrator.runtime import ExecutionContext, HandlerRegistry
from agent_orchestrator.saga.models import (
    CompensationErrorRecord,
    CompensationPlan,
    CompensationResult,
    CompensationStatus,
    CompensationStep,
    CompensationStrategy,
    SagaAction,
    SagaDefinition,
    SagaInstance,
)

logger = get_logger(__name__)

GENERIC_COMPENSATION_KIND = "compensate"


def compensation_status(compensated: int, failed: int) -> CompensationStatus:
    """
    Classify a finished compensation pass.

    SUCCESS needs at least one compensated step and no failures; an empty
    plan has nothing undone and counts as FAILED.
    """
    if failed == 0 and compensated > 0:
        return CompensationStatus.SUCCESS
    if failed > 0 and compensated > 0:
        return CompensationStatus.PARTIAL
    return CompensationStatus.FAILED


class CompensationEngine:
    """
    Builds and runs compensation plans.

    Compensation actions are dispatched through a HandlerRegistry keyed by
    action kind, the same way forward steps are.
    """

    def __init__(self, registry: HandlerRegistry):
        """
        Initialize engine.

        Args:
            registry: Registry holding compensation handlers
        """
        self._registry = registry

    def build_plan(
        self,
        instance: SagaInstance,
        definition: SagaDefinition,
        reason: str,
        strategy: CompensationStrategy = CompensationStrategy.ROLLBACK,
    ) -> CompensationPlan:
        """
        Create one compensation step per recorded step result, newest first.

        Later-allocated resources are undone before earlier ones, so the plan
        is exactly the reverse of `step_results` insertion order.
        """
        steps: list[CompensationStep] = []
        for step_id, result in reversed(list(instance.context.step_results.items())):
            forward = definition.get_step(step_id)
            action = forward.compensation if forward and forward.compensation else None
            if action is None:
                action = SagaAction(
                    kind=GENERIC_COMPENSATION_KIND,
                    parameters={"original_step_id": step_id},
                )
            steps.append(
                CompensationStep(
                    id=f"compensate_{step_id}",
                    name=f"Compensate {forward.name if forward else step_id}",
                    original_step_id=step_id,
                    action=action,
                    step_result=result,
                )
            )

        return CompensationPlan(
            saga_id=instance.id,
            reason=reason,
            steps=steps,
            strategy=strategy,
        )

    def execute(self, plan: CompensationPlan, instance: SagaInstance) -> CompensationResult:
        """
        Run every plan step; a failing step is recorded and the pass continues.

        Args:
            plan: Plan from build_plan
            instance: Saga being compensated (its context is visible to handlers)

        Returns:
            CompensationResult with compensated step IDs, per-step errors and status
        """
        compensated: list[str] = []
        errors: list[CompensationErrorRecord] = []
        base_context = ExecutionContext(
            correlation_id=instance.correlation_id,
            instance_id=instance.id,
            unit_id=instance.id,
            variables=dict(instance.context.variables),
            results=dict(instance.context.step_results),
            metadata={"reason": plan.reason},
        )

        for step in plan.steps:
            extra = with_trace_context(
                logger,
                correlation_id=instance.correlation_id,
                saga_id=instance.id,
                step_id=step.id,
            )
            logger.info("Executing compensation step", extra=extra)

            context = base_context.model_copy(deep=True, update={"unit_id": step.id}).with_metadata(
                original_step_id=step.original_step_id,
                step_result=step.step_result,
            )
            try:
                result = self._registry.execute(step.action.kind, dict(step.action.parameters), context)
                instance.context.compensation_data[step.original_step_id] = result.output
                compensated.append(step.id)
            except Exception as e:
                logger.error(
                    "Compensation step failed",
                    extra={**extra, "error": str(e)},
                )
                errors.append(CompensationErrorRecord(step_id=step.id, error=str(e)))

        status = compensation_status(len(compensated), len(errors))
        logger.info(
            "Compensation finished",
            extra=with_trace_context(
                logger,
                saga_id=instance.id,
                status=status.value,
                compensated=len(compensated),
                failed=len(errors),
            ),
        )
        return CompensationResult(
            saga_id=plan.saga_id,
            status=status,
            compensated_steps=compensated,
            errors=errors,
        )

"""Saga data models: definitions, live instances, events and compensation records."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_orchestrator.storage import utc_now


class SagaStatus(str, Enum):
    """Saga lifecycle status."""

    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPENSATING = "compensating"
    COMPLETED = "completed"
    COMPENSATED = "compensated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SagaStatus.COMPLETED, SagaStatus.COMPENSATED, SagaStatus.FAILED)

    @property
    def can_run_steps(self) -> bool:
        return self in (SagaStatus.STARTED, SagaStatus.IN_PROGRESS)


class CompensationStrategy(str, Enum):
    """How a saga reacts to a failed step."""

    ROLLBACK = "rollback"
    MANUAL_INTERVENTION = "manual_intervention"
    SKIP_STEP = "skip_step"
    RETRY = "retry"


class CompensationStatus(str, Enum):
    """Overall outcome of a compensation pass."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SagaEventType(str, Enum):
    """Out-of-band events a caller can apply to a saga."""

    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    COMPENSATION_REQUIRED = "compensation_required"


class SagaAction(BaseModel):
    """Typed action; `kind` selects the handler."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., description="Handler tag, e.g. 'resource_allocation'")
    parameters: dict[str, Any] = Field(default_factory=dict)


class SagaStep(BaseModel):
    """One forward step of a saga."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Step ID (unique within the saga)")
    name: str = Field(..., description="Human-readable step name")
    action: SagaAction
    compensation: SagaAction | None = Field(
        default=None,
        description="Undo action; the generic 'compensate' action is used when absent",
    )


class FailureHandling(BaseModel):
    """Failure policy. Retry values are declarative; the core does not retry."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=0, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    compensation_strategy: CompensationStrategy = CompensationStrategy.ROLLBACK
    escalation_threshold: int = Field(default=3, ge=0)
    notification_channels: tuple[str, ...] = ()


class ResourceRequirements(BaseModel):
    """Declared resource envelope of an agent saga."""

    model_config = ConfigDict(frozen=True)

    max_execution_time_ms: int | None = Field(
        default=None,
        description="Deadline for the whole saga; None means unbounded",
    )
    max_memory_mb: int | None = None
    max_cpu_units: int | None = None
    max_credits: float | None = None
    required_tools: tuple[str, ...] = ()
    required_models: tuple[str, ...] = ()


class MonitoringConfig(BaseModel):
    """Monitoring hints carried with the definition."""

    model_config = ConfigDict(frozen=True)

    progress_update_interval_ms: int = 5000
    health_check_interval_ms: int = 30000
    performance_metrics: tuple[str, ...] = ()


class SagaDefinition(BaseModel):
    """Immutable saga blueprint."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Definition ID")
    name: str = Field(..., description="Definition name")
    agent_type: str | None = Field(default=None, description="Agent/task type tag")
    steps: tuple[SagaStep, ...] = Field(..., description="Ordered forward steps")
    failure_handling: FailureHandling = Field(default_factory=FailureHandling)
    resource_requirements: ResourceRequirements = Field(default_factory=ResourceRequirements)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @field_validator("steps")
    @classmethod
    def validate_unique_step_ids(cls, v: tuple[SagaStep, ...]) -> tuple[SagaStep, ...]:
        """Step results and compensations are keyed by step ID, so IDs must be unique."""
        ids = [s.id for s in v]
        if len(ids) != len(set(ids)):
            duplicates = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"Duplicate step IDs: {duplicates}")
        return v

    def get_step(self, step_id: str) -> SagaStep | None:
        """Get step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class SagaContext(BaseModel):
    """Mutable per-instance context."""

    correlation_id: str = Field(default_factory=lambda: f"saga_{uuid.uuid4().hex}")
    variables: dict[str, Any] = Field(default_factory=dict)
    # Insertion order is the forward completion order
    step_results: dict[str, Any] = Field(default_factory=dict)
    compensation_data: dict[str, Any] = Field(default_factory=dict)


class SagaErrorInfo(BaseModel):
    """Why a saga stopped."""

    code: str
    message: str
    step_id: str | None = None
    compensation_required: bool = False


class SagaInstance(BaseModel):
    """A running (or finished) saga."""

    id: str = Field(default_factory=lambda: f"saga_{uuid.uuid4().hex[:12]}")
    definition_id: str
    status: SagaStatus = SagaStatus.STARTED
    current_step: int = Field(default=0, ge=0)
    context: SagaContext = Field(default_factory=SagaContext)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    error: SagaErrorInfo | None = None

    @property
    def correlation_id(self) -> str:
        return self.context.correlation_id


class SagaEvent(BaseModel):
    """Externally supplied event for `continue_saga`."""

    type: SagaEventType
    step_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


class SagaResult(BaseModel):
    """Outcome returned from `continue_saga`."""

    saga_id: str
    status: SagaStatus
    result: dict[str, Any] | None = None
    error: SagaErrorInfo | None = None
    completed_at: datetime | None = None


class CompensationStep(BaseModel):
    """Undo operation matched to one completed forward step."""

    id: str
    name: str
    original_step_id: str
    action: SagaAction
    step_result: Any = None


class CompensationPlan(BaseModel):
    """Ordered undo sequence (reverse of forward completion order)."""

    saga_id: str
    reason: str
    steps: list[CompensationStep] = Field(default_factory=list)
    strategy: CompensationStrategy = CompensationStrategy.ROLLBACK


class CompensationErrorRecord(BaseModel):
    """A compensation step that failed."""

    step_id: str
    error: str
    timestamp: datetime = Field(default_factory=utc_now)


class CompensationResult(BaseModel):
    """Outcome of a compensation pass."""

    saga_id: str
    status: CompensationStatus
    compensated_steps: list[str] = Field(default_factory=list)
    errors: list[CompensationErrorRecord] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=utc_now)

"""Snapshot stores mirroring saga and workflow-execution state.

Snapshots are a best-effort mirror of in-memory state: the running instance
is authoritative, and callers treat store failures as non-fatal.
"""
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

import redis
from pydantic import BaseModel, Field

from agent_orchestrator.config import get_settings, Settings
from agent_orchestrator.errors import SnapshotStoreError
from agent_orchestrator.observability import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class SnapshotKind(str, Enum):
    """What a snapshot describes."""

    SAGA = "saga"
    WORKFLOW_EXECUTION = "workflow_execution"


class Snapshot(BaseModel):
    """Persisted view of an instance: status, cursor and timestamps."""

    id: str = Field(..., description="Saga ID or execution ID")
    kind: SnapshotKind = Field(..., description="Instance kind")
    definition_id: str = Field(..., description="Saga definition or workflow ID")
    status: str = Field(..., description="Instance status value")
    cursor: int | str | None = Field(
        default=None,
        description="Saga current step index or workflow current node ID",
    )
    correlation_id: str | None = Field(default=None, description="Correlation ID")
    started_at: datetime = Field(..., description="When the instance started")
    updated_at: datetime = Field(default_factory=utc_now, description="Last write time")
    completed_at: datetime | None = Field(default=None, description="Terminal time")
    error: str | None = Field(default=None, description="Terminal error message")
    metadata: dict[str, Any] = Field(default_factory=dict)


class RecoveryCandidate(BaseModel):
    """An instance a previous process left mid-flight. Reported, never resumed."""

    id: str
    kind: SnapshotKind
    definition_id: str
    status: str
    cursor: int | str | None = None
    correlation_id: str | None = None
    last_updated: datetime

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "RecoveryCandidate":
        return cls(
            id=snapshot.id,
            kind=snapshot.kind,
            definition_id=snapshot.definition_id,
            status=snapshot.status,
            cursor=snapshot.cursor,
            correlation_id=snapshot.correlation_id,
            last_updated=snapshot.updated_at,
        )


class SnapshotStore(Protocol):
    """Persistence contract consumed by the coordinator and executor."""

    def put(self, snapshot_id: str, snapshot: Snapshot) -> None:
        ...

    def get(self, snapshot_id: str) -> Snapshot | None:
        ...

    def scan(
        self,
        status_filter: Iterable[str] | None = None,
        kind: SnapshotKind | None = None,
    ) -> list[Snapshot]:
        ...


def _matches(
    snapshot: Snapshot,
    statuses: set[str] | None,
    kind: SnapshotKind | None,
) -> bool:
    if kind is not None and snapshot.kind != kind:
        return False
    if statuses is not None and snapshot.status not in statuses:
        return False
    return True


def _status_set(status_filter: Iterable[str] | None) -> set[str] | None:
    if status_filter is None:
        return None
    return {getattr(s, "value", s) for s in status_filter}


class InMemorySnapshotStore:
    """Process-local snapshot store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshots: dict[str, Snapshot] = {}

    def put(self, snapshot_id: str, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshots[snapshot_id] = snapshot.model_copy(deep=True)

    def get(self, snapshot_id: str) -> Snapshot | None:
        with self._lock:
            snapshot = self._snapshots.get(snapshot_id)
            return snapshot.model_copy(deep=True) if snapshot else None

    def scan(
        self,
        status_filter: Iterable[str] | None = None,
        kind: SnapshotKind | None = None,
    ) -> list[Snapshot]:
        statuses = _status_set(status_filter)
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._snapshots.values()
                if _matches(s, statuses, kind)
            ]


class RedisSnapshotStore:
    """Redis-backed snapshot store (one JSON document per instance)."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        key_prefix: str | None = None,
    ):
        """
        Initialize snapshot store.

        Args:
            redis_client: Optional Redis client (will create one if not provided)
            key_prefix: Key prefix (defaults to settings.snapshot_key_prefix)
        """
        settings = get_settings()
        if redis_client is None:
            self.redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
            )
        else:
            self.redis_client = redis_client

        self._prefix = f"{key_prefix or settings.snapshot_key_prefix}snapshot:"

    def _key(self, snapshot_id: str) -> str:
        """Get Redis key for a snapshot."""
        return f"{self._prefix}{snapshot_id}"

    def put(self, snapshot_id: str, snapshot: Snapshot) -> None:
        """
        Write a snapshot.

        Raises:
            SnapshotStoreError: If Redis rejects the write
        """
        try:
            self.redis_client.set(self._key(snapshot_id), snapshot.model_dump_json())
        except redis.RedisError as e:
            raise SnapshotStoreError(f"Failed to persist snapshot {snapshot_id}: {e}") from e

    def get(self, snapshot_id: str) -> Snapshot | None:
        """
        Get snapshot by ID.

        Returns:
            Snapshot if found, None otherwise
        """
        try:
            data = self.redis_client.get(self._key(snapshot_id))
        except redis.RedisError as e:
            raise SnapshotStoreError(f"Failed to load snapshot {snapshot_id}: {e}") from e
        if data is None:
            return None
        return Snapshot.model_validate_json(data)

    def scan(
        self,
        status_filter: Iterable[str] | None = None,
        kind: SnapshotKind | None = None,
    ) -> list[Snapshot]:
        """
        List snapshots, optionally filtered by status values and kind.

        Used at startup to find instances left mid-flight.
        """
        statuses = _status_set(status_filter)
        found: list[Snapshot] = []
        try:
            for key in self.redis_client.scan_iter(match=f"{self._prefix}*"):
                data = self.redis_client.get(key)
                if data is None:
                    continue
                snapshot = Snapshot.model_validate_json(data)
                if _matches(snapshot, statuses, kind):
                    found.append(snapshot)
        except redis.RedisError as e:
            raise SnapshotStoreError(f"Failed to scan snapshots: {e}") from e
        return found


def get_snapshot_store(settings: Settings | None = None) -> SnapshotStore:
    """Create the snapshot store selected by settings.snapshot_backend."""
    settings = settings or get_settings()
    if settings.snapshot_backend == "redis":
        return RedisSnapshotStore(
            redis_client=redis.from_url(settings.redis_url, decode_responses=True),
            key_prefix=settings.snapshot_key_prefix,
        )
    return InMemorySnapshotStore()

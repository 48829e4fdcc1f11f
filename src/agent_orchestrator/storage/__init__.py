"""Storage package."""
from agent_orchestrator.storage.snapshot_store import (
    get_snapshot_store,
    InMemorySnapshotStore,
    RecoveryCandidate,
    RedisSnapshotStore,
    Snapshot,
    SnapshotKind,
    SnapshotStore,
    utc_now,
)

__all__ = [
    "get_snapshot_store",
    "InMemorySnapshotStore",
    "RecoveryCandidate",
    "RedisSnapshotStore",
    "Snapshot",
    "SnapshotKind",
    "SnapshotStore",
    "utc_now",
]

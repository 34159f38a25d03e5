import threading
from dataclasses import dataclass, field
from datetime import datetime

from tokenlens.models import (
    BillingBlock,
    BucketAccumulator,
    ProjectBreakdown,
    ProjectSummary,
    UsageRecord,
)


@dataclass(frozen=True)
class Snapshot:
    """
    Snapshot is the complete output of one aggregation pass. It is
    never modified after it has been published.
    """

    records: "list[UsageRecord]" = field(default_factory=list)
    daily: "dict[str, BucketAccumulator]" = field(default_factory=dict)
    weekly: "dict[str, BucketAccumulator]" = field(default_factory=dict)
    monthly: "dict[str, BucketAccumulator]" = field(default_factory=dict)
    projects: "dict[str, ProjectSummary]" = field(default_factory=dict)
    project_paths: "dict[str, ProjectBreakdown]" = field(default_factory=dict)
    sessions: "list[UsageRecord]" = field(default_factory=list)
    blocks: "list[BillingBlock]" = field(default_factory=list)
    skipped: "int" = 0
    # None until the first pass has completed
    updated_at: "datetime | None" = None


class SnapshotStore:
    """
    SnapshotStore: Is a thread-safe holder of the latest published
    snapshot.

    Readers always see a whole snapshot. Concurrent passes (the timer
    and a manual refresh) simply race to publish; the last writer wins.
    """

    def __init__(self) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._snapshot: "Snapshot" = Snapshot()
        self._version: "int" = 0

    def publish(self, snapshot: "Snapshot") -> "int":
        """
        replaces the current snapshot and returns the new version.
        """
        with self._lock:
            self._snapshot = snapshot
            self._version += 1
            return self._version

    def latest(self) -> "Snapshot":
        with self._lock:
            return self._snapshot

    @property
    def version(self) -> "int":
        with self._lock:
            return self._version

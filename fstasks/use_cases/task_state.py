"""Task state machine and status derivation."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Literal

from ..models import FileOutcome, FileResult, Task, TaskStatus

Bucket = Literal["active", "interrupted", "terminal"]

S = TaskStatus

# Server-authoritative transitions; the client only observes them.
TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    S.PENDING: frozenset({S.RUNNING, S.CANCELLED, S.INTERRUPTED}),
    S.RUNNING: frozenset({S.PAUSED, S.COMPLETED, S.CANCELLED, S.FAILED, S.INTERRUPTED}),
    S.PAUSED: frozenset({S.RUNNING, S.CANCELLED}),
    S.INTERRUPTED: frozenset({S.PENDING}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

RETRYABLE: FrozenSet[TaskStatus] = frozenset({S.INTERRUPTED, S.FAILED})
CANCELLABLE: FrozenSet[TaskStatus] = frozenset({S.PENDING, S.RUNNING, S.PAUSED})


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    return current == new or new in TRANSITIONS[current]


def bucket_for(status: TaskStatus) -> Bucket:
    if status.is_active:
        return "active"
    if status == S.INTERRUPTED:
        return "interrupted"
    return "terminal"


@dataclass
class TaskBuckets:
    """Tasks split for display; recomputed from scratch on every refresh."""
    active: List[Task] = field(default_factory=list)
    interrupted: List[Task] = field(default_factory=list)
    terminal: List[Task] = field(default_factory=list)

    @classmethod
    def split(cls, tasks: Iterable[Task]) -> "TaskBuckets":
        buckets = cls()
        for task in tasks:
            getattr(buckets, bucket_for(task.status)).append(task)
        return buckets

    @property
    def has_active(self) -> bool:
        return bool(self.active)


def derive_batch_status(results: Iterable[FileResult], cancelled: bool = False) -> TaskStatus:
    """
    Status of a batch as seen by the uploading client.

    cancelled wins over failed, failed over completed. Skipped files count
    as done.
    """
    results = list(results)
    if cancelled or any(r.outcome == FileOutcome.CANCELLED for r in results):
        return S.CANCELLED
    if any(r.outcome == FileOutcome.FAILED for r in results):
        return S.FAILED
    return S.COMPLETED

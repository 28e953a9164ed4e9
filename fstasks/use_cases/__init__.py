"""Task state rules shared by the store, controller and batch loop."""

from .task_state import (
    CANCELLABLE,
    RETRYABLE,
    TRANSITIONS,
    TaskBuckets,
    bucket_for,
    can_transition,
    derive_batch_status,
)

__all__ = [
    "CANCELLABLE",
    "RETRYABLE",
    "TRANSITIONS",
    "TaskBuckets",
    "bucket_for",
    "can_transition",
    "derive_batch_status",
]

"""
Cancellation tokens for upload batches.

Each running batch owns a CancellationToken that is threaded through the
batch -> file -> chunk call chain. The registry maps backend batch-task ids
to their tokens so the task panel can cancel or wake a batch by id.
"""
import asyncio
import logging
from typing import Dict, Optional

from ..errors import UploadCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation and resume signal for one batch."""

    def __init__(self, task_id: Optional[str] = None):
        self.task_id = task_id
        self._cancelled = False
        self._wake = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            logger.info(f"[cancel] Batch {self.task_id} marked cancelled")
        self._cancelled = True
        self._wake.set()

    def notify_resumed(self) -> None:
        """Wake a transfer that is waiting out a paused response."""
        self._wake.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise UploadCancelled(self.task_id)

    async def wait_for_resume(self, timeout: float) -> bool:
        """
        Sleep up to ``timeout`` seconds or until resumed/cancelled.

        Returns True if woken early. A resume that arrived before the call
        is consumed here rather than lost.
        """
        if self._cancelled:
            return True
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        if not self._cancelled:
            self._wake.clear()
        return True


class CancellationRegistry:
    """Tokens of in-flight upload batches, keyed by backend task id."""

    def __init__(self):
        self._tokens: Dict[str, CancellationToken] = {}

    def register(self, task_id: str, token: Optional[CancellationToken] = None) -> CancellationToken:
        """Return the token for ``task_id``, adopting ``token`` if given."""
        if token is None:
            token = self._tokens.get(task_id) or CancellationToken(task_id)
        self._tokens[task_id] = token
        return token

    def get(self, task_id: str) -> Optional[CancellationToken]:
        return self._tokens.get(task_id)

    def cancel(self, task_id: str) -> bool:
        """Cancel a registered batch. Returns False if no batch is running locally."""
        token = self._tokens.get(task_id)
        if token is None:
            return False
        token.cancel()
        return True

    def notify_resumed(self, task_id: str) -> None:
        token = self._tokens.get(task_id)
        if token is not None:
            token.notify_resumed()

    def is_cancelled(self, task_id: str) -> bool:
        token = self._tokens.get(task_id)
        return token is not None and token.cancelled

    def discard(self, task_id: str) -> None:
        self._tokens.pop(task_id, None)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)


_global_registry: Optional[CancellationRegistry] = None


def get_cancellation_registry() -> CancellationRegistry:
    """Get the process-wide registry (created on first use)."""
    global _global_registry

    if _global_registry is None:
        _global_registry = CancellationRegistry()

    return _global_registry

"""
Task Controller - pause/resume/cancel/retry/remove/clear commands.

Commands are single-shot POSTs keyed by task id. All of them except retry
are fire-and-forget: a failure is logged and reported as ``False``.
"""
import logging
from typing import Optional

from ..errors import APIError, InvalidTransition, TransportError
from ..models import RetryTicket, TaskStatus, TaskType
from ..protocols import IFileConsoleAPI
from ..use_cases.task_state import CANCELLABLE, RETRYABLE
from .cancellation import CancellationRegistry
from .task_store import TaskPoller, TaskStore

logger = logging.getLogger(__name__)


class TaskController:
    """
    Issues control commands, guarded by the cached task status.

    When the store does not know a task, the command goes straight to the
    backend, which stays authoritative.
    """

    def __init__(
        self,
        api: IFileConsoleAPI,
        store: Optional[TaskStore] = None,
        registry: Optional[CancellationRegistry] = None,
        poller: Optional[TaskPoller] = None,
    ):
        self._api = api
        self._store = store
        self._registry = registry
        self._poller = poller

    def attach_poller(self, poller: Optional[TaskPoller]) -> None:
        self._poller = poller

    def _status(self, task_id: str) -> Optional[TaskStatus]:
        return self._store.status_of(task_id) if self._store else None

    def _type(self, task_id: str) -> Optional[TaskType]:
        task = self._store.get(task_id) if self._store else None
        return task.type if task else None

    async def _fire(self, action: str, task_id: Optional[str] = None) -> bool:
        try:
            await self._api.task_command(action, task_id)
        except (APIError, TransportError) as e:
            target = f" {task_id}" if task_id else ""
            logger.error(f"[tasks] Failed to {action} task{target}: {e}")
            return False
        finally:
            if self._poller is not None:
                self._poller.poke()
        return True

    async def pause(self, task_id: str) -> bool:
        status = self._status(task_id)
        if status is not None and status != TaskStatus.RUNNING:
            logger.debug(f"[tasks] pause ignored, {task_id} is {status.value}")
            return False
        return await self._fire("pause", task_id)

    async def resume(self, task_id: str) -> bool:
        """Resume a paused task. No-op for any other status."""
        status = self._status(task_id)
        if status is not None and status != TaskStatus.PAUSED:
            logger.debug(f"[tasks] resume ignored, {task_id} is {status.value}")
            return False
        ok = await self._fire("resume", task_id)
        if ok and self._registry is not None:
            self._registry.notify_resumed(task_id)
        return ok

    async def cancel(self, task_id: str, task_type: Optional[TaskType] = None) -> bool:
        """
        Cancel a task.

        For uploads running in this process the local batch is stopped at
        its next checkpoint as well; the backend call releases server-held
        chunks.
        """
        status = self._status(task_id)
        if status is not None and status not in CANCELLABLE:
            logger.debug(f"[tasks] cancel ignored, {task_id} is {status.value}")
            return False

        task_type = task_type or self._type(task_id)
        if self._registry is not None and (task_type in (None, TaskType.UPLOAD)):
            self._registry.cancel(task_id)
        return await self._fire("cancel", task_id)

    async def retry(self, task_id: str) -> Optional[RetryTicket]:
        """
        Retry an interrupted or failed task.

        Returns:
            RetryTicket for uploads (the client must send ``pending_files``
            again), None for tasks the backend resumes by itself

        Raises:
            InvalidTransition: the task is in a non-retryable status
            APIError/TransportError: the backend refused or was unreachable
        """
        status = self._status(task_id)
        if status is not None and status not in RETRYABLE:
            raise InvalidTransition(f"cannot retry task {task_id} in status {status.value}")

        try:
            data = await self._api.task_command("retry", task_id)
        finally:
            if self._poller is not None:
                self._poller.poke()

        if data and ("pending_files" in data or "target_path" in data):
            ticket = RetryTicket.from_dict(task_id, data)
            logger.info(f"[tasks] Upload {task_id} retried, {len(ticket.pending_files)} files pending")
            return ticket
        return None

    async def restart(self, task_id: str) -> bool:
        """Restart an interrupted non-upload task server-side."""
        return await self._fire("restart", task_id)

    async def continue_task(self, task_id: str):
        """Retry for uploads, restart for everything else."""
        if self._type(task_id) == TaskType.UPLOAD:
            return await self.retry(task_id)
        return await self.restart(task_id)

    async def remove(self, task_id: str) -> bool:
        ok = await self._fire("remove", task_id)
        if ok and self._store is not None:
            await self._store.drop(task_id)
        return ok

    async def clear(self) -> bool:
        """Clear this user's completed/failed/cancelled tasks."""
        ok = await self._fire("clear")
        if ok and self._store is not None:
            await self._store.drop_terminal()
        return ok

    async def clear_all(self) -> bool:
        """Clear every user's finished tasks (admin only)."""
        if self._store is not None and self._store.is_admin is False:
            raise InvalidTransition("clear_all requires an admin account")
        ok = await self._fire("clear_all")
        if ok and self._store is not None:
            await self._store.drop_terminal()
        return ok

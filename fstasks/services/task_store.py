"""
Task Store / Poller - client-side cache of backend tasks.

The store holds the last snapshot and its display buckets. The poller is a
separate watcher task that refreshes the store on a fixed interval and is
torn down with the view that owns it; it never talks to the upload loop.
"""
import asyncio
import logging
from typing import Callable, List, Literal, Optional

from ..models import Task, TaskStatus, WatchConfig
from ..protocols import IFileConsoleAPI
from ..use_cases.task_state import TaskBuckets
from ..utils.events import EventEmitter

logger = logging.getLogger(__name__)

StoreMode = Literal["panel", "manage"]


class TaskStore:
    """
    Read-mostly cache of backend tasks.

    ``panel`` mode uses the lightweight list endpoint; ``manage`` mode uses
    the paged listing with filters and learns whether the user is an admin.
    """

    def __init__(
        self,
        api: IFileConsoleAPI,
        mode: StoreMode = "panel",
        page_size: int = 20,
    ):
        self._api = api
        self._mode = mode
        self._tasks: List[Task] = []
        self._buckets = TaskBuckets()
        self._events = EventEmitter()
        self.page = 1
        self.page_size = page_size
        self.task_type: Optional[str] = None
        self.status: Optional[str] = None
        self.total = 0
        self.total_pages = 0
        self.is_admin: Optional[bool] = None
        self.last_error: Optional[Exception] = None

    @property
    def mode(self) -> StoreMode:
        return self._mode

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks)

    @property
    def buckets(self) -> TaskBuckets:
        return self._buckets

    @property
    def has_active(self) -> bool:
        return self._buckets.has_active

    def get(self, task_id: str) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def status_of(self, task_id: str) -> Optional[TaskStatus]:
        task = self.get(task_id)
        return task.status if task else None

    def on_update(self, callback: Callable[["TaskStore"], None]):
        """Called after every snapshot change. Receives the store."""
        self._events.on("update", callback)

    def set_filters(self, task_type: Optional[str] = None, status: Optional[str] = None) -> None:
        """Change manage-mode filters; goes back to the first page."""
        self.task_type = task_type or None
        self.status = status or None
        self.page = 1

    def set_page(self, page: int) -> bool:
        if page < 1 or (self.total_pages and page > self.total_pages):
            return False
        self.page = page
        return True

    async def refresh(self) -> List[Task]:
        """Fetch the authoritative list and replace the cache wholesale."""
        if self._mode == "manage":
            result = await self._api.list_tasks_paged(
                page=self.page,
                page_size=self.page_size,
                task_type=self.task_type,
                status=self.status,
            )
            tasks = list(result.tasks)
            self.total = result.total
            self.total_pages = result.total_pages
            self.is_admin = result.is_admin
        else:
            tasks = list(await self._api.list_tasks())

        await self._replace(tasks)
        return self.tasks

    async def drop(self, task_id: str) -> None:
        """Remove one task locally, ahead of the next snapshot."""
        await self._replace([t for t in self._tasks if t.id != task_id])

    async def drop_terminal(self) -> None:
        """Remove completed/failed/cancelled tasks locally."""
        await self._replace([t for t in self._tasks if not t.is_terminal])

    async def _replace(self, tasks: List[Task]) -> None:
        self._tasks = tasks
        self._buckets = TaskBuckets.split(tasks)
        await self._events.emit("update", self)


class TaskPoller:
    """
    Watcher that keeps a TaskStore fresh.

    Usage:
        async with TaskPoller.panel(store) as poller:
            ...
        # or
        poller = TaskPoller(store, interval=2.0, only_while_active=True)
        poller.start()
        ...
        await poller.stop()

    With ``only_while_active`` the poller goes idle once no task is
    pending/running/paused and ticks again only after ``poke()``.
    """

    def __init__(self, store: TaskStore, interval: float = 1.0, only_while_active: bool = False):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._store = store
        self._interval = interval
        self._only_while_active = only_while_active
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self.ticks = 0
        self.refreshed = 0

    @classmethod
    def panel(cls, store: TaskStore, config: Optional[WatchConfig] = None) -> "TaskPoller":
        """Always-connected task panel: fast, unconditional polling."""
        config = config or WatchConfig()
        return cls(store, interval=config.panel_interval)

    @classmethod
    def manage(cls, store: TaskStore, config: Optional[WatchConfig] = None) -> "TaskPoller":
        """Management view: slower, and only while something is active."""
        config = config or WatchConfig()
        return cls(store, interval=config.manage_interval, only_while_active=True)

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def idle(self) -> bool:
        """True when waiting for a poke instead of the interval."""
        return self._only_while_active and not self._store.has_active and self._store.last_error is None

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def poke(self) -> None:
        """Refresh now (and leave idle state)."""
        self._wake.set()

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    async def tick(self) -> bool:
        """One refresh; errors are logged and swallowed. Returns success."""
        self.ticks += 1
        try:
            await self._store.refresh()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._store.last_error = e
            logger.warning(f"[tasks] Failed to fetch tasks: {e}")
            return False
        self._store.last_error = None
        self.refreshed += 1
        return True

    async def _loop(self) -> None:
        while True:
            self._wake.clear()
            await self.tick()
            if self.idle:
                logger.debug("[tasks] No active tasks, polling paused")
                await self._wake.wait()
                continue
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

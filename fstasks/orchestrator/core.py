"""Core client - wires the upload pipeline and task tracking together."""
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union
import logging

from ..models import (
    BatchResult,
    ConflictStrategy,
    LocalFile,
    UploadConfig,
    WatchConfig,
)
from ..protocols import IFileConsoleAPI
from ..services.api_client import FileConsoleAPI
from ..services.cancellation import CancellationRegistry, get_cancellation_registry
from ..services.task_controller import TaskController
from ..services.task_store import StoreMode, TaskPoller, TaskStore
from .batch_planner import BatchPlanner
from .batch_upload import BatchUploadProcess, FileUploader
from .file_collector import FileCollector

logger = logging.getLogger(__name__)

Sources = Union[Sequence[LocalFile], Iterable[Path]]


class TaskClient:
    """
    Orchestrates uploads and task control using injected services.

    Usage:
        async with TaskClient(api_url) as client:
            result = await client.upload([Path("photos")], "/backup")

            async with client.watch() as poller:
                ...
                await client.controller.pause(task_id)

    Pass ``api`` to use another IFileConsoleAPI implementation.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        config: Optional[UploadConfig] = None,
        watch_config: Optional[WatchConfig] = None,
        token: Optional[str] = None,
        api: Optional[IFileConsoleAPI] = None,
        registry: Optional[CancellationRegistry] = None,
    ):
        if api is None and not api_url:
            raise ValueError("Either api_url or api must be provided")
        self._api_url = api_url
        self._config = config or UploadConfig()
        self._watch_config = watch_config or WatchConfig()
        self._token = token
        self._external_api = api
        self._registry = registry or get_cancellation_registry()

        # Initialized in __aenter__
        self._http: Optional[FileConsoleAPI] = None
        self._api: Optional[IFileConsoleAPI] = api
        self._planner: Optional[BatchPlanner] = None
        self._uploader: Optional[FileUploader] = None
        self._store: Optional[TaskStore] = None
        self._controller: Optional[TaskController] = None
        self._pollers: List[TaskPoller] = []

    async def __aenter__(self):
        if self._external_api is None:
            self._http = FileConsoleAPI(
                self._api_url,
                timeout=self._config.api_timeout,
                token=self._token,
            )
            await self._http.__aenter__()
            self._api = self._http

        self._planner = BatchPlanner(self._api)
        self._uploader = FileUploader(self._api, self._config)
        self._store = TaskStore(self._api, page_size=self._watch_config.page_size)
        self._controller = TaskController(self._api, self._store, self._registry)
        return self

    async def __aexit__(self, *args):
        for poller in self._pollers:
            await poller.stop()
        self._pollers.clear()
        if self._http:
            await self._http.__aexit__(*args)
            self._http = None

    @property
    def api(self) -> IFileConsoleAPI:
        assert self._api is not None
        return self._api

    @property
    def store(self) -> TaskStore:
        assert self._store is not None
        return self._store

    @property
    def controller(self) -> TaskController:
        assert self._controller is not None
        return self._controller

    @property
    def registry(self) -> CancellationRegistry:
        return self._registry

    @property
    def config(self) -> UploadConfig:
        return self._config

    def _local_files(self, sources: Sources) -> List[LocalFile]:
        sources = list(sources)
        if sources and all(isinstance(s, LocalFile) for s in sources):
            return sources
        return FileCollector.collect_files(sources)

    async def prepare_upload(
        self,
        sources: Sources,
        target_path: str,
        conflict_strategy: Optional[ConflictStrategy] = None,
    ) -> BatchUploadProcess:
        """
        Register the batch and return a not-yet-started process.

        Raises:
            BatchValidationError: the batch could not be created
        """
        assert self._planner is not None and self._uploader is not None
        files = self._local_files(sources)
        strategy = conflict_strategy or self._config.default_conflict_strategy
        plan = await self._planner.plan(target_path, files, strategy)
        return BatchUploadProcess(self._uploader, plan, files, self._registry, self._config)

    async def upload(
        self,
        sources: Sources,
        target_path: str,
        conflict_strategy: Optional[ConflictStrategy] = None,
    ) -> BatchResult:
        process = await self.prepare_upload(sources, target_path, conflict_strategy)
        return await process.wait()

    async def prepare_resume(
        self,
        task_id: str,
        source: Path,
        conflict_strategy: Optional[ConflictStrategy] = None,
    ) -> Optional[BatchUploadProcess]:
        """
        Continue an interrupted upload as a fresh batch.

        Files the backend still lists as pending are looked up under
        ``source``. Returns None when nothing is left to send.
        """
        ticket = await self.controller.retry(task_id)
        if ticket is None or not ticket.pending_files:
            logger.info(f"[resume] Task {task_id}: nothing left to upload")
            return None

        files = FileCollector.match_pending(source, ticket.pending_files)
        missing = len(ticket.pending_files) - len(files)
        if missing:
            logger.warning(f"[resume] Task {task_id}: {missing} pending files not found under {source}")
        if not files:
            return None
        return await self.prepare_upload(files, ticket.target_path, conflict_strategy)

    async def resume_upload(
        self,
        task_id: str,
        source: Path,
        conflict_strategy: Optional[ConflictStrategy] = None,
    ) -> Optional[BatchResult]:
        process = await self.prepare_resume(task_id, source, conflict_strategy)
        if process is None:
            return None
        return await process.wait()

    def watch(self, mode: StoreMode = "panel") -> TaskPoller:
        """
        Poller for a task view; stopped when the client closes.

        ``panel`` polls the shared store every second; ``manage`` polls a
        separate paged store every two seconds while tasks are active.
        """
        if mode == "manage":
            store = TaskStore(self.api, mode="manage", page_size=self._watch_config.page_size)
            poller = TaskPoller.manage(store, self._watch_config)
        else:
            poller = TaskPoller.panel(self.store, self._watch_config)
            self.controller.attach_poller(poller)
        self._pollers.append(poller)
        return poller

    def controller_for(self, poller: TaskPoller) -> TaskController:
        """Controller guarded by (and poking) the given poller's store."""
        return TaskController(self.api, poller.store, self._registry, poller)

"""Batch upload - the batch -> file -> chunk transfer loop."""
from enum import Enum
from functools import partial
from typing import Callable, List, Optional, Sequence
import asyncio
import logging

from ..errors import APIError, TransportError, UploadCancelled
from ..models import BatchPlan, BatchResult, FileResult, LocalFile, UploadConfig
from ..protocols import IFileConsoleAPI
from ..services.cancellation import CancellationRegistry, CancellationToken
from ..services.chunking import ChunkScheduler, read_range
from ..services.transfer import TransferExecutor
from ..use_cases.task_state import derive_batch_status
from ..utils.events import EventEmitter, FileProgress
from .batch_planner import upload_name

logger = logging.getLogger(__name__)


class FileUploader:
    """Uploads one file: plan chunks, then send the missing ones in order."""

    def __init__(
        self,
        api: IFileConsoleAPI,
        config: Optional[UploadConfig] = None,
        scheduler: Optional[ChunkScheduler] = None,
        executor: Optional[TransferExecutor] = None,
    ):
        self._config = config or UploadConfig()
        self._scheduler = scheduler or ChunkScheduler(api, self._config.chunk_size)
        self._executor = executor or TransferExecutor(api, self._config)

    async def upload(
        self,
        local: LocalFile,
        target_path: str,
        filename: str,
        task_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        progress: Optional[Callable[[FileProgress], object]] = None,
    ) -> int:
        """
        Upload ``local`` as ``target_path/filename``.

        Returns:
            Bytes sent by this call (chunks already on the server excluded)

        Raises:
            UploadCancelled: batch cancelled before or during the file
            TransportError: a chunk exhausted its retries
        """
        plan = await self._scheduler.plan(target_path, filename, local.size)
        state = FileProgress(
            filename=filename,
            relative_path=local.relative_path,
            bytes_sent=plan.uploaded_size,
            total_bytes=local.size,
            chunks_done=len(plan.uploaded_chunks),
            total_chunks=plan.total_chunks,
            status="uploading",
        )
        await self._report(progress, state)

        send = partial(
            self._executor.send,
            target_path,
            filename,
            total_size=local.size,
            task_id=task_id,
            token=token,
        )

        if not plan.is_chunked:
            if token is not None:
                token.raise_if_cancelled()
            await send(partial(read_range, local.path, 0, local.size))
            state.bytes_sent = local.size
            state.chunks_done = plan.total_chunks
            state.status = "completed"
            await self._report(progress, state)
            return local.size

        sent = 0
        for index in plan.pending_indices():
            if token is not None:
                token.raise_if_cancelled()
            start, end = plan.byte_range(index)
            await send(
                partial(read_range, local.path, start, end),
                chunk_index=index,
                total_chunks=plan.total_chunks,
            )
            sent += end - start
            state.bytes_sent += end - start
            state.chunks_done += 1
            await self._report(progress, state)

        state.status = "completed"
        await self._report(progress, state)
        return sent

    @staticmethod
    async def _report(progress, state: FileProgress) -> None:
        if progress is None:
            return
        result = progress(state)
        if asyncio.iscoroutine(result):
            await result


class BatchState(Enum):
    """State of a local batch process."""
    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchUploadProcess:
    """
    Process object for one planned batch with event-based progress.

    Usage:
        process = BatchUploadProcess(uploader, plan, files, registry)
        process.on_file_complete(lambda result: print(f"Done: {result.filename}"))
        result = await process.wait()  # wait() starts automatically if needed

    Files run one after another unless ``max_parallel_files`` > 1. A failed
    file is logged and the batch moves on; a cancellation stops the batch
    before the next file or chunk.
    """

    def __init__(
        self,
        uploader: FileUploader,
        plan: BatchPlan,
        files: Sequence[LocalFile],
        registry: CancellationRegistry,
        config: Optional[UploadConfig] = None,
    ):
        self._uploader = uploader
        self._plan = plan
        self._files = list(files)
        self._registry = registry
        self._config = config or UploadConfig()
        self._events = EventEmitter()
        self._state = BatchState.PENDING
        self._task: Optional[asyncio.Task] = None
        self._token = CancellationToken(plan.task_id)
        self._result: Optional[BatchResult] = None

    # Event subscription methods
    def on_file_start(self, callback: Callable[[LocalFile, str], None]):
        """Receives (local_file, upload_name)."""
        self._events.on("file_start", callback)

    def on_file_progress(self, callback: Callable[[FileProgress], None]):
        self._events.on("file_progress", callback)

    def on_file_complete(self, callback: Callable[[FileResult], None]):
        self._events.on("file_complete", callback)

    def on_file_skip(self, callback: Callable[[FileResult], None]):
        self._events.on("file_skip", callback)

    def on_file_fail(self, callback: Callable[[FileResult], None]):
        self._events.on("file_fail", callback)

    def on_finish(self, callback: Callable[[BatchResult], None]):
        self._events.on("finish", callback)

    @property
    def task_id(self) -> str:
        return self._plan.task_id

    @property
    def plan(self) -> BatchPlan:
        return self._plan

    @property
    def files(self) -> List[LocalFile]:
        return list(self._files)

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def token(self) -> CancellationToken:
        return self._token

    async def start(self):
        """Start the batch (non-blocking)."""
        if self._state != BatchState.PENDING:
            raise RuntimeError(f"Cannot start process in state: {self._state}")
        self._state = BatchState.RUNNING
        self._registry.register(self._plan.task_id, self._token)
        self._task = asyncio.create_task(self._run())

    def cancel(self):
        """Stop at the next checkpoint; an in-flight request is allowed to finish."""
        self._token.cancel()

    async def wait(self) -> BatchResult:
        if self._state == BatchState.PENDING:
            await self.start()
        if self._task:
            await self._task
        assert self._result is not None
        return self._result

    async def _run(self) -> None:
        try:
            if self._config.max_parallel_files > 1:
                results = await self._run_parallel()
            else:
                results = await self._run_sequential()
        finally:
            self._registry.discard(self._plan.task_id)

        status = derive_batch_status(results, cancelled=self._token.cancelled)
        self._result = BatchResult(
            task_id=self._plan.task_id,
            target_path=self._plan.target_path,
            status=status,
            results=results,
        )
        self._state = BatchState(status.value)
        logger.info(
            f"[batch] Task {self._plan.task_id} {status.value}: "
            f"{self._result.uploaded_files} uploaded, {self._result.skipped_files} skipped, "
            f"{self._result.failed_files} failed"
        )
        await self._events.emit("finish", self._result)

    async def _run_sequential(self) -> List[FileResult]:
        results: List[FileResult] = []
        for local in self._files:
            if self._token.cancelled:
                logger.info(f"[batch] Task {self._plan.task_id} cancelled, stopping")
                break
            results.append(await self._upload_one(local))
        done = {r.relative_path for r in results}
        results.extend(FileResult.cancel(f.relative_path) for f in self._files if f.relative_path not in done)
        return results

    async def _run_parallel(self) -> List[FileResult]:
        semaphore = asyncio.Semaphore(self._config.max_parallel_files)

        async def worker(local: LocalFile) -> FileResult:
            async with semaphore:
                if self._token.cancelled:
                    return FileResult.cancel(local.relative_path)
                return await self._upload_one(local)

        return list(await asyncio.gather(*(worker(f) for f in self._files)))

    async def _upload_one(self, local: LocalFile) -> FileResult:
        rel = local.relative_path
        name = upload_name(self._plan, rel)
        if name is None:
            logger.info(f"[batch] Skipping {rel}")
            result = FileResult.skip(rel)
            await self._events.emit("file_skip", result)
            return result

        await self._events.emit("file_start", local, name)
        try:
            sent = await self._uploader.upload(
                local,
                self._plan.target_path,
                name,
                task_id=self._plan.task_id,
                token=self._token,
                progress=partial(self._events.emit, "file_progress"),
            )
        except UploadCancelled:
            return FileResult.cancel(rel, filename=name)
        except (TransportError, APIError, OSError) as e:
            logger.error(f"[batch] Upload of {name} failed: {e}")
            result = FileResult.fail(rel, str(e), filename=name)
            await self._events.emit("file_fail", result)
            return result

        result = FileResult.ok(rel, name, bytes_sent=sent)
        await self._events.emit("file_complete", result)
        return result

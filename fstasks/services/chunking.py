"""
Chunk Scheduler - decides how a file is sent and what is left to send.

Files of at most one chunk go out as a single request. Larger files are
split into fixed-size chunks; the backend is asked which chunks it already
holds so an interrupted upload continues where it stopped.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from ..errors import APIError, TransportError
from ..models import ChunkPlan, DEFAULT_CHUNK_SIZE
from ..protocols import IFileConsoleAPI

logger = logging.getLogger(__name__)


async def read_range(path: Path, start: int, end: int) -> bytes:
    """Read ``[start, end)`` of a file without blocking the event loop."""
    def _read():
        with open(path, "rb") as f:
            f.seek(start)
            return f.read(end - start)

    return await asyncio.to_thread(_read)


class ChunkScheduler:
    """
    Builds a ChunkPlan per file.

    Usage:
        scheduler = ChunkScheduler(api, chunk_size)
        plan = await scheduler.plan("/target", "dir/file.bin", size)
        for index in plan.pending_indices():
            ...
    """

    def __init__(self, api: IFileConsoleAPI, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._api = api
        self._chunk_size = chunk_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    async def plan(self, path: str, filename: str, total_size: int) -> ChunkPlan:
        """
        Plan the transfer of one file.

        Args:
            path: Target directory on the backend
            filename: Name (relative path) the file is stored under
            total_size: File size in bytes

        Returns:
            ChunkPlan with already-persisted chunks filled in for chunked files
        """
        plan = ChunkPlan(total_size=total_size, chunk_size=self._chunk_size)
        if not plan.is_chunked:
            return plan

        uploaded = await self._query_uploaded(path, filename, plan.total_chunks)
        if uploaded:
            plan = ChunkPlan(
                total_size=total_size,
                chunk_size=self._chunk_size,
                uploaded_chunks=frozenset(uploaded),
            )
            logger.info(
                f"[resume] {filename}: {len(plan.uploaded_chunks)}/{plan.total_chunks} "
                f"chunks already on server"
            )
        return plan

    async def _query_uploaded(self, path: str, filename: str, total_chunks: int) -> Optional[set]:
        """Ask the backend for persisted chunks; on failure start from scratch."""
        try:
            return set(await self._api.upload_status(path, filename, total_chunks))
        except (APIError, TransportError) as e:
            logger.warning(f"[resume] Chunk status lookup failed for {filename}: {e}")
            return None

"""
Transfer Executor - sends chunks with bounded retry.

Response codes:
- 200: stored
- 498: batch paused on the server; wait and resend without spending an attempt
- 499: batch cancelled; stop the whole batch
- anything else, or a transport failure: spend one attempt
"""
import asyncio
import logging
import time
from typing import Callable, Optional

from ..errors import APIError, TransportError, UploadCancelled, UploadStalled
from ..models import UploadConfig
from ..protocols import IFileConsoleAPI
from .api_client import CANCELLED_CODE, PAUSED_CODE, SUCCESS_CODE
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)


class TransferExecutor:
    """
    Sends one upload request at a time.

    The paused wait starts at ``pause_poll_interval`` and doubles up to
    ``pause_poll_max``; a resume signal on the token ends it early.
    """

    def __init__(self, api: IFileConsoleAPI, config: Optional[UploadConfig] = None):
        self._api = api
        self._config = config or UploadConfig()

    async def send(
        self,
        path: str,
        filename: str,
        read: Callable,
        total_size: int,
        chunk_index: Optional[int] = None,
        total_chunks: Optional[int] = None,
        task_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> None:
        """
        Send one chunk (or the whole file when ``chunk_index`` is None).

        Args:
            read: Coroutine function returning the payload bytes; called once
            token: Batch cancellation token checked between attempts

        Raises:
            UploadCancelled: batch cancelled locally or by the server
            TransportError: all attempts failed
        """
        label = filename if chunk_index is None else f"{filename}#{chunk_index}"
        content = await read()

        attempt = 0
        paused_since: Optional[float] = None
        pause_delay = self._config.pause_poll_interval
        last_error: Optional[Exception] = None

        while attempt < self._config.max_retries:
            if token is not None:
                token.raise_if_cancelled()

            try:
                response = await self._api.upload(
                    path,
                    filename,
                    content,
                    total_size,
                    chunk_index=chunk_index,
                    total_chunks=total_chunks,
                    task_id=task_id,
                    timeout=self._config.request_timeout,
                )
                code = response.get("code")

                if code == CANCELLED_CODE:
                    logger.info(f"[transfer] Server cancelled batch {task_id} at {label}")
                    if token is not None:
                        token.cancel()
                    raise UploadCancelled(task_id)

                if code == PAUSED_CODE:
                    if paused_since is None:
                        paused_since = time.monotonic()
                        logger.info(f"[transfer] Batch {task_id} paused, waiting to resume ({label})")
                    self._check_stalled(paused_since, label)
                    await self._wait_paused(pause_delay, token)
                    pause_delay = min(pause_delay * 2, self._config.pause_poll_max)
                    continue

                if code != SUCCESS_CODE:
                    raise TransportError(response.get("message") or f"upload rejected with code {code}")

                if paused_since is not None:
                    logger.info(f"[transfer] Batch {task_id} resumed ({label})")
                return
            except (TransportError, APIError) as e:
                if isinstance(e, UploadStalled):
                    raise
                last_error = e
                logger.warning(
                    f"[transfer] {label} failed, retry {attempt + 1}/{self._config.max_retries}: {e}"
                )
                paused_since = None
                pause_delay = self._config.pause_poll_interval
                if attempt < self._config.max_retries - 1:
                    await asyncio.sleep(self._config.backoff_for(attempt))
                attempt += 1

        raise TransportError(f"{label}: giving up after {self._config.max_retries} attempts: {last_error}")

    def _check_stalled(self, paused_since: float, label: str) -> None:
        limit = self._config.pause_timeout
        if limit is not None and time.monotonic() - paused_since >= limit:
            raise UploadStalled(f"{label}: paused for more than {limit:.0f}s")

    async def _wait_paused(self, delay: float, token: Optional[CancellationToken]) -> None:
        if token is None:
            await asyncio.sleep(delay)
            return
        await token.wait_for_resume(delay)
        token.raise_if_cancelled()

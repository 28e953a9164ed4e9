from dataclasses import dataclass
from typing import Callable, Dict, List
import asyncio
import logging
logger = logging.getLogger(__name__)


@dataclass
class FileProgress:
    """Local progress of a single file (what this client has sent)."""
    filename: str
    relative_path: str
    bytes_sent: int = 0
    total_bytes: int = 0
    chunks_done: int = 0
    total_chunks: int = 0
    status: str = "pending"  # pending, uploading, completed, failed, skipped

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 100.0 if self.status == "completed" else 0.0
        return min(self.bytes_sent / self.total_bytes * 100.0, 100.0)


class EventEmitter:
    """Simple event emitter for upload and task events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners; listener errors are logged, not raised."""
        if event_name not in self._listeners:
            return

        async with self._lock:
            for callback in self._listeners[event_name][:]:
                try:
                    if asyncio.iscoroutinefunction(callback):
                        await callback(*args, **kwargs)
                    else:
                        callback(*args, **kwargs)
                except Exception as e:
                    logger.error(f"Error in event listener for {event_name}: {e}")

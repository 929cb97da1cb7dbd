"""
Index change notifier for reader processes.

Two delivery paths trigger the reload callback:
- Cross-process: polling the production stats.json for a new
  (mtime, inode, size) signature, written last by every save
- In-process: the IndexStore's index-updated notification

Reload failures are logged and swallowed so the previously loaded
generation keeps serving queries.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

from .index_store import IndexStore
from .models import IndexStats

logger = logging.getLogger(__name__)

ReloadCallback = Callable[[], Awaitable[None]]
Signature = Tuple[int, int, int]


class IndexWatcher:
    """
    Watches the production index and reloads it when a new generation lands.

    States: stopped → started on start(), started → stopped on stop().
    """

    def __init__(
        self,
        store: IndexStore,
        reload_callback: ReloadCallback,
        poll_interval: Optional[float] = None,
    ):
        self.store = store
        self.reload_callback = reload_callback
        self.poll_interval = poll_interval or store.config.watch_poll_interval
        self.reload_count = 0

        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._last_signature: Optional[Signature] = None
        self._reload_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def start(self) -> bool:
        """
        Start watching. Must be called from a running event loop.

        Returns:
            False (and logs a warning) if the index path does not exist yet
        """
        if self.is_running:
            return True

        index_path = self.store.index_path
        if not index_path.exists():
            logger.warning(f"Index path does not exist: {index_path}. Watcher not started.")
            return False

        logger.info(f"Starting index file watcher on {self.store.config.stats_path}")

        self._last_signature = self._stats_signature()
        self._task = asyncio.get_running_loop().create_task(self._poll())
        self._unsubscribe = self.store.subscribe(self._on_index_updated)
        return True

    def stop(self) -> None:
        """Stop polling and detach from the store's notifications."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Index file watcher stopped")

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def check_now(self) -> bool:
        """
        Compare stats.json with the last seen signature, reloading on change.

        Returns:
            True if a change was detected
        """
        signature = self._stats_signature()
        if signature is None or signature == self._last_signature:
            return False

        self._last_signature = signature
        logger.info("Index update detected, reloading...")
        await self._reload("stats.json changed")
        return True

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.check_now()

    async def _on_index_updated(self, stats: Optional[IndexStats]) -> None:
        logger.info(f"Index updated event received: {stats.to_json_dict() if stats else None}")
        # Record the signature first so the poller doesn't reload the same generation again
        self._last_signature = self._stats_signature()
        await self._reload("index updated event")

    async def _reload(self, reason: str) -> None:
        async with self._reload_lock:
            try:
                await self.reload_callback()
            except Exception as e:
                logger.error(f"Failed to reload index after {reason}: {e}")
                return

            self.reload_count += 1
            logger.info(f"Index reloaded after {reason}")

    def _stats_signature(self) -> Optional[Signature]:
        try:
            stat = self.store.config.stats_path.stat()
        except OSError:
            return None
        return (stat.st_mtime_ns, stat.st_ino, stat.st_size)

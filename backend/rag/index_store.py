"""
Durable, atomically swapped storage of the current index generation.

Directory layout for an index path P:
- P/                 production generation (index.faiss, docstore.json, stats.json)
- P.tmp/             new generation being written by save()
- P.backup/          previous production generation, kept for one save
- P.lock             lock file; its existence means "a write is in progress"

Writers and readers live in different processes and share only this layout.
The lock file (exclusive create) and directory renames are the only
synchronization primitives; readers see either the old or the new generation
at P, never a mix.
"""

import inspect
import logging
import os
import shutil
import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

from .config import IndexStoreConfig
from .errors import IndexCorruptError, IndexNotFoundError, LockAcquisitionTimeoutError
from .models import IndexStats
from .vector_store import DOCSTORE_FILENAME, INDEX_FILENAME, IndexGeneration

logger = logging.getLogger(__name__)

STATS_FILENAME = "stats.json"

UpdateCallback = Callable[[Optional[IndexStats]], Union[None, Awaitable[None]]]


def _directory_size(directory: Path) -> int:
    return sum(path.stat().st_size for path in directory.rglob("*") if path.is_file())


class IndexStore:
    """
    Owns the on-disk index generation and the writer lock.

    One instance is created per process and shared by everything that needs
    the index (API lifespan, crawler entry point).
    """

    def __init__(self, config: IndexStoreConfig):
        self.config = config
        self._generation: Optional[IndexGeneration] = None
        self._stats: Optional[IndexStats] = None
        self._subscribers: List[UpdateCallback] = []
        self._lock_held = False
        self.generation_number = 0  # Bumped on every successful load/save in this process

    @property
    def index_path(self) -> Path:
        return self.config.index_path

    @property
    def lock_path(self) -> Path:
        return self.config.lock_path

    @property
    def current(self) -> Optional[IndexGeneration]:
        """The currently loaded generation, or None before the first load/save."""
        return self._generation

    def exists(self) -> bool:
        """True iff the production directory holds a complete generation."""
        return (
            self.index_path.is_dir()
            and (self.index_path / INDEX_FILENAME).is_file()
            and (self.index_path / DOCSTORE_FILENAME).is_file()
        )

    def get_stats(self) -> Optional[IndexStats]:
        """Stats of the last successful load or save (no I/O)."""
        return self._stats

    def subscribe(self, callback: UpdateCallback) -> Callable[[], None]:
        """
        Register a callback for index-updated notifications.

        The callback receives the new stats after every successful save or
        restore in this process. Returns a function that unsubscribes it.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def load(self) -> IndexGeneration:
        """
        Load the production generation into memory.

        Raises:
            IndexNotFoundError: If no production generation exists
            LockAcquisitionTimeoutError: If a writer holds the lock too long
        """
        await self.acquire_lock()
        try:
            if not self.exists():
                raise IndexNotFoundError(f"Index not found at {self.index_path}")

            logger.info(f"Loading FAISS index from {self.index_path}")
            generation = IndexGeneration.load(self.index_path)
            stats = self._read_stats()

            self._generation = generation
            self._stats = stats
            self.generation_number += 1
        except Exception as e:
            logger.error(f"Failed to load FAISS index: {e}")
            raise
        finally:
            await self.release_lock()

        logger.info(
            f"FAISS index loaded successfully: {len(generation)} chunks, "
            f"generation #{self.generation_number}, stats={stats.to_json_dict() if stats else None}"
        )
        return generation

    async def save(self, generation: IndexGeneration, stats: IndexStats) -> IndexStats:
        """
        Atomically publish a new generation.

        Writes to P.tmp, moves the current production to P.backup and renames
        P.tmp to P. Subscribers are notified after the lock is released.

        Returns:
            The stats as persisted (indexSize filled in from the written files)
        """
        await self.acquire_lock()
        try:
            logger.info(f"Saving FAISS index to {self.index_path}")
            published = self._publish(generation, stats)

            self._generation = generation
            self._stats = published
            self.generation_number += 1
        except Exception as e:
            logger.error(f"Failed to save FAISS index: {e}")
            raise
        finally:
            await self.release_lock()

        logger.info(f"FAISS index saved successfully: {published.to_json_dict()}")
        await self._notify(published)
        return published

    async def restore_backup(self) -> Optional[IndexStats]:
        """
        Swap the backup generation back into production.

        The replaced production generation becomes the new backup, so calling
        this twice restores the original state.

        Raises:
            IndexNotFoundError: If there is no backup generation
        """
        await self.acquire_lock()
        try:
            backup = self.config.backup_path
            if not ((backup / INDEX_FILENAME).is_file() and (backup / DOCSTORE_FILENAME).is_file()):
                raise IndexNotFoundError(f"No backup generation at {backup}")

            logger.info(f"Restoring backup generation from {backup}")
            self._swap_backup_into_production()

            generation = IndexGeneration.load(self.index_path)
            stats = self._read_stats()
            self._generation = generation
            self._stats = stats
            self.generation_number += 1
        except Exception as e:
            logger.error(f"Failed to restore backup generation: {e}")
            raise
        finally:
            await self.release_lock()

        logger.info(f"Backup generation restored: {len(generation)} chunks")
        await self._notify(stats)
        return stats

    async def acquire_lock(
        self,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> None:
        """
        Create the lock file exclusively, retrying while another holder has it.

        Args:
            max_retries: Attempts before giving up (config default when None)
            retry_delay: Seconds to wait between attempts (config default when None)

        Raises:
            LockAcquisitionTimeoutError: If every attempt found the lock taken
        """
        if max_retries is None:
            max_retries = self.config.lock_max_retries
        if retry_delay is None:
            retry_delay = self.config.lock_retry_delay

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        for attempt in range(1, max_retries + 1):
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                logger.debug(f"Lock file exists, retrying ({attempt}/{max_retries})")
                if attempt < max_retries:
                    await asyncio.sleep(retry_delay)
                continue

            try:
                os.write(fd, str(os.getpid()).encode("ascii"))
            finally:
                os.close(fd)

            self._lock_held = True
            logger.debug(f"Lock acquired: {self.lock_path}")
            return

        raise LockAcquisitionTimeoutError(
            f"Failed to acquire lock {self.lock_path} after {max_retries} attempts"
        )

    async def release_lock(self) -> None:
        """Remove the lock file if this store holds it. Safe to call repeatedly."""
        if not self._lock_held:
            logger.debug("Lock not held by this store, nothing to release")
            return

        self._lock_held = False
        try:
            self.lock_path.unlink()
            logger.debug(f"Lock released: {self.lock_path}")
        except FileNotFoundError:
            logger.warning(f"Lock file already removed: {self.lock_path}")
        except OSError as e:
            logger.error(f"Failed to release lock {self.lock_path}: {e}")

    def _publish(self, generation: IndexGeneration, stats: IndexStats) -> IndexStats:
        production = self.index_path
        temp = self.config.temp_path
        backup = self.config.backup_path

        production.parent.mkdir(parents=True, exist_ok=True)
        if temp.exists():
            logger.warning(f"Removing leftover temp generation: {temp}")
            shutil.rmtree(temp)

        moved_to_backup = False
        try:
            generation.save(temp)
            published = stats.model_copy(update={"index_size": _directory_size(temp)})
            (temp / STATS_FILENAME).write_text(
                published.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
            )

            if production.exists():
                if backup.exists():
                    shutil.rmtree(backup)
                os.rename(production, backup)
                moved_to_backup = True

            os.rename(temp, production)
        except Exception:
            if moved_to_backup and not production.exists():
                logger.warning("Restoring previous generation after failed swap")
                os.rename(backup, production)
            shutil.rmtree(temp, ignore_errors=True)
            raise

        return published

    def _swap_backup_into_production(self) -> None:
        production = self.index_path
        temp = self.config.temp_path
        backup = self.config.backup_path

        if temp.exists():
            shutil.rmtree(temp)

        had_production = production.exists()
        if had_production:
            os.rename(production, temp)
        try:
            os.rename(backup, production)
        except OSError:
            if had_production:
                os.rename(temp, production)
            raise
        if had_production:
            os.rename(temp, backup)

    def _read_stats(self) -> Optional[IndexStats]:
        """Read stats.json; a missing or unreadable sidecar yields None."""
        stats_path = self.config.stats_path
        if not stats_path.is_file():
            logger.warning(f"Index stats not found at {stats_path}")
            return None

        try:
            return IndexStats.model_validate_json(stats_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            error = IndexCorruptError(f"Unreadable stats sidecar {stats_path}: {e}")
            logger.warning(f"Failed to load index stats: {error}")
            return None

    async def _notify(self, stats: Optional[IndexStats]) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(stats)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Index update subscriber failed: {e}")

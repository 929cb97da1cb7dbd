"""
Service layer - single in-flight build coordination for the API process.

A build is triggered, runs as a background task and reports an exit code.
While one runs, further triggers fail fast with BuildAlreadyInProgressError.
This in-process flag is separate from the index lock, which guards the
IndexStore across processes.
"""
import asyncio
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

from domain.models import BuildStatus
from rag.errors import BuildAlreadyInProgressError
from rag.index_builder import IndexBuilder
from rag.index_store import IndexStore
from rag.models import ProcessedDocument, utc_now
from services.crawler_service import CrawlerService

logger = logging.getLogger(__name__)

BuildJob = Callable[[], Awaitable[int]]  # Resolves to an exit code, 0 on success
CompletionCallback = Callable[[int], Awaitable[None]]

BACKEND_DIR = Path(__file__).resolve().parent.parent


def subprocess_crawl_job(command: Optional[List[str]] = None, cwd: Optional[Path] = None) -> BuildJob:
    """Run the crawler as a child process (the default writer)."""
    command = command or [sys.executable, "-m", "crawler"]
    cwd = cwd or BACKEND_DIR

    async def job() -> int:
        logger.info(f"Starting crawler process: {' '.join(command)}")
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if stdout:
            logger.debug(f"Crawler output:\n{stdout.decode(errors='replace')}")
        if stderr:
            logger.info(f"Crawler log output:\n{stderr.decode(errors='replace')}")
        return process.returncode

    return job


def in_process_crawl_job(crawler: CrawlerService) -> BuildJob:
    """Run the crawl inside the API process."""

    async def job() -> int:
        result = await crawler.run()
        return 0 if result.published else 1

    return job


def documents_build_job(
    builder: IndexBuilder,
    store: IndexStore,
    documents: Sequence[ProcessedDocument],
) -> BuildJob:
    """Build and publish a generation from already extracted documents."""

    async def job() -> int:
        build = await builder.build_full(documents)
        if build.documents_included == 0:
            logger.error("No documents could be processed, keeping the current index")
            return 1
        await store.save(build.generation, build.stats)
        if build.failures:
            logger.warning(f"{len(build.failures)} documents excluded from the build")
        return 0

    return job


class BuildCoordinator:
    """Runs at most one build at a time in this process."""

    def __init__(self, job: BuildJob, on_complete: Optional[CompletionCallback] = None):
        self.job = job
        self.on_complete = on_complete
        self._in_progress = False
        self._task: Optional[asyncio.Task] = None
        self._last_exit_code: Optional[int] = None
        self._last_started_at = None
        self._last_finished_at = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def status(self) -> BuildStatus:
        return BuildStatus(
            in_progress=self._in_progress,
            last_exit_code=self._last_exit_code,
            last_started_at=self._last_started_at,
            last_finished_at=self._last_finished_at,
        )

    def trigger(self, job: Optional[BuildJob] = None) -> BuildStatus:
        """
        Start a build in the background and return immediately.

        Args:
            job: Build to run instead of the configured one

        Raises:
            BuildAlreadyInProgressError: If a build is still running
        """
        if self._in_progress:
            raise BuildAlreadyInProgressError("A crawl is already in progress")

        logger.info("Build triggered")
        self._in_progress = True
        self._last_started_at = utc_now()
        self._task = asyncio.get_running_loop().create_task(self._run(job or self.job))
        return self.status()

    async def wait(self) -> Optional[int]:
        """Wait for the running build, if any, and return its exit code."""
        if self._task is not None:
            await self._task
        return self._last_exit_code

    async def _run(self, job: BuildJob) -> None:
        exit_code = 1
        try:
            exit_code = await job()
        except Exception as e:
            logger.error(f"Crawl failed: {e}")
        finally:
            self._in_progress = False
            self._last_exit_code = exit_code
            self._last_finished_at = utc_now()

        if exit_code == 0:
            logger.info("Crawl completed successfully")
        else:
            logger.error(f"Crawl failed with exit code {exit_code}")

        if self.on_complete is not None:
            try:
                await self.on_complete(exit_code)
            except Exception as e:
                logger.error(f"Build completion handler failed: {e}")

"""Tests for single in-flight build coordination."""
import asyncio
import sys

import pytest

from conftest import make_document

from rag.errors import BuildAlreadyInProgressError
from services.build_coordinator import BuildCoordinator, documents_build_job, subprocess_crawl_job


class TestBuildCoordinator:

    @pytest.mark.asyncio
    async def test_second_trigger_rejected_while_running(self):
        release = asyncio.Event()

        async def slow_job():
            await release.wait()
            return 0

        coordinator = BuildCoordinator(slow_job)
        status = coordinator.trigger()
        assert status.in_progress is True

        with pytest.raises(BuildAlreadyInProgressError):
            coordinator.trigger()

        release.set()
        assert await coordinator.wait() == 0
        assert coordinator.in_progress is False

        # Accepted again once the first build finished
        coordinator.trigger()
        await coordinator.wait()

    @pytest.mark.asyncio
    async def test_failing_job_reports_exit_code_and_resets(self):
        async def broken_job():
            raise RuntimeError("crawler crashed")

        completed = []

        async def on_complete(exit_code):
            completed.append(exit_code)

        coordinator = BuildCoordinator(broken_job, on_complete=on_complete)
        coordinator.trigger()

        assert await coordinator.wait() == 1
        assert completed == [1]
        status = coordinator.status()
        assert status.in_progress is False
        assert status.last_exit_code == 1
        assert status.last_finished_at >= status.last_started_at

    @pytest.mark.asyncio
    async def test_completion_handler_errors_are_contained(self):
        async def job():
            return 0

        async def on_complete(exit_code):
            raise RuntimeError("reload failed")

        coordinator = BuildCoordinator(job, on_complete=on_complete)
        coordinator.trigger()

        assert await coordinator.wait() == 0
        assert coordinator.in_progress is False

    @pytest.mark.asyncio
    async def test_documents_build_job_publishes(self, store, builder, sample_documents):
        coordinator = BuildCoordinator(documents_build_job(builder, store, sample_documents))

        coordinator.trigger()

        assert await coordinator.wait() == 0
        assert store.get_stats().total_chunks == 3

    @pytest.mark.asyncio
    async def test_documents_build_job_keeps_index_when_nothing_usable(self, store, builder, sample_documents):
        assert await documents_build_job(builder, store, sample_documents)() == 0
        before = store.config.stats_path.read_text()

        exit_code = await documents_build_job(builder, store, [make_document("x", "   ")])()

        assert exit_code == 1
        assert store.config.stats_path.read_text() == before
        assert len(store.current) == 3

    @pytest.mark.asyncio
    async def test_subprocess_job_returns_exit_code(self, tmp_path):
        job = subprocess_crawl_job([sys.executable, "-c", "import sys; sys.exit(3)"], cwd=tmp_path)

        assert await job() == 3

    def test_status_serializes_camel_case(self):
        async def job():
            return 0

        payload = BuildCoordinator(job).status().model_dump(mode="json", by_alias=True)

        assert payload == {
            "inProgress": False,
            "lastExitCode": None,
            "lastStartedAt": None,
            "lastFinishedAt": None,
        }

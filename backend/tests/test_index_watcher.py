"""Tests for the index change notifier."""
import asyncio

import pytest

from conftest import make_document
from rag.index_store import IndexStore
from rag.index_watcher import IndexWatcher


async def publish(store, builder, documents):
    result = await builder.build_full(documents)
    return await store.save(result.generation, result.stats)


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


class TestIndexWatcher:

    @pytest.mark.asyncio
    async def test_not_started_without_index(self, store):
        async def reload():
            pass

        watcher = IndexWatcher(store, reload)

        assert watcher.start() is False
        assert watcher.is_running is False

    @pytest.mark.asyncio
    async def test_reloads_when_another_process_publishes(self, index_config, builder, sample_documents):
        """Reader picks up a generation written by a separate store instance."""
        writer = IndexStore(index_config)
        reader = IndexStore(index_config)
        await publish(writer, builder, sample_documents[:1])
        await reader.load()

        watcher = IndexWatcher(reader, reader.load)
        assert watcher.start() is True
        try:
            await asyncio.sleep(0.01)  # distinct mtime
            await publish(writer, builder, sample_documents)

            assert await wait_for(lambda: watcher.reload_count >= 1)
            assert reader.get_stats().total_documents == 2
        finally:
            watcher.stop()

        assert watcher.is_running is False

    @pytest.mark.asyncio
    async def test_in_process_save_reloads_once(self, store, builder, sample_documents):
        reloads = []

        async def reload():
            reloads.append(await store.load())

        await publish(store, builder, sample_documents[:1])
        watcher = IndexWatcher(store, reload)
        watcher.start()
        try:
            await publish(store, builder, sample_documents)
            assert len(reloads) == 1

            # The poller sees the same stats.json and does not reload again
            assert await watcher.check_now() is False
            await asyncio.sleep(0.2)
            assert len(reloads) == 1
        finally:
            watcher.stop()

    @pytest.mark.asyncio
    async def test_reload_failure_keeps_previous_generation(self, store, builder, sample_documents):
        await publish(store, builder, sample_documents)
        loaded = store.current

        async def failing_reload():
            raise RuntimeError("reload exploded")

        watcher = IndexWatcher(store, failing_reload, poll_interval=10)
        watcher.start()
        try:
            store.config.stats_path.write_text(store.config.stats_path.read_text() + " ")

            assert await watcher.check_now() is True
            assert watcher.reload_count == 0
            assert store.current is loaded
        finally:
            watcher.stop()

    @pytest.mark.asyncio
    async def test_reload_twice_is_idempotent(self, store, builder, sample_documents):
        await publish(store, builder, sample_documents)
        watcher = IndexWatcher(store, store.load, poll_interval=10)
        watcher.start()
        try:
            await watcher._reload("first")
            first = store.current
            await watcher._reload("second")
            second = store.current
        finally:
            watcher.stop()

        assert watcher.reload_count == 2
        assert first.chunks == second.chunks

    @pytest.mark.asyncio
    async def test_stop_detaches_from_store(self, store, builder, sample_documents):
        reloads = []

        async def reload():
            reloads.append(True)

        await publish(store, builder, sample_documents[:1])
        watcher = IndexWatcher(store, reload, poll_interval=10)
        watcher.start()
        watcher.stop()

        await publish(store, builder, [make_document("doc9", "later document")])

        assert reloads == []

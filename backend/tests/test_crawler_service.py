"""Tests for the crawl pipeline and the local folder source."""
from typing import Dict, List

import pytest

from conftest import FailingEmbeddingService
from domain.interfaces import IDocumentSource
from infrastructure.document_processor import DocumentProcessor
from infrastructure.folder_source import FolderDocumentSource
from rag.errors import DocumentSourceError, EmbeddingProviderError, LockAcquisitionTimeoutError
from rag.index_builder import IndexBuilder
from rag.models import DocumentMetadata
from services.crawler_service import CrawlerService


class InMemorySource(IDocumentSource):
    """Document library backed by a dict of filename → bytes."""

    def __init__(self, files: Dict[str, bytes], unreachable: List[str] = ()):
        self.files = files
        self.unreachable = set(unreachable)

    async def list_documents(self) -> List[DocumentMetadata]:
        return [
            DocumentMetadata(
                id=name,
                filename=name,
                url=f"https://example.com/{name}",
                path=name,
                size=len(content),
                content_type="text/plain",
            )
            for name, content in self.files.items()
        ]

    async def download_document(self, path: str) -> bytes:
        if path in self.unreachable:
            raise DocumentSourceError(f"403 Forbidden: {path}")
        return self.files[path]


@pytest.fixture
def extractor():
    return DocumentProcessor()


class TestCrawlerService:

    @pytest.mark.asyncio
    async def test_crawl_publishes_generation(self, store, builder, extractor):
        source = InMemorySource({"a.txt": b"AAAA BBBB CCCC", "b.txt": b"DDDD"})
        crawler = CrawlerService(source, extractor, builder, store)

        result = await crawler.run()

        assert result.published is True
        assert result.documents_processed == 2
        assert result.documents_skipped == 0
        assert result.total_chunks == 3
        assert result.errors == []
        assert store.exists()
        assert store.get_stats().total_documents == 2

    @pytest.mark.asyncio
    async def test_failed_documents_do_not_abort_crawl(self, store, builder, extractor):
        """Download and extraction failures are recorded and skipped."""
        source = InMemorySource(
            {"a.txt": b"alpha", "locked.txt": b"secret", "empty.txt": b"   ", "c.txt": b"gamma"},
            unreachable=["locked.txt"],
        )
        crawler = CrawlerService(source, extractor, builder, store)

        result = await crawler.run()

        assert result.published is True
        assert result.documents_processed == 2
        assert result.documents_skipped == 2
        assert sorted(e.filename for e in result.errors) == ["empty.txt", "locked.txt"]
        assert store.current.document_ids == ["a.txt", "c.txt"]

    @pytest.mark.asyncio
    async def test_nothing_processed_keeps_current_index(self, store, builder, extractor):
        await CrawlerService(InMemorySource({"a.txt": b"alpha"}), extractor, builder, store).run()
        before = store.config.stats_path.read_text()

        result = await CrawlerService(InMemorySource({"bad.txt": b""}), extractor, builder, store).run()

        assert result.published is False
        assert len(result.errors) == 1
        assert store.config.stats_path.read_text() == before

    @pytest.mark.asyncio
    async def test_locked_index_aborts(self, store, builder, extractor):
        store.lock_path.parent.mkdir(parents=True, exist_ok=True)
        store.lock_path.write_text("12345")
        crawler = CrawlerService(InMemorySource({"a.txt": b"alpha"}), extractor, builder, store)

        with pytest.raises(LockAcquisitionTimeoutError):
            await crawler.run()

        assert not store.exists()

    @pytest.mark.asyncio
    async def test_embedding_failure_leaves_production_untouched(self, store, chunker, builder, extractor):
        await CrawlerService(InMemorySource({"a.txt": b"alpha"}), extractor, builder, store).run()
        before = store.config.stats_path.read_text()
        broken_builder = IndexBuilder(chunker, FailingEmbeddingService())

        with pytest.raises(EmbeddingProviderError):
            await CrawlerService(InMemorySource({"b.txt": b"beta"}), extractor, broken_builder, store).run()

        assert store.config.stats_path.read_text() == before
        assert store.current.document_ids == ["a.txt"]
        assert not store.config.temp_path.exists()


class TestFolderDocumentSource:

    @pytest.mark.asyncio
    async def test_lists_supported_files(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "one.txt").write_text("one")
        (tmp_path / "sub" / "two.md").write_text("two")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        documents = await FolderDocumentSource(tmp_path).list_documents()

        assert [d.id for d in documents] == ["one.txt", "sub/two.md"]
        assert documents[1].content_type == "text/markdown"
        assert documents[0].url.startswith("file://")

    @pytest.mark.asyncio
    async def test_download(self, tmp_path):
        (tmp_path / "one.txt").write_text("one")
        source = FolderDocumentSource(tmp_path)

        assert await source.download_document("one.txt") == b"one"

    @pytest.mark.asyncio
    async def test_rejects_paths_outside_root(self, tmp_path):
        root = tmp_path / "docs"
        root.mkdir()
        (tmp_path / "secret.txt").write_text("secret")

        with pytest.raises(DocumentSourceError):
            await FolderDocumentSource(root).download_document("../secret.txt")

    @pytest.mark.asyncio
    async def test_missing_folder(self, tmp_path):
        with pytest.raises(DocumentSourceError):
            await FolderDocumentSource(tmp_path / "nope").list_documents()

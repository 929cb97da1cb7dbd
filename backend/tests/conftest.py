"""Shared fixtures for the index lifecycle tests."""
from typing import List

import pytest

from rag.answering import IAnswerGenerator
from rag.chunking import OverlappingChunker
from rag.config import ChunkingConfig, IndexStoreConfig
from rag.embeddings import HashingEmbeddingService, IEmbeddingService
from rag.index_builder import IndexBuilder
from rag.index_store import IndexStore
from rag.models import DocumentMetadata, ProcessedDocument, RetrievedPassage


class FailingEmbeddingService(IEmbeddingService):
    """Provider whose every call times out."""

    @property
    def embedding_dim(self) -> int:
        return 64

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        raise TimeoutError("provider timed out")

    async def embed_query(self, query: str) -> List[float]:
        raise TimeoutError("provider timed out")


class FakeAnswerGenerator(IAnswerGenerator):
    """Records the passages it was given and answers with a fixed string."""

    def __init__(self, answer: str = "42"):
        self.answer = answer
        self.calls: List[tuple] = []

    async def generate_answer(self, query: str, passages: List[RetrievedPassage]) -> str:
        self.calls.append((query, passages))
        return self.answer


def make_document(doc_id: str, content: str, filename: str = "") -> ProcessedDocument:
    filename = filename or f"{doc_id}.txt"
    return ProcessedDocument(
        metadata=DocumentMetadata(
            id=doc_id,
            filename=filename,
            url=f"https://example.sharepoint.com/docs/{filename}",
            path=f"/docs/{filename}",
            content_type="text/plain",
        ),
        content=content,
    )


@pytest.fixture
def index_config(tmp_path):
    """Index store config under a temp dir with fast lock retries."""
    return IndexStoreConfig(
        index_path=tmp_path / "faiss-index",
        lock_max_retries=3,
        lock_retry_delay=0.01,
        watch_poll_interval=0.05,
    )


@pytest.fixture
def store(index_config):
    return IndexStore(index_config)


@pytest.fixture
def embedding_service():
    return HashingEmbeddingService(embedding_dim=64)


@pytest.fixture
def chunker():
    return OverlappingChunker(ChunkingConfig(chunk_size=8, chunk_overlap=2))


@pytest.fixture
def builder(chunker, embedding_service):
    return IndexBuilder(chunker=chunker, embedding_service=embedding_service)


@pytest.fixture
def answer_generator():
    return FakeAnswerGenerator()


@pytest.fixture
def sample_documents():
    return [make_document("doc1", "AAAA BBBB CCCC"), make_document("doc2", "DDDD")]

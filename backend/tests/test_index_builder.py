"""Tests for building and appending index generations."""
from typing import List

import pytest

from conftest import FailingEmbeddingService, make_document
from rag.embeddings import HashingEmbeddingService
from rag.errors import EmbeddingProviderError
from rag.index_builder import IndexBuilder


class ShortVectorEmbeddingService(HashingEmbeddingService):
    """Claims 64 dimensions but returns 8."""

    def __init__(self):
        super().__init__(embedding_dim=64)

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [[1.0] * 8 for _ in texts]


class CountingEmbeddingService(HashingEmbeddingService):

    def __init__(self):
        super().__init__(embedding_dim=64)
        self.embedded: List[str] = []

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.embedded.extend(texts)
        return await super().embed_texts(texts)


class TestBuildFull:

    @pytest.mark.asyncio
    async def test_two_document_scenario(self, builder, sample_documents):
        result = await builder.build_full(sample_documents)

        assert result.documents_included == 2
        assert result.chunks_added == 3
        assert result.stats.total_documents == 2
        assert result.stats.total_chunks == 3
        assert len(result.generation) == 3
        assert result.failures == []

    @pytest.mark.asyncio
    async def test_partial_failure_containment(self, builder):
        """N documents with K unusable ones give N - K documents and K failures."""
        documents = [
            make_document("a", "alpha beta gamma"),
            make_document("b", "   "),
            make_document("c", "delta epsilon"),
            make_document("d", ""),
            make_document("e", "zeta"),
        ]

        result = await builder.build_full(documents)

        assert result.documents_attempted == 5
        assert result.documents_included == 3
        assert sorted(f.document_id for f in result.failures) == ["b", "d"]
        assert result.generation.document_ids == ["a", "c", "e"]
        assert result.stats.total_documents == 3

    @pytest.mark.asyncio
    async def test_embedding_failure_is_wrapped(self, chunker, sample_documents):
        builder = IndexBuilder(chunker, FailingEmbeddingService())

        with pytest.raises(EmbeddingProviderError) as exc_info:
            await builder.build_full(sample_documents)

        assert isinstance(exc_info.value.__cause__, TimeoutError)

    @pytest.mark.asyncio
    async def test_wrong_dimension_is_provider_error(self, chunker, sample_documents):
        builder = IndexBuilder(chunker, ShortVectorEmbeddingService())

        with pytest.raises(EmbeddingProviderError):
            await builder.build_full(sample_documents)

    @pytest.mark.asyncio
    async def test_no_usable_documents(self, builder):
        result = await builder.build_full([make_document("blank", " ")])

        assert len(result.generation) == 0
        assert result.stats.total_chunks == 0
        assert len(result.failures) == 1


class TestAppend:

    @pytest.mark.asyncio
    async def test_append_embeds_only_new_documents(self, chunker, sample_documents):
        embeddings = CountingEmbeddingService()
        builder = IndexBuilder(chunker, embeddings)
        base = (await builder.build_full(sample_documents)).generation
        embeddings.embedded.clear()

        result = await builder.append_to(base, [make_document("doc3", "EEEE")])

        assert embeddings.embedded == ["EEEE"]
        assert len(result.generation) == 4
        assert result.stats.total_documents == 3
        assert len(base) == 3

    @pytest.mark.asyncio
    async def test_append_skips_already_indexed(self, builder, sample_documents):
        base = (await builder.build_full(sample_documents)).generation

        result = await builder.append_to(base, [make_document("doc1", "new text for doc1")])

        assert result.chunks_added == 0
        assert [f.document_id for f in result.failures] == ["doc1"]
        assert len(result.generation) == len(base)

    @pytest.mark.asyncio
    async def test_duplicate_ids_in_one_batch(self, builder):
        result = await builder.build_full(
            [make_document("x", "first copy"), make_document("x", "second copy")]
        )

        assert result.documents_included == 1
        assert len(result.failures) == 1

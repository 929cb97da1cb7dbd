"""
Index builder: chunk → embed → new index generation.

Supports a full rebuild and an incremental append. Per-document chunking
failures exclude that document and are reported back in the BuildResult;
an embedding failure aborts the whole build before anything touches disk.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .chunking import OverlappingChunker
from .embeddings import IEmbeddingService
from .errors import EmbeddingProviderError, RAGError
from .models import DocumentChunk, IndexStats, ProcessedDocument, utc_now
from .vector_store import IndexGeneration

logger = logging.getLogger(__name__)


@dataclass
class DocumentFailure:
    """A document that was attempted but left out of the generation."""

    document_id: str
    filename: str
    reason: str


@dataclass
class BuildResult:
    """Outcome of a build: the new generation, its stats and what was dropped."""

    generation: IndexGeneration
    stats: IndexStats
    documents_attempted: int
    documents_included: int
    chunks_added: int
    failures: List[DocumentFailure] = field(default_factory=list)


def compute_stats(generation: IndexGeneration) -> IndexStats:
    """Derive stats from a generation; index_size is filled in on save."""
    return IndexStats(
        total_documents=len(generation.document_ids),
        total_chunks=len(generation),
        last_updated=utc_now(),
        index_size=0,
    )


class IndexBuilder:
    """
    Builds index generations from processed documents.

    Pipeline: documents → chunks → embeddings → IndexGeneration
    """

    def __init__(self, chunker: OverlappingChunker, embedding_service: IEmbeddingService):
        self.chunker = chunker
        self.embedding_service = embedding_service

        logger.info("Initialized index builder")

    async def build_full(self, documents: Sequence[ProcessedDocument]) -> BuildResult:
        """
        Build a brand-new generation from scratch.

        Raises:
            EmbeddingProviderError: If the embedding provider fails
        """
        logger.info(f"Creating FAISS index for {len(documents)} documents")
        base = IndexGeneration.empty(self.embedding_service.embedding_dim)
        return await self._build(base, documents)

    async def append_to(
        self,
        existing: IndexGeneration,
        documents: Sequence[ProcessedDocument],
    ) -> BuildResult:
        """
        Add new documents to an existing generation.

        Only the new documents are chunked and embedded. Documents whose id is
        already indexed are reported as failures rather than duplicated. The
        existing generation is not modified.
        """
        logger.info(f"Adding {len(documents)} documents to existing index ({len(existing)} chunks)")
        return await self._build(existing, documents)

    async def _build(
        self,
        base: IndexGeneration,
        documents: Sequence[ProcessedDocument],
    ) -> BuildResult:
        start_time = time.time()

        chunks, failures, included = self._chunk_documents(documents, set(base.document_ids))
        logger.info(f"Created {len(chunks)} chunks from {included} documents")

        embeddings = await self._embed(chunks, base.dimension)
        generation = base.extended(chunks, embeddings)

        latency_ms = (time.time() - start_time) * 1000
        logger.info(
            f"FAISS index built: {len(generation)} chunks total, {len(chunks)} added, "
            f"{len(failures)} documents excluded in {latency_ms:.2f}ms"
        )

        return BuildResult(
            generation=generation,
            stats=compute_stats(generation),
            documents_attempted=len(documents),
            documents_included=included,
            chunks_added=len(chunks),
            failures=failures,
        )

    def _chunk_documents(
        self,
        documents: Sequence[ProcessedDocument],
        indexed_ids: set,
    ) -> Tuple[List[DocumentChunk], List[DocumentFailure], int]:
        chunks: List[DocumentChunk] = []
        failures: List[DocumentFailure] = []
        seen = set(indexed_ids)
        included = 0

        for document in documents:
            metadata = document.metadata
            if metadata.id in seen:
                failures.append(
                    DocumentFailure(metadata.id, metadata.filename, "Document already indexed")
                )
                logger.warning(f"Skipping already indexed document: {metadata.filename}")
                continue

            try:
                document_chunks = self.chunker.chunk_document(document)
            except (RAGError, ValueError) as e:
                failures.append(DocumentFailure(metadata.id, metadata.filename, str(e)))
                logger.error(f"Failed to chunk document: {metadata.filename}: {e}")
                continue

            seen.add(metadata.id)
            chunks.extend(document_chunks)
            included += 1

        return chunks, failures, included

    async def _embed(self, chunks: List[DocumentChunk], dimension: int) -> List[List[float]]:
        if not chunks:
            return []

        texts = [chunk.content for chunk in chunks]
        try:
            embeddings = await self.embedding_service.embed_texts(texts)
        except Exception as e:
            logger.error(f"Embedding provider failed: {e}")
            raise EmbeddingProviderError(f"Embedding provider failed: {e}") from e

        if len(embeddings) != len(texts):
            raise EmbeddingProviderError(
                f"Embedding provider returned {len(embeddings)} vectors for {len(texts)} texts"
            )
        bad = next((vector for vector in embeddings if len(vector) != dimension), None)
        if bad is not None:
            raise EmbeddingProviderError(
                f"Embedding provider returned a {len(bad)}-dimensional vector, expected {dimension}"
            )
        return embeddings

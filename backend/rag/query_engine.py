"""
Query engine: question → nearest passages → generated answer.

Each query captures the store's current generation once, so a reload that
swaps in a new generation never disturbs queries already in flight.
"""

import logging
import time
from typing import Optional

from .answering import IAnswerGenerator
from .embeddings import IEmbeddingService
from .errors import (
    AnswerGenerationError,
    ConfigurationError,
    EmbeddingProviderError,
    EmptyQueryError,
    IndexUnavailableError,
    StatsUnavailableError,
)
from .index_store import IndexStore
from .models import IndexStats, QueryResult, SourceDocument

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 4


class QueryEngine:
    """Answers questions against the currently loaded index generation."""

    def __init__(
        self,
        store: IndexStore,
        embedding_service: IEmbeddingService,
        answer_generator: IAnswerGenerator,
        default_top_k: int = DEFAULT_TOP_K,
    ):
        self.store = store
        self.embedding_service = embedding_service
        self.answer_generator = answer_generator
        self.default_top_k = default_top_k

        logger.info("Initialized query engine")

    async def query(self, text: str, top_k: Optional[int] = None) -> QueryResult:
        """
        Answer a question from the index.

        Args:
            text: Question text
            top_k: Number of passages to retrieve (default 4)

        Raises:
            EmptyQueryError: If text is blank
            ConfigurationError: If top_k is not a positive integer
            IndexUnavailableError: If no generation is loaded
            EmbeddingProviderError: If the query could not be embedded
            AnswerGenerationError: If the answer generator failed
        """
        if top_k is None:
            top_k = self.default_top_k

        if not text or not text.strip():
            raise EmptyQueryError("Query is required")
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
            raise ConfigurationError(f"top_k must be a positive integer, got {top_k!r}")

        generation = self.store.current
        if generation is None:
            raise IndexUnavailableError()

        start_time = time.time()
        logger.info(f"Processing query (top_k={top_k}): {text!r}")

        try:
            query_embedding = await self.embedding_service.embed_query(text)
        except Exception as e:
            logger.error(f"Failed to embed query: {e}")
            raise EmbeddingProviderError(f"Failed to embed query: {e}") from e

        if len(query_embedding) != generation.dimension:
            raise EmbeddingProviderError(
                f"Query embedding has {len(query_embedding)} dimensions, "
                f"index expects {generation.dimension}"
            )

        passages = generation.search(query_embedding, top_k)

        try:
            answer = await self.answer_generator.generate_answer(text, passages)
        except Exception as e:
            logger.error(f"Failed to generate answer: {e}")
            raise AnswerGenerationError(f"Failed to generate answer: {e}") from e

        sources = [
            SourceDocument(
                filename=passage.chunk.filename,
                url=passage.chunk.url,
                content=passage.chunk.content,
                score=passage.score,
            )
            for passage in passages
        ]

        latency_ms = (time.time() - start_time) * 1000
        logger.info(f"Query processed successfully: {len(sources)} sources in {latency_ms:.2f}ms")

        return QueryResult(answer=answer, sources=sources)

    def stats(self) -> IndexStats:
        """Stats of the loaded generation."""
        stats = self.store.get_stats()
        if stats is None:
            raise StatsUnavailableError("Index stats not available")
        return stats

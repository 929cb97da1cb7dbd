"""
Embedding service for RAG.

Provides abstraction layer for embedding generation with:
- OpenAI embeddings with batch processing and rate-limit backoff
- A deterministic hashing embedder for offline runs and tests
- Interface for future embedding providers
"""

import asyncio
import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import List

import openai
from openai import AsyncOpenAI

from .config import EmbeddingConfig

logger = logging.getLogger(__name__)


class IEmbeddingService(ABC):
    """Interface for embedding services."""

    @property
    @abstractmethod
    def embedding_dim(self) -> int:
        """Length of every vector this service returns."""
        pass

    @abstractmethod
    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, same length and order as texts
        """
        pass

    @abstractmethod
    async def embed_query(self, query: str) -> List[float]:
        """
        Generate embedding for a single query.

        Args:
            query: Query text to embed

        Returns:
            Embedding vector as List[float]
        """
        pass


class OpenAIEmbeddingService(IEmbeddingService):
    """
    OpenAI embedding service (text-embedding-3-small by default).

    Features:
    - Batch processing up to batch_size texts per API call
    - Exponential backoff when the API rate-limits us
    """

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self.client = AsyncOpenAI(
            api_key=config.require_api_key(),
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )
        self.model = config.model_name

        logger.info(f"Initialized OpenAI embedding service with model: {self.model}")

    @property
    def embedding_dim(self) -> int:
        return self.config.embedding_dim

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts with batching.

        Processes texts in batches to respect API limits.
        """
        if not texts:
            return []

        all_embeddings = []
        batch_size = self.config.batch_size

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            batch_embeddings = await self._embed_batch(batch)
            all_embeddings.extend(batch_embeddings)

        logger.info(f"Generated {len(all_embeddings)} embeddings")
        return all_embeddings

    async def embed_query(self, query: str) -> List[float]:
        """Generate embedding for single query."""
        embeddings = await self.embed_texts([query])
        return embeddings[0]

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of texts.

        Rate limits are retried with exponential backoff; every other API
        error is raised to the caller.
        """
        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.embeddings.create(model=self.model, input=texts)
            except openai.RateLimitError:
                if attempt == self.config.max_retries - 1:
                    logger.error("Max retries reached for embedding batch")
                    raise
                wait_time = 2 ** attempt
                logger.warning(
                    f"Rate limit hit, retrying in {wait_time}s "
                    f"(attempt {attempt + 1}/{self.config.max_retries})"
                )
                await asyncio.sleep(wait_time)
                continue

            # Response items carry their input index; keep input order
            data = sorted(response.data, key=lambda item: item.index)
            logger.debug(f"Successfully embedded batch of {len(texts)} texts")
            return [item.embedding for item in data]

        raise RuntimeError("unreachable: embedding retries exhausted without result")


class HashingEmbeddingService(IEmbeddingService):
    """
    Deterministic feature-hashing embedder.

    Maps lower-cased word tokens into a fixed number of buckets with a signed
    hash, then L2-normalizes. Texts sharing words get similar vectors, which
    is enough for local development and repeatable tests without an API key.
    """

    _token_pattern = re.compile(r"\w+", re.UNICODE)

    def __init__(self, embedding_dim: int = 256):
        self._dim = embedding_dim
        logger.info(f"Initialized hashing embedding service ({embedding_dim} dims)")

    @property
    def embedding_dim(self) -> int:
        return self._dim

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [self._embed(text) for text in texts]

    async def embed_query(self, query: str) -> List[float]:
        return self._embed(query)

    def _embed(self, text: str) -> List[float]:
        vector = [0.0] * self._dim
        for token in self._token_pattern.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "little") % self._dim
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign

        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def create_embedding_service(config: EmbeddingConfig) -> IEmbeddingService:
    """Build the embedding provider selected by configuration."""
    if config.provider == "hashing":
        return HashingEmbeddingService(embedding_dim=config.embedding_dim)
    return OpenAIEmbeddingService(config)

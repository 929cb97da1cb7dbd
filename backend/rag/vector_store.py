"""
FAISS-backed index generation.

An IndexGeneration is one complete, immutable version of the vector index:
- A flat inner-product FAISS index over L2-normalized vectors (cosine similarity)
- The chunk docstore, row-aligned with the FAISS index

On disk a generation is a directory holding index.faiss and docstore.json.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import faiss
import numpy as np

from .errors import IndexCorruptError, IndexNotFoundError
from .models import DocumentChunk, RetrievedPassage

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.faiss"
DOCSTORE_FILENAME = "docstore.json"
DOCSTORE_VERSION = 1


def _as_matrix(embeddings: Sequence[Sequence[float]], dimension: int) -> np.ndarray:
    """Convert embeddings to a normalized float32 matrix (n x dimension)."""
    matrix = np.array(embeddings, dtype=np.float32)
    if matrix.ndim == 1:
        matrix = matrix.reshape(1, -1)
    if matrix.ndim != 2 or matrix.shape[1] != dimension:
        raise ValueError(
            f"Embedding dimension {matrix.shape[-1] if matrix.size else 0} doesn't match "
            f"expected dimension {dimension}"
        )
    faiss.normalize_L2(matrix)
    return matrix


class IndexGeneration:
    """
    One immutable version of the vector index.

    Readers share a generation across concurrent queries; writers never
    mutate a generation, they derive a new one with extended().
    """

    def __init__(self, index: faiss.Index, chunks: Iterable[DocumentChunk]):
        self._index = index
        self._chunks = tuple(chunks)

        if index.ntotal != len(self._chunks):
            raise IndexCorruptError(
                f"FAISS index holds {index.ntotal} vectors but docstore has {len(self._chunks)} chunks"
            )

    @classmethod
    def empty(cls, dimension: int) -> "IndexGeneration":
        return cls(faiss.IndexFlatIP(dimension), [])

    @classmethod
    def from_embeddings(
        cls,
        chunks: Sequence[DocumentChunk],
        embeddings: Sequence[Sequence[float]],
        dimension: int,
    ) -> "IndexGeneration":
        """
        Build a brand-new generation.

        Raises:
            ValueError: If chunk and embedding counts or dimensions disagree
        """
        return cls.empty(dimension).extended(chunks, embeddings)

    def extended(
        self,
        chunks: Sequence[DocumentChunk],
        embeddings: Sequence[Sequence[float]],
    ) -> "IndexGeneration":
        """
        Return a new generation with extra vectors appended.

        Existing vectors are copied as-is, never recomputed. This generation is
        left untouched.
        """
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Chunks and embeddings length mismatch: {len(chunks)} vs {len(embeddings)}"
            )

        index = faiss.clone_index(self._index)
        if chunks:
            index.add(_as_matrix(embeddings, self.dimension))

        return IndexGeneration(index, self._chunks + tuple(chunks))

    @property
    def dimension(self) -> int:
        return self._index.d

    @property
    def chunks(self) -> tuple:
        return self._chunks

    @property
    def document_ids(self) -> List[str]:
        """Distinct document ids in first-seen order."""
        return list(dict.fromkeys(chunk.document_id for chunk in self._chunks))

    def __len__(self) -> int:
        return len(self._chunks)

    def search(self, query_embedding: Sequence[float], top_k: int) -> List[RetrievedPassage]:
        """
        Find the top_k most similar chunks.

        Returns:
            Passages ordered by descending similarity (at most top_k)
        """
        if self._index.ntotal == 0:
            return []

        query = _as_matrix([query_embedding], self.dimension)
        k = min(top_k, self._index.ntotal)
        scores, indices = self._index.search(query, k)

        passages = []
        for score, idx in zip(scores[0], indices[0]):
            if idx < 0:
                continue
            passages.append(
                RetrievedPassage(
                    chunk=self._chunks[idx],
                    score=float(score),
                    rank=len(passages) + 1,
                )
            )
        return passages

    def save(self, directory: Path) -> None:
        """Write index.faiss and docstore.json into directory."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        faiss.write_index(self._index, str(directory / INDEX_FILENAME))

        docstore = {
            "version": DOCSTORE_VERSION,
            "dimension": self.dimension,
            "chunks": [chunk.model_dump() for chunk in self._chunks],
        }
        (directory / DOCSTORE_FILENAME).write_text(json.dumps(docstore), encoding="utf-8")

        logger.debug(f"Wrote generation with {len(self)} chunks to {directory}")

    @classmethod
    def load(cls, directory: Path) -> "IndexGeneration":
        """
        Read a generation from directory.

        Raises:
            IndexNotFoundError: If the index artifacts are missing
            IndexCorruptError: If the artifacts cannot be parsed or disagree
        """
        directory = Path(directory)
        index_file = directory / INDEX_FILENAME
        docstore_file = directory / DOCSTORE_FILENAME

        if not index_file.is_file() or not docstore_file.is_file():
            raise IndexNotFoundError(f"Index not found at {directory}")

        try:
            index = faiss.read_index(str(index_file))
            docstore = json.loads(docstore_file.read_text(encoding="utf-8"))
            chunks = [DocumentChunk(**data) for data in docstore["chunks"]]
        except (OSError, RuntimeError, ValueError, KeyError, TypeError) as e:
            raise IndexCorruptError(f"Failed to read index at {directory}: {e}") from e

        stored_dimension: Optional[int] = docstore.get("dimension")
        if stored_dimension is not None and stored_dimension != index.d:
            raise IndexCorruptError(
                f"Docstore dimension {stored_dimension} doesn't match index dimension {index.d}"
            )

        return cls(index, chunks)

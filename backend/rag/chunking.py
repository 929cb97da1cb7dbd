"""
Deterministic overlapping text chunker for RAG.

Splits normalized document text into fixed-size windows that overlap by a
configurable amount:
- Window length is chunk_size units, the stride is chunk_size - chunk_overlap
- Units are characters, or tiktoken tokens when configured
- Hard cuts are allowed; windows always cover the whole text
- Same text and parameters always give the same boundaries
"""

import logging
from typing import List, Optional, Sequence, Tuple

import tiktoken

from .config import ChunkingConfig
from .errors import ConfigurationError, ExtractionError
from .models import DocumentChunk, ProcessedDocument

logger = logging.getLogger(__name__)


def window_bounds(length: int, chunk_size: int, chunk_overlap: int) -> List[Tuple[int, int]]:
    """
    Compute [start, end) bounds of overlapping windows over a sequence.

    Produces ceil((length - overlap) / (size - overlap)) windows, or a single
    window when the sequence fits in one. An empty sequence has no windows.
    """
    if chunk_size <= 0:
        raise ConfigurationError("chunk_size must be positive")
    if not 0 <= chunk_overlap < chunk_size:
        raise ConfigurationError("chunk_overlap must be non-negative and less than chunk_size")

    if length == 0:
        return []
    if length <= chunk_size:
        return [(0, length)]

    step = chunk_size - chunk_overlap
    bounds = []
    start = 0
    while True:
        end = min(start + chunk_size, length)
        bounds.append((start, end))
        if end >= length:
            break
        start += step
    return bounds


def split_text(text: str, chunk_size: int, chunk_overlap: int) -> List[str]:
    """Split text into overlapping character windows."""
    return [text[start:end] for start, end in window_bounds(len(text), chunk_size, chunk_overlap)]


class OverlappingChunker:
    """
    Fixed-window chunker with overlap.

    Attaches provenance (document id, filename, url, chunk index, total
    chunks) to every segment of a document.
    """

    def __init__(self, config: ChunkingConfig):
        self.config = config
        self._encoding: Optional[tiktoken.Encoding] = None

    @property
    def encoding(self) -> tiktoken.Encoding:
        # cl100k_base (GPT-4, GPT-3.5-turbo, text-embedding-3-*), loaded on first use
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding("cl100k_base")
        return self._encoding

    def split(self, text: str) -> List[str]:
        """Split text into overlapping segments in the configured unit."""
        if self.config.unit == "tokens":
            return self._split_tokens(text)
        return split_text(text, self.config.chunk_size, self.config.chunk_overlap)

    def chunk_document(self, document: ProcessedDocument) -> List[DocumentChunk]:
        """
        Chunk one document.

        Args:
            document: Document with extracted text

        Returns:
            Chunks in ascending chunk_index order

        Raises:
            ExtractionError: If the document has no text to chunk
        """
        metadata = document.metadata
        if not document.content.strip():
            raise ExtractionError(metadata.filename, "No text content to chunk")

        segments = self.split(document.content)
        total_chunks = len(segments)

        chunks = [
            DocumentChunk(
                content=segment,
                document_id=metadata.id,
                filename=metadata.filename,
                url=metadata.url,
                chunk_index=index,
                total_chunks=total_chunks,
            )
            for index, segment in enumerate(segments)
        ]

        logger.debug(f"Split {metadata.filename} into {total_chunks} chunks")
        return chunks

    def _split_tokens(self, text: str) -> List[str]:
        tokens: Sequence[int] = self.encoding.encode(text)
        bounds = window_bounds(len(tokens), self.config.chunk_size, self.config.chunk_overlap)
        # A window edge can split a multi-byte character; drop the partial bytes
        # instead of emitting U+FFFD. The overlapping neighbour holds it whole.
        return [
            self.encoding.decode_bytes(tokens[start:end]).decode("utf-8", errors="ignore")
            for start, end in bounds
        ]

"""
RAG domain models for library documents, chunks, index statistics and query results.

These models represent the core entities of the index lifecycle:
- DocumentMetadata / ProcessedDocument: a library document and its extracted text
- DocumentChunk: immutable text segment with provenance
- IndexStats: statistics sidecar persisted next to each index generation
- RetrievedPassage / SourceDocument / QueryResult: search and answer output
"""

from datetime import datetime, timezone
from typing import List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentMetadata(BaseModel):
    """Metadata of a document listed by the remote library."""

    id: str
    filename: str
    url: str
    path: str
    modified: datetime = Field(default_factory=utc_now)
    size: int = 0
    content_type: str = "application/octet-stream"
    library: str = ""


class ProcessedDocument(BaseModel):
    """A document whose text has been extracted and normalized."""

    metadata: DocumentMetadata
    content: str


class DocumentChunk(BaseModel):
    """A bounded, overlapping segment of one document's text."""

    model_config = ConfigDict(frozen=True)

    content: str
    document_id: str
    filename: str
    url: str
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)

    @model_validator(mode="after")
    def _index_within_total(self) -> "DocumentChunk":
        if self.chunk_index >= self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} must be less than total_chunks {self.total_chunks}"
            )
        return self

    @property
    def source_label(self) -> str:
        """Human-readable label for citations."""
        return f"{self.filename} (chunk {self.chunk_index + 1}/{self.total_chunks})"


class IndexStats(BaseModel):
    """
    Statistics of one index generation.

    Serialized to stats.json with camelCase keys:
    {totalDocuments, totalChunks, lastUpdated, indexSize}
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    total_documents: int = Field(default=0, ge=0, alias="totalDocuments")
    total_chunks: int = Field(default=0, ge=0, alias="totalChunks")
    last_updated: datetime = Field(default_factory=utc_now, alias="lastUpdated")
    index_size: int = Field(default=0, ge=0, alias="indexSize")

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RetrievedPassage(BaseModel):
    """A chunk returned by nearest-neighbour search."""

    chunk: DocumentChunk
    score: float  # Similarity as produced by the index, higher is more relevant
    rank: int = 0  # 1-indexed position in the result list


class SourceDocument(BaseModel):
    """A passage cited in a query answer."""

    filename: str
    url: str
    content: str
    score: float


class QueryResult(BaseModel):
    """Answer plus the sources it was generated from, most relevant first."""

    answer: str
    sources: List[SourceDocument] = Field(default_factory=list)


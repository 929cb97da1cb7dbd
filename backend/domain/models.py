"""
Domain models - crawl bookkeeping and API payloads.
Following SOLID: Single Responsibility Principle - each model has one clear purpose.
"""
from typing import List, Dict, Any, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from rag.models import utc_now


class CrawlError(BaseModel):
    """A document that could not be processed during a crawl."""
    filename: str
    error: str
    timestamp: datetime = Field(default_factory=utc_now)


class CrawlResult(BaseModel):
    """Summary of one crawl run."""
    documents_processed: int = 0
    documents_skipped: int = 0
    total_chunks: int = 0
    errors: List[CrawlError] = Field(default_factory=list)
    start_time: datetime
    end_time: datetime
    duration: float = 0.0  # Seconds
    published: bool = False  # Whether a new generation reached the production path


class QueryRequest(BaseModel):
    """Incoming question from a client."""
    model_config = ConfigDict(populate_by_name=True)

    query: str
    top_k: Optional[int] = Field(default=None, alias="topK")


class BuildStatus(BaseModel):
    """State of the build coordinator, as reported by the API."""
    model_config = ConfigDict(populate_by_name=True)

    in_progress: bool = Field(default=False, alias="inProgress")
    last_exit_code: Optional[int] = Field(default=None, alias="lastExitCode")
    last_started_at: Optional[datetime] = Field(default=None, alias="lastStartedAt")
    last_finished_at: Optional[datetime] = Field(default=None, alias="lastFinishedAt")


class HealthResponse(BaseModel):
    """Health check payload."""
    model_config = ConfigDict(populate_by_name=True)

    status: str = "ok"
    timestamp: datetime = Field(default_factory=utc_now)
    index_loaded: bool = Field(default=False, alias="indexLoaded")
    generation: int = 0
    stats: Optional[Dict[str, Any]] = None

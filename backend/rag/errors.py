"""
Typed errors raised by the index lifecycle.

The API layer maps each of these to an HTTP status; the crawler maps them to
an exit code. Per-document errors (ExtractionError) are collected by the batch
boundary instead of aborting a crawl.
"""


class RAGError(Exception):
    """Base class for all index lifecycle errors."""


class ConfigurationError(RAGError):
    """Invalid configuration or parameters, detected before any I/O."""


class LockAcquisitionTimeoutError(RAGError):
    """The index lock could not be acquired within the retry budget."""


class IndexNotFoundError(RAGError):
    """No index generation exists at the requested path."""


class IndexCorruptError(RAGError):
    """An index artifact (usually the stats sidecar) could not be read."""


class EmbeddingProviderError(RAGError):
    """Wraps any failure raised by the embedding provider."""


class ExtractionError(RAGError):
    """Text could not be extracted from a single document."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"{filename}: {reason}")


class DocumentSourceError(RAGError):
    """The remote document library could not be listed or read."""


class BuildAlreadyInProgressError(RAGError):
    """A build was requested while another one is still running."""


class EmptyQueryError(RAGError):
    """The query text is empty or whitespace only."""


class IndexUnavailableError(RAGError):
    """No index generation is loaded in this process."""

    def __init__(self, message: str = "Index not loaded. Run the crawler to build the index first."):
        super().__init__(message)


class StatsUnavailableError(RAGError):
    """Index statistics are not available in this process."""


class AnswerGenerationError(RAGError):
    """The answer generator failed to produce an answer."""

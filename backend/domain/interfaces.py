"""
Domain interfaces - Abstractions for the crawler's external collaborators.
Following SOLID: Dependency Inversion Principle - the crawler depends on these
abstractions, not on SharePoint or a particular document parser.
"""
from abc import ABC, abstractmethod
from typing import List

from rag.models import DocumentMetadata


class IDocumentSource(ABC):
    """Interface for a remote (or local) document library."""

    @abstractmethod
    async def list_documents(self) -> List[DocumentMetadata]:
        """List every indexable document in the library."""
        pass

    @abstractmethod
    async def download_document(self, path: str) -> bytes:
        """Download the raw bytes of one document."""
        pass

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None


class ITextExtractor(ABC):
    """Interface for turning document bytes into plain text."""

    @abstractmethod
    def extract_text(self, content: bytes, content_type: str, filename: str = "") -> str:
        """
        Extract normalized plain text.

        Raises:
            ExtractionError: If the format is unsupported or yields no text
        """
        pass

"""
Local folder document source.

Serves the same role as the SharePoint client for development and tests:
every supported file under a directory is one library document.
"""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from domain.interfaces import IDocumentSource
from infrastructure.document_processor import CONTENT_TYPES, content_type_for
from rag.errors import DocumentSourceError
from rag.models import DocumentMetadata

logger = logging.getLogger(__name__)


class FolderDocumentSource(IDocumentSource):
    """Lists and reads documents from a local directory tree."""

    def __init__(self, root: Path):
        self.root = Path(root)

    async def list_documents(self) -> List[DocumentMetadata]:
        if not self.root.is_dir():
            raise DocumentSourceError(f"Document folder not found: {self.root}")

        documents = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.suffix.lower().lstrip(".") not in CONTENT_TYPES:
                continue

            relative = path.relative_to(self.root).as_posix()
            stat = path.stat()
            documents.append(
                DocumentMetadata(
                    id=relative,
                    filename=path.name,
                    url=path.resolve().as_uri(),
                    path=relative,
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    size=stat.st_size,
                    content_type=content_type_for(path.name),
                    library=self.root.name,
                )
            )

        logger.info(f"Found {len(documents)} documents in {self.root}")
        return documents

    async def download_document(self, path: str) -> bytes:
        file_path = (self.root / path).resolve()
        if self.root.resolve() not in file_path.parents:
            raise DocumentSourceError(f"Path escapes document folder: {path}")
        try:
            return file_path.read_bytes()
        except OSError as e:
            raise DocumentSourceError(f"Failed to read {path}: {e}") from e

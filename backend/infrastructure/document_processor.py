"""
Document text extraction for PDF, Word and plain-text files.

Extraction failures are raised as ExtractionError so the crawler can record
them per document and carry on with the rest of the batch.
"""
import io
import logging
import re

from docx import Document as DocxDocument
from pypdf import PdfReader

from domain.interfaces import ITextExtractor
from rag.errors import ExtractionError

logger = logging.getLogger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC = "application/msword"
TEXT_TYPES = ("text/plain", "text/markdown")

CONTENT_TYPES = {
    "pdf": PDF,
    "docx": DOCX,
    "doc": DOC,
    "txt": "text/plain",
    "md": "text/markdown",
}


def content_type_for(filename: str) -> str:
    """Guess a content type from the file extension."""
    extension = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    return CONTENT_TYPES.get(extension, "application/octet-stream")


def clean_text(text: str) -> str:
    """Normalize line endings and whitespace."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r" {2,}", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    return text.strip()


class DocumentProcessor(ITextExtractor):
    """Extracts and normalizes text from supported document formats."""

    def extract_text(self, content: bytes, content_type: str, filename: str = "") -> str:
        logger.debug(f"Processing document: {filename} ({content_type})")

        if content_type == PDF:
            text = self._extract_pdf(content, filename)
        elif content_type in (DOCX, DOC):
            text = self._extract_word(content, filename)
        elif content_type in TEXT_TYPES:
            text = self._decode_text(content, filename)
        else:
            raise ExtractionError(filename, f"Unsupported content type: {content_type}")

        text = clean_text(text)
        if not text:
            raise ExtractionError(filename, "No text content extracted from document")

        logger.debug(f"Extracted {len(text)} characters from {filename}")
        return text

    def _extract_pdf(self, content: bytes, filename: str) -> str:
        try:
            reader = PdfReader(io.BytesIO(content))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as e:
            logger.error(f"Failed to parse PDF {filename}: {e}")
            raise ExtractionError(filename, f"PDF parsing failed: {e}") from e
        return "\n\n".join(pages)

    def _extract_word(self, content: bytes, filename: str) -> str:
        try:
            document = DocxDocument(io.BytesIO(content))
        except Exception as e:
            logger.error(f"Failed to parse Word document {filename}: {e}")
            raise ExtractionError(filename, f"Word document parsing failed: {e}") from e

        parts = [paragraph.text for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                row_text = " | ".join(cell.text.strip() for cell in row.cells)
                if row_text.strip():
                    parts.append(row_text)
        return "\n".join(parts)

    def _decode_text(self, content: bytes, filename: str) -> str:
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"File {filename} decoded with latin-1 encoding")
            return content.decode("latin-1")

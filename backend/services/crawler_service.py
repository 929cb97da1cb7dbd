"""
Service layer - crawl orchestration (the writer role).

Pipeline: list documents → download → extract → build generation → save.
Per-document failures are recorded and the crawl continues; a failed build
or save aborts the run and leaves the published generation untouched.
"""
import logging
import time
from typing import List

from domain.interfaces import IDocumentSource, ITextExtractor
from domain.models import CrawlError, CrawlResult
from rag.index_builder import IndexBuilder
from rag.index_store import IndexStore
from rag.models import ProcessedDocument, utc_now

logger = logging.getLogger(__name__)


class CrawlerService:
    """Crawls the document library and publishes a fresh index generation."""

    def __init__(
        self,
        source: IDocumentSource,
        extractor: ITextExtractor,
        builder: IndexBuilder,
        store: IndexStore,
    ):
        self.source = source
        self.extractor = extractor
        self.builder = builder
        self.store = store

    async def run(self) -> CrawlResult:
        """
        Run one full crawl.

        Raises:
            DocumentSourceError: If the library cannot be listed
            EmbeddingProviderError: If embedding the batch fails
            LockAcquisitionTimeoutError: If another writer holds the index lock
        """
        start_time = utc_now()
        started = time.time()
        errors: List[CrawlError] = []
        processed: List[ProcessedDocument] = []

        logger.info("Starting document crawl")
        documents = await self.source.list_documents()
        logger.info(f"Found {len(documents)} documents to process")

        for metadata in documents:
            try:
                logger.info(f"Processing: {metadata.filename}")
                content = await self.source.download_document(metadata.path)
                text = self.extractor.extract_text(content, metadata.content_type, metadata.filename)
            except Exception as e:
                # Continue with the rest of the batch
                logger.error(f"Failed to process: {metadata.filename}: {e}")
                errors.append(CrawlError(filename=metadata.filename, error=str(e)))
                continue

            processed.append(ProcessedDocument(metadata=metadata, content=text))
            logger.info(f"Successfully processed: {metadata.filename}")

        if not processed:
            logger.error("No documents could be processed; keeping the current index")
            return self._result(start_time, started, 0, len(documents), 0, errors, published=False)

        build = await self.builder.build_full(processed)
        for failure in build.failures:
            errors.append(CrawlError(filename=failure.filename, error=failure.reason))

        stats = await self.store.save(build.generation, build.stats)

        result = self._result(
            start_time,
            started,
            documents_processed=build.documents_included,
            documents_skipped=len(documents) - build.documents_included,
            total_chunks=stats.total_chunks,
            errors=errors,
            published=True,
        )

        logger.info(
            f"Crawl completed: {result.documents_processed} processed, "
            f"{result.documents_skipped} skipped, {result.total_chunks} chunks, "
            f"{result.duration:.2f}s, {len(errors)} errors"
        )
        if errors:
            logger.warning(f"Crawl completed with errors: {[e.model_dump(mode='json') for e in errors]}")

        return result

    def _result(
        self,
        start_time,
        started: float,
        documents_processed: int,
        documents_skipped: int,
        total_chunks: int,
        errors: List[CrawlError],
        published: bool,
    ) -> CrawlResult:
        return CrawlResult(
            documents_processed=documents_processed,
            documents_skipped=documents_skipped,
            total_chunks=total_chunks,
            errors=errors,
            start_time=start_time,
            end_time=utc_now(),
            duration=time.time() - started,
            published=published,
        )

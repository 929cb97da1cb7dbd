"""
Crawler entry point - the writer role.

Crawls the document library, builds a fresh FAISS index generation and
publishes it atomically. Running API servers pick it up through their
index watcher.

Usage:
    python -m crawler [--source sharepoint|folder] [--folder DIR]
    python -m crawler --rollback
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from domain.interfaces import IDocumentSource
from infrastructure.document_processor import DocumentProcessor
from infrastructure.folder_source import FolderDocumentSource
from infrastructure.sharepoint_client import SharePointClient
from rag.chunking import OverlappingChunker
from rag.config import AppConfig, configure_logging
from rag.embeddings import create_embedding_service
from rag.errors import RAGError
from rag.index_builder import IndexBuilder
from rag.index_store import IndexStore
from services.crawler_service import CrawlerService

logger = logging.getLogger("crawler")


def create_document_source(config: AppConfig) -> IDocumentSource:
    if config.crawler.source == "folder":
        return FolderDocumentSource(config.crawler.folder_path)
    return SharePointClient(config.sharepoint)


def create_crawler_service(config: AppConfig, store: IndexStore) -> CrawlerService:
    """Wire the crawl pipeline from configuration."""
    builder = IndexBuilder(
        chunker=OverlappingChunker(config.chunking),
        embedding_service=create_embedding_service(config.embedding),
    )
    return CrawlerService(
        source=create_document_source(config),
        extractor=DocumentProcessor(),
        builder=builder,
        store=store,
    )


async def run_crawl(config: AppConfig) -> int:
    store = IndexStore(config.index_store)
    crawler = create_crawler_service(config, store)
    try:
        result = await crawler.run()
    finally:
        await crawler.source.close()
    return 0 if result.published else 1


async def run_rollback(config: AppConfig) -> int:
    store = IndexStore(config.index_store)
    stats = await store.restore_backup()
    logger.info(f"Rolled back to backup generation: {stats.to_json_dict() if stats else None}")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl the document library and rebuild the index")
    parser.add_argument("--source", choices=["sharepoint", "folder"], help="Document source (default from CRAWLER_SOURCE)")
    parser.add_argument("--folder", type=Path, help="Folder to crawl when --source folder")
    parser.add_argument("--rollback", action="store_true", help="Swap the backup generation back into production")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = AppConfig.from_env()
        if args.source:
            config.crawler.source = args.source
        if args.folder:
            config.crawler.folder_path = args.folder
        configure_logging(args.log_level or config.log_level)

        if args.rollback:
            return asyncio.run(run_rollback(config))
        return asyncio.run(run_crawl(config))
    except RAGError as e:
        logging.basicConfig()
        logger.error(f"Crawl failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
API layer - FastAPI application serving queries from the published index (the reader role).
Following SOLID:
- Single Responsibility - Controllers are thin, delegate to the query engine and build coordinator.
- Dependency Inversion - Controllers depend on service abstractions.

The process owns exactly one IndexStore. It is loaded at startup when an
index exists, and reloaded by the IndexWatcher whenever a crawler publishes
a new generation. A server started before the first crawl begins watching
once an index appears: after a build it triggered itself, or on the next
/health check for a crawl run from the command line.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from crawler import create_crawler_service
from domain.models import BuildStatus, HealthResponse, QueryRequest
from rag.answering import IAnswerGenerator, OpenAIAnswerGenerator
from rag.config import AppConfig, configure_logging
from rag.embeddings import IEmbeddingService, create_embedding_service
from rag.errors import (
    AnswerGenerationError,
    BuildAlreadyInProgressError,
    ConfigurationError,
    EmbeddingProviderError,
    EmptyQueryError,
    IndexUnavailableError,
    RAGError,
    StatsUnavailableError,
)
from rag.index_store import IndexStore
from rag.index_watcher import IndexWatcher
from rag.models import IndexStats, QueryResult
from rag.query_engine import QueryEngine
from services.build_coordinator import (
    BuildCoordinator,
    BuildJob,
    in_process_crawl_job,
    subprocess_crawl_job,
)

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Service instances shared by the request handlers."""
    config: AppConfig
    store: IndexStore
    engine: QueryEngine
    watcher: IndexWatcher
    coordinator: BuildCoordinator


router = APIRouter()


def get_services(request: Request) -> AppServices:
    return request.app.state.services


async def attach_published_index(store: IndexStore, watcher: IndexWatcher) -> None:
    """Load an index published after startup and start watching it."""
    if watcher.is_running or not store.exists():
        return
    logger.info(f"Index appeared at {store.index_path}, loading it and starting the watcher")
    await store.load()
    watcher.start()


# ============================================================================
# Query Endpoints
# ============================================================================

@router.post("/api/query", response_model=QueryResult)
async def query(body: QueryRequest, request: Request):
    """Answer a question from the currently loaded index."""
    services = get_services(request)
    timeout = services.config.retrieval.query_timeout_seconds

    try:
        return await asyncio.wait_for(services.engine.query(body.query, body.top_k), timeout=timeout)
    except (EmptyQueryError, ConfigurationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IndexUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except (EmbeddingProviderError, AnswerGenerationError) as e:
        logger.error(f"Query error: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except asyncio.TimeoutError:
        logger.error(f"Query timed out after {timeout}s")
        raise HTTPException(status_code=504, detail=f"Query timed out after {timeout} seconds")
    except Exception as e:
        logger.error(f"Query error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/api/query/stats", response_model=IndexStats)
async def query_stats(request: Request):
    """Stats of the loaded index generation."""
    try:
        return get_services(request).engine.stats()
    except StatsUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================================================
# Crawler Endpoints
# ============================================================================

@router.post("/api/crawler/trigger", status_code=202)
async def trigger_crawl(request: Request):
    """Start a crawl in the background. Only one crawl runs at a time."""
    services = get_services(request)
    try:
        status = services.coordinator.trigger()
    except BuildAlreadyInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "message": "Crawl started in background",
        "status": status.model_dump(mode="json", by_alias=True),
    }


@router.get("/api/crawler/status", response_model=BuildStatus)
async def crawler_status(request: Request):
    return get_services(request).coordinator.status()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint. Also picks up an index published since startup."""
    services = get_services(request)
    store = services.store
    try:
        await attach_published_index(store, services.watcher)
    except RAGError as e:
        logger.error(f"Failed to load newly published index: {e}")
    stats = store.get_stats()
    return HealthResponse(
        index_loaded=store.current is not None,
        generation=store.generation_number,
        stats=stats.to_json_dict() if stats else None,
    )


# ============================================================================
# Application factory
# ============================================================================

def create_app(
    config: Optional[AppConfig] = None,
    embedding_service: Optional[IEmbeddingService] = None,
    answer_generator: Optional[IAnswerGenerator] = None,
    build_job: Optional[BuildJob] = None,
) -> FastAPI:
    """
    Create the API application.

    Collaborators left as None are built from configuration at startup;
    tests pass their own.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize services on startup."""
        app_config = config or AppConfig.from_env()
        configure_logging(app_config.log_level)
        logger.info("Initializing application...")

        store = IndexStore(app_config.index_store)
        embeddings = embedding_service or create_embedding_service(app_config.embedding)
        generator = answer_generator or OpenAIAnswerGenerator(app_config.answer)
        engine = QueryEngine(store, embeddings, generator, default_top_k=app_config.retrieval.top_k)

        async def reload_index() -> None:
            await store.load()

        watcher = IndexWatcher(store, reload_index)

        if store.exists():
            try:
                await store.load()
            except RAGError as e:
                logger.error(f"Failed to load index at startup: {e}")
        else:
            logger.warning(
                f"Index not found at {store.index_path}. Run the crawler to build the index first."
            )
        watcher.start()

        async def on_build_complete(exit_code: int) -> None:
            # A running watcher picks up the new generation on its own
            if exit_code == 0:
                await attach_published_index(store, watcher)

        job = build_job
        if job is None:
            if app_config.crawler.mode == "inprocess":
                job = in_process_crawl_job(create_crawler_service(app_config, store))
            else:
                job = subprocess_crawl_job()

        coordinator = BuildCoordinator(job, on_complete=on_build_complete)
        app.state.services = AppServices(
            config=app_config,
            store=store,
            engine=engine,
            watcher=watcher,
            coordinator=coordinator,
        )
        logger.info("Application initialized successfully")

        yield

        logger.info("Shutting down...")
        watcher.stop()
        if coordinator.in_progress:
            logger.warning("Shutting down while a crawl is still running")

    app = FastAPI(
        title="Document Library Q&A API",
        description="Retrieval-augmented answers over a document library, backed by a FAISS index",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = AppConfig.from_env()
    uvicorn.run(app, host=settings.api.host, port=settings.api.port)

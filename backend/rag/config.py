"""
Configuration dataclasses for the index lifecycle and its collaborators.

Provides centralized configuration with sensible defaults for:
- Chunking (size, overlap, length unit)
- Embeddings (provider, model, batching)
- Index store (path, lock retries, watcher polling)
- Retrieval and answer generation
- Document source (SharePoint library or local folder) and crawler mode
- API server and logging
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging
import os

from dotenv import load_dotenv

from .errors import ConfigurationError


CHUNK_UNITS = ("characters", "tokens")
EMBEDDING_PROVIDERS = ("openai", "hashing")
LOG_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


@dataclass
class ChunkingConfig:
    """Configuration for text chunking."""

    chunk_size: int = 1000
    chunk_overlap: int = 200
    unit: str = "characters"  # or "tokens" (tiktoken cl100k_base)

    def __post_init__(self):
        """Validate configuration."""
        if self.chunk_size <= 0:
            raise ConfigurationError("chunk_size must be positive")
        if self.chunk_overlap < 0:
            raise ConfigurationError("chunk_overlap must not be negative")
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError("chunk_overlap must be less than chunk_size")
        if self.unit not in CHUNK_UNITS:
            raise ConfigurationError(f"unit must be one of {CHUNK_UNITS}, got {self.unit!r}")


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding provider."""

    provider: str = "openai"
    model_name: str = "text-embedding-3-small"
    embedding_dim: int = 1536  # Dimensions for text-embedding-3-small
    batch_size: int = 100  # Max texts per API call
    max_retries: int = 3  # Provider-side backoff on rate limits
    timeout_seconds: float = 30.0
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    def __post_init__(self):
        if self.provider not in EMBEDDING_PROVIDERS:
            raise ConfigurationError(
                f"provider must be one of {EMBEDDING_PROVIDERS}, got {self.provider!r}"
            )
        if self.embedding_dim <= 0:
            raise ConfigurationError("embedding_dim must be positive")
        if self.batch_size <= 0:
            raise ConfigurationError("batch_size must be positive")
        if self.max_retries <= 0:
            raise ConfigurationError("max_retries must be positive")

    def require_api_key(self) -> str:
        """Return the OpenAI API key or fail before any network call."""
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the openai embedding provider")
        return self.api_key


@dataclass
class IndexStoreConfig:
    """Configuration for the on-disk index store."""

    index_path: Path = field(default_factory=lambda: Path("data/faiss-index"))
    lock_max_retries: int = 30
    lock_retry_delay: float = 1.0  # Seconds between lock attempts
    watch_poll_interval: float = 1.0  # Seconds between stats.json checks

    def __post_init__(self):
        self.index_path = Path(self.index_path)
        if self.lock_max_retries <= 0:
            raise ConfigurationError("lock_max_retries must be positive")
        if self.lock_retry_delay < 0:
            raise ConfigurationError("lock_retry_delay must not be negative")
        if self.watch_poll_interval <= 0:
            raise ConfigurationError("watch_poll_interval must be positive")

    @property
    def temp_path(self) -> Path:
        return self.index_path.with_name(self.index_path.name + ".tmp")

    @property
    def backup_path(self) -> Path:
        return self.index_path.with_name(self.index_path.name + ".backup")

    @property
    def lock_path(self) -> Path:
        # Sibling of the production directory so directory renames never move it
        return self.index_path.with_name(self.index_path.name + ".lock")

    @property
    def stats_path(self) -> Path:
        return self.index_path / "stats.json"


@dataclass
class RetrievalConfig:
    """Configuration for query-time retrieval."""

    top_k: int = 4
    query_timeout_seconds: float = 60.0  # Request-level bound applied by the API

    def __post_init__(self):
        if self.top_k <= 0:
            raise ConfigurationError("top_k must be positive")
        if self.query_timeout_seconds <= 0:
            raise ConfigurationError("query_timeout_seconds must be positive")


@dataclass
class AnswerConfig:
    """Configuration for the answer-generation LLM."""

    model_name: str = "gpt-4-turbo-preview"
    temperature: float = 0.0
    max_context_tokens: int = 3000
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    def __post_init__(self):
        if self.max_context_tokens <= 0:
            raise ConfigurationError("max_context_tokens must be positive")


@dataclass
class SharePointConfig:
    """Connection settings for the SharePoint document library."""

    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    certificate_path: str = ""  # PEM file holding the app certificate private key
    thumbprint: str = ""
    site_url: str = ""
    library_name: str = ""
    timeout_seconds: float = 60.0

    @property
    def uses_certificate(self) -> bool:
        return bool(self.certificate_path or self.thumbprint)

    def validate(self) -> None:
        """
        Check that every connection setting is present.

        Certificate credentials (AZURE_CERTIFICATE_PATH + AZURE_THUMBPRINT) take
        precedence; AZURE_CLIENT_SECRET is only required when neither is set.
        """
        if self.uses_certificate:
            credentials = (
                ("AZURE_CERTIFICATE_PATH", self.certificate_path),
                ("AZURE_THUMBPRINT", self.thumbprint),
            )
        else:
            credentials = (("AZURE_CLIENT_SECRET", self.client_secret),)
        missing = [
            env_name
            for env_name, value in (
                ("AZURE_TENANT_ID", self.tenant_id),
                ("AZURE_CLIENT_ID", self.client_id),
                *credentials,
                ("SHAREPOINT_SITE_URL", self.site_url),
                ("SHAREPOINT_LIBRARY_NAME", self.library_name),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing SharePoint settings: {', '.join(missing)}")
        if not self.site_url.startswith(("http://", "https://")):
            raise ConfigurationError("SHAREPOINT_SITE_URL must be a valid URL")


@dataclass
class CrawlerConfig:
    """How crawls are sourced and run."""

    source: str = "sharepoint"  # or "folder"
    folder_path: Path = field(default_factory=lambda: Path("data/documents"))
    mode: str = "subprocess"  # How the API runs a triggered crawl: "subprocess" or "inprocess"

    def __post_init__(self):
        self.folder_path = Path(self.folder_path)
        if self.source not in ("sharepoint", "folder"):
            raise ConfigurationError(f"Unknown crawler source: {self.source!r}")
        if self.mode not in ("subprocess", "inprocess"):
            raise ConfigurationError(f"Unknown crawl mode: {self.mode!r}")


@dataclass
class APIConfig:
    host: str = "0.0.0.0"
    port: int = 3000

    def __post_init__(self):
        if self.port <= 0:
            raise ConfigurationError("port must be positive")


@dataclass
class AppConfig:
    """Aggregated application configuration."""

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    index_store: IndexStoreConfig = field(default_factory=IndexStoreConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    answer: AnswerConfig = field(default_factory=AnswerConfig)
    sharepoint: SharePointConfig = field(default_factory=SharePointConfig)
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log_level: str = "info"

    def __post_init__(self):
        if self.log_level.lower() not in LOG_LEVELS:
            raise ConfigurationError(
                f"log_level must be one of {tuple(LOG_LEVELS)}, got {self.log_level!r}"
            )

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "AppConfig":
        """
        Create configuration from environment variables.

        Loads a .env file if present, then reads environment variables.
        Unset variables keep the dataclass defaults.

        Raises:
            ConfigurationError: If a value is malformed or out of range.
        """
        if load_env_file:
            load_dotenv()

        api_key = os.getenv("OPENAI_API_KEY")
        base_url = os.getenv("OPENAI_BASE_URL") or os.getenv("AZURE_OPENAI_BASE_URL")

        return cls(
            chunking=ChunkingConfig(
                chunk_size=_env_int("CHUNK_SIZE", ChunkingConfig.chunk_size),
                chunk_overlap=_env_int("CHUNK_OVERLAP", ChunkingConfig.chunk_overlap),
                unit=os.getenv("CHUNK_UNIT", ChunkingConfig.unit),
            ),
            embedding=EmbeddingConfig(
                provider=os.getenv("EMBEDDING_PROVIDER", EmbeddingConfig.provider),
                model_name=os.getenv("OPENAI_EMBEDDING_MODEL", EmbeddingConfig.model_name),
                embedding_dim=_env_int("EMBEDDING_DIM", EmbeddingConfig.embedding_dim),
                batch_size=_env_int("EMBEDDING_BATCH_SIZE", EmbeddingConfig.batch_size),
                api_key=api_key,
                base_url=base_url,
            ),
            index_store=IndexStoreConfig(
                index_path=Path(os.getenv("FAISS_INDEX_PATH", "data/faiss-index")),
                lock_max_retries=_env_int("LOCK_MAX_RETRIES", IndexStoreConfig.lock_max_retries),
                lock_retry_delay=_env_float("LOCK_RETRY_DELAY", IndexStoreConfig.lock_retry_delay),
                watch_poll_interval=_env_float("WATCH_POLL_INTERVAL", IndexStoreConfig.watch_poll_interval),
            ),
            retrieval=RetrievalConfig(
                top_k=_env_int("RETRIEVAL_TOP_K", RetrievalConfig.top_k),
                query_timeout_seconds=_env_float("QUERY_TIMEOUT", RetrievalConfig.query_timeout_seconds),
            ),
            answer=AnswerConfig(
                model_name=os.getenv("OPENAI_MODEL", AnswerConfig.model_name),
                max_context_tokens=_env_int("MAX_CONTEXT_TOKENS", AnswerConfig.max_context_tokens),
                api_key=api_key,
                base_url=base_url,
            ),
            sharepoint=SharePointConfig(
                tenant_id=os.getenv("AZURE_TENANT_ID", ""),
                client_id=os.getenv("AZURE_CLIENT_ID", ""),
                client_secret=os.getenv("AZURE_CLIENT_SECRET", ""),
                certificate_path=os.getenv("AZURE_CERTIFICATE_PATH", ""),
                thumbprint=os.getenv("AZURE_THUMBPRINT", ""),
                site_url=os.getenv("SHAREPOINT_SITE_URL", ""),
                library_name=os.getenv("SHAREPOINT_LIBRARY_NAME", ""),
            ),
            crawler=CrawlerConfig(
                source=os.getenv("CRAWLER_SOURCE", CrawlerConfig.source),
                folder_path=Path(os.getenv("CRAWLER_FOLDER", "data/documents")),
                mode=os.getenv("CRAWL_MODE", CrawlerConfig.mode),
            ),
            api=APIConfig(
                host=os.getenv("API_HOST", APIConfig.host),
                port=_env_int("API_PORT", APIConfig.port),
            ),
            log_level=os.getenv("LOG_LEVEL", "info"),
        )


def configure_logging(level: str = "info") -> None:
    """Configure root logging for an entry point."""
    logging.basicConfig(
        level=LOG_LEVELS.get(level.lower(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None

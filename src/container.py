"""컴포넌트 조립.

Settings에서 모든 서비스를 한 번 생성하고 명시적인 참조로 전달합니다.
모듈 수준 캐시는 없으며, 테스트는 독립된 컨테이너를 생성합니다.
"""

from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .connectors import CatalogExportSource, ContentSource
from .database import Database
from .errors import ConfigurationError
from .logging_config import Loggers
from .services import (
    AnthropicGenerationProvider,
    CachedEmbeddingProvider,
    Chunker,
    EmbeddingProvider,
    GenerationProvider,
    HashEmbeddingProvider,
    HealthMonitor,
    HttpEmbeddingProvider,
    Indexer,
    KnowledgeBaseResponder,
    PromptAssembler,
    RetrievalEngine,
    Scanner,
    SyncOrchestrator,
    SyncStateStore,
    VectorIndex,
)
from .storage import Storage

logger = Loggers.cli()


@dataclass
class Components:
    """프로세스 하나의 모든 서비스.

    콘텐츠 소스가 설정되지 않으면 ``source``, ``scanner``, ``orchestrator``는
    None이고, 생성 프로바이더가 없으면 ``responder``는 None입니다.
    필수인 곳에서는 ``require_*`` 접근자를 사용합니다.
    """

    settings: Settings
    database: Database
    storage: Storage
    vector_index: VectorIndex
    state_store: SyncStateStore
    embedder: EmbeddingProvider
    chunker: Chunker
    indexer: Indexer
    retrieval: RetrievalEngine
    assembler: PromptAssembler
    health: HealthMonitor
    source: Optional[ContentSource] = None
    scanner: Optional[Scanner] = None
    orchestrator: Optional[SyncOrchestrator] = None
    generator: Optional[GenerationProvider] = None
    responder: Optional[KnowledgeBaseResponder] = None

    def require_orchestrator(self) -> SyncOrchestrator:
        if self.orchestrator is None:
            raise ConfigurationError(
                message="No content source configured; set CONTENT_SOURCE_PATH",
            )
        return self.orchestrator

    def require_responder(self) -> KnowledgeBaseResponder:
        if self.responder is None:
            raise ConfigurationError(
                message="No generation provider configured; set ANTHROPIC_API_KEY",
            )
        return self.responder

    def close(self) -> None:
        if isinstance(self.source, CatalogExportSource):
            self.source.close()
        embedder = self.embedder
        if isinstance(embedder, CachedEmbeddingProvider):
            embedder = embedder.provider
        if isinstance(embedder, HttpEmbeddingProvider):
            embedder.close()
        self.database.close()


def build_embedder(settings: Settings) -> EmbeddingProvider:
    """``EMBEDDING_PROVIDER``로 선택된 임베딩 프로바이더.

    Raises:
        ConfigurationError: 알 수 없는 프로바이더 이름.
    """
    config = settings.embedding
    provider = config.provider.lower()

    if provider == "http" and not config.api_key:
        logger.warning("EMBEDDING_API_KEY가 설정되지 않아 해시 임베딩을 사용합니다")
        provider = "hash"

    if provider == "hash":
        return HashEmbeddingProvider(dimension=config.dimension)
    if provider == "http":
        return CachedEmbeddingProvider(
            HttpEmbeddingProvider(
                api_url=config.api_url,
                api_key=config.api_key,
                model_name=config.model_name,
                dimension=config.dimension,
                batch_size=config.batch_size,
                timeout=config.timeout,
                max_retries=config.max_retries,
                requests_per_second=config.requests_per_second,
            )
        )
    raise ConfigurationError(
        message=f"Unknown embedding provider: {config.provider}",
        details={"supported": ["http", "hash"]},
    )


def build_components(
    settings: Settings,
    source: Optional[ContentSource] = None,
    embedder: Optional[EmbeddingProvider] = None,
    generator: Optional[GenerationProvider] = None,
    database: Optional[Database] = None,
) -> Components:
    """``settings``로 모든 서비스를 조립합니다.

    Args:
        settings: 애플리케이션 설정.
        source: 콘텐츠 소스. ``CONTENT_SOURCE_PATH``가 설정되어 있으면
            기본값은 CatalogExportSource.
        embedder: 임베딩 프로바이더 재정의.
        generator: 생성 프로바이더 재정의.
        database: 데이터베이스 재정의.

    Returns:
        Components.
    """
    data_dir = settings.ensure_data_dir()
    database = database or Database(settings.index_db_path, settings.database.busy_timeout)
    storage = Storage(data_dir)
    vector_index = VectorIndex(database)
    state_store = SyncStateStore(database, lock_timeout=settings.sync.lock_timeout)
    embedder = embedder or build_embedder(settings)

    chunker = Chunker(
        chunk_size=settings.chunking.chunk_size,
        chunk_overlap=settings.chunking.chunk_overlap,
        min_chunk_size=settings.chunking.min_chunk_size,
    )
    indexer = Indexer(
        chunker,
        embedder,
        vector_index,
        max_workers=settings.sync.max_workers,
        batch_size=settings.sync.batch_size,
    )
    retrieval = RetrievalEngine(
        embedder,
        vector_index,
        max_chunks=settings.retrieval.max_chunks,
        min_similarity=settings.retrieval.min_similarity,
    )
    assembler = PromptAssembler(
        max_prompt_tokens=settings.retrieval.prompt_max_tokens,
        chars_per_token=settings.retrieval.chars_per_token,
    )

    if source is None and settings.content_source.path:
        source = CatalogExportSource(
            settings.content_source.path,
            timeout=settings.content_source.timeout,
        )

    health = HealthMonitor(
        vector_index,
        state_store,
        storage,
        source=source,
        content_types=settings.sync.content_types,
    )

    scanner = None
    orchestrator = None
    if source is not None:
        scanner = Scanner(source, vector_index, embedding_model=embedder.model_name)
        orchestrator = SyncOrchestrator(
            scanner,
            indexer,
            vector_index,
            state_store,
            storage,
            content_types=settings.sync.content_types,
            batch_size=settings.sync.batch_size,
            incremental_batch_size=settings.sync.incremental_batch_size,
            job_timeout=settings.sync.job_timeout,
            progress_interval=settings.sync.progress_interval,
            progress_interval_seconds=settings.sync.progress_interval_seconds,
            incremental_overlap_hours=settings.sync.incremental_overlap_hours,
            incremental_default_hours=settings.sync.incremental_default_hours,
            max_failed_batches=settings.sync.max_failed_batches,
            inactive_retention_days=settings.sync.inactive_retention_days,
            health_check=lambda: health.check(include_coverage=False).to_dict(),
        )

    if generator is None and settings.generation.api_key:
        generator = AnthropicGenerationProvider(
            api_key=settings.generation.api_key,
            model=settings.generation.model,
            max_tokens=settings.generation.max_tokens,
            temperature=settings.generation.temperature,
            timeout=settings.generation.timeout,
            max_retries=settings.generation.max_retries,
        )
    responder = KnowledgeBaseResponder(retrieval, assembler, generator) if generator is not None else None

    return Components(
        settings=settings,
        database=database,
        storage=storage,
        vector_index=vector_index,
        state_store=state_store,
        embedder=embedder,
        chunker=chunker,
        indexer=indexer,
        retrieval=retrieval,
        assembler=assembler,
        health=health,
        source=source,
        scanner=scanner,
        orchestrator=orchestrator,
        generator=generator,
        responder=responder,
    )

"""Knowledge base sync - 콘텐츠 인덱싱 및 검색 서비스.

카탈로그 콘텐츠(상품, 페이지, 게시글, 스토어 설정, 카테고리)의 벡터 인덱스를
원본과 동기화된 상태로 유지하고, 이를 바탕으로 고객 질문에 답변합니다.

주요 기능:
    - 단일 인스턴스 리스 잠금 하의 전체 재구축 및 증분 동기화
    - 해시 기반 청크 중복 제거 (변경 없는 텍스트는 재임베딩하지 않음)
    - 코사인 유사도 검색을 지원하는 SQLite 벡터 인덱스
    - 컨텍스트 예산과 폴백 응답을 갖춘 프롬프트 조립
    - APScheduler 기반 백그라운드 작업
    - CLI 인터페이스

모듈 구성:
    config: 환경 변수 기반 설정 관리
    connectors: 콘텐츠 소스 (카탈로그 익스포트, 인메모리)
    models: 데이터 모델 (ContentItem, Chunk, IndexEntry, SyncState...)
    services: 청커, 임베더, 벡터 인덱스, 스캐너, 인덱서,
        오케스트레이터, 검색, 프롬프트 조립, 응답 생성
    scheduler: APScheduler 기반 동기화 작업
    storage: JSON 파일 기반 기록 (이력, 체크포인트, 오류 로그)
    container: 컴포넌트 조립
    cli: Typer 기반 CLI
"""

from .cli import cli
from .config import Settings, get_settings
from .connectors import CatalogExportSource, ContentSource, InMemoryContentSource
from .container import Components, build_components
from .errors import (
    ConfigurationError,
    EmbeddingError,
    FatalProviderError,
    JobTimeoutError,
    KnowledgeBaseError,
    LockContentionError,
    StorageError,
    TransientProviderError,
    ValidationError,
)
from .models import (
    Chunk,
    ContentItem,
    GenerationRequest,
    GenerationResponse,
    IndexEntry,
    RetrievalResult,
    SyncError,
    SyncState,
    SyncStatus,
)
from .scheduler import SyncScheduler
from .services import (
    Chunker,
    Indexer,
    KnowledgeBaseResponder,
    PromptAssembler,
    RetrievalEngine,
    Scanner,
    SyncOrchestrator,
    VectorIndex,
)
from .storage import Storage

__version__ = "0.1.0"

__all__ = [
    # CLI
    "cli",
    # 설정
    "Settings",
    "get_settings",
    # 컴포넌트 조립
    "Components",
    "build_components",
    # 콘텐츠 소스
    "ContentSource",
    "CatalogExportSource",
    "InMemoryContentSource",
    # 모델
    "ContentItem",
    "Chunk",
    "IndexEntry",
    "RetrievalResult",
    "GenerationRequest",
    "GenerationResponse",
    "SyncState",
    "SyncStatus",
    "SyncError",
    # 오류
    "KnowledgeBaseError",
    "TransientProviderError",
    "FatalProviderError",
    "EmbeddingError",
    "StorageError",
    "LockContentionError",
    "ValidationError",
    "JobTimeoutError",
    "ConfigurationError",
    # 서비스
    "Chunker",
    "VectorIndex",
    "Scanner",
    "Indexer",
    "SyncOrchestrator",
    "RetrievalEngine",
    "PromptAssembler",
    "KnowledgeBaseResponder",
    # 스케줄러
    "SyncScheduler",
    # 저장소
    "Storage",
]

"""지식 베이스 서비스 모듈.

서비스 구성:
    - Chunker: 콘텐츠 텍스트를 해시가 부여된 청크로 분할
    - EmbeddingProvider: HTTP, 해시 기반, 캐시 임베딩 프로바이더
    - VectorIndex: 코사인 검색을 지원하는 SQLite 청크/벡터 저장소
    - Scanner: 소스 레코드 정규화 및 인덱스와의 차이 계산
    - Indexer: 항목 배치에 대한 청킹 → 임베딩 → 저장 파이프라인
    - SyncOrchestrator: 리스 잠금 하의 동기화 상태 머신
    - HealthMonitor: 저장된 상태로부터 헬스 상태 산출
    - RetrievalEngine, PromptAssembler, GenerationProvider,
      KnowledgeBaseResponder: 질의 경로
"""

from .chunker import Chunker
from .embedder import (
    CachedEmbeddingProvider,
    EmbeddingProvider,
    HashEmbeddingProvider,
    HttpEmbeddingProvider,
)
from .generator import AnthropicGenerationProvider, GenerationProvider
from .health import HealthMonitor, HealthReport, HealthStatus
from .indexer import Indexer, IndexReport
from .orchestrator import SyncOrchestrator
from .prompt_assembler import PromptAssembler
from .responder import KnowledgeBaseResponder
from .retrieval import RetrievalEngine
from .scanner import Scanner, ScanResult
from .state_store import LockInfo, SyncStateStore
from .vector_index import VectorIndex

__all__ = [
    # 동기화 경로
    "Chunker",
    "EmbeddingProvider",
    "HttpEmbeddingProvider",
    "HashEmbeddingProvider",
    "CachedEmbeddingProvider",
    "VectorIndex",
    "Scanner",
    "ScanResult",
    "Indexer",
    "IndexReport",
    "SyncStateStore",
    "LockInfo",
    "SyncOrchestrator",
    "HealthMonitor",
    "HealthReport",
    "HealthStatus",
    # 질의 경로
    "RetrievalEngine",
    "PromptAssembler",
    "GenerationProvider",
    "AnthropicGenerationProvider",
    "KnowledgeBaseResponder",
]

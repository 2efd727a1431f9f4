"""지식 베이스 데이터 모델.

모델 구성:
    - ContentItem: 정규화된 콘텐츠 스냅샷
    - Chunk: 콘텐츠 텍스트의 조각
    - IndexEntry: 저장된 청크 임베딩
    - SyncState: 동기화 작업 기록
    - RetrievalResult, GenerationRequest, GenerationResponse: 질의 경로
"""

from .chunk import Chunk, compute_chunk_hash, normalize_chunk_text
from .content_item import ContentItem
from .index_entry import IndexEntry
from .retrieval import ChatMessage, GenerationRequest, GenerationResponse, RetrievalResult
from .sync_state import SyncError, SyncOperation, SyncState, SyncStatus, SyncTrigger

__all__ = [
    # 콘텐츠
    "ContentItem",
    # 청크
    "Chunk",
    "compute_chunk_hash",
    "normalize_chunk_text",
    # 인덱스
    "IndexEntry",
    # 동기화
    "SyncState",
    "SyncStatus",
    "SyncOperation",
    "SyncTrigger",
    "SyncError",
    # 질의 경로
    "RetrievalResult",
    "ChatMessage",
    "GenerationRequest",
    "GenerationResponse",
]

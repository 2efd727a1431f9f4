"""청크(Chunk) 모델 정의.

임베딩과 검색의 단위가 되는, 콘텐츠 항목 텍스트의 길이 제한된 조각입니다.
"""

import hashlib
import re
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from .index_entry import IndexEntry

_WHITESPACE = re.compile(r"\s+")


def normalize_chunk_text(text: str) -> str:
    """연속 공백을 하나로 합치고 양끝을 정리합니다.

    Args:
        text: 청크 텍스트.

    Returns:
        모든 연속 공백이 공백 하나로 치환된 텍스트.
    """
    return _WHITESPACE.sub(" ", text).strip()


def compute_chunk_hash(
    content_type: str,
    content_id: str,
    chunk_index: int,
    text: str,
) -> str:
    """결정론적 청크 해시.

    소속 항목 식별자를 다이제스트에 포함하므로 같은 문단을 공유하는
    두 항목도 서로 다른 전역 고유 해시를 가집니다.

    Args:
        content_type: 소속 콘텐츠 타입.
        content_id: 소속 콘텐츠 ID.
        chunk_index: 항목 내 청크 위치.
        text: 청크 텍스트 (해싱 전에 정규화).

    Returns:
        16진수 SHA-256 다이제스트.
    """
    payload = "\x1f".join(
        [content_type, content_id, str(chunk_index), normalize_chunk_text(text)]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class Chunk(BaseModel):
    """콘텐츠 항목의 텍스트 청크.

    Attributes:
        content_type: 소속 콘텐츠 타입
        content_id: 소속 콘텐츠 ID
        chunk_index: 항목 내 위치 (0부터 시작)
        total_chunks: 형제 청크 수
        text: 청크 텍스트
        chunk_hash: 멱등성/중복 제거 키
        token_count: 대략적인 토큰 수
    """

    content_type: str = Field(..., description="소속 콘텐츠 타입")
    content_id: str = Field(..., description="소속 콘텐츠 ID")
    chunk_index: int = Field(..., ge=0, description="항목 내 위치 (0부터 시작)")
    total_chunks: int = Field(..., ge=1, description="형제 청크 수")
    text: str = Field(..., min_length=1, description="청크 텍스트")
    chunk_hash: str = Field(..., description="결정론적 청크 해시")
    token_count: int = Field(default=0, description="대략적인 토큰 수")

    @classmethod
    def create(
        cls,
        content_type: str,
        content_id: str,
        chunk_index: int,
        total_chunks: int,
        text: str,
    ) -> "Chunk":
        """청크를 생성하고 해시를 계산합니다."""
        return cls(
            content_type=content_type,
            content_id=content_id,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            text=text,
            chunk_hash=compute_chunk_hash(content_type, content_id, chunk_index, text),
        )

    def estimate_tokens(self, chars_per_token: float = 4.0) -> int:
        """토큰 수를 추정하여 저장합니다.

        Args:
            chars_per_token: 토큰당 문자 수 비율.

        Returns:
            추정 토큰 수.
        """
        self.token_count = max(1, int(len(self.text) / chars_per_token))
        return self.token_count

    def to_index_entry(
        self,
        embedding: list[float],
        embedding_model: str,
        metadata: Optional[dict[str, Any]] = None,
        updated_at: Optional[datetime] = None,
    ) -> IndexEntry:
        """upsert 가능한 IndexEntry로 변환합니다.

        Args:
            embedding: 청크 텍스트의 임베딩 벡터.
            embedding_model: 벡터를 생성한 모델.
            metadata: 항목 수준 메타데이터 (제목, URL...).
            updated_at: 저장 시각. 기본값은 현재 시각.

        Returns:
            활성 상태의 IndexEntry.
        """
        return IndexEntry(
            chunk_hash=self.chunk_hash,
            content_type=self.content_type,
            content_id=self.content_id,
            chunk_index=self.chunk_index,
            total_chunks=self.total_chunks,
            text=self.text,
            embedding_vector=embedding,
            embedding_model=embedding_model,
            metadata=metadata or {},
            updated_at=updated_at or datetime.now(UTC),
            is_active=True,
        )

"""인덱스 엔트리(IndexEntry) 모델 정의.

벡터 인덱스의 한 행: 청크, 임베딩, 생명주기 플래그.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class IndexEntry(BaseModel):
    """청크 하나의 저장된 임베딩.

    Attributes:
        chunk_hash: 고유 키
        content_type: 소속 콘텐츠 타입
        content_id: 소속 콘텐츠 ID
        chunk_index: 항목 내 청크 위치
        total_chunks: 저장 시점의 형제 청크 수
        text: 검색 결과와 함께 반환되는 청크 텍스트
        embedding_vector: 임베딩 벡터
        embedding_model: 벡터를 생성한 모델
        metadata: 항목 수준 메타데이터 (제목, URL...)
        updated_at: 마지막 저장 시각
        is_active: 원본 콘텐츠가 사라지면 False
    """

    chunk_hash: str = Field(..., min_length=1, description="고유 키")
    content_type: str = Field(..., description="소속 콘텐츠 타입")
    content_id: str = Field(..., description="소속 콘텐츠 ID")
    chunk_index: int = Field(..., ge=0, description="항목 내 위치")
    total_chunks: int = Field(..., ge=1, description="형제 청크 수")
    text: str = Field(..., description="청크 텍스트")
    embedding_vector: list[float] = Field(..., description="임베딩 벡터")
    embedding_model: str = Field(..., description="임베딩 모델 이름")
    metadata: dict[str, Any] = Field(default_factory=dict, description="항목 메타데이터")
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="마지막 저장 시각",
    )
    is_active: bool = Field(default=True, description="소프트 삭제 플래그")

    @property
    def dimension(self) -> int:
        """벡터 길이."""
        return len(self.embedding_vector)

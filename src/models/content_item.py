"""콘텐츠 항목(ContentItem) 모델 정의.

한 번의 인덱싱 패스에서 사용하는 스토어 콘텐츠(상품, 페이지, 게시글,
설정 섹션, 카테고리) 하나의 정규화된 스냅샷입니다.
"""

import hashlib
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ContentItem(BaseModel):
    """Scanner가 생성하는 불변 콘텐츠 스냅샷.

    Attributes:
        id: 콘텐츠 소스 내 항목 식별자
        content_type: 콘텐츠 타입 (product, page, post, ...)
        modified_at: 소스가 보고한 마지막 수정 시각
        raw_text: 청킹 및 임베딩할 정규화된 평문
        title: 표시용 제목
        url: 공개 URL (있는 경우)
        source_metadata: 소스별 필드 (가격, SKU, 카테고리...)
    """

    model_config = {"frozen": True}

    id: str = Field(
        ...,
        min_length=1,
        description="콘텐츠 소스 내 항목 식별자",
    )
    content_type: str = Field(
        ...,
        min_length=1,
        description="콘텐츠 타입",
    )
    modified_at: datetime = Field(
        ...,
        description="마지막 수정 시각",
    )
    raw_text: str = Field(
        default="",
        description="정규화된 평문",
    )
    title: str = Field(
        default="",
        description="표시용 제목",
    )
    url: Optional[str] = Field(
        default=None,
        description="공개 URL",
    )
    source_metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="소스별 필드",
    )

    @property
    def key(self) -> tuple[str, str]:
        """항목 식별 키 (content_type, id)."""
        return (self.content_type, self.id)

    @property
    def content_hash(self) -> str:
        """정규화된 텍스트의 SHA-256."""
        return hashlib.sha256(self.raw_text.encode("utf-8")).hexdigest()

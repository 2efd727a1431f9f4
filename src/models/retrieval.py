"""질의 경로 모델: 검색 결과와 응답 생성 요청/응답."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class RetrievalResult(BaseModel):
    """유사도 검색 결과 하나. 일시적이며 저장되지 않습니다.

    Attributes:
        chunk_hash: 매칭된 청크의 해시
        text: 청크 텍스트
        similarity_score: 질의와의 코사인 유사도
        content_type: 소속 콘텐츠 타입
        content_id: 소속 콘텐츠 ID
        chunk_index: 항목 내 청크 위치
        metadata: 청크와 함께 저장된 항목 메타데이터 (제목, URL...)
    """

    chunk_hash: str = Field(..., description="매칭된 청크의 해시")
    text: str = Field(..., description="청크 텍스트")
    similarity_score: float = Field(..., description="질의와의 코사인 유사도")
    content_type: str = Field(..., description="소속 콘텐츠 타입")
    content_id: str = Field(..., description="소속 콘텐츠 ID")
    chunk_index: int = Field(default=0, description="항목 내 위치")
    metadata: dict[str, Any] = Field(default_factory=dict, description="항목 메타데이터")

    @property
    def title(self) -> str | None:
        """소속 항목의 제목 (저장된 경우)."""
        return self.metadata.get("title")


class ChatMessage(BaseModel):
    """대화 한 턴."""

    role: Literal["user", "assistant"] = Field(..., description="화자")
    content: str = Field(..., description="메시지 텍스트")


class GenerationRequest(BaseModel):
    """PromptAssembler가 만드는 프로바이더 중립적인 생성 요청.

    Attributes:
        system_prompt: 시스템 지시문
        messages: 대화 이력과 마지막 사용자 메시지
        query_type: 분류된 질의 유형
        language: 감지된 언어 코드
        context_chunks: 프롬프트에 포함된 청크 (순서대로)
        used_fallback: 사용할 컨텍스트가 없었으면 True
        injection_detected: 질의가 프롬프트 인젝션으로 보이면 True
        estimated_tokens: 요청 전체의 대략적인 토큰 수
    """

    system_prompt: str = Field(..., description="시스템 지시문")
    messages: list[ChatMessage] = Field(default_factory=list, description="대화")
    query_type: str = Field(default="general_inquiry", description="분류된 질의 유형")
    language: str = Field(default="en", description="감지된 언어 코드")
    context_chunks: list[RetrievalResult] = Field(
        default_factory=list,
        description="프롬프트에 포함된 청크",
    )
    used_fallback: bool = Field(default=False, description="컨텍스트 없음")
    injection_detected: bool = Field(default=False, description="프롬프트 인젝션 의심")
    estimated_tokens: int = Field(default=0, description="대략적인 토큰 수")


class GenerationResponse(BaseModel):
    """GenerationProvider가 반환하는 답변.

    Attributes:
        text: 답변 텍스트
        model: 답변을 생성한 모델
        input_tokens: 프로바이더가 보고한 프롬프트 토큰 수
        output_tokens: 프로바이더가 보고한 생성 토큰 수
        stop_reason: 프로바이더 종료 사유
        metadata: 호출자가 덧붙인 추가 데이터 (지식 베이스 사용 정보)
    """

    text: str = Field(..., description="답변 텍스트")
    model: str = Field(default="", description="모델 이름")
    input_tokens: int = Field(default=0, description="프롬프트 토큰 수")
    output_tokens: int = Field(default=0, description="생성 토큰 수")
    stop_reason: str | None = Field(default=None, description="종료 사유")
    metadata: dict[str, Any] = Field(default_factory=dict, description="추가 데이터")

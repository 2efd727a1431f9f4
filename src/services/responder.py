"""지식 베이스 응답기: 검색 → 프롬프트 조립 → 생성."""

from typing import Iterable, Optional, Sequence

from ..logging_config import Loggers
from ..models import ChatMessage, GenerationResponse
from .generator import GenerationProvider
from .prompt_assembler import PromptAssembler
from .retrieval import RetrievalEngine

logger = Loggers.retrieval()


class KnowledgeBaseResponder:
    """지식 베이스로 고객 질의에 답변합니다.

    동기화 경로와 독립적입니다. SyncState를 읽거나 쓰지 않으며 프로바이더
    오류는 그대로 호출자에게 전달됩니다.
    """

    def __init__(
        self,
        retrieval: RetrievalEngine,
        assembler: PromptAssembler,
        generator: GenerationProvider,
    ):
        self.retrieval = retrieval
        self.assembler = assembler
        self.generator = generator

    def answer(
        self,
        query: str,
        history: Optional[Sequence[ChatMessage | dict]] = None,
        caller_context: Optional[str] = None,
        max_chunks: Optional[int] = None,
        min_similarity: Optional[float] = None,
        content_types: Optional[Iterable[str]] = None,
    ) -> GenerationResponse:
        """``query``에 답변합니다.

        Returns:
            ``metadata["knowledge_base"]``에 사용된 청크, 점수, 출처, 폴백
            프롬프트 사용 여부가 담긴 GenerationResponse.

        Raises:
            ValidationError: 빈 질의.
            TransientProviderError: 임베딩 또는 생성 프로바이더 타임아웃,
                사용 불가.
            FatalProviderError: 프로바이더가 요청을 거부함.
        """
        retrieved = self.retrieval.retrieve(
            query,
            max_chunks=max_chunks,
            min_similarity=min_similarity,
            content_types=content_types,
        )
        request = self.assembler.build(query, retrieved, history, caller_context)
        response = self.generator.generate(request)

        response.metadata["knowledge_base"] = {
            "chunks_used": len(request.context_chunks),
            "similarity_scores": [round(c.similarity_score, 4) for c in request.context_chunks],
            "content_sources": [
                {
                    "content_type": c.content_type,
                    "content_id": c.content_id,
                    "title": c.title,
                    "url": c.metadata.get("url"),
                }
                for c in request.context_chunks
            ],
            "used_fallback": request.used_fallback,
            "query_type": request.query_type,
            "language": request.language,
        }

        logger.info(
            "질의 응답 완료",
            query_type=request.query_type,
            chunks_used=len(request.context_chunks),
            used_fallback=request.used_fallback,
        )
        return response

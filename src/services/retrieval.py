"""검색 엔진: 질의 임베딩과 유사도 검색."""

import time
from typing import Iterable, Optional

from ..errors import EmbeddingError, TransientProviderError, ValidationError
from ..logging_config import Loggers
from ..models import RetrievalResult
from .embedder import EmbeddingProvider
from .vector_index import VectorIndex

logger = Loggers.retrieval()


class RetrievalEngine:
    """벡터 인덱스에 대한 읽기 전용 유사도 검색.

    동기화 락을 잡지 않으며, 결과는 마지막으로 커밋된 쓰기를 반영합니다.
    일치 항목이 없으면 오류가 아니라 빈 리스트입니다.

    Attributes:
        embedder: 질의 임베딩에 쓰는 프로바이더.
        vector_index: 검색할 인덱스.
        max_chunks: 기본 결과 상한.
        min_similarity: 기본 코사인 유사도 하한.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        max_chunks: int = 5,
        min_similarity: float = 0.7,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.max_chunks = max_chunks
        self.min_similarity = min_similarity

    def retrieve(
        self,
        query: str,
        max_chunks: Optional[int] = None,
        min_similarity: Optional[float] = None,
        content_types: Optional[Iterable[str]] = None,
    ) -> list[RetrievalResult]:
        """``query``와 가장 유사한 청크를 찾습니다.

        Args:
            query: 자연어 질의.
            max_chunks: 결과 상한. 기본값은 ``self.max_chunks``.
            min_similarity: 점수 하한. 기본값은 ``self.min_similarity``.
            content_types: 이 콘텐츠 타입으로 제한.

        Returns:
            유사도 내림차순 결과 (모든 점수가 하한 이상). 해당하는 결과가
            없으면 빈 리스트.

        Raises:
            ValidationError: 빈 질의 또는 범위를 벗어난 파라미터.
            TransientProviderError: 임베딩 프로바이더 타임아웃 또는 사용 불가.
            EmbeddingError, FatalProviderError: 질의를 임베딩할 수 없음.
        """
        if not query or not query.strip():
            raise ValidationError(message="Query must not be empty")

        limit = self.max_chunks if max_chunks is None else max_chunks
        threshold = self.min_similarity if min_similarity is None else min_similarity
        if limit < 0:
            raise ValidationError(message="max_chunks must not be negative", details={"max_chunks": limit})
        if not -1.0 <= threshold <= 1.0:
            raise ValidationError(
                message="min_similarity must be between -1 and 1",
                details={"min_similarity": threshold},
            )
        if limit == 0:
            return []

        started = time.monotonic()
        try:
            query_vector = self.embedder.embed_query(query.strip())
        except EmbeddingError as e:
            if not e.retryable:
                raise
            raise TransientProviderError(
                message=f"Query embedding failed: {e.message}",
                details={"model": self.embedder.model_name},
            ) from e
        results = self.vector_index.search(
            query_vector,
            limit=limit,
            min_similarity=threshold,
            content_types=content_types,
        )
        results = [result for result in results if result.similarity_score >= threshold]

        logger.info(
            "검색 완료",
            results=len(results),
            top_score=round(results[0].similarity_score, 4) if results else None,
            max_chunks=limit,
            min_similarity=threshold,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return results

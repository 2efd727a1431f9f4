"""임베딩 프로바이더.

프로바이더:
    - HttpEmbeddingProvider: httpx 기반 OpenAI 호환 임베딩 엔드포인트
    - HashEmbeddingProvider: 결정적 오프라인 벡터 (개발, 테스트)
    - CachedEmbeddingProvider: 임의 프로바이더 앞단의 LRU 캐시

모든 프로바이더는 입력과 같은 순서와 개수로 벡터를 반환합니다. 실패했거나
불완전하게 반환된 배치는 해당 텍스트 위치와 함께 EmbeddingError를
발생시키며, 벡터를 0으로 채우지 않습니다.
"""

import hashlib
import math
import re
import threading
from collections import OrderedDict
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import httpx

from ..errors import EmbeddingError, FatalProviderError, TransientProviderError
from ..logging_config import Loggers
from ..utils.rate_limit import TokenBucketRateLimiter, embedding_rate_limit
from ..utils.retry import EMBEDDING_CONFIG, RetryConfig, create_retry_decorator, is_retryable_http_error

logger = Loggers.providers()


@runtime_checkable
class EmbeddingProvider(Protocol):
    """텍스트를 고정 길이 벡터로 변환."""

    model_name: str
    dimension: int

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """순서와 개수를 유지하며 텍스트를 임베딩합니다."""
        ...

    def embed_query(self, query: str) -> list[float]:
        """검색 질의 하나를 임베딩합니다."""
        ...


class HttpEmbeddingProvider:
    """OpenAI 호환 임베딩 클라이언트.

    ``POST {"input": [...], "model": ...}``를 보내고
    ``{"data": [{"index": i, "embedding": [...]}, ...]}`` 응답을 기대합니다.

    오류 매핑:
        - 타임아웃, 연결 오류, 429, 5xx: TransientProviderError
          (지수 백오프로 재시도)
        - 그 외 4xx (인증, 할당량, 잘못된 요청): FatalProviderError
          (즉시 발생)
        - 재시도 후에도 실패한 배치, 개수/순서/차원이 맞지 않는 응답:
          해당 배치의 EmbeddingError

    Attributes:
        api_url: 임베딩 엔드포인트.
        model_name: 요청 모델.
        dimension: 예상 벡터 길이.
        batch_size: 요청당 최대 텍스트 수.
        timeout: 요청별 타임아웃 (초).
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model_name: str = "text-embedding-3-small",
        dimension: int = 1536,
        batch_size: int = 100,
        timeout: float = 30.0,
        max_retries: int = 3,
        requests_per_second: float = 50.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """프로바이더를 초기화합니다.

        Args:
            api_url: 임베딩 엔드포인트.
            api_key: Bearer 토큰.
            model_name: 요청 모델.
            dimension: 예상 벡터 길이.
            batch_size: 요청당 최대 텍스트 수.
            timeout: 요청별 타임아웃 (초).
            max_retries: 일시적 실패 시 시도 횟수.
            requests_per_second: 클라이언트 측 속도 제한.
            retry_config: ``max_retries``에서 만든 백오프 설정 재정의.
            transport: 사용자 정의 httpx transport (테스트용).
        """
        self.api_url = api_url
        self.api_key = api_key
        self.model_name = model_name
        self.dimension = dimension
        self.batch_size = max(1, batch_size)
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._rate_limiter = TokenBucketRateLimiter(embedding_rate_limit(requests_per_second))

        config = retry_config or RetryConfig(
            max_attempts=max_retries,
            min_wait=EMBEDDING_CONFIG.min_wait,
            max_wait=EMBEDDING_CONFIG.max_wait,
            jitter=EMBEDDING_CONFIG.jitter,
        )
        self._request_with_retry = create_retry_decorator(
            config=config,
            retry_if=is_retryable_http_error,
        )(self._request_batch)

        self._stats_lock = threading.Lock()
        self._stats = {"requests": 0, "texts": 0, "tokens": 0, "failed_batches": 0}

    @property
    def client(self) -> httpx.Client:
        """지연 생성되는 HTTP 클라이언트."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """최대 ``batch_size``개씩 배치로 텍스트를 임베딩합니다.

        Args:
            texts: 임베딩할 텍스트.

        Returns:
            입력 순서대로 텍스트당 벡터 하나.

        Raises:
            EmbeddingError: 하나 이상의 배치 실패. 실패한 배치의 모든 텍스트
                위치를 담으며, 모든 실패가 일시적일 때만 재시도 가능.
            FatalProviderError: 프로바이더가 요청을 거부함 (4xx).
        """
        if not texts:
            return []

        results: list[Optional[list[float]]] = [None] * len(texts)
        failed: list[int] = []
        retryable = True

        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start:start + self.batch_size])
            positions = list(range(start, start + len(batch)))
            try:
                vectors = self._request_with_retry(batch)
            except (TransientProviderError, EmbeddingError) as e:
                with self._stats_lock:
                    self._stats["failed_batches"] += 1
                logger.error(
                    "임베딩 배치 실패",
                    batch_start=start,
                    batch_size=len(batch),
                    error=str(e),
                )
                retryable = retryable and e.retryable
                failed.extend(positions)
                continue
            results[start:start + len(batch)] = vectors

        if failed:
            raise EmbeddingError(
                message=f"{len(failed)} of {len(texts)} texts could not be embedded",
                failed_batch_indices=failed,
                retryable=retryable,
                details={"model": self.model_name},
            )

        return [vector for vector in results if vector is not None]

    def embed_query(self, query: str) -> list[float]:
        return self.embed([query])[0]

    def _request_batch(self, texts: list[str]) -> list[list[float]]:
        """요청 하나를 보내고 응답을 검증합니다."""
        self._rate_limiter.acquire()
        try:
            response = self.client.post(
                self.api_url,
                json={"input": texts, "model": self.model_name},
            )
        except httpx.TimeoutException as e:
            raise TransientProviderError(
                message=f"Embedding request timed out after {self.timeout}s",
                details={"url": self.api_url},
            ) from e
        except httpx.TransportError as e:
            raise TransientProviderError(
                message=f"Embedding provider unreachable: {e}",
                details={"url": self.api_url},
            ) from e

        with self._stats_lock:
            self._stats["requests"] += 1

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientProviderError(
                message=f"Embedding provider returned {status}",
                details={"status_code": status, "body": response.text[:500]},
            )
        if status >= 400:
            raise FatalProviderError(
                message=f"Embedding provider rejected the request ({status})",
                details={"status_code": status, "body": response.text[:500]},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise EmbeddingError(
                message="Embedding response is not valid JSON",
                failed_batch_indices=range(len(texts)),
            ) from e

        vectors = self._parse_vectors(payload, len(texts))

        with self._stats_lock:
            self._stats["texts"] += len(texts)
            self._stats["tokens"] += int((payload.get("usage") or {}).get("total_tokens", 0))
        return vectors

    def _parse_vectors(self, payload: dict[str, Any], expected: int) -> list[list[float]]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or len(data) != expected:
            raise EmbeddingError(
                message=f"Expected {expected} embeddings, got {len(data) if isinstance(data, list) else 0}",
                failed_batch_indices=range(expected),
            )

        ordered = sorted(data, key=lambda item: item.get("index", -1))
        if [item.get("index") for item in ordered] != list(range(expected)):
            raise EmbeddingError(
                message="Embedding response indices do not match the request",
                failed_batch_indices=range(expected),
            )

        vectors = []
        for item in ordered:
            vector = item.get("embedding")
            if not isinstance(vector, list) or (self.dimension and len(vector) != self.dimension):
                raise EmbeddingError(
                    message=f"Embedding has wrong dimension (expected {self.dimension})",
                    failed_batch_indices=range(expected),
                )
            vectors.append([float(value) for value in vector])
        return vectors

    def get_stats(self) -> dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def close(self) -> None:
        """HTTP 클라이언트를 닫습니다."""
        if self._client is not None:
            self._client.close()
            self._client = None


_TOKEN = re.compile(r"\w+", re.UNICODE)


class HashEmbeddingProvider:
    """해시된 단어 특징 기반의 결정적 임베딩.

    소문자 단어마다 해시로 고른 차원에 ±1을 더한 뒤 L2 정규화합니다.
    단어를 공유하는 텍스트는 비슷한 벡터를 가지므로 네트워크 프로바이더
    없이도 검색이 그럴듯하게 동작합니다. 빈 텍스트는 영벡터가 됩니다.

    Attributes:
        model_name: 보고되는 모델 이름.
        dimension: 벡터 길이.
    """

    def __init__(self, dimension: int = 256, model_name: str = "hash-embedding-v1"):
        self.dimension = dimension
        self.model_name = model_name
        self.calls = 0
        self.texts_embedded = 0
        self._lock = threading.Lock()

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        with self._lock:
            self.calls += 1
            self.texts_embedded += len(texts)
        return [self._vectorize(text) for text in texts]

    def embed_query(self, query: str) -> list[float]:
        return self.embed([query])[0]

    def _vectorize(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self.dimension
            vector[index] += 1.0 if digest[4] & 1 else -1.0

        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0.0:
            return vector
        return [value / norm for value in vector]


class CachedEmbeddingProvider:
    """프로바이더 앞단의 ``(model_name, text)`` 키 LRU 캐시.

    캐시 미스만 감싼 프로바이더로 전달됩니다. 실패는 호출자 입력 기준
    위치로 변환해 다시 발생시킵니다.
    """

    def __init__(self, provider: EmbeddingProvider, max_entries: int = 10000):
        self.provider = provider
        self.max_entries = max_entries
        self._cache: OrderedDict[tuple[str, str], list[float]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        results: list[Optional[list[float]]] = [None] * len(texts)
        miss_positions: list[int] = []

        with self._lock:
            for position, text in enumerate(texts):
                key = (self.model_name, text)
                cached = self._cache.get(key)
                if cached is None:
                    miss_positions.append(position)
                else:
                    self._cache.move_to_end(key)
                    results[position] = cached
            self.hits += len(texts) - len(miss_positions)
            self.misses += len(miss_positions)

        if miss_positions:
            try:
                vectors = self.provider.embed([texts[p] for p in miss_positions])
            except EmbeddingError as e:
                raise EmbeddingError(
                    message=e.message,
                    failed_batch_indices=[miss_positions[i] for i in e.failed_batch_indices],
                    retryable=e.retryable,
                ) from e

            with self._lock:
                for position, vector in zip(miss_positions, vectors):
                    results[position] = vector
                    self._cache[(self.model_name, texts[position])] = vector
                while len(self._cache) > self.max_entries:
                    self._cache.popitem(last=False)

        return [vector for vector in results if vector is not None]

    def embed_query(self, query: str) -> list[float]:
        return self.embed([query])[0]

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "entries": len(self._cache),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total, 3) if total else 0.0,
            }

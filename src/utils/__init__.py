"""프로바이더 및 HTTP 호출용 유틸리티.

Rate Limiting:
    - RateLimitConfig: 토큰 버킷 파라미터
    - TokenBucketRateLimiter: 스레드 안전한 토큰 버킷
    - embedding_rate_limit: 임베딩 엔드포인트용 프리셋

재시도 (Retry):
    - RetryConfig: 백오프 파라미터
    - create_retry_decorator: 재시도 데코레이터 생성
    - http_retry: HTTP 요청용 재시도 데코레이터
    - is_retryable_http_error: 일시적 실패 판별 함수
"""

from .rate_limit import (
    RateLimitConfig,
    TokenBucketRateLimiter,
    embedding_rate_limit,
)
from .retry import (
    EMBEDDING_CONFIG,
    HTTP_CONFIG,
    NETWORK_EXCEPTIONS,
    RetryConfig,
    create_retry_decorator,
    http_retry,
    is_retryable_http_error,
)

__all__ = [
    # Rate Limiting (속도 제한)
    "RateLimitConfig",
    "TokenBucketRateLimiter",
    "embedding_rate_limit",
    # 재시도
    "RetryConfig",
    "create_retry_decorator",
    "http_retry",
    "is_retryable_http_error",
    "NETWORK_EXCEPTIONS",
    "EMBEDDING_CONFIG",
    "HTTP_CONFIG",
]

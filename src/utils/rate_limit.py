"""속도 제한 유틸리티.

프로바이더 호출용 토큰 버킷 속도 제한기.
"""

import threading
import time
from dataclasses import dataclass


@dataclass
class RateLimitConfig:
    """토큰 버킷 파라미터.

    Attributes:
        requests_per_second: 지속 요청 속도.
        burst_size: 버킷 용량.
        min_interval: 요청 간 최소 간격 (초).
    """

    requests_per_second: float = 10.0
    burst_size: int = 20
    min_interval: float = 0.0

    @property
    def token_rate(self) -> float:
        """초당 추가되는 토큰 수."""
        return self.requests_per_second


class TokenBucketRateLimiter:
    """스레드 안전한 토큰 버킷.

    ``burst_size``까지 버스트를 허용한 뒤 ``requests_per_second``로 제한합니다.
    대기(sleep)는 내부 락 밖에서 수행됩니다.

    Attributes:
        config: 속도 제한 설정.
    """

    def __init__(self, config: RateLimitConfig):
        self.config = config
        self._tokens = float(config.burst_size)
        self._last_update = time.monotonic()
        self._last_request = 0.0
        self._lock = threading.Lock()

    def acquire(self, tokens: int = 1, blocking: bool = True) -> bool:
        """버킷에서 토큰을 가져옵니다.

        Args:
            tokens: 가져올 토큰 수.
            blocking: 토큰이 생길 때까지 대기할지 여부.

        Returns:
            토큰을 가져왔으면 True. 비블로킹이고 토큰이 부족할 때만 False.
        """
        while True:
            with self._lock:
                wait_time = self._try_take(tokens)
                if wait_time == 0.0:
                    return True
            if not blocking:
                return False
            time.sleep(wait_time)

    def _try_take(self, tokens: int) -> float:
        """토큰을 가져오거나, 다시 시도하기 전 대기 시간을 반환합니다."""
        self._refill()
        now = time.monotonic()

        if self.config.min_interval > 0:
            elapsed = now - self._last_request
            if elapsed < self.config.min_interval:
                return self.config.min_interval - elapsed

        if self._tokens >= tokens:
            self._tokens -= tokens
            self._last_request = now
            return 0.0

        return (tokens - self._tokens) / self.config.token_rate

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_update
        self._tokens = min(
            self.config.burst_size,
            self._tokens + elapsed * self.config.token_rate,
        )
        self._last_update = now

    @property
    def available_tokens(self) -> float:
        """현재 버킷의 토큰 수."""
        with self._lock:
            self._refill()
            return self._tokens


def embedding_rate_limit(requests_per_second: float) -> RateLimitConfig:
    """임베딩 엔드포인트용 속도 제한 프리셋.

    버스트 용량은 1초 분량의 요청 (최소 1건)입니다.
    """
    return RateLimitConfig(
        requests_per_second=requests_per_second,
        burst_size=max(1, int(requests_per_second)),
    )

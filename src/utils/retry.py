"""tenacity 기반 재시도 유틸리티.

프로바이더 및 HTTP 호출용 재시도 데코레이터.

주요 기능:
    - 지수 백오프 (선택적 지터)
    - 협력 서비스별 프리셋
    - 일시적 실패(타임아웃, 429, 5xx)만 재시도
    - 재시도마다 구조화 로깅
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Type, Union

import httpx
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_random_exponential,
)

from ..errors import TransientProviderError
from ..logging_config import Loggers

logger = Loggers.providers()


@dataclass
class RetryConfig:
    """재시도 동작 설정.

    Attributes:
        max_attempts: 첫 호출을 포함한 총 시도 횟수.
        min_wait: 백오프 배수 (초).
        max_wait: 한 번 대기의 상한 (초).
        exponential_base: 지수 백오프의 밑.
        max_delay: 전체 제한 시간 (초). max_attempts와 함께 적용.
        jitter: 무작위 지수 대기 사용 여부.
    """

    max_attempts: int = 3
    min_wait: float = 1.0
    max_wait: float = 60.0
    exponential_base: float = 2.0
    max_delay: Optional[float] = None
    jitter: bool = True

    def to_tenacity_kwargs(self) -> dict[str, Any]:
        """``tenacity.retry``용 키워드 인자로 변환합니다."""
        kwargs: dict[str, Any] = {
            "stop": stop_after_attempt(max(1, self.max_attempts)),
            "reraise": True,
        }

        if self.max_delay:
            kwargs["stop"] = kwargs["stop"] | stop_after_delay(self.max_delay)

        if self.jitter:
            kwargs["wait"] = wait_random_exponential(
                multiplier=self.min_wait,
                max=self.max_wait,
            )
        else:
            kwargs["wait"] = wait_exponential(
                multiplier=self.min_wait,
                max=self.max_wait,
                exp_base=self.exponential_base,
            )

        return kwargs


DEFAULT_CONFIG = RetryConfig()

EMBEDDING_CONFIG = RetryConfig(
    max_attempts=3,
    min_wait=1.0,
    max_wait=20.0,
    jitter=True,
)

HTTP_CONFIG = RetryConfig(
    max_attempts=3,
    min_wait=0.5,
    max_wait=10.0,
    jitter=True,
)


NETWORK_EXCEPTIONS: tuple[Type[Exception], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
)


def is_retryable_http_error(exception: BaseException) -> bool:
    """HTTP 실패가 재시도할 만한지 판별합니다.

    재시도 대상:
        - 429 (Rate Limited)
        - 5xx 서버 오류
        - 네트워크 및 타임아웃 오류
        - 프로바이더 어댑터가 발생시킨 TransientProviderError

    Args:
        exception: 검사할 예외.

    Returns:
        재시도해야 하면 True.
    """
    if isinstance(exception, TransientProviderError):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500
    return isinstance(exception, NETWORK_EXCEPTIONS)


def _log_retry(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "호출 재시도",
        function=getattr(retry_state.fn, "__name__", str(retry_state.fn)),
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        error=str(exception) if exception else None,
    )


def create_retry_decorator(
    config: RetryConfig = DEFAULT_CONFIG,
    retry_on: Optional[Union[Type[Exception], tuple[Type[Exception], ...]]] = None,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
    log_retries: bool = True,
) -> Callable:
    """재시도 데코레이터를 생성합니다.

    시도가 모두 소진되면 마지막 예외를 다시 발생시킵니다.

    Args:
        config: 재시도 파라미터.
        retry_on: 재시도할 예외 타입.
        retry_if: 예외 재시도 여부를 결정하는 함수.
        log_retries: 재시도마다 로깅할지 여부.

    Returns:
        설정된 데코레이터.

    Example:
        >>> decorator = create_retry_decorator(
        ...     config=EMBEDDING_CONFIG,
        ...     retry_if=is_retryable_http_error,
        ... )
        >>> @decorator
        ... def call_provider():
        ...     pass
    """
    kwargs = config.to_tenacity_kwargs()

    if retry_if:
        kwargs["retry"] = retry_if_exception(retry_if)
    elif retry_on:
        kwargs["retry"] = retry_if_exception_type(retry_on)

    if log_retries:
        kwargs["before_sleep"] = _log_retry

    return retry(**kwargs)


def http_retry(func: Optional[Callable] = None) -> Callable:
    """단순 HTTP 요청용 재시도 데코레이터.

    네트워크 오류와 5xx/429 응답을 재시도합니다.

    Example:
        >>> @http_retry
        ... def fetch_export(url):
        ...     return httpx.get(url)
    """
    decorator = create_retry_decorator(
        config=HTTP_CONFIG,
        retry_if=is_retryable_http_error,
    )

    if func is not None:
        return decorator(func)
    return decorator

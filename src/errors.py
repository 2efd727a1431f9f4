"""동기화 및 검색 파이프라인의 예외 계층.

항목 수준 오류 (StorageError, ValidationError, EmbeddingError)는 실행 중인
SyncState에 기록되고 배치는 계속 진행됩니다. 작업 수준 오류
(FatalProviderError, JobTimeoutError)는 상태 머신을 ``failed``로 전이합니다.
LockContentionError는 상태를 건드리기 전에 발생합니다.
"""

from datetime import datetime
from typing import Any, Optional, Sequence


class KnowledgeBaseError(Exception):
    """지식 베이스 예외의 기본 클래스."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class TransientProviderError(KnowledgeBaseError):
    """프로바이더 타임아웃, 연결 실패, 429 또는 5xx. 재시도 가능."""

    retryable = True

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="TRANSIENT_PROVIDER_ERROR",
            details=details,
        )


class FatalProviderError(KnowledgeBaseError):
    """인증, 할당량, 잘못된 요청 실패. 재시도하지 않음."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="FATAL_PROVIDER_ERROR",
            details=details,
        )


class EmbeddingError(KnowledgeBaseError):
    """임베딩 배치 전체가 실패했거나 불완전하게 반환됨.

    Attributes:
        failed_batch_indices: 배치가 실패한 텍스트의 위치 (호출자 입력 기준).
    """

    def __init__(
        self,
        message: str,
        failed_batch_indices: Sequence[int],
        retryable: bool = True,
        details: Optional[dict[str, Any]] = None,
    ):
        self.failed_batch_indices = list(failed_batch_indices)
        self.retryable = retryable
        super().__init__(
            message=message,
            error_code="EMBEDDING_ERROR",
            details={**(details or {}), "failed_batch_indices": self.failed_batch_indices},
        )


class StorageError(KnowledgeBaseError):
    """인덱스 또는 상태 저장소 읽기/쓰기 실패."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="STORAGE_ERROR",
            details=details,
        )


class LockContentionError(KnowledgeBaseError):
    """다른 동기화 작업이 단일 인스턴스 락을 보유 중."""

    retryable = True

    def __init__(
        self,
        message: str,
        holder: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ):
        self.holder = holder
        self.expires_at = expires_at
        super().__init__(
            message=message,
            error_code="LOCK_CONTENTION",
            details={
                "holder": holder,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )


class ValidationError(KnowledgeBaseError):
    """잘못된 콘텐츠 항목 또는 입력."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details,
        )


class JobTimeoutError(KnowledgeBaseError):
    """동기화 작업이 전체 제한 시간을 초과함."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="JOB_TIMEOUT",
            details=details,
        )


class ConfigurationError(KnowledgeBaseError):
    """누락되었거나 일관되지 않은 설정."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=details,
        )

"""동기화 상태(SyncState) 모델 정의.

현재(또는 마지막) 동기화 작업의 프로세스 전역 기록입니다.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """동기화 상태 머신 상태.

    Attributes:
        IDLE: 시작된 작업 없음
        RUNNING: 작업 진행 중, 락 보유
        COMPLETED: 모든 콘텐츠 타입 처리 완료
        FAILED: 복구 불가능한 오류로 중단
        CANCELLED: 요청에 따라 배치 사이에서 중지
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """completed, failed, cancelled이면 True."""
        return self in (SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CANCELLED)


class SyncOperation(str, Enum):
    """동기화 락 아래에서 실행되는 작업."""

    FULL_REBUILD = "full_rebuild"
    INCREMENTAL_UPDATE = "incremental_update"
    MAINTENANCE = "maintenance"
    CLEAR = "clear"


class SyncTrigger(str, Enum):
    """작업 시작 방식.

    Attributes:
        MANUAL: CLI 또는 직접 호출
        SCHEDULED: 스케줄러 작업
    """

    MANUAL = "manual"
    SCHEDULED = "scheduled"


class SyncError(BaseModel):
    """동기화 중 기록된 항목별 실패.

    실패한 항목만 다시 실행할 수 있을 만큼의 식별 정보를 담습니다.

    Attributes:
        content_type: 실패한 항목의 콘텐츠 타입
        content_id: 실패한 항목의 ID
        error_type: 예외 클래스 이름
        message: 오류 메시지
        timestamp: 오류 발생 시각
        retryable: 이후 재시도로 성공할 수 있는지 여부
    """

    content_type: str | None = Field(
        default=None,
        description="실패한 항목의 콘텐츠 타입",
    )
    content_id: str | None = Field(
        default=None,
        description="실패한 항목의 ID",
    )
    error_type: str = Field(
        ...,
        description="예외 클래스 이름",
    )
    message: str = Field(
        ...,
        description="오류 메시지",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="오류 발생 시각",
    )
    retryable: bool = Field(
        default=False,
        description="재시도 가능 여부",
    )


class SyncState(BaseModel):
    """동기화 작업 하나의 상태.

    Attributes:
        id: 실행 식별자 (UUID)
        operation: 작업 종류
        trigger: 수동 또는 스케줄
        status: 상태 머신 상태
        content_types: 실행 대상 콘텐츠 타입
        current_operation: 사람이 읽을 수 있는 현재 단계 ("indexing product")
        total_items: 이번 실행에서 발견된 항목 수
        processed_items: 지금까지 처리된 항목 수
        items_indexed: 청킹, 임베딩 후 저장된 항목 수
        items_removed: 원본에서 사라져 비활성화된 항목 수
        chunks_created: 저장된 인덱스 행 수
        embeddings_generated: 프로바이더에 요청한 벡터 수
        chunks_reused: 해시 중복 제거로 건너뛴 청크 수
        started_at: 시작 시각
        completed_at: 종료 시각
        updated_at: 마지막 진행 상황 저장 시각
        errors: 항목별 실패
        error_message: 실패한 실행의 사유
    """

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="실행 식별자 (UUID)",
    )
    operation: SyncOperation = Field(
        default=SyncOperation.FULL_REBUILD,
        description="작업 종류",
    )
    trigger: SyncTrigger = Field(
        default=SyncTrigger.MANUAL,
        description="수동 또는 스케줄",
    )
    status: SyncStatus = Field(
        default=SyncStatus.IDLE,
        description="상태 머신 상태",
    )
    content_types: list[str] = Field(
        default_factory=list,
        description="실행 대상 콘텐츠 타입",
    )
    current_operation: str | None = Field(
        default=None,
        description="현재 단계",
    )

    total_items: int = Field(default=0, description="발견된 항목 수")
    processed_items: int = Field(default=0, description="처리된 항목 수")
    items_indexed: int = Field(default=0, description="인덱싱된 항목 수")
    items_removed: int = Field(default=0, description="비활성화된 항목 수")
    chunks_created: int = Field(default=0, description="저장된 인덱스 행 수")
    embeddings_generated: int = Field(default=0, description="요청한 벡터 수")
    chunks_reused: int = Field(default=0, description="재사용된 청크 수")

    started_at: datetime | None = Field(default=None, description="시작 시각")
    completed_at: datetime | None = Field(default=None, description="종료 시각")
    updated_at: datetime | None = Field(default=None, description="마지막 진행 상황 저장")

    errors: list[SyncError] = Field(
        default_factory=list,
        description="항목별 실패",
    )
    error_message: str | None = Field(
        default=None,
        description="실패 사유",
    )

    def start(self) -> None:
        """실행 중으로 표시하고 진행 카운터를 초기화합니다."""
        self.status = SyncStatus.RUNNING
        self.started_at = datetime.now(UTC)
        self.updated_at = self.started_at
        self.completed_at = None
        self.total_items = 0
        self.processed_items = 0

    def record_progress(self, items: int) -> None:
        """배치 처리 후 처리된 항목 수를 더합니다."""
        self.processed_items += items
        self.updated_at = datetime.now(UTC)

    def complete(self) -> None:
        """완료로 표시합니다."""
        self.status = SyncStatus.COMPLETED
        self.current_operation = None
        self.completed_at = datetime.now(UTC)

    def fail(self, message: str) -> None:
        """실패로 표시합니다.

        Args:
            message: 주요 오류 메시지.
        """
        self.status = SyncStatus.FAILED
        self.error_message = message
        self.current_operation = None
        self.completed_at = datetime.now(UTC)

    def cancel(self) -> None:
        """취소로 표시합니다."""
        self.status = SyncStatus.CANCELLED
        self.current_operation = None
        self.completed_at = datetime.now(UTC)

    def add_error(
        self,
        error_type: str,
        message: str,
        content_type: str | None = None,
        content_id: str | None = None,
        retryable: bool = False,
    ) -> None:
        """항목별 실패를 기록합니다.

        Args:
            error_type: 예외 클래스 이름.
            message: 오류 메시지.
            content_type: 실패한 항목의 콘텐츠 타입.
            content_id: 실패한 항목의 ID.
            retryable: 이후 재시도로 성공할 수 있는지 여부.
        """
        self.errors.append(
            SyncError(
                error_type=error_type,
                message=message,
                content_type=content_type,
                content_id=content_id,
                retryable=retryable,
            )
        )

    @property
    def is_running(self) -> bool:
        """실행이 락을 보유하는 동안 True."""
        return self.status == SyncStatus.RUNNING

    @property
    def has_errors(self) -> bool:
        """실패한 항목이 있으면 True."""
        return len(self.errors) > 0

    @property
    def progress_percent(self) -> float:
        """발견된 항목 대비 처리 비율 (0-100)."""
        if self.total_items <= 0:
            return 100.0 if self.status == SyncStatus.COMPLETED else 0.0
        return round(min(self.processed_items / self.total_items, 1.0) * 100, 1)

    @property
    def duration_seconds(self) -> float | None:
        """경과 시간(초). 실행 중이면 현재까지."""
        if not self.started_at:
            return None
        end = self.completed_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    @property
    def estimated_seconds_remaining(self) -> float | None:
        """남은 시간의 선형 추정.

        Returns:
            남은 초. 아직 처리된 항목이 없거나 실행 중이 아니면 None.
        """
        if not self.is_running or self.processed_items <= 0 or not self.started_at:
            return None
        elapsed = (datetime.now(UTC) - self.started_at).total_seconds()
        remaining_items = max(self.total_items - self.processed_items, 0)
        return round(elapsed / self.processed_items * remaining_items, 1)

    def failed_items(self) -> list[tuple[str, str]]:
        """실패한 (content_type, content_id) 쌍 (중복 제거)."""
        seen: dict[tuple[str, str], None] = {}
        for error in self.errors:
            if error.content_type and error.content_id:
                seen[(error.content_type, error.content_id)] = None
        return list(seen)

    def model_dump_json_safe(self) -> dict:
        """파생 필드를 포함한 JSON 직렬화 가능 dict로 변환합니다."""
        data = self.model_dump(mode="json")
        data["is_running"] = self.is_running
        data["progress_percent"] = self.progress_percent
        return data

    @classmethod
    def from_json_safe(cls, data: dict) -> "SyncState":
        """``model_dump_json_safe`` 출력에서 SyncState를 복원합니다."""
        payload = {k: v for k, v in data.items() if k not in ("is_running", "progress_percent")}
        return cls.model_validate(payload)

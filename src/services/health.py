"""지식 베이스 상태 점검.

마지막 동기화 결과, 항목 오류율, 락 임대, 인덱스 카운터 (콘텐츠 소스가
연결되어 있으면 존재하는 항목의 커버리지 포함)를 경고 및 권장 사항과 함께
하나의 상태로 합칩니다.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional, Sequence

from ..connectors.base import ContentSource
from ..errors import KnowledgeBaseError
from ..logging_config import Loggers
from ..models import SyncStatus
from ..storage import Storage
from .state_store import SyncStateStore
from .vector_index import VectorIndex

logger = Loggers.orchestrator()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.UNKNOWN: 1,
    HealthStatus.WARNING: 2,
    HealthStatus.CRITICAL: 3,
}


@dataclass
class HealthReport:
    """상태 점검 한 번의 결과."""

    status: HealthStatus = HealthStatus.HEALTHY
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    alerts: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)

    def escalate(self, status: HealthStatus, alert: str, recommendation: Optional[str] = None) -> None:
        if _SEVERITY[status] > _SEVERITY[self.status]:
            self.status = status
        self.alerts.append(alert)
        if recommendation and recommendation not in self.recommendations:
            self.recommendations.append(recommendation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "checked_at": self.checked_at.isoformat(),
            "alerts": list(self.alerts),
            "recommendations": list(self.recommendations),
            "metrics": dict(self.metrics),
        }


class HealthMonitor:
    """저장된 상태로부터 상태 등급을 도출합니다.

    Attributes:
        vector_index: 카운터를 점검할 인덱스.
        state_store: 락 임대와 마지막 SyncState.
        storage: 실행 이력.
        source: 커버리지 점검용 선택적 콘텐츠 소스.
        content_types: 커버리지 점검 대상 콘텐츠 타입.
        error_rate_warning: 경고를 발생시키는 항목 오류율.
        error_rate_critical: 심각으로 판단하는 항목 오류율.
        coverage_warning: 이 비율 미만으로 인덱싱되면 경고.
        coverage_critical: 이 비율 미만으로 인덱싱되면 심각.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        state_store: SyncStateStore,
        storage: Storage,
        source: Optional[ContentSource] = None,
        content_types: Sequence[str] = (),
        error_rate_warning: float = 0.05,
        error_rate_critical: float = 0.15,
        coverage_warning: float = 0.7,
        coverage_critical: float = 0.5,
    ):
        self.vector_index = vector_index
        self.state_store = state_store
        self.storage = storage
        self.source = source
        self.content_types = list(content_types)
        self.error_rate_warning = error_rate_warning
        self.error_rate_critical = error_rate_critical
        self.coverage_warning = coverage_warning
        self.coverage_critical = coverage_critical

    def check(self, include_coverage: bool = True) -> HealthReport:
        """모든 점검을 실행합니다.

        Args:
            include_coverage: 콘텐츠 소스에서 존재하는 ID를 조회할지 여부.
                소스가 없으면 건너뜀.

        Returns:
            HealthReport. ``unknown``은 완료된 동기화가 없다는 뜻.
        """
        report = HealthReport()
        index_stats = self.vector_index.get_stats()
        report.metrics["index"] = index_stats

        self._check_last_run(report)
        self._check_lock(report)

        if index_stats["active_chunks"] == 0:
            report.escalate(
                HealthStatus.CRITICAL,
                "Knowledge base index is empty",
                "Run a full sync",
            )

        if include_coverage and self.source is not None and self.content_types:
            self._check_coverage(report, index_stats)

        logger.info("상태 점검 완료", status=report.status.value, alerts=len(report.alerts))
        return report

    def _check_last_run(self, report: HealthReport) -> None:
        last = self.storage.get_last_sync_state()
        if last is None:
            report.escalate(
                HealthStatus.UNKNOWN,
                "No sync has been recorded yet",
                "Run a full sync",
            )
            return

        report.metrics["last_run"] = {
            "id": last.id,
            "operation": last.operation.value,
            "status": last.status.value,
            "completed_at": last.completed_at.isoformat() if last.completed_at else None,
            "processed_items": last.processed_items,
            "errors": len(last.errors),
        }

        if last.status == SyncStatus.FAILED:
            report.escalate(
                HealthStatus.CRITICAL,
                f"Last {last.operation.value} failed: {last.error_message}",
                "Check provider credentials and connectivity, then re-run the sync",
            )
        elif last.status == SyncStatus.CANCELLED:
            report.escalate(
                HealthStatus.WARNING,
                f"Last {last.operation.value} was cancelled",
                "Re-run the sync",
            )

        attempted = max(last.processed_items, len(last.failed_items()))
        if attempted <= 0:
            return
        error_rate = len(last.failed_items()) / attempted
        report.metrics["error_rate"] = round(error_rate, 4)
        if error_rate >= self.error_rate_critical:
            report.escalate(
                HealthStatus.CRITICAL,
                f"Item error rate is {error_rate:.1%}",
                "Inspect the error log and retry the failed items",
            )
        elif error_rate >= self.error_rate_warning:
            report.escalate(
                HealthStatus.WARNING,
                f"Item error rate is {error_rate:.1%}",
                "Retry the failed items",
            )

    def _check_lock(self, report: HealthReport) -> None:
        lock = self.state_store.get_lock_info()
        report.metrics["lock"] = lock.to_dict()
        if lock.is_expired:
            report.escalate(
                HealthStatus.WARNING,
                f"Sync lock held by {lock.owner} has expired",
                "A worker probably crashed; the next sync will reclaim the lock",
            )

    def _check_coverage(self, report: HealthReport, index_stats: dict[str, Any]) -> None:
        live = 0
        for content_type in self.content_types:
            try:
                live += len(self.source.list_all_ids(content_type))
            except KnowledgeBaseError as e:
                report.escalate(
                    HealthStatus.WARNING,
                    f"Content source unavailable for {content_type}: {e.message}",
                )
                return

        indexed = sum(
            index_stats["by_content_type"].get(ct, {}).get("items", 0) for ct in self.content_types
        )
        if live == 0:
            return
        coverage = min(indexed / live, 1.0)
        report.metrics["coverage"] = round(coverage, 4)
        report.metrics["live_items"] = live
        report.metrics["indexed_items"] = indexed

        if coverage < self.coverage_critical:
            report.escalate(
                HealthStatus.CRITICAL,
                f"Only {coverage:.0%} of live content is indexed",
                "Run a full sync",
            )
        elif coverage < self.coverage_warning:
            report.escalate(
                HealthStatus.WARNING,
                f"Only {coverage:.0%} of live content is indexed",
                "Run an incremental sync",
            )

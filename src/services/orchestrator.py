"""동기화 오케스트레이터.

전체 재구축, 증분 업데이트, 유지보수, 초기화를 위한 최상위 상태 머신:

    idle → running → completed | failed | cancelled

모든 작업은 단일 인스턴스 임대 락 아래에서 실행됩니다. 락은 상태를 쓰기 전에
획득하므로 거부된 요청은 현재 SyncState를 건드리지 않으며, 결과와 무관하게
``finally``에서 해제됩니다.

진행 상황은 정해진 주기 (N개 항목 또는 T초 중 먼저 도달하는 쪽)로 저장되고,
저장할 때마다 임대도 갱신합니다. 취소와 전체 작업 타임아웃은 배치 사이에서
확인합니다.
"""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence

from ..config import DEFAULT_CONTENT_TYPES
from ..errors import (
    FatalProviderError,
    JobTimeoutError,
    KnowledgeBaseError,
    LockContentionError,
    ValidationError,
)
from ..logging_config import Loggers
from ..models import ContentItem, SyncOperation, SyncState, SyncStatus, SyncTrigger
from ..storage import Storage
from .indexer import ITEM_ERRORS, Indexer, IndexReport
from .scanner import Scanner, ScanResult
from .state_store import SyncStateStore
from .vector_index import VectorIndex

logger = Loggers.orchestrator()


class _Cancelled(Exception):
    """취소가 요청되었을 때 실행 내부에서 발생."""


@dataclass
class _Run:
    """현재 락을 보유한 작업의 기록."""

    state: SyncState
    deadline: float
    force: bool = False
    failed_batches: int = 0
    unsaved_items: int = 0
    last_saved: float = field(default_factory=time.monotonic)
    lease_lost: bool = False


def collect_status(
    state_store: SyncStateStore,
    storage: Storage,
    vector_index: VectorIndex,
) -> dict[str, Any]:
    """읽기 전용 상태 스냅샷: 현재 상태, 임대, 진행 추정, 인덱스 카운터,
    체크포인트, 마지막 유지보수 보고서."""
    state = state_store.load_state()
    lock = state_store.get_lock_info()
    return {
        "is_processing": lock.is_held,
        "state": state.model_dump_json_safe() if state else None,
        "estimated_seconds_remaining": state.estimated_seconds_remaining if state else None,
        "lock": lock.to_dict(),
        "index": vector_index.get_stats(),
        "checkpoints": storage.get_checkpoints(),
        "last_maintenance": storage.get_maintenance_report(),
    }


class SyncOrchestrator:
    """동기화 락 아래에서 Scanner, Indexer, VectorIndex를 조율합니다.

    Attributes:
        scanner: 콘텐츠 타입별 차이 계산.
        indexer: 항목을 인덱스에 저장.
        vector_index: 유지보수와 초기화에서 직접 사용하는 인덱스.
        state_store: 임대 락과 현재 SyncState.
        storage: 실행 이력, 체크포인트, 오류 로그, 유지보수 보고서.
        content_types: 지정되지 않았을 때 대상 콘텐츠 타입.
        batch_size: 전체 재구축의 배치당 항목 수.
        incremental_batch_size: 증분 업데이트의 배치당 항목 수.
        job_timeout: 작업당 전체 제한 시간 (초).
        progress_interval: 이 항목 수마다 진행 상황 저장.
        progress_interval_seconds: 최소 이 주기(초)마다 진행 상황 저장.
        incremental_overlap: 시계 오차를 흡수하기 위해 체크포인트에서 빼는 시간.
        incremental_default_window: 체크포인트가 없을 때 조회 기간.
        max_failed_batches: 프로바이더 실패로 중단하기 전 허용되는 연속
            전체 실패 배치 수.
        inactive_retention: 비활성 엔트리를 삭제하기까지의 기간.
        health_check: 결과를 유지보수 보고서와 함께 저장하는 선택적 호출 객체.
    """

    def __init__(
        self,
        scanner: Scanner,
        indexer: Indexer,
        vector_index: VectorIndex,
        state_store: SyncStateStore,
        storage: Storage,
        content_types: Optional[Sequence[str]] = None,
        batch_size: int = 50,
        incremental_batch_size: int = 25,
        job_timeout: float = 7200.0,
        progress_interval: int = 10,
        progress_interval_seconds: float = 15.0,
        incremental_overlap_hours: float = 2.0,
        incremental_default_hours: float = 24.0,
        max_failed_batches: int = 3,
        inactive_retention_days: int = 30,
        health_check: Optional[Callable[[], dict[str, Any]]] = None,
    ):
        self.scanner = scanner
        self.indexer = indexer
        self.vector_index = vector_index
        self.state_store = state_store
        self.storage = storage
        self.content_types = list(content_types or DEFAULT_CONTENT_TYPES)
        self.batch_size = batch_size
        self.incremental_batch_size = incremental_batch_size
        self.job_timeout = job_timeout
        self.progress_interval = max(1, progress_interval)
        self.progress_interval_seconds = progress_interval_seconds
        self.incremental_overlap = timedelta(hours=incremental_overlap_hours)
        self.incremental_default_window = timedelta(hours=incremental_default_hours)
        self.max_failed_batches = max(1, max_failed_batches)
        self.inactive_retention = timedelta(days=inactive_retention_days)
        self.health_check = health_check

    # ==================== 작업 ====================

    def full_rebuild(
        self,
        content_types: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
        force: bool = False,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> SyncState:
        """주어진 콘텐츠 타입의 모든 항목을 다시 스캔합니다.

        현재 임베딩 모델로 이미 인덱싱된 텍스트의 항목은 건너뛰며,
        ``force``가 설정되면 모두 다시 청킹하고 임베딩합니다.

        Args:
            content_types: 재구축할 콘텐츠 타입. 기본값은 전체.
            batch_size: 배치당 항목 수.
            force: 해시 중복 제거 무시.
            trigger: 수동 또는 스케줄.

        Returns:
            최종 SyncState (completed, failed, cancelled).

        Raises:
            LockContentionError: 다른 작업이 실행 중.
        """
        types = list(content_types or self.content_types)
        size = batch_size or self.batch_size

        def body(run: _Run) -> None:
            scans = self._scan(run, types, since=None, skip_unchanged=not force)
            self._apply(run, scans, size)

        state = self._execute(SyncOperation.FULL_REBUILD, types, trigger, body, force=force)
        if state.status == SyncStatus.COMPLETED:
            self._advance_checkpoints(state)
        return state

    def incremental_update(
        self,
        content_type: Optional[str] = None,
        since: Optional[datetime] = None,
        batch_size: Optional[int] = None,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> SyncState:
        """체크포인트 이후 수정된 콘텐츠를 인덱싱하고 사라진 항목을 제거합니다.

        Args:
            content_type: 콘텐츠 타입 하나. 기본값은 전체.
            since: 명시적 하한. 생략하면 콘텐츠 타입마다 체크포인트에서
                오버랩 시간을 뺀 값을 쓰고, 동기화된 적이 없으면 현재
                시각에서 기본 조회 기간을 뺀 값을 사용.
            batch_size: 배치당 항목 수.
            trigger: 수동 또는 스케줄.

        Returns:
            최종 SyncState.

        Raises:
            LockContentionError: 다른 작업이 실행 중.
        """
        types = [content_type] if content_type else list(self.content_types)
        size = batch_size or self.incremental_batch_size

        def body(run: _Run) -> None:
            scans = []
            for ct in types:
                scans.extend(self._scan(run, [ct], since=self._resolve_since(ct, since)))
            self._apply(run, scans, size)

        state = self._execute(SyncOperation.INCREMENTAL_UPDATE, types, trigger, body)
        if state.status == SyncStatus.COMPLETED:
            self._advance_checkpoints(state)
        return state

    def retry_failed(
        self,
        run_id: Optional[str] = None,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> SyncState:
        """이전 실행에서 실패한 항목만 다시 인덱싱합니다.

        Args:
            run_id: 재시도할 실행. 기본값은 실패가 있는 최근 실행.

        Returns:
            재시도 실행의 최종 SyncState.

        Raises:
            ValidationError: 해당 실행이 없거나 실패한 항목이 없음.
            LockContentionError: 다른 작업이 실행 중.
        """
        source_run = self._find_run(run_id)
        failed = source_run.failed_items() if source_run else []
        if not failed:
            raise ValidationError(
                message="No failed items to retry",
                details={"run_id": run_id},
            )

        types = sorted({ct for ct, _ in failed})

        def body(run: _Run) -> None:
            items: list[ContentItem] = []
            gone: dict[str, list[str]] = {}
            for content_type, content_id in failed:
                try:
                    item = self.scanner.fetch_item(content_type, content_id)
                except ITEM_ERRORS as e:
                    self._record_error(run, e, content_type, content_id)
                    continue
                if item is None:
                    gone.setdefault(content_type, []).append(content_id)
                else:
                    items.append(item)

            run.state.total_items = len(items) + sum(len(ids) for ids in gone.values())
            for content_type, ids in gone.items():
                self._remove(run, content_type, ids)
            self._index(run, items, self.incremental_batch_size)

        logger.info("실패 항목 재시도", source_run=source_run.id, items=len(failed))
        return self._execute(SyncOperation.INCREMENTAL_UPDATE, types, trigger, body)

    def run_maintenance(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncState:
        """주기적 유지보수.

        보존 기간이 지난 비활성 엔트리를 삭제하고, 활성 청크 집합이 연속되지
        않은 콘텐츠를 복구하고, 오류 로그를 로테이션한 뒤 인덱스 상태
        스냅샷과 함께 보고서를 저장합니다.

        Raises:
            LockContentionError: 다른 작업이 실행 중.
        """
        report: dict[str, Any] = {}

        def body(run: _Run) -> None:
            cutoff = datetime.now(UTC) - self.inactive_retention
            run.state.current_operation = "purging inactive entries"
            report["purged_entries"] = self.vector_index.purge_inactive(cutoff)

            run.state.current_operation = "repairing fragmented content"
            fragmented = self.vector_index.find_fragmented_content()
            report["fragmented_items"] = len(fragmented)
            run.state.total_items = len(fragmented)
            self._repair(run, fragmented)

            report["rotated_errors"] = self.storage.rotate_error_log()

        state = self._execute(SyncOperation.MAINTENANCE, [], trigger, body)

        report.update(
            {
                "run_id": state.id,
                "status": state.status.value,
                "completed_at": state.completed_at.isoformat() if state.completed_at else None,
                "index": self.vector_index.get_stats(),
            }
        )
        if self.health_check is not None:
            report["health"] = self.health_check()
        self.storage.save_maintenance_report(report)
        logger.info("유지보수 완료", **{k: v for k, v in report.items() if k != "index"})
        return state

    def clear_knowledge_base(
        self,
        confirm: bool = False,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> SyncState:
        """모든 인덱스 엔트리와 체크포인트를 삭제합니다.

        Args:
            confirm: 반드시 True.

        Raises:
            ValidationError: ``confirm``이 주어지지 않음.
            LockContentionError: 다른 작업이 실행 중.
        """
        if not confirm:
            raise ValidationError(message="Clearing the knowledge base requires explicit confirmation")

        def body(run: _Run) -> None:
            logger.warning("지식 베이스 초기화 중")
            run.state.current_operation = "clearing index"
            run.state.items_removed = self.vector_index.clear()
            self.storage.reset()

        return self._execute(SyncOperation.CLEAR, [], trigger, body)

    # ==================== 상태 ====================

    def request_cancel(self) -> bool:
        """실행 중인 작업에 현재 배치 이후 중지를 요청합니다.

        Returns:
            실행 중인 작업이 없으면 False.
        """
        requested = self.state_store.request_cancel()
        logger.info("취소 요청됨", running=requested)
        return requested

    def is_processing(self) -> bool:
        return self.state_store.get_lock_info().is_held

    def get_status(self) -> dict[str, Any]:
        """현재 상태, 임대, 진행 추정, 인덱스 카운터."""
        return collect_status(self.state_store, self.storage, self.vector_index)

    def get_history(self, limit: int = 20) -> list[SyncState]:
        return self.storage.get_sync_history(limit)

    # ==================== 실행 생명주기 ====================

    def _execute(
        self,
        operation: SyncOperation,
        content_types: list[str],
        trigger: SyncTrigger,
        body: Callable[[_Run], None],
        force: bool = False,
    ) -> SyncState:
        state = SyncState(operation=operation, trigger=trigger, content_types=content_types)
        self.state_store.acquire_lock(state.id)

        run = _Run(state=state, deadline=time.monotonic() + self.job_timeout, force=force)
        log = logger.bind(run_id=state.id, operation=operation.value, trigger=trigger.value)

        try:
            state.start()
            self.state_store.save_state(state)
            self.scanner.refresh_source()
            log.info("동기화 시작", content_types=content_types)

            try:
                body(run)
            except _Cancelled:
                state.cancel()
                log.warning("동기화 취소됨", processed_items=state.processed_items)
            except KnowledgeBaseError as e:
                state.fail(e.message)
                log.error("동기화 실패", error_type=type(e).__name__, error=e.message)
            except Exception as e:
                state.fail(f"Unexpected error: {e}")
                log.exception("동기화 비정상 종료")
                self._finish(run)
                raise
            else:
                state.complete()
                log.info(
                    "동기화 완료",
                    total_items=state.total_items,
                    items_indexed=state.items_indexed,
                    items_removed=state.items_removed,
                    chunks_created=state.chunks_created,
                    embeddings_generated=state.embeddings_generated,
                    errors=len(state.errors),
                    duration_seconds=round(state.duration_seconds or 0.0, 2),
                )

            self._finish(run)
            return state
        finally:
            self.state_store.release_lock(state.id)

    def _finish(self, run: _Run) -> None:
        """최종 상태를 저장하고 이력에 보관합니다.

        임대를 잃은 실행은 이력에만 보관합니다. 현재 상태 행은 새 보유자의
        것입니다.
        """
        state = run.state
        state.updated_at = datetime.now(UTC)
        if not run.lease_lost:
            self.state_store.save_state(state)
        self.storage.add_sync_state(state)
        self.storage.append_errors(state.id, state.errors)

    def _checkpoint(self, run: _Run, force: bool = False) -> None:
        """배치 사이 확인: 취소, 타임아웃, 진행 상황 저장 주기."""
        if self.state_store.is_cancel_requested(run.state.id):
            raise _Cancelled()

        if time.monotonic() >= run.deadline:
            raise JobTimeoutError(
                message=f"Sync exceeded its {self.job_timeout:.0f}s time budget",
                details={"processed_items": run.state.processed_items},
            )

        due = (
            force
            or run.unsaved_items >= self.progress_interval
            or time.monotonic() - run.last_saved >= self.progress_interval_seconds
        )
        if not due:
            return

        if not self.state_store.refresh_lock(run.state.id):
            run.lease_lost = True
            raise LockContentionError(message="Sync lock lease was lost", holder=None)
        self.state_store.save_state(run.state)
        run.unsaved_items = 0
        run.last_saved = time.monotonic()

    # ==================== 단계 ====================

    def _scan(
        self,
        run: _Run,
        content_types: Iterable[str],
        since: Optional[datetime],
        skip_unchanged: bool = True,
    ) -> list[ScanResult]:
        scans = []
        for content_type in content_types:
            run.state.current_operation = f"scanning {content_type}"
            try:
                result = self.scanner.diff(content_type, since=since, skip_unchanged=skip_unchanged)
            except FatalProviderError:
                raise
            except KnowledgeBaseError as e:
                self._record_error(run, e, content_type, None)
                continue

            for error in result.invalid:
                self._record_error(run, error, content_type, error.details.get("content_id"))
            run.state.total_items += len(result.to_index) + len(result.to_remove)
            scans.append(result)
            self._checkpoint(run)
        return scans

    def _apply(self, run: _Run, scans: list[ScanResult], batch_size: int) -> None:
        for result in scans:
            if result.to_remove:
                self._remove(run, result.content_type, result.to_remove)
            if result.to_index:
                run.state.current_operation = f"indexing {result.content_type}"
                self._index(run, result.to_index, batch_size)
            self._checkpoint(run, force=True)

    def _index(self, run: _Run, items: Sequence[ContentItem], batch_size: int) -> IndexReport:
        def on_batch(batch_number: int, batch: Sequence[ContentItem], report: IndexReport) -> bool:
            state = run.state
            state.record_progress(len(batch))
            state.items_indexed += report.items_indexed
            state.chunks_created += report.chunks_created
            state.embeddings_generated += report.embeddings_generated
            state.chunks_reused += report.chunks_reused
            state.errors.extend(report.errors)
            run.unsaved_items += len(batch)

            if report.fully_failed:
                run.failed_batches += 1
                if run.failed_batches >= self.max_failed_batches:
                    raise FatalProviderError(
                        message=f"{run.failed_batches} consecutive batches failed completely",
                        details={"batch": batch_number, "last_error": report.errors[-1].message},
                    )
            else:
                run.failed_batches = 0

            self._checkpoint(run)
            return True

        return self.indexer.process(items, batch_size=batch_size, force=run.force, on_batch=on_batch)

    def _remove(self, run: _Run, content_type: str, content_ids: Sequence[str]) -> None:
        run.state.current_operation = f"removing {content_type}"
        report = self.indexer.remove(content_type, content_ids)
        run.state.items_removed += report.items_removed
        run.state.errors.extend(report.errors)
        run.state.record_progress(len(content_ids))
        run.unsaved_items += len(content_ids)
        logger.info("사라진 콘텐츠 제거", content_type=content_type, items=report.items_removed)
        self._checkpoint(run)

    def _repair(self, run: _Run, fragmented: Sequence[tuple[str, str]]) -> None:
        items = []
        for content_type, content_id in fragmented:
            self.vector_index.deactivate(content_type, content_id)
            try:
                item = self.scanner.fetch_item(content_type, content_id)
            except ITEM_ERRORS as e:
                self._record_error(run, e, content_type, content_id)
                continue
            if item is None:
                run.state.items_removed += 1
                run.state.record_progress(1)
            else:
                items.append(item)
        if items:
            self._index(run, items, self.incremental_batch_size)

    # ==================== 헬퍼 ====================

    def _record_error(
        self,
        run: _Run,
        error: KnowledgeBaseError,
        content_type: Optional[str],
        content_id: Optional[str],
    ) -> None:
        run.state.add_error(
            error_type=type(error).__name__,
            message=error.message,
            content_type=content_type,
            content_id=content_id,
            retryable=error.retryable,
        )

    def _resolve_since(self, content_type: str, since: Optional[datetime]) -> datetime:
        if since is not None:
            return since if since.tzinfo else since.replace(tzinfo=UTC)
        checkpoint = self.storage.get_checkpoint(content_type)
        if checkpoint is not None:
            return checkpoint - self.incremental_overlap
        return datetime.now(UTC) - self.incremental_default_window

    def _advance_checkpoints(self, state: SyncState) -> None:
        """실패가 없는 콘텐츠 타입의 체크포인트를 실행 시작 시각으로 옮깁니다.

        실패 항목이 있는 콘텐츠 타입은 기존 체크포인트를 유지하여 다음
        증분 실행에서 해당 항목을 다시 처리합니다.
        """
        failed_types = {e.content_type for e in state.errors}
        for content_type in state.content_types:
            if content_type in failed_types:
                logger.info("체크포인트 유지", content_type=content_type)
                continue
            self.storage.set_checkpoint(content_type, state.started_at)

    def _find_run(self, run_id: Optional[str]) -> Optional[SyncState]:
        for state in self.storage.get_sync_history():
            if run_id is not None and state.id == run_id:
                return state
            if run_id is None and state.failed_items():
                return state
        return None

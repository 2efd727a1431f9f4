"""APScheduler 기반 동기화 작업 스케줄러.

SyncOrchestrator 하나에 대해 세 가지 백그라운드 작업을 실행합니다:
    - full_sync: 전체 재구축 (기본 매주)
    - incremental_sync: 증분 업데이트 (매시간)
    - maintenance: 삭제, 복구, 로그 로테이션 (매일)

예약 실행은 결과를 기다리지 않습니다. 결과는 콜백이 아니라 저장된
SyncState와 실행 이력으로 보고되며, 락이 잡혀 있으면 로그만 남기고
건너뜁니다.
"""

from datetime import datetime
from typing import Any, Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..errors import KnowledgeBaseError, LockContentionError, ValidationError
from ..logging_config import Loggers
from ..models import SyncState, SyncTrigger
from ..services.orchestrator import SyncOrchestrator

logger = Loggers.scheduler()

FULL_SYNC_JOB = "full_sync"
INCREMENTAL_SYNC_JOB = "incremental_sync"
MAINTENANCE_JOB = "maintenance"


class SyncScheduler:
    """동기화 작업용 백그라운드 스케줄러.

    설정:
        - BackgroundScheduler: 시작해도 블로킹되지 않음
        - ThreadPoolExecutor로 작업 실행
        - coalesce: 놓친 실행은 하나로 합침
        - max_instances: 작업당 인스턴스 1개
        - misfire_grace_time: 1시간

    Attributes:
        orchestrator: 작업이 호출하는 오케스트레이터.
        full_sync_cron: 전체 재구축 스케줄.
        incremental_sync_cron: 증분 업데이트 스케줄.
        maintenance_cron: 유지보수 스케줄.
        timezone: cron 표현식의 타임존.
        max_workers: 실행기 스레드 수.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        full_sync_cron: str = "0 3 * * 0",
        incremental_sync_cron: str = "0 * * * *",
        maintenance_cron: str = "30 4 * * *",
        timezone: str = "UTC",
        max_workers: int = 2,
    ):
        self.orchestrator = orchestrator
        self.full_sync_cron = full_sync_cron
        self.incremental_sync_cron = incremental_sync_cron
        self.maintenance_cron = maintenance_cron
        self.timezone = timezone
        self.max_workers = max_workers
        self._scheduler: Optional[BackgroundScheduler] = None
        self._running = False

        self._jobs: dict[str, tuple[str, str, Callable[[], Any]]] = {
            FULL_SYNC_JOB: ("Full knowledge base sync", self.full_sync_cron, self._scheduled_full_sync),
            INCREMENTAL_SYNC_JOB: (
                "Incremental knowledge base sync",
                self.incremental_sync_cron,
                self._scheduled_incremental_sync,
            ),
            MAINTENANCE_JOB: ("Knowledge base maintenance", self.maintenance_cron, self._scheduled_maintenance),
        }

    @property
    def scheduler(self) -> BackgroundScheduler:
        """지연 생성되는 BackgroundScheduler."""
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(
                jobstores={
                    "default": MemoryJobStore(),
                },
                executors={
                    "default": ThreadPoolExecutor(self.max_workers),
                },
                job_defaults={
                    "coalesce": True,
                    "max_instances": 1,
                    "misfire_grace_time": 3600,
                },
                timezone=self.timezone,
            )
        return self._scheduler

    def start(self) -> None:
        """cron 작업을 등록하고 스케줄러를 시작합니다.

        Raises:
            ValueError: 잘못된 cron 표현식.
        """
        if self._running:
            logger.warning("스케줄러가 이미 실행 중입니다")
            return

        for job_id, (name, cron, func) in self._jobs.items():
            self.scheduler.add_job(
                func=func,
                trigger=CronTrigger.from_crontab(cron, timezone=self.timezone),
                id=job_id,
                name=name,
                replace_existing=True,
            )

        self.scheduler.start()
        self._running = True
        logger.info(
            "스케줄러 시작됨",
            full_sync=self.full_sync_cron,
            incremental_sync=self.incremental_sync_cron,
            maintenance=self.maintenance_cron,
            max_workers=self.max_workers,
        )

    def stop(self) -> None:
        """실행 중인 작업이 끝나길 기다린 뒤 스케줄러를 중지합니다."""
        if not self._running:
            return

        self.scheduler.shutdown(wait=True)
        self._running = False
        logger.info("스케줄러 중지됨")

    def is_running(self) -> bool:
        return self._running

    # ==================== 트리거 ====================

    def run_full_sync(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncState:
        """호출 스레드에서 지금 전체 재구축을 실행합니다.

        Raises:
            LockContentionError: 다른 작업이 락을 보유 중.
        """
        return self.orchestrator.full_rebuild(trigger=trigger)

    def run_incremental_sync(
        self,
        content_type: Optional[str] = None,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> SyncState:
        """콘텐츠 타입 하나 또는 전체에 대해 지금 증분 업데이트를 실행합니다.

        Raises:
            LockContentionError: 다른 작업이 락을 보유 중.
        """
        return self.orchestrator.incremental_update(content_type=content_type, trigger=trigger)

    def run_maintenance(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncState:
        """지금 유지보수를 실행합니다.

        Raises:
            LockContentionError: 다른 작업이 락을 보유 중.
        """
        return self.orchestrator.run_maintenance(trigger=trigger)

    def trigger_job(self, job_id: str) -> None:
        """등록된 작업을 가능한 빨리 실행하도록 예약합니다.

        Raises:
            ValidationError: 알 수 없는 작업 ID.
        """
        if job_id not in self._jobs:
            raise ValidationError(
                message=f"Unknown job: {job_id}",
                details={"jobs": list(self._jobs)},
            )

        if not self._running:
            logger.info("작업 즉시 실행", job_id=job_id)
            self._jobs[job_id][2]()
            return

        self.scheduler.modify_job(job_id, next_run_time=datetime.now(self.scheduler.timezone))
        logger.info("작업 트리거됨", job_id=job_id)

    def get_scheduled_jobs(self) -> list[dict[str, Any]]:
        """등록된 작업과 스케줄, 다음 실행 시각."""
        jobs = []
        for job_id, (name, cron, _) in self._jobs.items():
            jobs.append(
                {
                    "id": job_id,
                    "name": name,
                    "cron": cron,
                    "next_run": self.get_next_run(job_id),
                }
            )
        return jobs

    def get_next_run(self, job_id: str = INCREMENTAL_SYNC_JOB) -> Optional[datetime]:
        """``job_id``의 다음 실행 시각. 스케줄러가 중지 상태면 None."""
        if not self._running:
            return None

        job = self.scheduler.get_job(job_id)
        if job and job.next_run_time:
            return job.next_run_time
        return None

    # ==================== 예약 작업 ====================

    def _scheduled_full_sync(self) -> None:
        self._run_job(FULL_SYNC_JOB, lambda: self.run_full_sync(trigger=SyncTrigger.SCHEDULED))

    def _scheduled_incremental_sync(self) -> None:
        self._run_job(
            INCREMENTAL_SYNC_JOB,
            lambda: self.run_incremental_sync(trigger=SyncTrigger.SCHEDULED),
        )

    def _scheduled_maintenance(self) -> None:
        self._run_job(MAINTENANCE_JOB, lambda: self.run_maintenance(trigger=SyncTrigger.SCHEDULED))

    def _run_job(self, job_id: str, run: Callable[[], SyncState]) -> Optional[SyncState]:
        """예약 작업 하나를 실행합니다. 락 경합과 알려진 오류는 로그로 남깁니다."""
        try:
            state = run()
        except LockContentionError as e:
            logger.info(
                "락 보유 중이라 예약 작업 건너뜀",
                job_id=job_id,
                holder=e.holder,
                expires_at=e.expires_at.isoformat() if e.expires_at else None,
            )
            return None
        except KnowledgeBaseError as e:
            logger.error("예약 작업 실패", job_id=job_id, error_type=type(e).__name__, error=e.message)
            return None

        logger.info(
            "예약 작업 완료",
            job_id=job_id,
            run_id=state.id,
            status=state.status.value,
            errors=len(state.errors),
        )
        return state

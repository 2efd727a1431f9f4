"""동기화 스케줄러 모듈.

내보내는 항목:
    SyncScheduler: 전체 동기화, 증분 동기화, 유지보수 작업을 실행하는
        APScheduler 기반 스케줄러.
"""

from .sync_scheduler import FULL_SYNC_JOB, INCREMENTAL_SYNC_JOB, MAINTENANCE_JOB, SyncScheduler

__all__ = [
    "SyncScheduler",
    "FULL_SYNC_JOB",
    "INCREMENTAL_SYNC_JOB",
    "MAINTENANCE_JOB",
]

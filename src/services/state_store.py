"""동기화 락 임대와 현재 SyncState 저장.

락은 ``sync_lock`` 한 행에 저장된 임대입니다. 획득은 단일 조건부 UPDATE
(소유자와 만료 시각에 대한 compare-and-swap)이므로 락을 두고 경쟁하는 두
워커가 동시에 성공할 수 없습니다. ``lock_timeout``보다 오래된 임대는 방치된
것으로 보고 회수할 수 있습니다. 비정상 종료된 워커 이후에도 시스템은
계속 동작하지만, 느린 워커가 임대 기간을 넘기면 정합성은 보장되지 않습니다.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Optional

from ..database import Database
from ..errors import LockContentionError
from ..logging_config import Loggers
from ..models import SyncState

logger = Loggers.orchestrator()

DEFAULT_LOCK_NAME = "sync"


@dataclass(frozen=True)
class LockInfo:
    """락 임대 행의 스냅샷.

    Attributes:
        owner: 현재 보유자 토큰. 비어 있으면 None.
        acquired_at: 임대 획득 시각.
        expires_at: 갱신하지 않으면 임대가 만료되는 시각.
        version: CAS 버전. 획득할 때마다 증가.
        cancel_requested: 현재 보유자에 대한 취소 플래그.
    """

    owner: Optional[str]
    acquired_at: Optional[datetime]
    expires_at: Optional[datetime]
    version: int
    cancel_requested: bool

    @property
    def is_held(self) -> bool:
        """소유자가 만료되지 않은 임대를 보유 중이면 True."""
        return self.owner is not None and not self.is_expired

    @property
    def is_expired(self) -> bool:
        """소유자가 기록되어 있지만 임대가 만료되었으면 True."""
        return (
            self.owner is not None
            and self.expires_at is not None
            and self.expires_at <= datetime.now(UTC)
        )

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "held": self.is_held,
            "expired": self.is_expired,
            "acquired_at": self.acquired_at.isoformat() if self.acquired_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "version": self.version,
            "cancel_requested": self.cancel_requested,
        }


def _epoch(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=UTC) if value is not None else None


class SyncStateStore:
    """공유 데이터베이스 위의 임대 락과 SyncState 저장소.

    Attributes:
        database: 공유 SQLite 데이터베이스.
        lock_timeout: 임대 기간 (초).
        lock_name: 임대 행의 키.
    """

    def __init__(
        self,
        database: Database,
        lock_timeout: float = 1800.0,
        lock_name: str = DEFAULT_LOCK_NAME,
    ):
        self.database = database
        self.lock_timeout = lock_timeout
        self.lock_name = lock_name

    # ==================== 잠금 리스 ====================

    def acquire_lock(self, owner: str) -> LockInfo:
        """``owner``의 임대를 획득합니다.

        락이 비어 있거나 임대가 만료되었으면 성공합니다.

        Args:
            owner: 호출자의 고유 토큰 (실행 ID).

        Returns:
            새 임대.

        Raises:
            LockContentionError: 다른 소유자가 만료되지 않은 임대를 보유 중.
            StorageError: 데이터베이스에 쓸 수 없음.
        """
        now = datetime.now(UTC).timestamp()
        with self.database.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO sync_lock (name, version) VALUES (?, 0)",
                (self.lock_name,),
            )
            cursor = conn.execute(
                """
                UPDATE sync_lock
                SET owner = ?, acquired_at = ?, expires_at = ?,
                    version = version + 1, cancel_requested = 0
                WHERE name = ? AND (owner IS NULL OR expires_at <= ?)
                """,
                (owner, now, now + self.lock_timeout, self.lock_name, now),
            )
            acquired = cursor.rowcount == 1

        info = self.get_lock_info()
        if not acquired:
            logger.warning(
                "동기화 락 경합",
                holder=info.owner,
                expires_at=info.expires_at.isoformat() if info.expires_at else None,
            )
            raise LockContentionError(
                message="Another sync operation is already running",
                holder=info.owner,
                expires_at=info.expires_at,
            )

        logger.info("동기화 락 획득", owner=owner, version=info.version)
        return info

    def refresh_lock(self, owner: str) -> bool:
        """``owner``의 임대를 연장합니다.

        Returns:
            ``owner``가 더 이상 락을 보유하지 않으면 False.
        """
        now = datetime.now(UTC).timestamp()
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "UPDATE sync_lock SET expires_at = ? WHERE name = ? AND owner = ?",
                (now + self.lock_timeout, self.lock_name, owner),
            )
            refreshed = cursor.rowcount == 1
        if not refreshed:
            logger.warning("동기화 락 상실", owner=owner)
        return refreshed

    def release_lock(self, owner: str) -> bool:
        """``owner``가 아직 보유 중이면 임대를 해제합니다."""
        with self.database.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_lock
                SET owner = NULL, acquired_at = NULL, expires_at = NULL, cancel_requested = 0
                WHERE name = ? AND owner = ?
                """,
                (self.lock_name, owner),
            )
            released = cursor.rowcount == 1
        if released:
            logger.info("동기화 락 해제", owner=owner)
        return released

    def force_release_lock(self) -> Optional[str]:
        """소유자와 무관하게 임대를 비웁니다.

        Returns:
            이전 소유자 (있는 경우).
        """
        previous = self.get_lock_info().owner
        with self.database.transaction() as conn:
            conn.execute(
                """
                UPDATE sync_lock
                SET owner = NULL, acquired_at = NULL, expires_at = NULL, cancel_requested = 0
                WHERE name = ?
                """,
                (self.lock_name,),
            )
        if previous:
            logger.warning("동기화 락 강제 해제", previous_owner=previous)
        return previous

    def get_lock_info(self) -> LockInfo:
        row = self.database.fetch_one(
            "SELECT * FROM sync_lock WHERE name = ?",
            (self.lock_name,),
        )
        if row is None:
            return LockInfo(None, None, None, 0, False)
        return LockInfo(
            owner=row["owner"],
            acquired_at=_epoch(row["acquired_at"]),
            expires_at=_epoch(row["expires_at"]),
            version=row["version"],
            cancel_requested=bool(row["cancel_requested"]),
        )

    # ==================== 취소 ====================

    def request_cancel(self) -> bool:
        """현재 보유자에 취소 플래그를 설정합니다.

        Returns:
            락을 보유한 작업이 없으면 False.
        """
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "UPDATE sync_lock SET cancel_requested = 1 WHERE name = ? AND owner IS NOT NULL",
                (self.lock_name,),
            )
            return cursor.rowcount == 1

    def is_cancel_requested(self, owner: str) -> bool:
        row = self.database.fetch_one(
            "SELECT cancel_requested FROM sync_lock WHERE name = ? AND owner = ?",
            (self.lock_name, owner),
        )
        return bool(row and row["cancel_requested"])

    # ==================== 동기화 상태 ====================

    def save_state(self, state: SyncState) -> None:
        """``state``를 현재 동기화 상태로 저장합니다."""
        payload = state.model_dump_json()
        with self.database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (id, state, updated_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET state = excluded.state, updated_at = excluded.updated_at
                """,
                (payload, datetime.now(UTC).timestamp()),
            )

    def load_state(self) -> Optional[SyncState]:
        """현재(또는 마지막) 동기화 상태를 로드합니다. 저장된 것이 없으면 None."""
        row = self.database.fetch_one("SELECT state FROM sync_state WHERE id = 1")
        if row is None:
            return None
        return SyncState.model_validate_json(row["state"])

"""벡터 인덱스와 동기화 상태 저장소가 공유하는 SQLite 데이터베이스.

테이블:
    - index_entries: 청크 임베딩과 생명주기 플래그
    - sync_lock: 단일 인스턴스 임대 (락 이름당 한 행)
    - sync_state: 현재 SyncState JSON (단일 행)

모든 SQL은 파라미터 바인딩을 사용합니다. 쓰기는 ``transaction()``을 거치며,
즉시 쓰기 락을 잡고 성공 시 커밋, 오류 시 롤백합니다.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from .errors import StorageError
from .logging_config import Loggers

logger = Loggers.storage()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS index_entries (
    chunk_hash TEXT PRIMARY KEY,
    content_type TEXT NOT NULL,
    content_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    total_chunks INTEGER NOT NULL,
    text TEXT NOT NULL,
    embedding BLOB NOT NULL,
    embedding_dim INTEGER NOT NULL,
    embedding_model TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    updated_at REAL NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_entries_content
ON index_entries(content_type, content_id);

CREATE INDEX IF NOT EXISTS idx_entries_active
ON index_entries(is_active, content_type);

CREATE TABLE IF NOT EXISTS sync_lock (
    name TEXT PRIMARY KEY,
    owner TEXT,
    acquired_at REAL,
    expires_at REAL,
    version INTEGER NOT NULL DEFAULT 0,
    cancel_requested INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    state TEXT NOT NULL,
    updated_at REAL NOT NULL
);
"""


class Database:
    """SQLite 연결 하나를 감싸는 스레드 안전 래퍼.

    연결은 autocommit 모드로 동작하며, 명시적 트랜잭션은 ``BEGIN IMMEDIATE``로
    열어 동시 쓰기(스레드 또는 프로세스)가 SQLite 쓰기 락에서 직렬화됩니다.

    Attributes:
        path: 데이터베이스 파일 경로 또는 ":memory:".
        busy_timeout: 잠긴 데이터베이스 대기 시간 (초).
    """

    MEMORY = ":memory:"

    def __init__(self, path: Path | str, busy_timeout: float = 30.0):
        """데이터베이스를 (지연) 열고 초기화합니다.

        Args:
            path: 데이터베이스 파일 경로 또는 ":memory:".
            busy_timeout: 잠긴 데이터베이스 대기 시간 (초).
        """
        self.path = str(path)
        self.busy_timeout = busy_timeout
        if self.path != self.MEMORY:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._initialize_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        """SQLite 연결을 가져오거나 생성합니다."""
        if self._connection is None:
            try:
                self._connection = sqlite3.connect(
                    self.path,
                    timeout=self.busy_timeout,
                    check_same_thread=False,
                    isolation_level=None,
                )
                self._connection.row_factory = sqlite3.Row
                if self.path != self.MEMORY:
                    self._connection.execute("PRAGMA journal_mode=WAL")
                logger.debug("SQLite 연결 생성됨", path=self.path)
            except sqlite3.Error as e:
                raise StorageError(
                    message="Failed to open SQLite database",
                    details={"path": self.path, "error": str(e)},
                ) from e
        return self._connection

    def _initialize_schema(self) -> None:
        """테이블이 없으면 생성합니다."""
        with self._lock:
            try:
                self.connection.executescript(SCHEMA_SQL)
            except sqlite3.Error as e:
                raise StorageError(
                    message="Failed to initialize SQLite schema",
                    details={"path": self.path, "error": str(e)},
                ) from e

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """하나의 쓰기 트랜잭션에서 SQL을 실행합니다.

        Yields:
            ``BEGIN IMMEDIATE`` 안의 연결.

        Raises:
            StorageError: SQLite 오류 발생 시. 트랜잭션은 롤백됩니다.
        """
        with self._lock:
            conn = self.connection
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(
                    message="Failed to begin transaction",
                    details={"error": str(e)},
                ) from e
            try:
                yield conn
            except sqlite3.Error as e:
                self._rollback(conn)
                logger.error("트랜잭션 롤백됨", error=str(e))
                raise StorageError(
                    message=f"Database write failed: {e}",
                    details={"error": str(e)},
                ) from e
            except BaseException:
                self._rollback(conn)
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._rollback(conn)
                    raise StorageError(
                        message=f"Commit failed: {e}",
                        details={"error": str(e)},
                    ) from e

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """읽기 쿼리를 실행하고 모든 행을 반환합니다.

        Raises:
            StorageError: SQLite 오류 발생 시.
        """
        with self._lock:
            try:
                return self.connection.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                raise StorageError(
                    message=f"Database read failed: {e}",
                    details={"error": str(e)},
                ) from e

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        """읽기 쿼리를 실행하고 첫 행을 반환합니다. 없으면 None."""
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def close(self) -> None:
        """연결을 닫습니다."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

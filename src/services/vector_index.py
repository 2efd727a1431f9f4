"""SQLite 기반 벡터 인덱스.

청크마다 한 행 (``chunk_hash`` 키)을 float32 임베딩과 함께 저장하고,
활성 행에 대해 numpy로 계산한 정규화 코사인 유사도로 최근접 이웃 질의에
응답합니다.

유사도:
    cosine(q, v) = q·v / (|q| |v|). 벡터가 단위 길이라고 가정하지 않으며,
    노름이 0인 벡터는 0.0점입니다. 점수는 스케일 없이 보고되므로 임계값도
    코사인 단위입니다.
"""

import json
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any, Iterable, Optional, Sequence

import numpy as np

from ..database import Database
from ..logging_config import Loggers
from ..models import IndexEntry, RetrievalResult

logger = Loggers.storage()

_UPSERT_SQL = """
INSERT INTO index_entries (
    chunk_hash, content_type, content_id, chunk_index, total_chunks, text,
    embedding, embedding_dim, embedding_model, metadata, updated_at, is_active
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(chunk_hash) DO UPDATE SET
    content_type = excluded.content_type,
    content_id = excluded.content_id,
    chunk_index = excluded.chunk_index,
    total_chunks = excluded.total_chunks,
    text = excluded.text,
    embedding = excluded.embedding,
    embedding_dim = excluded.embedding_dim,
    embedding_model = excluded.embedding_model,
    metadata = excluded.metadata,
    updated_at = excluded.updated_at,
    is_active = excluded.is_active
WHERE index_entries.is_active != excluded.is_active
    OR index_entries.embedding != excluded.embedding
    OR index_entries.embedding_model != excluded.embedding_model
    OR index_entries.metadata != excluded.metadata
    OR index_entries.chunk_index != excluded.chunk_index
    OR index_entries.total_chunks != excluded.total_chunks
    OR index_entries.text != excluded.text
"""


def cosine_similarity(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """벡터 하나와 행렬 각 행 사이의 코사인 유사도.

    Args:
        query: (d,) 형태의 벡터.
        matrix: (n, d) 형태의 행렬.

    Returns:
        점수 n개의 배열. 노름이 0인 행이나 질의는 0.0점.
    """
    query_norm = float(np.linalg.norm(query))
    row_norms = np.linalg.norm(matrix, axis=1)
    if query_norm == 0.0:
        return np.zeros(matrix.shape[0], dtype=np.float64)
    dots = matrix @ query
    denom = row_norms * query_norm
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denom > 0
    scores[nonzero] = dots[nonzero] / denom[nonzero]
    return np.clip(scores, -1.0, 1.0)


def _to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


class VectorIndex:
    """해시 중복 제거를 지원하는 버전 관리 벡터 인덱스.

    질의 시점 읽기는 연결 보호 외에 락을 잡지 않으며, 마지막으로 커밋된
    동기화 쓰기 결과를 봅니다.

    Attributes:
        database: 공유 SQLite 데이터베이스.
    """

    def __init__(self, database: Database):
        """인덱스를 초기화합니다.

        Args:
            database: ``index_entries`` 테이블을 가진 데이터베이스.
        """
        self.database = database

    # ==================== 쓰기 ====================

    def upsert(self, entries: Sequence[IndexEntry]) -> int:
        """한 트랜잭션에서 새 행은 삽입하고 바뀐 행은 갱신합니다.

        저장된 값이 이미 같은 행은 건드리지 않으므로 같은 upsert를 반복해도
        변화가 없습니다.

        Args:
            entries: 저장할 엔트리.

        Returns:
            삽입되거나 변경된 행 수.

        Raises:
            StorageError: 쓰기 실패. 아무것도 커밋되지 않음.
        """
        if not entries:
            return 0
        with self.database.transaction() as conn:
            return self._upsert_rows(conn, entries)

    def replace_content(
        self,
        content_type: str,
        content_id: str,
        entries: Sequence[IndexEntry],
    ) -> dict[str, int]:
        """``entries``를 콘텐츠 항목 하나의 전체 청크 집합으로 만듭니다.

        단일 트랜잭션에서 ``entries``를 upsert하고, 더 이상 생성되지 않는
        해시를 가진 같은 항목의 행(대체된 청크)을 삭제합니다.

        Args:
            content_type: 소속 콘텐츠 타입.
            content_id: 소속 콘텐츠 ID.
            entries: 새 청크 집합 (비어 있을 수 있음).

        Returns:
            {"written": 삽입/변경된 행 수, "superseded": 삭제된 행 수}.

        Raises:
            StorageError: 쓰기 실패. 아무것도 커밋되지 않음.
        """
        keep = {entry.chunk_hash for entry in entries}
        with self.database.transaction() as conn:
            written = self._upsert_rows(conn, entries)
            rows = conn.execute(
                "SELECT chunk_hash FROM index_entries WHERE content_type = ? AND content_id = ?",
                (content_type, content_id),
            ).fetchall()
            stale = [row["chunk_hash"] for row in rows if row["chunk_hash"] not in keep]
            conn.executemany(
                "DELETE FROM index_entries WHERE chunk_hash = ?",
                [(chunk_hash,) for chunk_hash in stale],
            )
        return {"written": written, "superseded": len(stale)}

    def deactivate(self, content_type: str, content_id: str) -> int:
        """콘텐츠 항목 하나의 모든 엔트리를 소프트 삭제합니다.

        Args:
            content_type: 소속 콘텐츠 타입.
            content_id: 소속 콘텐츠 ID.

        Returns:
            비활성화된 엔트리 수.
        """
        with self.database.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE index_entries SET is_active = 0, updated_at = ?
                WHERE content_type = ? AND content_id = ? AND is_active = 1
                """,
                (datetime.now(UTC).timestamp(), content_type, content_id),
            )
            return cursor.rowcount

    def purge_inactive(self, older_than: datetime) -> int:
        """``older_than`` 이전에 마지막으로 기록된 비활성 엔트리를 삭제합니다."""
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM index_entries WHERE is_active = 0 AND updated_at < ?",
                (_to_epoch(older_than),),
            )
            return cursor.rowcount

    def clear(self) -> int:
        """모든 엔트리를 삭제합니다."""
        with self.database.transaction() as conn:
            cursor = conn.execute("DELETE FROM index_entries")
            return cursor.rowcount

    # ==================== 읽기 ====================

    def search(
        self,
        query_vector: Sequence[float],
        limit: int,
        min_similarity: float,
        content_types: Optional[Iterable[str]] = None,
    ) -> list[RetrievalResult]:
        """코사인 유사도 기준 최근접 활성 엔트리.

        Args:
            query_vector: 질의 임베딩.
            limit: 최대 결과 수.
            min_similarity: 이 점수 미만 결과는 제외.
            content_types: 이 콘텐츠 타입으로 제한.

        Returns:
            점수 내림차순 결과. 동점이면 ``updated_at``이 최신인 순.
            임계값을 넘는 결과가 없으면 빈 리스트.
        """
        if limit <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        sql = """
            SELECT chunk_hash, content_type, content_id, chunk_index, text,
                   embedding, metadata, updated_at
            FROM index_entries
            WHERE is_active = 1 AND embedding_dim = ?
        """
        params: list[Any] = [int(query.shape[0])]
        types = list(content_types or [])
        if types:
            sql += f" AND content_type IN ({', '.join('?' for _ in types)})"
            params.extend(types)

        rows = self.database.fetch_all(sql, params)
        if not rows:
            return []

        matrix = np.vstack([_from_blob(row["embedding"]) for row in rows])
        scores = cosine_similarity(query, matrix)

        candidates = [
            (float(score), row)
            for score, row in zip(scores, rows)
            if float(score) >= min_similarity
        ]
        candidates.sort(key=lambda item: (item[0], item[1]["updated_at"]), reverse=True)

        return [
            RetrievalResult(
                chunk_hash=row["chunk_hash"],
                text=row["text"],
                similarity_score=score,
                content_type=row["content_type"],
                content_id=row["content_id"],
                chunk_index=row["chunk_index"],
                metadata=json.loads(row["metadata"]),
            )
            for score, row in candidates[:limit]
        ]

    def list_active_content_ids(self, content_type: str) -> set[str]:
        """활성 엔트리가 하나 이상 있는 ``content_type`` 항목의 ID."""
        rows = self.database.fetch_all(
            "SELECT DISTINCT content_id FROM index_entries WHERE content_type = ? AND is_active = 1",
            (content_type,),
        )
        return {row["content_id"] for row in rows}

    def get_content_fingerprints(
        self,
        content_type: str,
        embedding_model: Optional[str] = None,
    ) -> dict[str, str]:
        """``content_type``의 활성 항목별 저장된 ``content_hash``.

        첫 청크의 메타데이터에서 읽습니다. ``embedding_model``이 주어지면
        다른 모델로 임베딩된 항목은 제외되어 변경된 것으로 보입니다.
        """
        sql = """
            SELECT content_id, json_extract(metadata, '$.content_hash') AS content_hash
            FROM index_entries
            WHERE content_type = ? AND is_active = 1 AND chunk_index = 0
        """
        params: list[Any] = [content_type]
        if embedding_model:
            sql += " AND embedding_model = ?"
            params.append(embedding_model)
        rows = self.database.fetch_all(sql, params)
        return {row["content_id"]: row["content_hash"] for row in rows if row["content_hash"]}

    def get_entries(self, chunk_hashes: Iterable[str]) -> dict[str, IndexEntry]:
        """해시로 엔트리(활성 여부 무관)를 로드합니다.

        Args:
            chunk_hashes: 조회할 해시.

        Returns:
            찾은 해시와 엔트리의 매핑.
        """
        hashes = list(dict.fromkeys(chunk_hashes))
        found: dict[str, IndexEntry] = {}
        # SQLite는 구문당 바인딩 파라미터 수를 제한함
        for start in range(0, len(hashes), 500):
            batch = hashes[start:start + 500]
            rows = self.database.fetch_all(
                f"SELECT * FROM index_entries WHERE chunk_hash IN ({', '.join('?' for _ in batch)})",
                batch,
            )
            for row in rows:
                found[row["chunk_hash"]] = self._row_to_entry(row)
        return found

    def get_content_entries(
        self,
        content_type: str,
        content_id: str,
        active_only: bool = True,
    ) -> list[IndexEntry]:
        """청크 인덱스 순으로 정렬된 콘텐츠 항목 하나의 엔트리."""
        sql = "SELECT * FROM index_entries WHERE content_type = ? AND content_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY chunk_index"
        rows = self.database.fetch_all(sql, (content_type, content_id))
        return [self._row_to_entry(row) for row in rows]

    def find_fragmented_content(self) -> list[tuple[str, str]]:
        """활성 청크 인덱스가 정확히 0..total_chunks-1이 아닌 항목."""
        rows = self.database.fetch_all(
            """
            SELECT content_type, content_id, chunk_index, total_chunks
            FROM index_entries WHERE is_active = 1
            ORDER BY content_type, content_id, chunk_index
            """
        )
        groups: dict[tuple[str, str], list[tuple[int, int]]] = defaultdict(list)
        for row in rows:
            groups[(row["content_type"], row["content_id"])].append(
                (row["chunk_index"], row["total_chunks"])
            )

        fragmented = []
        for key, chunks in groups.items():
            indices = [index for index, _ in chunks]
            totals = {total for _, total in chunks}
            if len(totals) != 1 or indices != list(range(totals.pop())):
                fragmented.append(key)
        return fragmented

    def get_stats(self) -> dict[str, Any]:
        """인덱스 상태 카운터.

        Returns:
            전체 및 활성/비활성 수, 콘텐츠 타입별 활성 청크/항목 수,
            사용 중인 임베딩 모델, 마지막 쓰기 시각.
        """
        totals = self.database.fetch_one(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(is_active), 0) AS active,
                   MAX(updated_at) AS last_updated
            FROM index_entries
            """
        )
        by_type = self.database.fetch_all(
            """
            SELECT content_type, COUNT(*) AS chunks, COUNT(DISTINCT content_id) AS items
            FROM index_entries WHERE is_active = 1
            GROUP BY content_type ORDER BY content_type
            """
        )
        models = self.database.fetch_all(
            "SELECT embedding_model, COUNT(*) AS chunks FROM index_entries GROUP BY embedding_model"
        )

        total = totals["total"] if totals else 0
        active = totals["active"] if totals else 0
        last_updated = totals["last_updated"] if totals else None
        return {
            "total_chunks": total,
            "active_chunks": active,
            "inactive_chunks": total - active,
            "by_content_type": {
                row["content_type"]: {"chunks": row["chunks"], "items": row["items"]}
                for row in by_type
            },
            "embedding_models": {row["embedding_model"]: row["chunks"] for row in models},
            "last_updated": _from_epoch(last_updated).isoformat() if last_updated else None,
        }

    # ==================== 내부 ====================

    def _upsert_rows(self, conn, entries: Sequence[IndexEntry]) -> int:
        before = conn.total_changes
        conn.executemany(
            _UPSERT_SQL,
            [
                (
                    entry.chunk_hash,
                    entry.content_type,
                    entry.content_id,
                    entry.chunk_index,
                    entry.total_chunks,
                    entry.text,
                    _to_blob(entry.embedding_vector),
                    len(entry.embedding_vector),
                    entry.embedding_model,
                    json.dumps(entry.metadata, sort_keys=True, default=str),
                    _to_epoch(entry.updated_at),
                    1 if entry.is_active else 0,
                )
                for entry in entries
            ],
        )
        return conn.total_changes - before

    def _row_to_entry(self, row) -> IndexEntry:
        return IndexEntry(
            chunk_hash=row["chunk_hash"],
            content_type=row["content_type"],
            content_id=row["content_id"],
            chunk_index=row["chunk_index"],
            total_chunks=row["total_chunks"],
            text=row["text"],
            embedding_vector=_from_blob(row["embedding"]).tolist(),
            embedding_model=row["embedding_model"],
            metadata=json.loads(row["metadata"]),
            updated_at=_from_epoch(row["updated_at"]),
            is_active=bool(row["is_active"]),
        )

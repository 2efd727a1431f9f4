"""인덱싱 서비스.

콘텐츠 항목 배치의 파이프라인을 실행합니다: 청킹 → 임베딩 →
벡터 인덱스 저장.

주요 기능:
    - 해시 중복 제거: 현재 모델로 이미 저장된 청크는 다시 임베딩하지 않음
      (비활성 청크는 재활성화)
    - 항목별 청크 집합의 원자적 교체
    - 배치별 제한된 워커 풀
    - 항목 단위 실패 허용 및 항목별 오류 기록
"""

import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Iterable, Optional, Sequence

from ..errors import (
    EmbeddingError,
    FatalProviderError,
    KnowledgeBaseError,
    StorageError,
    TransientProviderError,
    ValidationError,
)
from ..logging_config import Loggers
from ..models import ContentItem, IndexEntry, SyncError
from .chunker import Chunker
from .embedder import EmbeddingProvider
from .vector_index import VectorIndex

logger = Loggers.indexer()

# 항목에 기록하고 배치는 계속 진행
ITEM_ERRORS: tuple[type[KnowledgeBaseError], ...] = (
    EmbeddingError,
    StorageError,
    ValidationError,
    TransientProviderError,
)


@dataclass
class ItemOutcome:
    """콘텐츠 항목 하나의 인덱싱 결과."""

    content_type: str
    content_id: str
    chunks_total: int = 0
    chunks_written: int = 0
    embeddings_generated: int = 0
    chunks_reused: int = 0
    chunks_superseded: int = 0


@dataclass
class IndexReport:
    """``process`` 또는 ``remove`` 호출 한 번의 집계 카운터.

    Attributes:
        items_processed: 시도한 항목 수.
        items_indexed: 청크 집합이 저장된 항목 수.
        items_failed: 항목 수준 오류가 발생한 항목 수.
        items_removed: 비활성화된 항목 수.
        chunks_created: 삽입되거나 변경된 인덱스 행 수.
        embeddings_generated: 임베딩 프로바이더로 보낸 텍스트 수.
        chunks_reused: 다시 임베딩하지 않고 인덱스에서 가져온 청크 수.
        chunks_superseded: 콘텐츠 변경 후 삭제된 오래된 청크 수.
        batches: 처리한 배치 수.
        stopped: 배치 콜백이 조기 중지를 요청하면 True.
        errors: 항목별 실패.
    """

    items_processed: int = 0
    items_indexed: int = 0
    items_failed: int = 0
    items_removed: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    chunks_reused: int = 0
    chunks_superseded: int = 0
    batches: int = 0
    stopped: bool = False
    errors: list[SyncError] = field(default_factory=list)

    def add_outcome(self, outcome: ItemOutcome) -> None:
        self.items_processed += 1
        self.items_indexed += 1
        self.chunks_created += outcome.chunks_written
        self.embeddings_generated += outcome.embeddings_generated
        self.chunks_reused += outcome.chunks_reused
        self.chunks_superseded += outcome.chunks_superseded

    def add_error(self, content_type: str, content_id: str, error: KnowledgeBaseError) -> None:
        self.items_processed += 1
        self.items_failed += 1
        self.errors.append(
            SyncError(
                content_type=content_type,
                content_id=content_id,
                error_type=type(error).__name__,
                message=error.message,
                retryable=error.retryable,
            )
        )

    def merge(self, other: "IndexReport") -> None:
        self.items_processed += other.items_processed
        self.items_indexed += other.items_indexed
        self.items_failed += other.items_failed
        self.items_removed += other.items_removed
        self.chunks_created += other.chunks_created
        self.embeddings_generated += other.embeddings_generated
        self.chunks_reused += other.chunks_reused
        self.chunks_superseded += other.chunks_superseded
        self.batches += other.batches
        self.stopped = self.stopped or other.stopped
        self.errors.extend(other.errors)

    @property
    def fully_failed(self) -> bool:
        """시도한 모든 항목이 실패했으면 True."""
        return self.items_processed > 0 and self.items_failed == self.items_processed

    def to_dict(self) -> dict[str, Any]:
        return {
            "items_processed": self.items_processed,
            "items_indexed": self.items_indexed,
            "items_failed": self.items_failed,
            "items_removed": self.items_removed,
            "chunks_created": self.chunks_created,
            "embeddings_generated": self.embeddings_generated,
            "chunks_reused": self.chunks_reused,
            "chunks_superseded": self.chunks_superseded,
            "batches": self.batches,
            "stopped": self.stopped,
            "errors": [error.model_dump(mode="json") for error in self.errors],
        }


BatchCallback = Callable[[int, Sequence[ContentItem], IndexReport], Optional[bool]]


class Indexer:
    """인덱싱 서비스.

    인덱스 쓰기는 항목당 하나의 트랜잭션이므로 실패한 항목이 반쯤 쓰인
    청크 집합을 남기지 않고 다른 항목에도 영향을 주지 않습니다.

    Attributes:
        chunker: 청커.
        embedder: 임베딩 프로바이더.
        vector_index: 대상 인덱스.
        max_workers: 배치 내 동시 처리 항목 수.
        batch_size: 기본 배치당 항목 수.
    """

    def __init__(
        self,
        chunker: Chunker,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        max_workers: int = 4,
        batch_size: int = 50,
    ):
        self.chunker = chunker
        self.embedder = embedder
        self.vector_index = vector_index
        self.max_workers = max(1, max_workers)
        self.batch_size = max(1, batch_size)

    def index_item(self, item: ContentItem, force: bool = False) -> ItemOutcome:
        """항목 하나를 청킹, 임베딩, 저장합니다.

        Args:
            item: 인덱싱할 항목.
            force: 이미 저장된 청크도 모두 다시 임베딩.

        Returns:
            청크 카운터가 담긴 ItemOutcome.

        Raises:
            EmbeddingError, StorageError, ValidationError: 항목 수준 실패.
            FatalProviderError: 임베딩 프로바이더가 요청을 거부함.
        """
        outcome = ItemOutcome(content_type=item.content_type, content_id=item.id)
        chunks = self.chunker.split(item)
        outcome.chunks_total = len(chunks)

        if not chunks:
            self.vector_index.deactivate(item.content_type, item.id)
            logger.debug(
                "텍스트 없는 항목 비활성화됨",
                content_type=item.content_type,
                content_id=item.id,
            )
            return outcome

        existing = {} if force else self.vector_index.get_entries(c.chunk_hash for c in chunks)
        reusable = {
            chunk_hash: entry
            for chunk_hash, entry in existing.items()
            if entry.embedding_model == self.embedder.model_name
        }

        to_embed = [chunk for chunk in chunks if chunk.chunk_hash not in reusable]
        vectors: dict[str, list[float]] = {}
        if to_embed:
            embedded = self.embedder.embed([chunk.text for chunk in to_embed])
            vectors = {chunk.chunk_hash: vector for chunk, vector in zip(to_embed, embedded)}

        metadata = self._item_metadata(item)
        now = datetime.now(UTC)
        entries: list[IndexEntry] = []
        for chunk in chunks:
            reused = reusable.get(chunk.chunk_hash)
            if reused is not None:
                entries.append(
                    chunk.to_index_entry(
                        embedding=reused.embedding_vector,
                        embedding_model=reused.embedding_model,
                        metadata=metadata,
                        updated_at=now,
                    )
                )
            else:
                entries.append(
                    chunk.to_index_entry(
                        embedding=vectors[chunk.chunk_hash],
                        embedding_model=self.embedder.model_name,
                        metadata=metadata,
                        updated_at=now,
                    )
                )

        written = self.vector_index.replace_content(item.content_type, item.id, entries)

        outcome.embeddings_generated = len(to_embed)
        outcome.chunks_reused = len(chunks) - len(to_embed)
        outcome.chunks_written = written["written"]
        outcome.chunks_superseded = written["superseded"]
        return outcome

    def process(
        self,
        items: Iterable[ContentItem],
        batch_size: Optional[int] = None,
        force: bool = False,
        on_batch: Optional[BatchCallback] = None,
    ) -> IndexReport:
        """항목을 배치로 인덱싱합니다.

        Args:
            items: 인덱싱할 항목. 중복 (같은 타입과 ID)은 마지막 것을 사용.
            batch_size: 배치당 항목 수. 기본값은 ``self.batch_size``.
            force: 해시 중복 제거 무시.
            on_batch: 배치마다 배치 번호, 배치, 배치 보고서로 호출됨.
                False를 반환하면 처리를 중지.

        Returns:
            집계된 IndexReport.

        Raises:
            FatalProviderError: 프로바이더가 발생시킴. 처리가 중지됨.
        """
        unique: dict[tuple[str, str], ContentItem] = {}
        for item in items:
            unique.pop(item.key, None)
            unique[item.key] = item
        queue = list(unique.values())

        size = max(1, batch_size or self.batch_size)
        report = IndexReport()

        for batch_number, start in enumerate(range(0, len(queue), size)):
            batch = queue[start:start + size]
            started = time.monotonic()
            batch_report = self._process_batch(batch, force)
            batch_report.batches = 1
            report.merge(batch_report)

            logger.info(
                "배치 처리 완료",
                batch=batch_number,
                items=len(batch),
                indexed=batch_report.items_indexed,
                failed=batch_report.items_failed,
                embeddings=batch_report.embeddings_generated,
                reused=batch_report.chunks_reused,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
            )

            if on_batch is not None and on_batch(batch_number, batch, batch_report) is False:
                report.stopped = True
                break

        return report

    def remove(self, content_type: str, content_ids: Iterable[str]) -> IndexReport:
        """주어진 항목의 모든 엔트리를 비활성화합니다."""
        report = IndexReport()
        for content_id in content_ids:
            try:
                self.vector_index.deactivate(content_type, content_id)
            except StorageError as e:
                report.add_error(content_type, content_id, e)
                logger.error(
                    "콘텐츠 비활성화 실패",
                    content_type=content_type,
                    content_id=content_id,
                    error=e.message,
                )
                continue
            report.items_removed += 1
        return report

    def _process_batch(self, batch: Sequence[ContentItem], force: bool) -> IndexReport:
        report = IndexReport()

        if self.max_workers == 1 or len(batch) == 1:
            for item in batch:
                self._collect(report, item, lambda item=item: self.index_item(item, force))
            return report

        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(batch)),
            thread_name_prefix="indexer",
        ) as executor:
            futures: list[tuple[ContentItem, Future]] = [
                (item, executor.submit(self.index_item, item, force)) for item in batch
            ]
            try:
                for item, future in futures:
                    self._collect(report, item, future.result)
            except FatalProviderError:
                for _, future in futures:
                    future.cancel()
                raise

        return report

    def _collect(self, report: IndexReport, item: ContentItem, run: Callable[[], ItemOutcome]) -> None:
        try:
            outcome = run()
        except ITEM_ERRORS as e:
            report.add_error(item.content_type, item.id, e)
            logger.warning(
                "항목 처리 실패",
                content_type=item.content_type,
                content_id=item.id,
                error_type=type(e).__name__,
                error=e.message,
            )
            return
        report.add_outcome(outcome)

    @staticmethod
    def _item_metadata(item: ContentItem) -> dict[str, Any]:
        return {
            **item.source_metadata,
            "title": item.title,
            "url": item.url,
            "content_hash": item.content_hash,
            "modified_at": item.modified_at.isoformat(),
        }

"""프로세스 내 콘텐츠 소스."""

import threading
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any, Optional

from .base import RawRecord, filter_modified_since, record_id


class InMemoryContentSource:
    """메모리에 보관되는 변경 가능한 콘텐츠 소스.

    다른 프로세스에 파이프라인을 내장하거나 테스트할 때 사용합니다.
    """

    def __init__(self, records: Optional[dict[str, list[RawRecord]]] = None):
        self._records: dict[str, dict[str, RawRecord]] = defaultdict(dict)
        self._lock = threading.Lock()
        for content_type, items in (records or {}).items():
            for record in items:
                self.put(content_type, record)

    def put(self, content_type: str, record: RawRecord) -> None:
        """레코드를 추가하거나 교체합니다.

        ``modified_at`` 기본값은 현재 시각입니다. ID가 없는 레코드도
        Scanner에 전달되도록 위치 기반 키로 저장합니다.
        """
        stored = dict(record)
        stored.setdefault("modified_at", datetime.now(UTC).isoformat())
        with self._lock:
            key = record_id(stored) or f"__missing_id_{len(self._records[content_type])}"
            self._records[content_type][key] = stored

    def update(self, content_type: str, content_id: str, **fields: Any) -> RawRecord:
        """레코드 필드를 변경하고 ``modified_at``을 갱신합니다.

        Raises:
            KeyError: 레코드가 존재하지 않음.
        """
        with self._lock:
            record = self._records[content_type][str(content_id)]
            record.update(fields)
            if "modified_at" not in fields:
                record["modified_at"] = datetime.now(UTC).isoformat()
            return dict(record)

    def remove(self, content_type: str, content_id: str) -> bool:
        with self._lock:
            return self._records[content_type].pop(str(content_id), None) is not None

    def list_modified_since(self, content_type: str, since) -> list[RawRecord]:
        with self._lock:
            records = [dict(record) for record in self._records[content_type].values()]
        return filter_modified_since(records, since)

    def list_all_ids(self, content_type: str) -> list[str]:
        with self._lock:
            ids = (record_id(record) for record in self._records[content_type].values())
            return [content_id for content_id in ids if content_id]

    def fetch(self, content_type: str, content_id: str) -> Optional[RawRecord]:
        with self._lock:
            record = self._records[content_type].get(str(content_id))
            return dict(record) if record is not None else None

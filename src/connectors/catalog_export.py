"""카탈로그 익스포트 커넥터.

``{content_type: [record, ...]}`` 형태의 스토어 콘텐츠 JSON/YAML 익스포트를
로컬 파일 또는 http(s) URL에서 읽어옵니다.
"""

import json
import threading
from pathlib import Path
from typing import Any, Optional

import httpx
import yaml

from ..errors import TransientProviderError, ValidationError
from ..logging_config import Loggers
from ..utils.retry import http_retry
from .base import RawRecord, filter_modified_since, record_id

logger = Loggers.scanner()


class CatalogExportSource:
    """카탈로그 익스포트 기반 콘텐츠 소스.

    익스포트는 처음 사용할 때 로드되어 캐시됩니다. ``reload()``는 캐시를
    비워 다음 호출 시 익스포트를 다시 읽게 합니다. 값이 리스트가 아닌
    최상위 키 (``generated_at``, ``store``...)는 무시합니다.

    Attributes:
        location: 익스포트 파일 경로 또는 URL.
        timeout: HTTP 타임아웃 (초).

    Example:
        >>> source = CatalogExportSource("./exports/catalog.yaml")
        >>> source.list_all_ids("product")
        ['101', '102']
    """

    def __init__(
        self,
        location: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.location = location
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.Client] = None
        self._records: Optional[dict[str, list[RawRecord]]] = None
        self._lock = threading.Lock()

    @property
    def http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=self.timeout, transport=self._transport)
        return self._http_client

    # ==================== ContentSource ====================

    def list_modified_since(self, content_type: str, since) -> list[RawRecord]:
        return filter_modified_since(self._records_for(content_type), since)

    def list_all_ids(self, content_type: str) -> list[str]:
        ids = (record_id(record) for record in self._records_for(content_type))
        return [content_id for content_id in ids if content_id]

    def fetch(self, content_type: str, content_id: str) -> Optional[RawRecord]:
        for record in self._records_for(content_type):
            if record_id(record) == str(content_id):
                return record
        return None

    # ==================== 로딩 ====================

    def content_types(self) -> list[str]:
        """익스포트에 포함된 콘텐츠 타입 목록."""
        return sorted(self._load())

    def reload(self) -> None:
        """캐시된 익스포트를 비웁니다."""
        with self._lock:
            self._records = None

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def _records_for(self, content_type: str) -> list[RawRecord]:
        return self._load().get(content_type, [])

    def _load(self) -> dict[str, list[RawRecord]]:
        with self._lock:
            if self._records is None:
                raw = self.load_export(self.location)
                self._records = self._index_export(raw)
                logger.info(
                    "카탈로그 익스포트 로드됨",
                    location=self.location,
                    content_types={k: len(v) for k, v in self._records.items()},
                )
            return self._records

    def load_export(self, url_or_path: str) -> Any:
        """URL 또는 파일에서 익스포트를 로드합니다.

        Raises:
            ValidationError: 위치가 설정되지 않았거나 파일이 없거나
                파싱할 수 없음.
            TransientProviderError: URL을 가져올 수 없음.
        """
        if not url_or_path:
            raise ValidationError(message="No catalog export location configured")
        if url_or_path.startswith(("http://", "https://")):
            try:
                return self._load_from_url(url_or_path)
            except httpx.HTTPError as e:
                raise TransientProviderError(
                    message=f"Failed to fetch catalog export: {e}",
                    details={"url": url_or_path},
                ) from e
        return self._load_from_file(url_or_path)

    @http_retry
    def _load_from_url(self, url: str) -> Any:
        response = self.http_client.get(url)
        response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        if "yaml" in content_type or url.endswith((".yaml", ".yml")):
            return yaml.safe_load(response.text)
        return response.json()

    def _load_from_file(self, path: str) -> Any:
        file_path = Path(path)
        try:
            content = file_path.read_text(encoding="utf-8")
            if path.endswith((".yaml", ".yml")):
                return yaml.safe_load(content)
            return json.loads(content)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error("카탈로그 익스포트 로드 실패", path=path, error=str(e))
            raise ValidationError(
                message=f"Cannot read catalog export: {e}",
                details={"path": path},
            ) from e

    @staticmethod
    def _index_export(raw: Any) -> dict[str, list[RawRecord]]:
        if not isinstance(raw, dict):
            raise ValidationError(
                message="Catalog export must be a mapping of content type to records",
                details={"type": type(raw).__name__},
            )
        return {
            str(content_type): [record for record in records if isinstance(record, dict)]
            for content_type, records in raw.items()
            if isinstance(records, list)
        }

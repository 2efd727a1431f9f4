"""콘텐츠 소스 커넥터.

커넥터 구성:
    - ContentSource: Scanner가 사용하는 프로토콜
    - ReloadableSource: 실행마다 캐시를 비우는 소스
    - CatalogExportSource: JSON/YAML 카탈로그 익스포트 (파일 또는 URL)
    - InMemoryContentSource: 변경 가능한 프로세스 내 소스
"""

from .base import (
    ContentSource,
    RawRecord,
    ReloadableSource,
    filter_modified_since,
    parse_timestamp,
    record_id,
)
from .catalog_export import CatalogExportSource
from .memory import InMemoryContentSource

__all__ = [
    "ContentSource",
    "RawRecord",
    "ReloadableSource",
    "CatalogExportSource",
    "InMemoryContentSource",
    "parse_timestamp",
    "record_id",
    "filter_modified_since",
]

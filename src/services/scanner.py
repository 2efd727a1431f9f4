"""콘텐츠 스캐너.

ContentSource에서 원시 레코드를 가져와 ContentItem으로 정규화하고
벡터 인덱스와 비교합니다.

차이 계산 규칙:
    - ``since``가 None (전체 스캔): 존재하는 모든 레코드가 후보.
    - ``since``가 설정됨 (증분): ``since`` 이후 수정된 레코드만 후보.
    - 저장된 지문이 현재 텍스트와 같은 후보는 ``skip_unchanged``가
      False가 아니면 건너뜀.
    - ``to_remove``는 항상 존재하는 전체 ID 집합과 인덱스의 활성 ID를
      비교함. 삭제에는 필터링할 타임스탬프가 없음.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

from bs4 import BeautifulSoup, Comment
from pydantic import ValidationError as ModelValidationError

from ..connectors.base import (
    ContentSource,
    RawRecord,
    ReloadableSource,
    parse_timestamp,
    record_id,
)
from ..errors import ValidationError
from ..logging_config import Loggers
from ..models import ContentItem
from .vector_index import VectorIndex

logger = Loggers.scanner()

_BLOCK_TAGS = ["p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "tr", "blockquote", "section", "article"]
_HSPACE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def strip_html(text: str) -> str:
    """태그, 주석, 스크립트를 제거하고 블록 경계는 줄바꿈으로 유지합니다."""
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return text
    soup = BeautifulSoup(text, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")
    return soup.get_text()


def sanitize(text: Any) -> str:
    """한 줄 평문: 태그 제거, 공백 압축."""
    if text is None:
        return ""
    return " ".join(strip_html(str(text)).split())


def sanitize_block(text: Any) -> str:
    """여러 문단 평문: 연속 공백과 빈 줄 압축."""
    if text is None:
        return ""
    lines = (_HSPACE.sub(" ", line).strip() for line in strip_html(str(text)).split("\n"))
    joined = "\n".join(lines)
    return _BLANK_LINES.sub("\n\n", joined).strip()


def truncate(text: str, max_length: int) -> str:
    """단어 경계에서 텍스트를 ``max_length``자로 자릅니다."""
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    last_space = cut.rfind(" ")
    if last_space > 0:
        cut = cut[:last_space]
    return cut.rstrip() + "..."


def _names(values: Any) -> list[str]:
    """문자열 리스트 또는 ``{"name": ...}`` 매핑 리스트에서 이름 추출."""
    if not values:
        return []
    if isinstance(values, (str, dict)):
        values = [values]
    names = []
    for value in values:
        name = value.get("name") if isinstance(value, dict) else value
        name = sanitize(name)
        if name:
            names.append(name)
    return names


@dataclass
class ScanResult:
    """차이 계산 한 번의 결과.

    Attributes:
        content_type: 스캔한 콘텐츠 타입.
        since: 후보 선정에 쓴 하한. 전체 스캔이면 None.
        to_index: 청킹, 임베딩, 저장할 항목.
        to_remove: 원본에 더 이상 없는 인덱싱된 항목 ID.
        invalid: 정규화 중 거부된 레코드.
        unchanged: 텍스트가 이미 인덱싱되어 건너뛴 후보.
        live_count: 소스가 보고한 존재하는 ID 수.
    """

    content_type: str
    since: Optional[datetime] = None
    to_index: list[ContentItem] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)
    invalid: list[ValidationError] = field(default_factory=list)
    unchanged: int = 0
    live_count: int = 0
    scanned_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def has_changes(self) -> bool:
        return bool(self.to_index or self.to_remove)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_type": self.content_type,
            "since": self.since.isoformat() if self.since else None,
            "to_index": len(self.to_index),
            "to_remove": len(self.to_remove),
            "invalid": len(self.invalid),
            "unchanged": self.unchanged,
            "live_count": self.live_count,
            "scanned_at": self.scanned_at.isoformat(),
        }


class Scanner:
    """소스 레코드를 정규화하고 인덱스와의 차이를 계산합니다.

    Attributes:
        source: 콘텐츠 소스.
        vector_index: 차이 계산에 쓰는 인덱스.
        embedding_model: 현재 임베딩 프로바이더의 모델. 다른 모델로
            인덱싱된 항목은 변경된 것으로 취급.
        max_content_length: 정규화된 텍스트 길이 상한.
    """

    MAX_CONTENT_LENGTH = 10000

    def __init__(
        self,
        source: ContentSource,
        vector_index: VectorIndex,
        embedding_model: Optional[str] = None,
        max_content_length: int = MAX_CONTENT_LENGTH,
    ):
        self.source = source
        self.vector_index = vector_index
        self.embedding_model = embedding_model
        self.max_content_length = max_content_length
        self._last_scan_stats: dict[str, dict[str, Any]] = {}

    # ==================== 차이 계산 ====================

    def refresh_source(self) -> None:
        """캐시된 소스 레코드를 버려 다음 차이 계산이 현재 콘텐츠를 보게 합니다."""
        if isinstance(self.source, ReloadableSource):
            self.source.reload()
            logger.debug("콘텐츠 소스 다시 로드됨", source=type(self.source).__name__)

    def diff(
        self,
        content_type: str,
        since: Optional[datetime] = None,
        skip_unchanged: bool = True,
    ) -> ScanResult:
        """콘텐츠 타입 하나에 대해 인덱싱할 것과 제거할 것을 계산합니다.

        Args:
            content_type: 스캔할 콘텐츠 타입.
            since: 이후 수정된 레코드만 후보. None이면 전체 스캔.
            skip_unchanged: 현재 임베딩 모델로 이미 인덱싱된 텍스트의
                후보를 제외할지 여부.

        Returns:
            ScanResult. 잘못된 레코드는 ``invalid``에 기록되며 스캔을
            중단시키지 않음.
        """
        result = ScanResult(content_type=content_type, since=since)

        for record in self.source.list_modified_since(content_type, since):
            try:
                item = self.normalize(content_type, record)
            except ValidationError as e:
                logger.warning(
                    "잘못된 콘텐츠 레코드 건너뜀",
                    content_type=content_type,
                    content_id=e.details.get("content_id"),
                    error=e.message,
                )
                result.invalid.append(e)
                continue
            if since is not None and item.modified_at <= self._aware(since):
                continue
            result.to_index.append(item)

        if skip_unchanged and result.to_index:
            fingerprints = self.vector_index.get_content_fingerprints(
                content_type, self.embedding_model
            )
            changed = [
                item for item in result.to_index
                if fingerprints.get(item.id) != item.content_hash
            ]
            result.unchanged = len(result.to_index) - len(changed)
            result.to_index = changed

        live_ids = set(self.source.list_all_ids(content_type))
        active_ids = self.vector_index.list_active_content_ids(content_type)
        result.live_count = len(live_ids)
        result.to_remove = sorted(active_ids - live_ids)

        self._last_scan_stats[content_type] = result.to_dict()
        logger.info("스캔 완료", **result.to_dict())
        return result

    def fetch_item(self, content_type: str, content_id: str) -> Optional[ContentItem]:
        """항목 하나를 가져와 정규화합니다. 원본에서 사라졌으면 None."""
        record = self.source.fetch(content_type, content_id)
        if record is None:
            return None
        return self.normalize(content_type, record)

    def get_last_scan_stats(self, content_type: Optional[str] = None) -> dict[str, Any]:
        if content_type:
            return self._last_scan_stats.get(content_type, {})
        return dict(self._last_scan_stats)

    # ==================== 정규화 ====================

    def normalize(self, content_type: str, record: RawRecord) -> ContentItem:
        """원시 레코드를 ContentItem으로 변환합니다.

        Raises:
            ValidationError: ID가 없거나, ``modified_at``을 파싱할 수 없거나,
                필드 타입이 잘못된 레코드.
        """
        if not isinstance(record, dict):
            raise ValidationError(
                message="Content record is not a mapping",
                details={"content_type": content_type},
            )

        content_id = record_id(record)
        if content_id is None:
            raise ValidationError(
                message="Content record has no id",
                details={"content_type": content_type},
            )

        try:
            modified_at = parse_timestamp(record.get("modified_at"))
        except ValueError as e:
            raise ValidationError(
                message=f"Invalid modified_at for {content_type}/{content_id}",
                details={"content_type": content_type, "content_id": content_id},
            ) from e

        builder = {
            "product": self._build_product,
            "page": self._build_post,
            "post": self._build_post,
            "woocommerce_settings": self._build_settings,
            "category": self._build_term,
            "product_cat": self._build_term,
            "product_tag": self._build_term,
        }.get(content_type, self._build_generic)

        url = record.get("url") or record.get("permalink")
        try:
            text, metadata = builder(record)
            return ContentItem(
                id=content_id,
                content_type=content_type,
                modified_at=modified_at,
                raw_text=truncate(text, self.max_content_length),
                title=sanitize(record.get("title") or record.get("name")),
                url=str(url) if url else None,
                source_metadata=metadata,
            )
        except (ModelValidationError, TypeError, ValueError) as e:
            raise ValidationError(
                message=f"Malformed {content_type}/{content_id}: {e}",
                details={"content_type": content_type, "content_id": content_id},
            ) from e

    def _build_product(self, record: RawRecord) -> tuple[str, dict[str, Any]]:
        lines = [f"Product: {sanitize(record.get('name') or record.get('title'))}"]

        if record.get("short_description"):
            lines.append(f"Summary: {sanitize(record['short_description'])}")
        if record.get("description"):
            lines.append(f"Description: {sanitize(record['description'])}")
        if record.get("sku"):
            lines.append(f"SKU: {sanitize(record['sku'])}")

        if record.get("price") not in (None, ""):
            lines.append(f"Price: {record['price']}")
            if record.get("on_sale"):
                if record.get("regular_price") not in (None, ""):
                    lines.append(f"Regular Price: {record['regular_price']}")
                if record.get("sale_price") not in (None, ""):
                    lines.append(f"Sale Price: {record['sale_price']}")

        if record.get("manage_stock") and record.get("stock_quantity") is not None:
            lines.append(f"Stock: {record['stock_quantity']} available")
        elif record.get("stock_status"):
            lines.append(f"Stock Status: {str(record['stock_status']).replace('_', ' ').capitalize()}")

        categories = _names(record.get("categories"))
        if categories:
            lines.append(f"Categories: {', '.join(categories)}")
        tags = _names(record.get("tags"))
        if tags:
            lines.append(f"Tags: {', '.join(tags)}")

        attributes = record.get("attributes") or {}
        if isinstance(attributes, dict):
            attributes = [{"name": k, "options": v} for k, v in attributes.items()]
        for attribute in attributes:
            if not isinstance(attribute, dict) or not attribute.get("name"):
                continue
            options = attribute.get("options", attribute.get("value", ""))
            if isinstance(options, (list, tuple)):
                options = ", ".join(sanitize(option) for option in options)
            lines.append(f"{sanitize(attribute['name'])}: {sanitize(options)}")

        metadata = {
            "sku": record.get("sku"),
            "price": record.get("price"),
            "stock_status": record.get("stock_status"),
            "categories": categories,
        }
        return "\n".join(lines), {k: v for k, v in metadata.items() if v not in (None, "", [])}

    def _build_post(self, record: RawRecord) -> tuple[str, dict[str, Any]]:
        title = sanitize(record.get("title"))
        parts = [title] if title else []
        if record.get("excerpt"):
            parts.append(sanitize(record["excerpt"]))
        body = sanitize_block(record.get("content"))
        if body:
            parts.append(body)

        metadata = {
            "categories": _names(record.get("categories")),
            "tags": _names(record.get("tags")),
            "author": record.get("author"),
        }
        return "\n\n".join(parts), {k: v for k, v in metadata.items() if v not in (None, "", [])}

    def _build_settings(self, record: RawRecord) -> tuple[str, dict[str, Any]]:
        title = sanitize(record.get("title") or record.get("section"))
        lines = [title] if title else []
        settings = record.get("settings") or {}
        if isinstance(settings, dict):
            for key, value in settings.items():
                if isinstance(value, (list, tuple)):
                    value = ", ".join(sanitize(v) for v in value)
                value = sanitize(value)
                if value:
                    label = str(key).replace("_", " ").strip().capitalize()
                    lines.append(f"{label}: {value}")
        if record.get("content"):
            lines.append(sanitize_block(record["content"]))
        return "\n".join(lines), {"section": record.get("section") or record.get("id")}

    def _build_term(self, record: RawRecord) -> tuple[str, dict[str, Any]]:
        name = sanitize(record.get("name") or record.get("title"))
        description = sanitize(record.get("description")) or name
        lines = [f"Category: {name}"] if name else []
        if record.get("parent_name"):
            lines.append(f"Parent: {sanitize(record['parent_name'])}")
        if description and description != name:
            lines.append(description)

        metadata = {
            "slug": record.get("slug"),
            "count": record.get("count"),
            "parent_name": record.get("parent_name"),
        }
        return "\n".join(lines), {k: v for k, v in metadata.items() if v not in (None, "")}

    def _build_generic(self, record: RawRecord) -> tuple[str, dict[str, Any]]:
        title = sanitize(record.get("title") or record.get("name"))
        body = sanitize_block(
            record.get("content") or record.get("description") or record.get("text")
        )
        return "\n\n".join(part for part in (title, body) if part), {}

    @staticmethod
    def _aware(value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=UTC)

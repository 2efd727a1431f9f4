"""콘텐츠 소스 인터페이스.

콘텐츠 소스는 콘텐츠 타입별 원시 레코드를 제공합니다. 레코드는 최소한
``id``와 ``modified_at``을 가진 매핑이며, 나머지 필드는 콘텐츠 타입에 따라
다르고 Scanner가 정규화합니다.
"""

from datetime import UTC, datetime
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

RawRecord = dict[str, Any]


@runtime_checkable
class ContentSource(Protocol):
    """동기화 파이프라인이 바라보는 호스트 콘텐츠 저장소."""

    def list_modified_since(
        self,
        content_type: str,
        since: Optional[datetime],
    ) -> list[RawRecord]:
        """``since`` 이후 수정된 ``content_type`` 레코드 (None이면 전체)."""
        ...

    def list_all_ids(self, content_type: str) -> list[str]:
        """``content_type``의 현재 존재하는 모든 레코드 ID."""
        ...

    def fetch(self, content_type: str, content_id: str) -> Optional[RawRecord]:
        """레코드 하나. 더 이상 존재하지 않으면 None."""
        ...


@runtime_checkable
class ReloadableSource(Protocol):
    """레코드를 캐시하며 새 실행 전에 캐시를 비울 수 있는 소스."""

    def reload(self) -> None:
        ...


def parse_timestamp(value: Any) -> datetime:
    """레코드 타임스탬프를 UTC aware datetime으로 파싱합니다.

    datetime, epoch 초, ISO 8601 문자열 (끝의 ``Z`` 포함)을 허용합니다.
    타임존이 없는 값은 UTC로 간주합니다.

    Raises:
        ValueError: 타임스탬프로 해석할 수 없거나 플랫폼 범위를 벗어난 값.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(float(value), tz=UTC)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Timestamp out of range: {value!r}") from e
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    try:
        return parsed.astimezone(UTC)
    except OverflowError as e:
        raise ValueError(f"Timestamp out of range: {value!r}") from e


def record_id(record: RawRecord) -> Optional[str]:
    """문자열 레코드 ID. 없거나 비어 있으면 None."""
    value = record.get("id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def filter_modified_since(
    records: Iterable[RawRecord],
    since: Optional[datetime],
) -> list[RawRecord]:
    """``since`` 이후(초과)에 수정된 레코드만 남깁니다.

    타임스탬프를 파싱할 수 없는 레코드는 유지하여 Scanner가
    조용히 건너뛰지 않고 잘못된 레코드로 보고하게 합니다.
    """
    if since is None:
        return list(records)
    if since.tzinfo is None:
        since = since.replace(tzinfo=UTC)

    selected = []
    for record in records:
        try:
            modified = parse_timestamp(record.get("modified_at"))
        except ValueError:
            selected.append(record)
            continue
        if modified > since:
            selected.append(record)
    return selected

"""JSON 파일 기반 상태 저장소.

SQLite 인덱스 옆에 보관되는 영구 기록:
    - sync_history.json: 완료된 동기화 실행 (최근 100개)
    - checkpoints.json: 콘텐츠 타입별 증분 동기화 체크포인트
    - error_log.json: 실행 전반의 항목별 실패 (로테이션)
    - maintenance.json: 마지막 유지보수 보고서와 인덱스 상태 스냅샷

실행 중인 SyncState와 락 임대는 여기 저장하지 않습니다. 락 획득의
원자성을 위해 데이터베이스에 있습니다.
"""

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from .logging_config import Loggers
from .models import SyncError, SyncOperation, SyncState

logger = Loggers.storage()


class Storage:
    """동기화 기록용 JSON 파일 저장소.

    Attributes:
        MAX_SYNC_HISTORY: 보관할 최대 실행 수 (100).
        MAX_ERROR_ENTRIES: 로테이션이 시작되는 오류 로그 크기 (1000).
        SYNC_HISTORY_FILE: 동기화 이력 파일 이름.
        CHECKPOINTS_FILE: 체크포인트 파일 이름.
        ERROR_LOG_FILE: 오류 로그 파일 이름.
        MAINTENANCE_FILE: 유지보수 보고서 파일 이름.
    """

    MAX_SYNC_HISTORY = 100
    MAX_ERROR_ENTRIES = 1000
    SYNC_HISTORY_FILE = "sync_history.json"
    CHECKPOINTS_FILE = "checkpoints.json"
    ERROR_LOG_FILE = "error_log.json"
    MAINTENANCE_FILE = "maintenance.json"

    def __init__(self, data_dir: Path | str, max_error_entries: int = MAX_ERROR_ENTRIES):
        """저장소를 초기화합니다.

        Args:
            data_dir: JSON 상태 파일 디렉토리.
            max_error_entries: 로테이션 전 오류 로그 상한.
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.max_error_entries = max_error_entries

        self._sync_history_path = self.data_dir / self.SYNC_HISTORY_FILE
        self._checkpoints_path = self.data_dir / self.CHECKPOINTS_FILE
        self._error_log_path = self.data_dir / self.ERROR_LOG_FILE
        self._maintenance_path = self.data_dir / self.MAINTENANCE_FILE
        self._lock = threading.RLock()

    # ==================== 동기화 이력 ====================

    def get_sync_history(
        self,
        limit: int = MAX_SYNC_HISTORY,
        operation: Optional[SyncOperation] = None,
    ) -> list[SyncState]:
        """최근 동기화 실행을 최신순으로 반환합니다.

        Args:
            limit: 최대 실행 수.
            operation: 이 작업의 실행만 반환.
        """
        data = self._load_json(self._sync_history_path, {"runs": []})
        runs = [SyncState.from_json_safe(r) for r in data.get("runs", [])]

        if operation is not None:
            runs = [r for r in runs if r.operation == operation]

        runs.sort(
            key=lambda r: r.started_at or datetime.min.replace(tzinfo=UTC),
            reverse=True,
        )
        return runs[:limit]

    def add_sync_state(self, state: SyncState) -> SyncState:
        """이력에 실행을 추가하고 상한을 넘는 오래된 항목은 버립니다."""
        with self._lock:
            runs = [r for r in self.get_sync_history(self.MAX_SYNC_HISTORY) if r.id != state.id]
            runs.insert(0, state)
            self._save_sync_history(runs[: self.MAX_SYNC_HISTORY])
        return state

    def update_sync_state(self, state: SyncState) -> SyncState:
        """이력의 실행을 교체합니다. 없으면 추가합니다."""
        with self._lock:
            runs = self.get_sync_history(self.MAX_SYNC_HISTORY)
            for i, run in enumerate(runs):
                if run.id == state.id:
                    runs[i] = state
                    self._save_sync_history(runs)
                    return state
            return self.add_sync_state(state)

    def get_last_sync_state(self, operation: Optional[SyncOperation] = None) -> Optional[SyncState]:
        runs = self.get_sync_history(1, operation=operation)
        return runs[0] if runs else None

    def _save_sync_history(self, runs: list[SyncState]) -> None:
        data = {"runs": [r.model_dump_json_safe() for r in runs]}
        self._save_json(self._sync_history_path, data)

    # ==================== 체크포인트 ====================

    def get_checkpoint(self, content_type: str) -> Optional[datetime]:
        """``content_type``의 마지막 완료된 증분 동기화 시작 시각."""
        data = self._load_json(self._checkpoints_path, {"checkpoints": {}})
        value = data.get("checkpoints", {}).get(content_type)
        if not value:
            return None
        try:
            checkpoint = datetime.fromisoformat(value)
        except ValueError:
            logger.warning("읽을 수 없는 체크포인트 무시", content_type=content_type, value=value)
            return None
        return checkpoint if checkpoint.tzinfo else checkpoint.replace(tzinfo=UTC)

    def get_checkpoints(self) -> dict[str, str]:
        data = self._load_json(self._checkpoints_path, {"checkpoints": {}})
        return dict(data.get("checkpoints", {}))

    def set_checkpoint(self, content_type: str, value: datetime) -> None:
        with self._lock:
            data = self._load_json(self._checkpoints_path, {"checkpoints": {}})
            data.setdefault("checkpoints", {})[content_type] = value.isoformat()
            self._save_json(self._checkpoints_path, data)

    def clear_checkpoints(self) -> None:
        with self._lock:
            self._save_json(self._checkpoints_path, {"checkpoints": {}})

    # ==================== 오류 로그 ====================

    def get_errors(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """기록된 항목 오류 (최신이 마지막)."""
        data = self._load_json(self._error_log_path, {"errors": []})
        errors = data.get("errors", [])
        return errors[-limit:] if limit else errors

    def append_errors(self, run_id: str, errors: Iterable[SyncError]) -> int:
        """실행의 항목 오류를 오류 로그에 추가합니다.

        Returns:
            추가된 엔트리 수.
        """
        entries = [{"run_id": run_id, **e.model_dump(mode="json")} for e in errors]
        if not entries:
            return 0
        with self._lock:
            data = self._load_json(self._error_log_path, {"errors": []})
            data.setdefault("errors", []).extend(entries)
            self._save_json(self._error_log_path, data)
        return len(entries)

    def rotate_error_log(self) -> int:
        """오류 로그가 상한을 넘으면 최신 절반만 남깁니다.

        Returns:
            삭제된 엔트리 수.
        """
        with self._lock:
            errors = self.get_errors()
            if len(errors) <= self.max_error_entries:
                return 0
            kept = errors[-(self.max_error_entries // 2):]
            self._save_json(self._error_log_path, {"errors": kept})

        dropped = len(errors) - len(kept)
        logger.info("오류 로그 로테이션됨", dropped=dropped, kept=len(kept))
        return dropped

    # ==================== 유지보수 ====================

    def save_maintenance_report(self, report: dict[str, Any]) -> None:
        self._save_json(self._maintenance_path, report)

    def get_maintenance_report(self) -> Optional[dict[str, Any]]:
        data = self._load_json(self._maintenance_path, {})
        return data or None

    def reset(self) -> None:
        """체크포인트와 유지보수 보고서를 삭제합니다. 이력은 유지됩니다."""
        with self._lock:
            self.clear_checkpoints()
            if self._maintenance_path.exists():
                self._maintenance_path.unlink()

    # ==================== 유틸리티 ====================

    def _load_json(self, path: Path, default: dict) -> dict:
        """JSON 파일을 로드합니다. 없거나 읽을 수 없으면 ``default``를 반환합니다.

        Args:
            path: 파일 경로.
            default: 파일을 읽을 수 없을 때 반환할 값.
        """
        if not path.exists():
            return default

        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("상태 파일을 읽을 수 없음", path=str(path), error=str(e))
            return default

    def _save_json(self, path: Path, data: dict) -> None:
        """``data``를 임시 파일에 쓴 뒤 ``path``로 교체합니다."""
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp_path.replace(path)

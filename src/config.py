"""지식 베이스 동기화 설정.

환경 변수에서 설정을 로드하며, 없으면 기본값을 사용합니다.

설정 그룹:
    DatabaseSettings: SQLite 인덱스/상태 데이터베이스
    ContentSourceSettings: 카탈로그 익스포트 위치
    EmbeddingSettings: 임베딩 프로바이더 및 배치
    GenerationSettings: 생성 프로바이더 (Anthropic)
    ChunkingSettings: 기본 청크 크기 및 오버랩
    RetrievalSettings: 검색 상한, 임계값, 프롬프트 예산
    SyncSettings: 배치 크기, 락 임대, 진행 저장 주기, 타임아웃
    SchedulerSettings: 백그라운드 작업의 cron 표현식
    Settings: 모든 그룹을 담는 최상위 설정

환경 변수:
    INDEX_DB_PATH, DB_BUSY_TIMEOUT
    CONTENT_SOURCE_PATH, CONTENT_SOURCE_TIMEOUT
    EMBEDDING_PROVIDER, EMBEDDING_API_URL, EMBEDDING_API_KEY, EMBEDDING_MODEL,
    EMBEDDING_DIMENSION, EMBEDDING_BATCH_SIZE, EMBEDDING_TIMEOUT,
    EMBEDDING_MAX_RETRIES, EMBEDDING_REQUESTS_PER_SECOND
    ANTHROPIC_API_KEY, GENERATION_MODEL, GENERATION_MAX_TOKENS,
    GENERATION_TEMPERATURE, GENERATION_TIMEOUT, GENERATION_MAX_RETRIES
    CHUNK_SIZE, CHUNK_OVERLAP, CHUNK_MIN_SIZE
    RETRIEVAL_MAX_CHUNKS, RETRIEVAL_MIN_SIMILARITY, PROMPT_MAX_TOKENS,
    PROMPT_CHARS_PER_TOKEN
    SYNC_* (SyncSettings 참고)
    SCHEDULER_ENABLED, SCHEDULER_TIMEZONE, SCHEDULER_MAX_WORKERS,
    FULL_SYNC_CRON, INCREMENTAL_SYNC_CRON, MAINTENANCE_CRON
    DEBUG, LOG_LEVEL, LOG_JSON, LOG_FILE, DATA_DIR
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_CONTENT_TYPES = [
    "product",
    "page",
    "post",
    "woocommerce_settings",
    "category",
]


class DatabaseSettings(BaseSettings):
    """SQLite 데이터베이스 설정.

    Attributes:
        path: 데이터베이스 파일. None이면 ``<DATA_DIR>/knowledge_base.db``.
        busy_timeout: 잠긴 데이터베이스에서 실패 전까지 대기할 시간 (초).
    """

    path: Optional[Path] = Field(default=None, alias="INDEX_DB_PATH")
    busy_timeout: float = Field(default=30.0, alias="DB_BUSY_TIMEOUT")

    model_config = {"env_prefix": "", "extra": "ignore"}


class ContentSourceSettings(BaseSettings):
    """카탈로그 익스포트 설정.

    Attributes:
        path: JSON/YAML 카탈로그 익스포트의 파일 경로 또는 http(s) URL.
        timeout: 익스포트가 URL일 때의 HTTP 타임아웃 (초).
    """

    path: str = Field(default="", alias="CONTENT_SOURCE_PATH")
    timeout: float = Field(default=30.0, alias="CONTENT_SOURCE_TIMEOUT")

    model_config = {"env_prefix": "", "extra": "ignore"}


class EmbeddingSettings(BaseSettings):
    """임베딩 프로바이더 설정.

    Attributes:
        provider: OpenAI 호환 엔드포인트는 "http", 결정적 오프라인
            프로바이더는 "hash".
        api_url: 임베딩 엔드포인트.
        api_key: 엔드포인트용 Bearer 토큰.
        model_name: 프로바이더에 요청할 모델.
        dimension: 예상 벡터 길이.
        batch_size: 요청당 최대 텍스트 수.
        timeout: 요청별 타임아웃 (초).
        max_retries: 일시적 실패 시 시도 횟수.
        requests_per_second: 클라이언트 측 속도 제한.
    """

    provider: str = Field(default="http", alias="EMBEDDING_PROVIDER")
    api_url: str = Field(
        default="https://api.openai.com/v1/embeddings",
        alias="EMBEDDING_API_URL",
    )
    api_key: str = Field(default="", alias="EMBEDDING_API_KEY")
    model_name: str = Field(default="text-embedding-3-small", alias="EMBEDDING_MODEL")
    dimension: int = Field(default=1536, alias="EMBEDDING_DIMENSION")
    batch_size: int = Field(default=100, alias="EMBEDDING_BATCH_SIZE")
    timeout: float = Field(default=30.0, alias="EMBEDDING_TIMEOUT")
    max_retries: int = Field(default=3, alias="EMBEDDING_MAX_RETRIES")
    requests_per_second: float = Field(default=50.0, alias="EMBEDDING_REQUESTS_PER_SECOND")

    model_config = {"env_prefix": "", "extra": "ignore"}


class GenerationSettings(BaseSettings):
    """생성 프로바이더 설정.

    Attributes:
        api_key: Anthropic API 키.
        model: 답변에 사용할 모델.
        max_tokens: 답변 최대 토큰 수.
        temperature: 샘플링 온도.
        timeout: 요청별 타임아웃 (초).
        max_retries: 일시적 실패 시 SDK 수준 재시도 횟수.
    """

    api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")
    model: str = Field(default="claude-3-5-haiku-latest", alias="GENERATION_MODEL")
    max_tokens: int = Field(default=1024, alias="GENERATION_MAX_TOKENS")
    temperature: float = Field(default=0.3, alias="GENERATION_TEMPERATURE")
    timeout: float = Field(default=60.0, alias="GENERATION_TIMEOUT")
    max_retries: int = Field(default=2, alias="GENERATION_MAX_RETRIES")

    model_config = {"env_prefix": "", "extra": "ignore"}


class ChunkingSettings(BaseSettings):
    """기본 청킹 파라미터.

    내장 프로파일이 있는 콘텐츠 타입 (Chunker.CONTENT_TYPE_PROFILES 참고)은
    이 기본값을 무시합니다.

    Attributes:
        chunk_size: 청크당 최대 문자 수.
        chunk_overlap: 이전 청크에서 이어받는 문자 수.
        min_chunk_size: 설정 가능한 청크 크기의 하한.
    """

    chunk_size: int = Field(default=1000, alias="CHUNK_SIZE")
    chunk_overlap: int = Field(default=100, alias="CHUNK_OVERLAP")
    min_chunk_size: int = Field(default=50, alias="CHUNK_MIN_SIZE")

    model_config = {"env_prefix": "", "extra": "ignore"}


class RetrievalSettings(BaseSettings):
    """검색 및 프롬프트 설정.

    Attributes:
        max_chunks: 질의당 결과 상한.
        min_similarity: 코사인 유사도 하한.
        prompt_max_tokens: 조립된 프롬프트의 토큰 예산.
        chars_per_token: 토큰당 문자 수 추정치.
    """

    max_chunks: int = Field(default=5, alias="RETRIEVAL_MAX_CHUNKS")
    min_similarity: float = Field(default=0.7, alias="RETRIEVAL_MIN_SIMILARITY")
    prompt_max_tokens: int = Field(default=6000, alias="PROMPT_MAX_TOKENS")
    chars_per_token: float = Field(default=4.0, alias="PROMPT_CHARS_PER_TOKEN")

    model_config = {"env_prefix": "", "extra": "ignore"}


class SyncSettings(BaseSettings):
    """동기화 오케스트레이션 설정.

    Attributes:
        content_types: 전체 재구축 대상 콘텐츠 타입.
        batch_size: 전체 재구축의 배치당 항목 수.
        incremental_batch_size: 증분 업데이트의 배치당 항목 수.
        lock_timeout: 락이 방치된 것으로 간주되기까지의 임대 기간 (초).
        job_timeout: 작업 하나의 전체 제한 시간 (초).
        progress_interval: 이 항목 수마다 진행 상황 저장.
        progress_interval_seconds: 최소 이 주기(초)마다 진행 상황 저장.
        max_workers: 배치 내 동시 처리 항목 수.
        incremental_overlap_hours: 체크포인트에서 빼는 오버랩 시간.
        incremental_default_hours: 체크포인트가 없을 때 조회 기간.
        max_failed_batches: 중단 전 허용되는 연속 전체 실패 배치 수.
        inactive_retention_days: 비활성 엔트리를 삭제하기까지의 기간 (일).
    """

    content_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CONTENT_TYPES),
        alias="SYNC_CONTENT_TYPES",
    )
    batch_size: int = Field(default=50, alias="SYNC_BATCH_SIZE")
    incremental_batch_size: int = Field(default=25, alias="SYNC_INCREMENTAL_BATCH_SIZE")
    lock_timeout: float = Field(default=1800.0, alias="SYNC_LOCK_TIMEOUT")
    job_timeout: float = Field(default=7200.0, alias="SYNC_JOB_TIMEOUT")
    progress_interval: int = Field(default=10, alias="SYNC_PROGRESS_INTERVAL")
    progress_interval_seconds: float = Field(default=15.0, alias="SYNC_PROGRESS_INTERVAL_SECONDS")
    max_workers: int = Field(default=4, alias="SYNC_MAX_WORKERS")
    incremental_overlap_hours: float = Field(default=2.0, alias="SYNC_INCREMENTAL_OVERLAP_HOURS")
    incremental_default_hours: float = Field(default=24.0, alias="SYNC_INCREMENTAL_DEFAULT_HOURS")
    max_failed_batches: int = Field(default=3, alias="SYNC_MAX_FAILED_BATCHES")
    inactive_retention_days: int = Field(default=30, alias="SYNC_INACTIVE_RETENTION_DAYS")

    model_config = {"env_prefix": "", "extra": "ignore"}


class SchedulerSettings(BaseSettings):
    """백그라운드 스케줄러 설정.

    Attributes:
        enabled: CLI와 함께 스케줄러 시작 여부.
        timezone: cron 표현식의 타임존.
        max_workers: 스케줄러 스레드 풀 크기.
        full_sync_cron: 전체 재구축 스케줄 (기본 매주).
        incremental_sync_cron: 증분 동기화 스케줄 (매시간).
        maintenance_cron: 유지보수 스케줄 (매일).
    """

    enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    timezone: str = Field(default="UTC", alias="SCHEDULER_TIMEZONE")
    max_workers: int = Field(default=2, alias="SCHEDULER_MAX_WORKERS")
    full_sync_cron: str = Field(default="0 3 * * 0", alias="FULL_SYNC_CRON")
    incremental_sync_cron: str = Field(default="0 * * * *", alias="INCREMENTAL_SYNC_CRON")
    maintenance_cron: str = Field(default="30 4 * * *", alias="MAINTENANCE_CRON")

    model_config = {"env_prefix": "", "extra": "ignore"}


class Settings(BaseSettings):
    """최상위 애플리케이션 설정.

    Attributes:
        app_name: 애플리케이션 이름.
        debug: 디버그 모드.
        log_level: 로그 레벨 이름.
        log_json: JSON 로그 출력 여부.
        log_file: 선택적 로그 파일.
        data_dir: 데이터베이스 및 JSON 상태 파일 디렉토리.
    """

    app_name: str = Field(default="kb-sync")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE")

    data_dir: Path = Field(default=Path("data"), alias="DATA_DIR")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    content_source: ContentSourceSettings = Field(default_factory=ContentSourceSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    model_config = {"env_prefix": "", "extra": "ignore"}

    def ensure_data_dir(self) -> Path:
        """필요하면 데이터 디렉토리를 생성하고 반환합니다."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self.data_dir

    @property
    def index_db_path(self) -> Path:
        """결정된 SQLite 데이터베이스 경로."""
        return self.database.path or self.data_dir / "knowledge_base.db"


def get_settings() -> Settings:
    """현재 환경에서 설정을 생성합니다.

    호출마다 새 인스턴스를 만듭니다.

    Returns:
        Settings 인스턴스.
    """
    return Settings()

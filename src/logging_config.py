"""structlog 로깅 설정.

운영 환경에서는 구조화된 JSON 로그, 개발 환경에서는 읽기 쉬운 콘솔 로그를
출력합니다.

주요 기능:
    - JSON (운영) 또는 컬러 콘솔 (개발) 출력
    - 모든 이벤트에 ISO 타임스탬프, 로그 레벨, 로거 이름 포함
    - 스택 및 예외 렌더링
    - 선택적 파일 핸들러

사용법:
    >>> from .logging_config import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("배치 인덱싱 완료", items=25, duration=1.5)
"""

import logging
import sys
from typing import Optional

import structlog


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """애플리케이션의 structlog를 설정합니다.

    Args:
        level: 로그 레벨 이름 (DEBUG, INFO, WARNING, ERROR).
        json_format: 컬러 콘솔 대신 JSON으로 출력할지 여부.
        log_file: 로그를 함께 기록할 파일 경로.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    logging.getLogger().setLevel(numeric_level)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)

    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """구조화 로거를 반환합니다.

    Args:
        name: 로거 이름 (보통 ``__name__``).

    Returns:
        설정된 structlog 로거.
    """
    return structlog.get_logger(name)


class Loggers:
    """파이프라인 컴포넌트별로 이름이 지정된 로거.

    사용법:
        >>> from .logging_config import Loggers
        >>> logger = Loggers.indexer()
        >>> logger.info("인덱싱 시작", items=10)
    """

    @staticmethod
    def scanner() -> structlog.stdlib.BoundLogger:
        """콘텐츠 탐색 및 차이 계산용 로거."""
        return get_logger("kb_sync.scanner")

    @staticmethod
    def indexer() -> structlog.stdlib.BoundLogger:
        """청킹, 임베딩, 인덱스 쓰기용 로거."""
        return get_logger("kb_sync.indexer")

    @staticmethod
    def orchestrator() -> structlog.stdlib.BoundLogger:
        """동기화 상태 전이 및 락용 로거."""
        return get_logger("kb_sync.orchestrator")

    @staticmethod
    def retrieval() -> structlog.stdlib.BoundLogger:
        """질의 경로용 로거."""
        return get_logger("kb_sync.retrieval")

    @staticmethod
    def providers() -> structlog.stdlib.BoundLogger:
        """임베딩 및 생성 프로바이더 어댑터용 로거."""
        return get_logger("kb_sync.providers")

    @staticmethod
    def storage() -> structlog.stdlib.BoundLogger:
        """SQLite 및 JSON 저장소용 로거."""
        return get_logger("kb_sync.storage")

    @staticmethod
    def scheduler() -> structlog.stdlib.BoundLogger:
        """스케줄 작업용 로거."""
        return get_logger("kb_sync.scheduler")

    @staticmethod
    def cli() -> structlog.stdlib.BoundLogger:
        """CLI 명령용 로거."""
        return get_logger("kb_sync.cli")


configure_logging()

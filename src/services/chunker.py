"""텍스트 청킹 서비스.

RecursiveCharacterTextSplitter를 사용해 콘텐츠 항목을 임베딩에 적합한
오버랩 청크로 분할합니다. 강제 절단보다 문단과 문장 경계를 우선합니다.

주요 기능:
    - 콘텐츠 타입별 크기/오버랩 프로파일
    - 각 청크의 끝부분을 다음 청크 앞에 이어 붙임
    - 결정적 출력 (같은 텍스트와 파라미터면 같은 청크와 해시)
    - 청크 해시는 벡터 인덱스의 중복 제거 키로도 사용
"""

from typing import Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..errors import ValidationError
from ..models import Chunk, ContentItem


class Chunker:
    """텍스트 청킹 서비스.

    스플리터는 ``(chunk_size, chunk_overlap)`` 쌍마다 지연 생성되어
    재사용됩니다. 호출별 상태는 없습니다.

    Attributes:
        chunk_size: 기본 청크당 최대 문자 수.
        chunk_overlap: 연속 청크 간 기본 오버랩.
        min_chunk_size: 허용되는 최소 청크 크기.
        chars_per_token: 토큰 추정용 비율.
        separators: 순서대로 시도하는 분할 경계.
    """

    DEFAULT_SEPARATORS = [
        "\n\n",  # 문단
        "\n",  # 줄
        ". ",
        "! ",
        "? ",
        "; ",
        ", ",
        " ",
        "",  # 강제 절단
    ]

    # (max_chunk_size, overlap)
    CONTENT_TYPE_PROFILES: dict[str, tuple[int, int]] = {
        "product": (800, 80),
        "page": (1000, 100),
        "post": (1200, 120),
        "woocommerce_settings": (600, 60),
        "category": (400, 40),
        "product_cat": (400, 40),
        "product_tag": (300, 30),
    }

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 100,
        min_chunk_size: int = 50,
        chars_per_token: float = 4.0,
        separators: list[str] | None = None,
    ):
        """청커를 초기화합니다.

        Args:
            chunk_size: 프로파일이 없는 콘텐츠 타입에 쓰는 기본 청크당
                최대 문자 수.
            chunk_overlap: 기본 오버랩 (문자 수).
            min_chunk_size: 허용되는 최소 청크 크기.
            chars_per_token: 토큰 추정용 토큰당 문자 수.
            separators: 사용자 정의 구분자. None이면 DEFAULT_SEPARATORS.
        """
        self._validate(chunk_size, chunk_overlap, min_chunk_size)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.min_chunk_size = min_chunk_size
        self.chars_per_token = chars_per_token
        self.separators = separators or self.DEFAULT_SEPARATORS
        self._splitters: dict[tuple[int, int], RecursiveCharacterTextSplitter] = {}

    def profile_for(self, content_type: str) -> tuple[int, int]:
        """``content_type``에 사용할 (max_chunk_size, overlap)."""
        return self.CONTENT_TYPE_PROFILES.get(
            content_type, (self.chunk_size, self.chunk_overlap)
        )

    def chunk_text(
        self,
        text: str,
        max_chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
    ) -> list[str]:
        """텍스트를 청크 문자열로 분할합니다.

        Args:
            text: 분할할 텍스트.
            max_chunk_size: 청크당 최대 문자 수.
            overlap: 연속 청크 간 오버랩.

        Returns:
            공백이 제거된 비어 있지 않은 청크 문자열. 빈 텍스트면 빈 리스트.
        """
        if not text or not text.strip():
            return []

        size = max_chunk_size if max_chunk_size is not None else self.chunk_size
        over = overlap if overlap is not None else self.chunk_overlap
        splitter = self._get_splitter(size, over)

        if len(text.strip()) <= size:
            return [text.strip()]

        pieces = [piece.strip() for piece in splitter.split_text(text)]
        pieces = [piece for piece in pieces if piece]
        if over == 0:
            return pieces

        chunks = pieces[:1]
        for previous, piece in zip(pieces, pieces[1:]):
            tail = self.overlap_tail(previous, over)
            chunks.append(f"{tail} {piece}" if tail else piece)
        return chunks

    @staticmethod
    def overlap_tail(text: str, overlap: int) -> str:
        """``text``의 마지막 ``overlap``자를 단어 경계에서 시작하도록 잘라 반환합니다.

        앞쪽의 잘린 단어는 버리며, 공백이 없는 텍스트는 그대로 자릅니다.
        """
        if overlap <= 0:
            return ""
        if len(text) <= overlap:
            return text.strip()
        tail = text[-overlap:]
        if not text[-overlap - 1].isspace():
            space = tail.find(" ")
            if space != -1:
                tail = tail[space + 1:]
        return tail.strip()

    def split(
        self,
        item: ContentItem,
        max_chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
    ) -> list[Chunk]:
        """콘텐츠 항목을 Chunk 객체로 분할합니다.

        파라미터 기본값은 항목 콘텐츠 타입의 프로파일입니다.

        Args:
            item: 분할할 콘텐츠 항목.
            max_chunk_size: 청크당 최대 문자 수.
            overlap: 연속 청크 간 오버랩.

        Returns:
            ``chunk_index`` 0..N-1, ``total_chunks`` N인 순서대로의 청크.
            텍스트가 없으면 빈 리스트.
        """
        profile_size, profile_overlap = self.profile_for(item.content_type)
        texts = self.chunk_text(
            item.raw_text,
            max_chunk_size if max_chunk_size is not None else profile_size,
            overlap if overlap is not None else profile_overlap,
        )

        chunks = []
        for idx, text in enumerate(texts):
            chunk = Chunk.create(
                content_type=item.content_type,
                content_id=item.id,
                chunk_index=idx,
                total_chunks=len(texts),
                text=text,
            )
            chunk.estimate_tokens(self.chars_per_token)
            chunks.append(chunk)
        return chunks

    def _get_splitter(self, size: int, overlap: int) -> RecursiveCharacterTextSplitter:
        """청크 본문용 스플리터. 오버랩 접두사와 연결 공백만큼
        ``size``에서 미리 뺍니다."""
        key = (size, overlap)
        if key not in self._splitters:
            self._validate(size, overlap, self.min_chunk_size)
            body_size = size - overlap - 1 if overlap else size
            self._splitters[key] = RecursiveCharacterTextSplitter(
                chunk_size=max(body_size, 1),
                chunk_overlap=0,
                separators=self.separators,
                length_function=len,
                is_separator_regex=False,
                keep_separator="end",
            )
        return self._splitters[key]

    @staticmethod
    def _validate(size: int, overlap: int, min_size: int) -> None:
        if size < min_size:
            raise ValidationError(
                message=f"Chunk size must be at least {min_size}",
                details={"chunk_size": size},
            )
        if overlap < 0 or overlap >= size:
            raise ValidationError(
                message="Chunk overlap must be non-negative and smaller than the chunk size",
                details={"chunk_size": size, "chunk_overlap": overlap},
            )

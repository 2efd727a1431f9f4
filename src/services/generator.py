"""생성 프로바이더.

조립된 GenerationRequest를 채팅 모델로 실행하고 프로바이더 실패를
예외 계층으로 매핑합니다.
"""

from typing import Optional, Protocol, runtime_checkable

import anthropic

from ..errors import FatalProviderError, TransientProviderError, ValidationError
from ..logging_config import Loggers
from ..models import GenerationRequest, GenerationResponse

logger = Loggers.providers()


@runtime_checkable
class GenerationProvider(Protocol):
    """조립된 프롬프트에 답하는 채팅 모델."""

    model_name: str

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        """``request``에 답변합니다."""
        ...


class AnthropicGenerationProvider:
    """anthropic SDK를 통한 Claude 호출.

    오류 매핑:
        - 타임아웃, 연결 오류, 429, 5xx → TransientProviderError
        - 인증, 권한, 잘못된 요청 및 그 외 4xx → FatalProviderError

    Attributes:
        model_name: Claude 모델.
        max_tokens: 답변 최대 토큰 수.
        temperature: 샘플링 온도.
        timeout: 요청별 타임아웃 (초).
        max_retries: 일시적 실패 시 SDK 수준 재시도 횟수.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-haiku-latest",
        max_tokens: int = 1024,
        temperature: float = 0.3,
        timeout: float = 60.0,
        max_retries: int = 2,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self._api_key = api_key
        self.model_name = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client

    @property
    def client(self) -> anthropic.Anthropic:
        """지연 생성되는 Anthropic 클라이언트.

        Raises:
            FatalProviderError: API 키가 설정되지 않음.
        """
        if self._client is None:
            if not self._api_key:
                raise FatalProviderError(message="ANTHROPIC_API_KEY is not configured")
            self._client = anthropic.Anthropic(
                api_key=self._api_key,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        """``request``를 Claude로 보냅니다.

        Raises:
            ValidationError: 요청에 메시지가 없음.
            TransientProviderError: 타임아웃, 연결 실패, 429 또는 5xx.
            FatalProviderError: 인증 실패 또는 요청 거부.
        """
        messages = self._to_api_messages(request)
        if not messages:
            raise ValidationError(message="Generation request has no messages")

        try:
            response = self.client.messages.create(
                model=self.model_name,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=request.system_prompt,
                messages=messages,
            )
        except anthropic.APIConnectionError as e:
            # APITimeoutError는 하위 클래스
            kind = "timed out" if isinstance(e, anthropic.APITimeoutError) else "connection failed"
            logger.warning("생성 요청 실패", reason=kind, error=str(e))
            raise TransientProviderError(
                message=f"Generation request {kind}",
                details={"model": self.model_name},
            ) from e
        except anthropic.APIStatusError as e:
            status = e.status_code
            logger.warning("생성 프로바이더 오류", status_code=status, error=str(e))
            if status == 429 or status >= 500:
                raise TransientProviderError(
                    message=f"Generation provider returned {status}",
                    details={"model": self.model_name, "status_code": status},
                ) from e
            raise FatalProviderError(
                message=f"Generation provider rejected the request ({status})",
                details={"model": self.model_name, "status_code": status},
            ) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = getattr(response, "usage", None)
        result = GenerationResponse(
            text=text,
            model=getattr(response, "model", None) or self.model_name,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            stop_reason=getattr(response, "stop_reason", None),
        )
        logger.info(
            "생성 완료",
            model=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            stop_reason=result.stop_reason,
        )
        return result

    @staticmethod
    def _to_api_messages(request: GenerationRequest) -> list[dict[str, str]]:
        """같은 역할의 연속 턴을 합친 Messages API 페이로드."""
        merged: list[dict[str, str]] = []
        for message in request.messages:
            if merged and merged[-1]["role"] == message.role:
                merged[-1]["content"] += "\n\n" + message.content
            else:
                merged.append({"role": message.role, "content": message.content})
        return merged

"""
Completion provider integration.

``BaseLLMProvider`` is the CompletionProvider interface used by the
retrieval orchestrator; ``OpenAILLMProvider`` implements it with the OpenAI
chat completions API. Failures are raised as provider errors, never turned
into answer text.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from docchat.config.settings import settings
from docchat.exceptions import ProviderTimeout, ProviderUnavailable
from docchat.utils.async_utils import async_timer
from docchat.utils.logger import get_logger
from docchat.vector.embeddings import translate_openai_error

logger = get_logger(__name__)


class LLMProvider(Enum):
    """Supported LLM providers."""
    OPENAI = "openai"


@dataclass
class GenerationConfig:
    """Configuration for LLM generation."""
    temperature: float = 0.1
    max_tokens: int = 1500
    top_p: float = 1.0
    model: Optional[str] = None  # provider default when unset

    @classmethod
    def from_settings(cls) -> "GenerationConfig":
        return cls(temperature=settings.llm_temperature, max_tokens=settings.llm_max_tokens)

    def override(self, **changes: Any) -> "GenerationConfig":
        """Copy with every change that is not None applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        """Sampling parameters in the keyword form of the completions API."""
        return {
            'temperature': self.temperature,
            'max_tokens': self.max_tokens,
            'top_p': self.top_p,
        }


@dataclass
class GenerationRequest:
    """Chat messages plus generation parameters."""
    messages: List[Dict[str, str]]
    config: GenerationConfig = field(default_factory=GenerationConfig.from_settings)
    request_id: Optional[str] = None

    def __post_init__(self):
        if not self.request_id:
            self.request_id = f"gen_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S_%f')}"


@dataclass
class GenerationResponse:
    """Response from LLM generation."""
    request_id: str
    text: str
    model: str
    provider: str
    usage: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.usage.get('total_tokens', 0)


class BaseLLMProvider:
    """Base class for completion providers."""

    def __init__(self,
                 model: str,
                 provider: Union[str, LLMProvider],
                 timeout: Optional[float] = None):
        self.model = model
        self.provider = provider.value if isinstance(provider, LLMProvider) else provider
        self.timeout = timeout if timeout is not None else settings.provider_timeout
        self.logger = get_logger(__name__, provider=self.provider, model=self.model)

    async def generate(self, request: GenerationRequest, timeout: Optional[float] = None) -> GenerationResponse:
        """
        Generate a completion.

        Args:
            request: Messages and parameters
            timeout: Caller deadline in seconds; the tighter of this and the
                provider timeout applies

        Raises:
            ProviderTimeout, ProviderRateLimited, ProviderUnavailable
        """
        limit = self.timeout if timeout is None else min(self.timeout, timeout)

        self.logger.debug(
            "Generating response",
            request_id=request.request_id,
            messages_count=len(request.messages),
            max_tokens=request.config.max_tokens
        )

        async with async_timer("LLM generation", request_id=request.request_id):
            try:
                response = await asyncio.wait_for(self._generate_response(request), timeout=limit)
            except asyncio.TimeoutError:
                self.logger.warning("Response generation timed out", request_id=request.request_id, timeout=limit)
                raise ProviderTimeout(self.provider, f"completion timed out after {limit}s")

        self.logger.info(
            "Response generated",
            request_id=request.request_id,
            response_length=len(response.text),
            total_tokens=response.total_tokens
        )
        return response

    async def _generate_response(self, request: GenerationRequest) -> GenerationResponse:
        raise NotImplementedError("Subclasses must implement _generate_response")


class OpenAILLMProvider(BaseLLMProvider):
    """OpenAI chat completions provider."""

    def __init__(self,
                 model: Optional[str] = None,
                 api_key: Optional[str] = None,
                 base_url: Optional[str] = None,
                 **kwargs):
        super().__init__(
            model=model or settings.llm_model,
            provider=LLMProvider.OPENAI,
            **kwargs
        )

        self.api_key = api_key or settings.openai_api_key
        if not self.api_key:
            raise ValueError("OpenAI API key is required")

        try:
            import openai
            self.client = openai.AsyncOpenAI(
                api_key=self.api_key,
                base_url=base_url,
                max_retries=0,
            )
        except ImportError:
            raise ImportError("openai package is required for OpenAI LLM provider")

    async def _generate_response(self, request: GenerationRequest) -> GenerationResponse:
        import openai

        try:
            response = await self.client.chat.completions.create(
                model=request.config.model or self.model,
                messages=request.messages,
                **request.config.to_dict()
            )
        except openai.OpenAIError as e:
            error = translate_openai_error(self.provider, e)
            self.logger.error(
                "Response generation failed",
                request_id=request.request_id,
                error=str(e),
                error_code=error.code
            )
            raise error from e

        if not response.choices:
            raise ProviderUnavailable(self.provider, "completion returned no choices")

        usage = {}
        if response.usage is not None:
            usage = {
                'prompt_tokens': response.usage.prompt_tokens,
                'completion_tokens': response.usage.completion_tokens,
                'total_tokens': response.usage.total_tokens,
            }

        return GenerationResponse(
            request_id=request.request_id,
            text=response.choices[0].message.content or "",
            model=response.model,
            provider=self.provider,
            usage=usage,
        )

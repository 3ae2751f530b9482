"""
Embedding service for generating vector representations.

This module provides the EmbeddingProvider adapters (OpenAI and
sentence-transformers) behind a common ``BaseEmbeddingService`` interface.
Provider failures are translated into the domain error taxonomy so callers
can tell transient failures (retried) from permanent ones.
"""

import asyncio
from enum import Enum
from typing import List, Optional, Union

import numpy as np

from docchat.config.settings import settings
from docchat.exceptions import ProviderError, ProviderRateLimited, ProviderTimeout, ProviderUnavailable
from docchat.utils.async_utils import run_async
from docchat.utils.logger import get_logger

logger = get_logger(__name__)


class EmbeddingProvider(Enum):
    """Supported embedding providers."""
    OPENAI = "openai"
    SENTENCE_TRANSFORMERS = "sentence_transformers"


class EmbeddingModel(Enum):
    """Known embedding models."""
    # OpenAI models
    TEXT_EMBEDDING_3_LARGE = "text-embedding-3-large"
    TEXT_EMBEDDING_3_SMALL = "text-embedding-3-small"
    TEXT_EMBEDDING_ADA_002 = "text-embedding-ada-002"

    # Sentence Transformers models
    ALL_MINILM_L6_V2 = "all-MiniLM-L6-v2"
    ALL_MPNET_BASE_V2 = "all-mpnet-base-v2"


def translate_openai_error(provider: str, error: Exception) -> ProviderError:
    """Map an exception raised by the openai SDK onto the provider error taxonomy."""
    import openai

    if isinstance(error, openai.RateLimitError):
        retry_after = None
        response = getattr(error, "response", None)
        if response is not None:
            header = response.headers.get("retry-after")
            try:
                retry_after = float(header) if header is not None else None
            except ValueError:
                retry_after = None
        return ProviderRateLimited(provider, str(error), retry_after=retry_after)
    if isinstance(error, (openai.APITimeoutError, asyncio.TimeoutError)):
        return ProviderTimeout(provider, str(error) or "request timed out")
    if isinstance(error, openai.APIConnectionError):
        return ProviderTimeout(provider, f"connection error: {error}")
    if isinstance(error, openai.InternalServerError):
        return ProviderTimeout(provider, f"server error: {error}")
    return ProviderUnavailable(provider, str(error))


class BaseEmbeddingService:
    """
    Base class for embedding services.

    Subclasses implement ``_embed_texts``; the base class applies the
    per-call timeout and validates the returned vectors.
    """

    def __init__(self,
                 model: Union[str, EmbeddingModel],
                 provider: Union[str, EmbeddingProvider],
                 timeout: Optional[float] = None):
        self.model = model.value if isinstance(model, EmbeddingModel) else model
        self.provider = provider.value if isinstance(provider, EmbeddingProvider) else provider
        self.timeout = timeout if timeout is not None else settings.provider_timeout
        self.logger = get_logger(__name__, provider=self.provider, model=self.model)

    async def embed(self, text: str, timeout: Optional[float] = None) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed
            timeout: Caller deadline in seconds; the tighter of this and the
                service timeout applies

        Raises:
            ProviderTimeout, ProviderRateLimited: transient failures
            ProviderUnavailable: permanent failures
        """
        vectors = await self.embed_many([text], timeout=timeout)
        return vectors[0]

    async def embed_many(self, texts: List[str], timeout: Optional[float] = None) -> List[List[float]]:
        """Embed several texts in one provider call, preserving order."""
        if not texts:
            return []

        limit = self.timeout if timeout is None else min(self.timeout, timeout)
        try:
            vectors = await asyncio.wait_for(self._embed_texts(texts), timeout=limit)
        except asyncio.TimeoutError:
            raise ProviderTimeout(self.provider, f"embedding timed out after {limit}s")

        if len(vectors) != len(texts):
            raise ProviderUnavailable(
                self.provider,
                f"expected {len(texts)} embeddings, received {len(vectors)}"
            )
        return vectors

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        raise NotImplementedError("Subclasses must implement _embed_texts")


class OpenAIEmbeddingService(BaseEmbeddingService):
    """OpenAI embedding service implementation."""

    def __init__(self,
                 api_key: Optional[str] = None,
                 model: Union[str, EmbeddingModel] = EmbeddingModel.TEXT_EMBEDDING_3_SMALL,
                 **kwargs):
        super().__init__(model=model, provider=EmbeddingProvider.OPENAI, **kwargs)

        self.api_key = api_key or settings.openai_api_key
        if not self.api_key:
            raise ValueError("OpenAI API key is required")

        try:
            import openai
            # Retries are handled by the ingestion pipeline
            self.client = openai.AsyncOpenAI(api_key=self.api_key, max_retries=0)
        except ImportError:
            raise ImportError("openai package is required for OpenAI embedding service")

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        import openai

        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=texts,
                encoding_format="float"
            )
        except openai.OpenAIError as e:
            error = translate_openai_error(self.provider, e)
            self.logger.warning("Embedding request failed", error=str(e), error_code=error.code)
            raise error from e

        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


class SentenceTransformersEmbeddingService(BaseEmbeddingService):
    """Local sentence-transformers embedding service."""

    def __init__(self,
                 model: Union[str, EmbeddingModel] = EmbeddingModel.ALL_MINILM_L6_V2,
                 device: str = "cpu",
                 **kwargs):
        super().__init__(model=model, provider=EmbeddingProvider.SENTENCE_TRANSFORMERS, **kwargs)
        self.device = device

        try:
            from sentence_transformers import SentenceTransformer
            self.model_instance = SentenceTransformer(self.model, device=device)
        except ImportError:
            raise ImportError("sentence-transformers package is required")

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        # CPU-bound, keep it off the event loop
        embeddings = await run_async(self.model_instance.encode, texts)
        if isinstance(embeddings, np.ndarray):
            embeddings = embeddings.tolist()
        return embeddings


class EmbeddingServiceFactory:
    """Factory for creating embedding services."""

    @staticmethod
    def create_service(provider: Union[str, EmbeddingProvider],
                       model: Optional[str] = None,
                       **kwargs) -> BaseEmbeddingService:
        """
        Create an embedding service.

        Args:
            provider: Embedding provider
            model: Embedding model name (provider default if omitted)
            **kwargs: Additional arguments for the service
        """
        if isinstance(provider, str):
            provider = EmbeddingProvider(provider)

        if provider == EmbeddingProvider.OPENAI:
            return OpenAIEmbeddingService(
                model=model or EmbeddingModel.TEXT_EMBEDDING_3_SMALL, **kwargs
            )

        elif provider == EmbeddingProvider.SENTENCE_TRANSFORMERS:
            return SentenceTransformersEmbeddingService(
                model=model or EmbeddingModel.ALL_MINILM_L6_V2, **kwargs
            )

        else:
            raise ValueError(f"Unsupported embedding provider: {provider}")

    @staticmethod
    def get_default_service() -> BaseEmbeddingService:
        """Get default embedding service based on configuration."""
        model = settings.embedding_model
        if settings.embedding_provider == EmbeddingProvider.SENTENCE_TRANSFORMERS.value \
                and model in (m.value for m in (EmbeddingModel.TEXT_EMBEDDING_3_SMALL,
                                                EmbeddingModel.TEXT_EMBEDDING_3_LARGE,
                                                EmbeddingModel.TEXT_EMBEDDING_ADA_002)):
            model = None
        return EmbeddingServiceFactory.create_service(
            provider=settings.embedding_provider,
            model=model,
        )

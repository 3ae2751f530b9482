"""
Answer generation: completion providers and the retrieval orchestrator.
"""

from .llm_providers import (
    BaseLLMProvider,
    GenerationConfig,
    GenerationRequest,
    GenerationResponse,
    LLMProvider,
    OpenAILLMProvider,
)
from .orchestrator import AnswerResult, RetrievalOrchestrator, build_grounded_messages

__all__ = [
    "BaseLLMProvider",
    "GenerationConfig",
    "GenerationRequest",
    "GenerationResponse",
    "LLMProvider",
    "OpenAILLMProvider",
    "AnswerResult",
    "RetrievalOrchestrator",
    "build_grounded_messages",
]

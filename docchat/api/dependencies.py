"""
Dependency injection for the FastAPI application.

The core components are wired once into a ``ServiceContainer`` kept on
``app.state``; endpoints receive them through these dependency functions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, Request, status

from docchat.chat.session_store import ChatSessionStore
from docchat.config.settings import settings
from docchat.generation.llm_providers import BaseLLMProvider, OpenAILLMProvider
from docchat.generation.orchestrator import RetrievalOrchestrator
from docchat.ingestion.fanout import FanOutPolicy
from docchat.ingestion.service import IngestionService
from docchat.processing.pipeline import DocumentIngestionPipeline
from docchat.users.directory import UserDirectory
from docchat.users.files import UserFileStore
from docchat.utils.logger import get_logger
from docchat.vector.embeddings import BaseEmbeddingService, EmbeddingServiceFactory
from docchat.vector.registry import VectorStoreRegistry

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Every component the API needs, wired together."""
    registry: VectorStoreRegistry
    sessions: ChatSessionStore
    users: UserDirectory
    files: UserFileStore
    ingestion: IngestionService
    orchestrator: RetrievalOrchestrator
    policy: FanOutPolicy
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(cls,
              embedding_service: BaseEmbeddingService,
              llm: BaseLLMProvider,
              registry: Optional[VectorStoreRegistry] = None,
              sessions: Optional[ChatSessionStore] = None,
              users: Optional[UserDirectory] = None,
              files: Optional[UserFileStore] = None,
              policy: Optional[FanOutPolicy] = None,
              pipeline: Optional[DocumentIngestionPipeline] = None) -> "ServiceContainer":
        registry = registry or VectorStoreRegistry()
        sessions = sessions or ChatSessionStore()
        users = users or UserDirectory()
        files = files or UserFileStore()
        policy = policy or FanOutPolicy.from_settings()
        pipeline = pipeline or DocumentIngestionPipeline(embedding_service)
        return cls(
            registry=registry,
            sessions=sessions,
            users=users,
            files=files,
            ingestion=IngestionService(pipeline, registry, users, files, policy),
            orchestrator=RetrievalOrchestrator(registry, sessions, embedding_service, llm),
            policy=policy,
        )

    @classmethod
    def from_settings(cls) -> "ServiceContainer":
        """Wire the configured providers and on-disk stores."""
        logger.info(
            "Wiring services",
            embedding_provider=settings.embedding_provider,
            embedding_model=settings.embedding_model,
            llm_model=settings.llm_model,
            data_dir=str(settings.data_dir),
        )
        return cls.build(
            embedding_service=EmbeddingServiceFactory.get_default_service(),
            llm=OpenAILLMProvider(),
        )


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not available. Please try again later."
        )
    return services


def get_registry(request: Request) -> VectorStoreRegistry:
    return get_services(request).registry


def get_session_store(request: Request) -> ChatSessionStore:
    return get_services(request).sessions


def get_user_directory(request: Request) -> UserDirectory:
    return get_services(request).users


def get_ingestion_service(request: Request) -> IngestionService:
    return get_services(request).ingestion


def get_orchestrator(request: Request) -> RetrievalOrchestrator:
    return get_services(request).orchestrator

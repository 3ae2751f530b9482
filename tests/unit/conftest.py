"""
Shared fixtures: deterministic providers plus components rooted in a
temporary data directory.
"""

import pytest

from docchat.chat.session_store import ChatSessionStore
from docchat.generation.orchestrator import RetrievalOrchestrator
from docchat.ingestion.fanout import FanOutPolicy
from docchat.ingestion.service import IngestionService
from docchat.processing.pipeline import DocumentIngestionPipeline
from docchat.users.directory import UserDirectory
from docchat.users.files import UserFileStore
from docchat.vector.registry import VectorStoreRegistry

from .fakes import FakeEmbeddingService, FakeLLMProvider


@pytest.fixture
def embedder() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest.fixture
def llm() -> FakeLLMProvider:
    return FakeLLMProvider()


@pytest.fixture
def registry(tmp_path) -> VectorStoreRegistry:
    return VectorStoreRegistry(root=tmp_path / "vectorstores", max_resident_stores=8)


@pytest.fixture
def sessions(tmp_path) -> ChatSessionStore:
    return ChatSessionStore(root=tmp_path / "chat-histories")


@pytest.fixture
def users(tmp_path) -> UserDirectory:
    return UserDirectory(path=tmp_path / "users.json")


@pytest.fixture
def files(tmp_path) -> UserFileStore:
    return UserFileStore(root=tmp_path / "user-docs", max_upload_chars=100_000)


@pytest.fixture
def pipeline(embedder) -> DocumentIngestionPipeline:
    return DocumentIngestionPipeline(
        embedder,
        chunk_size=1000,
        chunk_overlap=200,
        max_retries=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def policy() -> FanOutPolicy:
    return FanOutPolicy(individual=True, owner_combined=True, system_combined=False)


@pytest.fixture
def ingestion(pipeline, registry, users, files, policy) -> IngestionService:
    return IngestionService(pipeline, registry, users, files, policy)


@pytest.fixture
def orchestrator(registry, sessions, embedder, llm) -> RetrievalOrchestrator:
    return RetrievalOrchestrator(registry, sessions, embedder, llm, k=5, retry_base_delay=0.0)

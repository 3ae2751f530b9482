"""
Vector layer: embedding providers, the index engine and the store registry.
"""

from .embeddings import (
    BaseEmbeddingService,
    EmbeddingModel,
    EmbeddingProvider,
    EmbeddingServiceFactory,
    OpenAIEmbeddingService,
    SentenceTransformersEmbeddingService,
)
from .index import NumpyVectorIndex, SearchHit, VectorIndexEngine
from .registry import (
    RegistryCache,
    StoreHandle,
    StoreKey,
    StoreScope,
    VectorStoreDescriptor,
    VectorStoreRegistry,
)

__all__ = [
    "BaseEmbeddingService",
    "EmbeddingModel",
    "EmbeddingProvider",
    "EmbeddingServiceFactory",
    "OpenAIEmbeddingService",
    "SentenceTransformersEmbeddingService",
    "NumpyVectorIndex",
    "SearchHit",
    "VectorIndexEngine",
    "RegistryCache",
    "StoreHandle",
    "StoreKey",
    "StoreScope",
    "VectorStoreDescriptor",
    "VectorStoreRegistry",
]

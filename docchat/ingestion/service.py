"""
Ingestion trigger.

Ties the upload store, the ingestion pipeline and the registry together:
a document is chunked and embedded once, then upserted into every store the
fan-out policy names.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from docchat.exceptions import InvalidDocument
from docchat.ingestion.fanout import FanOutPolicy
from docchat.processing.pipeline import DocumentIngestionPipeline
from docchat.users.directory import UserDirectory, UserId
from docchat.users.files import UserFileRecord, UserFileStore, normalize_filename
from docchat.utils.logger import get_logger
from docchat.vector.registry import VectorStoreRegistry

logger = get_logger(__name__)


@dataclass
class IngestionResult:
    filename: str
    stores: List[str] = field(default_factory=list)
    chunks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {'filename': self.filename, 'stores': self.stores, 'chunks': self.chunks}


class IngestionService:
    """Entry point for uploading and indexing documents."""

    def __init__(self,
                 pipeline: DocumentIngestionPipeline,
                 registry: VectorStoreRegistry,
                 users: UserDirectory,
                 files: UserFileStore,
                 policy: Optional[FanOutPolicy] = None):
        self.pipeline = pipeline
        self.registry = registry
        self.users = users
        self.files = files
        self.policy = policy or FanOutPolicy.from_settings()

    async def upload(self, user_id: str, filename: str, content: str) -> UserFileRecord:
        """Store a user's file without indexing it."""
        uid = await self.users.require(user_id)
        return await self.files.save(uid, filename, content)

    async def vectorize(self, user_id: str, filename: str, timeout: Optional[float] = None) -> IngestionResult:
        """
        Index a previously uploaded file into the stores of the fan-out policy.

        Raises:
            UserNotFound: If the user is unknown
            InvalidDocument: If the user has no such file
        """
        uid = await self.users.require(user_id)
        content = await self.files.read_content(uid, filename)
        return await self._index(uid, filename, content, timeout)

    async def upload_and_vectorize(self,
                                   user_id: str,
                                   filename: str,
                                   content: str,
                                   timeout: Optional[float] = None) -> IngestionResult:
        record = await self.upload(user_id, filename, content)
        return await self._index(UserId(record.user_id), record.filename, content, timeout)

    async def ingest(self,
                     user_id: Optional[str],
                     filename: str,
                     content: str,
                     timeout: Optional[float] = None) -> IngestionResult:
        """
        Ingest a document for a user, or into the system stores when ``user_id`` is None.

        Returns the names of every store that was updated.
        """
        if user_id:
            return await self.upload_and_vectorize(user_id, filename, content, timeout)

        name = normalize_filename(filename)
        if not content or not content.strip():
            raise InvalidDocument(name, "content is empty")
        if len(content) > self.files.max_upload_chars:
            raise InvalidDocument(name, f"content exceeds {self.files.max_upload_chars} characters", oversize=True)
        return await self._index(None, name, content, timeout)

    async def _index(self,
                     owner: Optional[UserId],
                     filename: str,
                     content: str,
                     timeout: Optional[float]) -> IngestionResult:
        owner_id = owner.value if owner else None
        targets = self.policy.targets(owner_id, filename)
        if not targets:
            raise InvalidDocument(filename, "fan-out policy selects no stores")

        # Embedding happens before any store is touched
        chunks = await self.pipeline.ingest(content, filename, timeout=timeout)

        result = IngestionResult(filename=filename, chunks=len(chunks))
        try:
            for key in targets:
                handle = await self.registry.get_or_create(key.scope, key.owner_user_id, key.name)
                await self.registry.upsert(handle, filename, chunks)
                result.stores.append(key.name)
        finally:
            if owner is not None and result.stores:
                await self.files.mark_vectorized(owner, filename, result.stores)

        logger.info(
            "Document indexed",
            user_id=owner_id,
            document=filename,
            chunks=len(chunks),
            stores=result.stores,
        )
        return result

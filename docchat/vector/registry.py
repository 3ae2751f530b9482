"""
Vector store registry.

Owns every named store, keyed by ``(scope, owner_user_id, name)``, together
with its on-disk location, the decision between creating and updating a
store, and the ``RegistryCache`` of loaded indexes.

On-disk layout of one store::

    <vectorstores_dir>/system/<name>/                 (system scope)
    <vectorstores_dir>/users/<owner>/<name>/          (user scope)
        CURRENT              -> "v7"
        v7/descriptor.json
        v7/chunks.json
        v7/vectors.npy

A commit writes a complete new generation into ``v<n>.tmp``, renames it to
``v<n>`` and then atomically replaces ``CURRENT``. Readers only ever follow
``CURRENT``, so the index and the descriptor they load always belong to the
same generation; a crash at any point leaves the previous generation intact.
"""

import asyncio
import re
import shutil
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

from docchat.config.settings import settings
from docchat.exceptions import InvalidDocument, PersistenceFailed, StoreNotFound
from docchat.processing.chunks import Chunk
from docchat.utils.async_utils import AsyncRWLock, KeyedLock, async_timer, run_async, run_async_to_completion
from docchat.utils.files import fsync_dir, read_json, write_json_atomic, write_text_atomic
from docchat.utils.logger import get_logger
from docchat.utils.text_utils import is_safe_name
from docchat.vector.index import NumpyVectorIndex, SearchHit, VectorIndexEngine

logger = get_logger(__name__)

CURRENT_FILE = "CURRENT"
DESCRIPTOR_FILE = "descriptor.json"
GENERATION_PATTERN = re.compile(r"^v(\d+)(?:\.tmp)?$")


class StoreScope(str, Enum):
    """Whether a store belongs to the whole system or to a single user."""
    SYSTEM = "system"
    USER = "user"


@dataclass(frozen=True)
class StoreKey:
    """Primary key of a store."""
    scope: StoreScope
    owner_user_id: Optional[str]
    name: str

    def __post_init__(self):
        if not is_safe_name(self.name):
            raise ValueError(f"Invalid store name: {self.name!r}")
        if self.scope == StoreScope.USER:
            if not self.owner_user_id or not is_safe_name(self.owner_user_id):
                raise ValueError(f"User-scoped store requires a valid owner, got {self.owner_user_id!r}")
        elif self.owner_user_id is not None:
            raise ValueError("System-scoped stores have no owner")

    @classmethod
    def system(cls, name: str) -> "StoreKey":
        return cls(StoreScope.SYSTEM, None, name)

    @classmethod
    def user(cls, owner_user_id: str, name: str) -> "StoreKey":
        return cls(StoreScope.USER, owner_user_id, name)

    def __str__(self) -> str:
        if self.scope == StoreScope.SYSTEM:
            return f"system/{self.name}"
        return f"users/{self.owner_user_id}/{self.name}"


@dataclass(frozen=True)
class VectorStoreDescriptor:
    """Metadata persisted alongside every index generation."""
    name: str
    scope: StoreScope
    owner_user_id: Optional[str]
    member_documents: frozenset = field(default_factory=frozenset)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    chunk_count: int = 0
    dimension: Optional[int] = None
    generation: int = 0

    @property
    def key(self) -> StoreKey:
        return StoreKey(self.scope, self.owner_user_id, self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'scope': self.scope.value,
            'owner_user_id': self.owner_user_id,
            'member_documents': sorted(self.member_documents),
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'chunk_count': self.chunk_count,
            'dimension': self.dimension,
            'generation': self.generation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VectorStoreDescriptor":
        return cls(
            name=data['name'],
            scope=StoreScope(data['scope']),
            owner_user_id=data.get('owner_user_id'),
            member_documents=frozenset(data.get('member_documents', [])),
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            chunk_count=int(data.get('chunk_count', 0)),
            dimension=data.get('dimension'),
            generation=int(data.get('generation', 0)),
        )


@dataclass(frozen=True)
class StoreHandle:
    """
    Snapshot of a store: its key, descriptor and index.

    Handles are immutable. A commit produces a new handle; registry
    operations always resolve the current one by key.
    """
    key: StoreKey
    descriptor: VectorStoreDescriptor
    index: VectorIndexEngine = field(compare=False, repr=False)

    @property
    def persisted(self) -> bool:
        return self.descriptor.generation > 0


class RegistryCache:
    """LRU map of loaded store handles with a bounded number of residents."""

    def __init__(self, max_resident_stores: int):
        if max_resident_stores < 1:
            raise ValueError("max_resident_stores must be at least 1")
        self.max_resident_stores = max_resident_stores
        self._entries: "OrderedDict[StoreKey, StoreHandle]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: StoreKey) -> bool:
        return key in self._entries

    def keys(self) -> List[StoreKey]:
        return list(self._entries.keys())

    def get(self, key: StoreKey) -> Optional[StoreHandle]:
        handle = self._entries.get(key)
        if handle is not None:
            self._entries.move_to_end(key)
        return handle

    def put(self, handle: StoreHandle) -> None:
        self._entries[handle.key] = handle
        self._entries.move_to_end(handle.key)
        while len(self._entries) > self.max_resident_stores:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted vector store from cache", store=str(evicted))

    def pop(self, key: StoreKey) -> Optional[StoreHandle]:
        return self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


class VectorStoreRegistry:
    """
    Registry of named vector stores.

    Reads (search, lazy load) share a per-key reader/writer lock; mutations
    (upsert, delete) hold it exclusively. Embedding happens before ``upsert``
    is called, so no lock is ever held across provider I/O.
    """

    def __init__(self,
                 root: Optional[Path] = None,
                 max_resident_stores: Optional[int] = None,
                 index_factory: Type[NumpyVectorIndex] = NumpyVectorIndex):
        self.root = Path(root) if root is not None else settings.vectorstores_dir
        self.cache = RegistryCache(max_resident_stores or settings.max_resident_stores)
        self.index_factory = index_factory
        self._locks: KeyedLock[AsyncRWLock] = KeyedLock(AsyncRWLock)
        self.logger = get_logger(__name__, root=str(self.root))

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def store_dir(self, key: StoreKey) -> Path:
        if key.scope == StoreScope.SYSTEM:
            return self.root / "system" / key.name
        return self.root / "users" / key.owner_user_id / key.name

    def _scope_dir(self, scope: StoreScope, owner_user_id: Optional[str]) -> Path:
        if scope == StoreScope.SYSTEM:
            return self.root / "system"
        return self.root / "users" / owner_user_id

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get_or_create(self,
                            scope: StoreScope,
                            owner_user_id: Optional[str],
                            name: str) -> StoreHandle:
        """
        Return the handle of a store, creating an empty one in memory if absent.

        A cached handle is returned when resident; otherwise the store is
        loaded from disk. A store that has never been written is not
        persisted until its first ``upsert``.
        """
        key = StoreKey(StoreScope(scope), owner_user_id, name)
        async with self._locks.hold(key) as lock:
            async with lock.read():
                handle = await self._resident(key)
        if handle is not None:
            return handle
        return self._empty_handle(key)

    async def open(self, key: StoreKey) -> StoreHandle:
        """Return the handle of an existing store or raise ``StoreNotFound``."""
        async with self._locks.hold(key) as lock:
            async with lock.read():
                handle = await self._resident(key)
        if handle is None:
            raise StoreNotFound(key.name, key.owner_user_id)
        return handle

    async def exists(self, key: StoreKey) -> bool:
        if key in self.cache:
            return True
        return (self.store_dir(key) / CURRENT_FILE).is_file()

    async def upsert(self,
                     handle: StoreHandle,
                     document_name: str,
                     chunks: List[Chunk]) -> VectorStoreDescriptor:
        """
        Replace ``document_name``'s chunks in a store and persist it.

        Chunks previously ingested under the same document name are removed
        first, so re-ingesting a document never duplicates it. The index and
        descriptor are written as one new generation; on any failure the
        previous generation stays current and the cache is left untouched.

        Raises:
            InvalidDocument: If ``chunks`` is empty, belongs to another document or its dimension does not match the store
            PersistenceFailed: If the new generation could not be written
        """
        if not chunks:
            raise InvalidDocument(document_name, "no chunks to index")
        strays = {c.source_document for c in chunks} - {document_name}
        if strays:
            raise InvalidDocument(document_name, f"chunks belong to other documents: {sorted(strays)}")

        key = handle.key
        async with self._locks.hold(key) as lock:
            async with lock.write():
                current = await self._resident(key)
                if current is None:
                    # First write, or the store was deleted since the handle was taken
                    current = handle if not handle.persisted else self._empty_handle(key)

                index = current.index.copy()
                replaced = index.remove_document(document_name)
                try:
                    index.add(chunks)
                except ValueError as e:
                    raise InvalidDocument(document_name, str(e)) from e

                previous = current.descriptor
                try:
                    generation = await run_async(self._next_generation, key, previous.generation)
                except OSError as e:
                    raise PersistenceFailed(str(key), e) from e
                descriptor = replace(
                    previous,
                    member_documents=frozenset(index.documents()),
                    updated_at=max(datetime.now(timezone.utc), previous.updated_at),
                    chunk_count=len(index),
                    dimension=index.dimension,
                    generation=generation,
                )
                new_handle = StoreHandle(key=key, descriptor=descriptor, index=index)

                async with async_timer("Vector store commit", store=str(key), generation=descriptor.generation):
                    try:
                        await run_async_to_completion(self._write_generation, key, descriptor, index)
                    except asyncio.CancelledError:
                        # The generation is already durable; keep memory in step with disk
                        self.cache.put(new_handle)
                        raise
                self.cache.put(new_handle)

        self.logger.info(
            "Document upserted",
            store=str(key),
            document=document_name,
            chunks=len(chunks),
            replaced_chunks=replaced,
            total_chunks=descriptor.chunk_count,
        )
        return descriptor

    async def search(self, handle: StoreHandle, query_vector: List[float], k: int = 5) -> List[SearchHit]:
        """
        Return at most ``k`` chunks nearest to ``query_vector``.

        Ordered by ascending distance; equal distances keep ingestion order.
        """
        key = handle.key
        async with self._locks.hold(key) as lock:
            async with lock.read():
                current = await self._resident(key)
                if current is None:
                    raise StoreNotFound(key.name, key.owner_user_id)
                try:
                    return current.index.search(query_vector, k)
                except ValueError as e:
                    raise InvalidDocument(key.name, str(e)) from e

    async def list_stores(self,
                          scope: StoreScope,
                          owner_user_id: Optional[str] = None) -> List[VectorStoreDescriptor]:
        """Descriptors of every persisted store in a scope, sorted by name."""
        scope = StoreScope(scope)
        scope_dir = self._scope_dir(scope, owner_user_id)
        names = await run_async(_list_store_names, scope_dir)

        descriptors = []
        for name in names:
            key = StoreKey(scope, owner_user_id, name)
            async with self._locks.hold(key) as lock:
                async with lock.read():
                    cached = self.cache.get(key)
                    if cached is not None:
                        descriptors.append(cached.descriptor)
                        continue
                    descriptor = await run_async(self._read_descriptor, key)
            if descriptor is not None:
                descriptors.append(descriptor)
        return descriptors

    async def delete(self, handle: StoreHandle) -> None:
        """Remove a store's files and cache entry."""
        key = handle.key
        async with self._locks.hold(key) as lock:
            async with lock.write():
                store_dir = self.store_dir(key)
                if not (store_dir / CURRENT_FILE).is_file():
                    self.cache.pop(key)
                    raise StoreNotFound(key.name, key.owner_user_id)
                try:
                    await run_async_to_completion(_remove_store_dir, store_dir)
                finally:
                    self.cache.pop(key)
        self.logger.info("Vector store deleted", store=str(key))

    def resident_stores(self) -> List[str]:
        return [str(key) for key in self.cache.keys()]

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------

    def _empty_handle(self, key: StoreKey) -> StoreHandle:
        now = datetime.now(timezone.utc)
        descriptor = VectorStoreDescriptor(
            name=key.name,
            scope=key.scope,
            owner_user_id=key.owner_user_id,
            created_at=now,
            updated_at=now,
        )
        return StoreHandle(key=key, descriptor=descriptor, index=self.index_factory())

    async def _resident(self, key: StoreKey) -> Optional[StoreHandle]:
        """Cached handle, or the store loaded from disk; None if it does not exist."""
        handle = self.cache.get(key)
        if handle is not None:
            return handle

        handle = await run_async(self._load, key)
        if handle is not None:
            self.cache.put(handle)
            self.logger.debug("Vector store loaded", store=str(key), chunks=handle.descriptor.chunk_count)
        return handle

    def _current_generation_dir(self, key: StoreKey) -> Optional[Path]:
        store_dir = self.store_dir(key)
        pointer = store_dir / CURRENT_FILE
        if not pointer.is_file():
            return None
        generation = pointer.read_text(encoding="utf-8").strip()
        return store_dir / generation

    def _read_descriptor(self, key: StoreKey) -> Optional[VectorStoreDescriptor]:
        generation_dir = self._current_generation_dir(key)
        if generation_dir is None:
            return None
        try:
            return VectorStoreDescriptor.from_dict(read_json(generation_dir / DESCRIPTOR_FILE))
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceFailed(str(key), e) from e

    def _load(self, key: StoreKey) -> Optional[StoreHandle]:
        generation_dir = self._current_generation_dir(key)
        if generation_dir is None:
            return None
        try:
            descriptor = VectorStoreDescriptor.from_dict(read_json(generation_dir / DESCRIPTOR_FILE))
            index = self.index_factory.load(generation_dir)
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceFailed(str(key), e) from e
        return StoreHandle(key=key, descriptor=descriptor, index=index)

    def _write_generation(self,
                          key: StoreKey,
                          descriptor: VectorStoreDescriptor,
                          index: VectorIndexEngine) -> None:
        """
        Write a full generation and flip ``CURRENT`` to it (runs in a worker thread).

        The commit is durable as soon as ``CURRENT`` names the new generation;
        later failures (directory flush, pruning) are logged, not raised.
        """
        store_dir = self.store_dir(key)
        pointer = store_dir / CURRENT_FILE
        name = f"v{descriptor.generation}"
        staging = store_dir / f"{name}.tmp"
        final = store_dir / name

        try:
            store_dir.mkdir(parents=True, exist_ok=True)
            if staging.exists():
                shutil.rmtree(staging)
            if final.exists():
                if _read_pointer(pointer) == name:
                    raise FileExistsError(f"{final} is the current generation")
                # Left by a commit that crashed before flipping CURRENT
                shutil.rmtree(final)

            index.save(staging)
            write_json_atomic(staging / DESCRIPTOR_FILE, descriptor.to_dict())
            fsync_dir(staging)

            staging.rename(final)
            self._flip_current(key, pointer, name)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            if final.exists() and _read_pointer(pointer) != name:
                shutil.rmtree(final, ignore_errors=True)
            self.logger.error("Vector store commit failed", store=str(key), error=str(e))
            raise PersistenceFailed(str(key), e) from e

        try:
            _prune_generations(store_dir, keep=name)
        except OSError as e:
            self.logger.warning("Vector store prune failed", store=str(key), error=str(e))
        self.logger.info("Vector store persisted", store=str(key), generation=descriptor.generation)

    def _flip_current(self, key: StoreKey, pointer: Path, name: str) -> None:
        try:
            write_text_atomic(pointer, name)
        except OSError as e:
            if _read_pointer(pointer) != name:
                raise
            # CURRENT already names the new generation; only the flush failed
            self.logger.warning("Vector store pointer flush failed", store=str(key), error=str(e))

    def _next_generation(self, key: StoreKey, cached_generation: int) -> int:
        """One past the highest generation on disk or in memory."""
        store_dir = self.store_dir(key)
        numbers = [cached_generation]
        if store_dir.is_dir():
            names = [entry.name for entry in store_dir.iterdir()]
            current = _read_pointer(store_dir / CURRENT_FILE)
            if current:
                names.append(current)
            for entry_name in names:
                match = GENERATION_PATTERN.match(entry_name)
                if match:
                    numbers.append(int(match.group(1)))
        return max(numbers) + 1


def _list_store_names(scope_dir: Path) -> List[str]:
    if not scope_dir.is_dir():
        return []
    return sorted(
        entry.name for entry in scope_dir.iterdir()
        if entry.is_dir() and (entry / CURRENT_FILE).is_file()
    )


def _read_pointer(pointer: Path) -> Optional[str]:
    try:
        return pointer.read_text(encoding="utf-8").strip()
    except OSError:
        return None


def _prune_generations(store_dir: Path, keep: str) -> None:
    for entry in store_dir.iterdir():
        if entry.is_dir() and entry.name != keep and entry.name.startswith("v"):
            shutil.rmtree(entry, ignore_errors=True)


def _remove_store_dir(store_dir: Path) -> None:
    # Rename first so the store disappears in one step
    tombstone = store_dir.with_name(f".deleted-{store_dir.name}-{uuid.uuid4().hex[:8]}")
    try:
        store_dir.rename(tombstone)
    except OSError as e:
        raise PersistenceFailed(str(store_dir), e) from e
    shutil.rmtree(tombstone, ignore_errors=True)

"""
Chat session store.

Persists ordered conversation turns per ``(user_id, store_name, chat_id)``
plus a per-user summary index used for listing without loading histories.

On-disk layout::

    <chat_histories_dir>/<user>/<store>/<chat>.json    full session
    <chat_histories_dir>/<user>/_index.json           summaries of every session

Both files are replaced atomically. Session files are authoritative: the
summary index is derived from them and is dropped and rebuilt whenever it
cannot be written. Mutations of one session are serialized by a per-session
lock; the summary index has its own per-user lock which is always taken
after the session lock.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from docchat.config.settings import settings
from docchat.exceptions import PersistenceFailed, SessionNotFound
from docchat.utils.async_utils import KeyedLock, run_async, run_async_to_completion
from docchat.utils.files import read_json, write_json_atomic
from docchat.utils.logger import get_logger
from docchat.utils.text_utils import is_safe_name, normalize_whitespace, truncate_text

logger = get_logger(__name__)

INDEX_FILE = "_index.json"
DISPLAY_NAME_LENGTH = 40
ASKED_AT_STEP = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_display_name(now: Optional[datetime] = None) -> str:
    return f"Chat {(now or utcnow()).strftime('%Y-%m-%d')}"


@dataclass(frozen=True)
class SourceRef:
    """A retrieved chunk cited by an answer."""
    document: str
    chunk_index: int
    store_name: str
    score: float = 0.0
    excerpt: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'document': self.document,
            'chunk_index': self.chunk_index,
            'store_name': self.store_name,
            'score': self.score,
            'excerpt': self.excerpt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRef":
        return cls(
            document=data['document'],
            chunk_index=int(data['chunk_index']),
            store_name=data.get('store_name', ''),
            score=float(data.get('score', 0.0)),
            excerpt=data.get('excerpt', ''),
        )


@dataclass(frozen=True)
class ChatTurn:
    """One question/answer exchange. Never edited once appended."""
    question: str
    answer: str
    asked_at: datetime
    answered_at: datetime
    sources: Tuple[SourceRef, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'question': self.question,
            'answer': self.answer,
            'asked_at': self.asked_at.isoformat(),
            'answered_at': self.answered_at.isoformat(),
            'sources': [s.to_dict() for s in self.sources],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatTurn":
        return cls(
            question=data['question'],
            answer=data['answer'],
            asked_at=datetime.fromisoformat(data['asked_at']),
            answered_at=datetime.fromisoformat(data['answered_at']),
            sources=tuple(SourceRef.from_dict(s) for s in data.get('sources', [])),
        )


@dataclass(frozen=True)
class SessionKey:
    user_id: str
    store_name: str
    chat_id: str

    def __post_init__(self):
        for label, value in (("user id", self.user_id), ("store name", self.store_name), ("chat id", self.chat_id)):
            if not is_safe_name(value):
                raise ValueError(f"Invalid {label}: {value!r}")


@dataclass(frozen=True)
class SessionSummary:
    """Listing metadata of a session."""
    chat_id: str
    store_name: str
    display_name: str
    last_activity_at: datetime
    turn_count: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chat_id': self.chat_id,
            'store_name': self.store_name,
            'display_name': self.display_name,
            'last_activity_at': self.last_activity_at.isoformat(),
            'turn_count': self.turn_count,
            'created_at': self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSummary":
        return cls(
            chat_id=data['chat_id'],
            store_name=data['store_name'],
            display_name=data['display_name'],
            last_activity_at=datetime.fromisoformat(data['last_activity_at']),
            turn_count=int(data['turn_count']),
            created_at=datetime.fromisoformat(data['created_at']),
        )


@dataclass(frozen=True)
class ChatSession:
    """Snapshot of a conversation; mutations return a new snapshot."""
    user_id: str
    vector_store_name: str
    chat_id: str
    display_name: str
    created_at: datetime
    last_activity_at: datetime
    turns: Tuple[ChatTurn, ...] = ()
    auto_named: bool = field(default=True, compare=False)

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.user_id, self.vector_store_name, self.chat_id)

    def summary(self) -> SessionSummary:
        return SessionSummary(
            chat_id=self.chat_id,
            store_name=self.vector_store_name,
            display_name=self.display_name,
            last_activity_at=self.last_activity_at,
            turn_count=len(self.turns),
            created_at=self.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'vector_store_name': self.vector_store_name,
            'chat_id': self.chat_id,
            'display_name': self.display_name,
            'auto_named': self.auto_named,
            'created_at': self.created_at.isoformat(),
            'last_activity_at': self.last_activity_at.isoformat(),
            'turns': [t.to_dict() for t in self.turns],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatSession":
        return cls(
            user_id=data['user_id'],
            vector_store_name=data['vector_store_name'],
            chat_id=data['chat_id'],
            display_name=data['display_name'],
            auto_named=bool(data.get('auto_named', False)),
            created_at=datetime.fromisoformat(data['created_at']),
            last_activity_at=datetime.fromisoformat(data['last_activity_at']),
            turns=tuple(ChatTurn.from_dict(t) for t in data.get('turns', [])),
        )


SessionRef = Union[ChatSession, SessionKey]


class ChatSessionStore:
    """
    Durable, per-session serialized chat history.

    Every operation reads the session file under the session lock, so the
    returned snapshots always reflect the latest persisted state.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root is not None else settings.chat_histories_dir
        self._session_locks: KeyedLock[asyncio.Lock] = KeyedLock(asyncio.Lock)
        self._index_locks: KeyedLock[asyncio.Lock] = KeyedLock(asyncio.Lock)
        self._stale_indexes: Set[str] = set()
        self.logger = get_logger(__name__, root=str(self.root))

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def session_path(self, key: SessionKey) -> Path:
        return self.root / key.user_id / key.store_name / f"{key.chat_id}.json"

    def _index_path(self, user_id: str) -> Path:
        return self.root / user_id / INDEX_FILE

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def get_or_create_session(self,
                                    user_id: str,
                                    store_name: str,
                                    chat_id: str,
                                    display_name: Optional[str] = None) -> ChatSession:
        """
        Load a session, creating and persisting an empty one if it does not exist.

        New sessions are named ``display_name`` or ``Chat <date>``; an
        explicit name is never replaced by the first question.
        """
        key = SessionKey(user_id, store_name, chat_id)
        async with self._session_locks.hold(key) as lock:
            async with lock:
                session = await self._read(key)
                if session is not None:
                    return session

                now = utcnow()
                name = normalize_whitespace(display_name or "")
                session = ChatSession(
                    user_id=user_id,
                    vector_store_name=store_name,
                    chat_id=chat_id,
                    display_name=name or default_display_name(now),
                    auto_named=not name,
                    created_at=now,
                    last_activity_at=now,
                )
                await self._write(session)

        self.logger.info("Chat session created", user_id=user_id, store=store_name, chat_id=chat_id)
        return session

    async def get_session(self, user_id: str, store_name: str, chat_id: str) -> ChatSession:
        """Load a full session or raise ``SessionNotFound``."""
        key = SessionKey(user_id, store_name, chat_id)
        session = await self._read(key)
        if session is None:
            raise SessionNotFound(user_id, store_name, chat_id)
        return session

    async def load_turns(self, user_id: str, store_name: str, chat_id: str) -> List[ChatTurn]:
        """Turns of a session in order; an unknown session has none."""
        session = await self._read(SessionKey(user_id, store_name, chat_id))
        return list(session.turns) if session is not None else []

    async def append_turn(self, session: SessionRef, turn: ChatTurn) -> ChatSession:
        """
        Append a turn and persist the session.

        The session is created if it was deleted since it was resolved. A
        turn whose ``asked_at`` is not after the previous turn's is moved
        forward by one microsecond so turns stay strictly ordered.
        """
        key = _key_of(session)
        async with self._session_locks.hold(key) as lock:
            async with lock:
                current = await self._read(key)
                if current is None:
                    now = utcnow()
                    current = ChatSession(
                        user_id=key.user_id,
                        vector_store_name=key.store_name,
                        chat_id=key.chat_id,
                        display_name=default_display_name(now),
                        created_at=now,
                        last_activity_at=now,
                    )

                if current.turns and turn.asked_at <= current.turns[-1].asked_at:
                    asked_at = current.turns[-1].asked_at + ASKED_AT_STEP
                    turn = replace(turn, asked_at=asked_at, answered_at=max(turn.answered_at, asked_at))

                display_name = current.display_name
                auto_named = current.auto_named
                if auto_named and not current.turns:
                    display_name = truncate_text(normalize_whitespace(turn.question), DISPLAY_NAME_LENGTH) or display_name
                    auto_named = False

                updated = replace(
                    current,
                    turns=current.turns + (turn,),
                    display_name=display_name,
                    auto_named=auto_named,
                    last_activity_at=max(current.last_activity_at, turn.answered_at),
                )
                await self._write(updated)

        self.logger.debug(
            "Chat turn appended",
            user_id=key.user_id,
            store=key.store_name,
            chat_id=key.chat_id,
            turns=len(updated.turns),
        )
        return updated

    async def rename(self, session: SessionRef, new_name: str) -> ChatSession:
        """Change the display name of an existing session."""
        name = normalize_whitespace(new_name or "")
        if not name:
            raise ValueError("Chat name must not be empty")

        key = _key_of(session)
        async with self._session_locks.hold(key) as lock:
            async with lock:
                current = await self._require(key)
                updated = replace(current, display_name=name, auto_named=False)
                await self._write(updated)

        self.logger.info("Chat session renamed", user_id=key.user_id, store=key.store_name, chat_id=key.chat_id)
        return updated

    async def clear_history(self, session: SessionRef) -> ChatSession:
        """Empty the turn list while keeping the session."""
        key = _key_of(session)
        async with self._session_locks.hold(key) as lock:
            async with lock:
                current = await self._require(key)
                updated = replace(current, turns=(), last_activity_at=max(utcnow(), current.last_activity_at))
                await self._write(updated)

        self.logger.info("Chat history cleared", user_id=key.user_id, store=key.store_name, chat_id=key.chat_id)
        return updated

    async def delete_session(self, session: SessionRef) -> None:
        """Remove a session entirely."""
        key = _key_of(session)
        async with self._session_locks.hold(key) as lock:
            async with lock:
                await self._require(key)
                await run_async_to_completion(self._unlink, self.session_path(key))
                await self._update_index(key.user_id, remove=key)

        self.logger.info("Chat session deleted", user_id=key.user_id, store=key.store_name, chat_id=key.chat_id)

    async def delete_chat(self, user_id: str, chat_id: str) -> List[str]:
        """
        Delete a chat id from every store of a user.

        Returns:
            Names of the stores the chat was removed from

        Raises:
            SessionNotFound: If the user has no chat with that id
        """
        summaries = await self.list_sessions(user_id)
        stores = [s.store_name for s in summaries if s.chat_id == chat_id]
        if not stores:
            raise SessionNotFound(user_id, None, chat_id)

        deleted = []
        for store_name in stores:
            try:
                await self.delete_session(SessionKey(user_id, store_name, chat_id))
            except SessionNotFound:
                continue
            deleted.append(store_name)
        return deleted

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_sessions(self, user_id: str) -> List[SessionSummary]:
        """Summaries of every session of a user, most recently active first."""
        if not is_safe_name(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")

        async with self._index_locks.hold(user_id) as lock:
            async with lock:
                index = await self._current_index(user_id)
                if index is None:
                    index = await run_async(self._rebuild_index, user_id)
                    if index or user_id in self._stale_indexes:
                        await self._store_index(user_id, index)

        return sorted(
            index.values(),
            key=lambda s: (s.last_activity_at, s.created_at),
            reverse=True,
        )

    async def list_chats(self, user_id: str, store_name: str) -> List[SessionSummary]:
        return [s for s in await self.list_sessions(user_id) if s.store_name == store_name]

    async def list_users(self) -> List[str]:
        """Users that have at least one stored session directory."""
        def scan() -> List[str]:
            if not self.root.is_dir():
                return []
            return sorted(p.name for p in self.root.iterdir() if p.is_dir() and is_safe_name(p.name))
        return await run_async(scan)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _require(self, key: SessionKey) -> ChatSession:
        session = await self._read(key)
        if session is None:
            raise SessionNotFound(key.user_id, key.store_name, key.chat_id)
        return session

    async def _read(self, key: SessionKey) -> Optional[ChatSession]:
        return await run_async(self._load, self.session_path(key))

    async def _write(self, session: ChatSession) -> None:
        path = self.session_path(session.key)
        try:
            await run_async_to_completion(write_json_atomic, path, session.to_dict())
        except OSError as e:
            self.logger.error("Chat session write failed", path=str(path), error=str(e))
            raise PersistenceFailed(str(path), e) from e
        await self._update_index(session.user_id, upsert=session.summary())

    async def _update_index(self,
                            user_id: str,
                            upsert: Optional[SessionSummary] = None,
                            remove: Optional[SessionKey] = None) -> None:
        async with self._index_locks.hold(user_id) as lock:
            async with lock:
                index = await self._current_index(user_id)
                if index is None:
                    index = await run_async(self._rebuild_index, user_id)
                if upsert is not None:
                    index[_index_key(upsert.store_name, upsert.chat_id)] = upsert
                if remove is not None:
                    index.pop(_index_key(remove.store_name, remove.chat_id), None)
                await self._store_index(user_id, index)

    async def _current_index(self, user_id: str) -> Optional[Dict[str, SessionSummary]]:
        if user_id in self._stale_indexes:
            return None
        return await run_async(self._read_index, user_id)

    async def _store_index(self, user_id: str, index: Dict[str, SessionSummary]) -> None:
        """
        Write the summary index, or drop it when that fails.

        The session change that triggered the write is already durable, so a
        failure here is not reported to the caller; the index is removed and
        marked stale so the next read rebuilds it from the session files.
        """
        try:
            await run_async_to_completion(self._write_index, user_id, index)
        except OSError as e:
            self._stale_indexes.add(user_id)
            self.logger.error("Chat index write failed, will rebuild", user_id=user_id, error=str(e))
            await run_async_to_completion(self._discard_index, user_id)
        else:
            self._stale_indexes.discard(user_id)

    @staticmethod
    def _load(path: Path) -> Optional[ChatSession]:
        if not path.is_file():
            return None
        try:
            return ChatSession.from_dict(read_json(path))
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceFailed(str(path), e) from e

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceFailed(str(path), e) from e

    def _read_index(self, user_id: str) -> Optional[Dict[str, SessionSummary]]:
        path = self._index_path(user_id)
        if not path.is_file():
            return None
        try:
            raw = read_json(path)
            return {k: SessionSummary.from_dict(v) for k, v in raw.items()}
        except (OSError, ValueError, KeyError) as e:
            # The index is derived data; rebuild it from the session files
            self.logger.warning("Chat index unreadable, rebuilding", user_id=user_id, error=str(e))
            return None

    def _write_index(self, user_id: str, index: Dict[str, SessionSummary]) -> None:
        write_json_atomic(self._index_path(user_id), {k: v.to_dict() for k, v in index.items()})

    def _discard_index(self, user_id: str) -> None:
        try:
            self._index_path(user_id).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning("Chat index could not be removed", user_id=user_id, error=str(e))

    def _rebuild_index(self, user_id: str) -> Dict[str, SessionSummary]:
        user_dir = self.root / user_id
        index: Dict[str, SessionSummary] = {}
        if not user_dir.is_dir():
            return index
        for store_dir in user_dir.iterdir():
            if not store_dir.is_dir():
                continue
            for path in store_dir.glob("*.json"):
                session = self._load(path)
                if session is not None:
                    index[_index_key(session.vector_store_name, session.chat_id)] = session.summary()
        self.logger.info("Chat index rebuilt", user_id=user_id, sessions=len(index))
        return index


def _key_of(session: SessionRef) -> SessionKey:
    if isinstance(session, SessionKey):
        return session
    return session.key


def _index_key(store_name: str, chat_id: str) -> str:
    return f"{store_name}/{chat_id}"

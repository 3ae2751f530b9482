"""
User identity and directory.

Users exist because they were registered in the directory, never because a
folder happens to exist on disk. The directory is a single JSON document
replaced atomically on every change.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from docchat.config.settings import settings
from docchat.exceptions import PersistenceFailed, UserNotFound
from docchat.utils.async_utils import run_async, run_async_to_completion
from docchat.utils.files import read_json, write_json_atomic
from docchat.utils.logger import get_logger
from docchat.utils.text_utils import is_safe_name

logger = get_logger(__name__)

USERS_FILE = "users.json"


@dataclass(frozen=True)
class UserId:
    """Validated user identifier, usable as a path component."""
    value: str

    def __post_init__(self):
        if not is_safe_name(self.value):
            raise ValueError(f"Invalid user id: {self.value!r}")

    def __str__(self) -> str:
        return self.value

    @classmethod
    def of(cls, value: Union[str, "UserId"]) -> "UserId":
        return value if isinstance(value, UserId) else cls(value)


@dataclass(frozen=True)
class UserRecord:
    user_id: UserId
    created_at: datetime

    def to_dict(self) -> Dict[str, str]:
        return {'user_id': self.user_id.value, 'created_at': self.created_at.isoformat()}


class UserDirectory:
    """Registry of known users backed by ``<data_dir>/users.json``."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else settings.data_dir / USERS_FILE
        self._lock = asyncio.Lock()
        self._users: Optional[Dict[str, UserRecord]] = None

    async def exists(self, user_id: Union[str, UserId]) -> bool:
        try:
            uid = UserId.of(user_id)
        except ValueError:
            return False
        users = await self._loaded()
        return uid.value in users

    async def create(self, user_id: Union[str, UserId]) -> UserRecord:
        """Register a user; creating an existing user returns its record."""
        uid = UserId.of(user_id)
        async with self._lock:
            users = await self._loaded()
            record = users.get(uid.value)
            if record is not None:
                return record

            record = UserRecord(user_id=uid, created_at=datetime.now(timezone.utc))
            updated = {**users, uid.value: record}
            try:
                await run_async_to_completion(
                    write_json_atomic,
                    self.path,
                    {'users': [r.to_dict() for r in updated.values()]},
                )
            except OSError as e:
                raise PersistenceFailed(str(self.path), e) from e
            self._users = updated

        logger.info("User created", user_id=uid.value)
        return record

    async def require(self, user_id: Union[str, UserId]) -> UserId:
        """Return the validated id of a known user or raise ``UserNotFound``."""
        try:
            uid = UserId.of(user_id)
        except ValueError:
            raise UserNotFound(str(user_id))
        if not await self.exists(uid):
            raise UserNotFound(uid.value)
        return uid

    async def list_users(self) -> List[UserRecord]:
        users = await self._loaded()
        return sorted(users.values(), key=lambda r: r.user_id.value)

    async def _loaded(self) -> Dict[str, UserRecord]:
        if self._users is None:
            self._users = await run_async(self._read)
        return self._users

    def _read(self) -> Dict[str, UserRecord]:
        if not self.path.is_file():
            return {}
        try:
            payload = read_json(self.path)
            return {
                item['user_id']: UserRecord(
                    user_id=UserId(item['user_id']),
                    created_at=datetime.fromisoformat(item['created_at']),
                )
                for item in payload.get('users', [])
            }
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceFailed(str(self.path), e) from e

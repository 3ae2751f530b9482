"""
Raw user uploads and their file records.

Uploads live in ``<user_docs_dir>/<user>/<filename>``; the per-user record
list ``<user_docs_dir>/<user>/_files.json`` tracks size, upload time and
whether the file has been indexed.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import Any, Dict, List, Optional, Tuple

from docchat.config.settings import settings
from docchat.exceptions import InvalidDocument, PersistenceFailed
from docchat.users.directory import UserId
from docchat.utils.async_utils import KeyedLock, run_async, run_async_to_completion
from docchat.utils.files import read_json, write_json_atomic, write_text_atomic
from docchat.utils.logger import get_logger
from docchat.utils.text_utils import sanitize_name

logger = get_logger(__name__)

RECORDS_FILE = "_files.json"


@dataclass(frozen=True)
class UserFileRecord:
    user_id: str
    filename: str
    size_bytes: int
    created_at: datetime
    vectorized: bool = False
    stores: Tuple[str, ...] = field(default=())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'filename': self.filename,
            'size_bytes': self.size_bytes,
            'created_at': self.created_at.isoformat(),
            'vectorized': self.vectorized,
            'stores': list(self.stores),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserFileRecord":
        return cls(
            user_id=data['user_id'],
            filename=data['filename'],
            size_bytes=int(data['size_bytes']),
            created_at=datetime.fromisoformat(data['created_at']),
            vectorized=bool(data.get('vectorized', False)),
            stores=tuple(data.get('stores', [])),
        )


def normalize_filename(filename: str, allowed_extensions: Optional[List[str]] = None) -> str:
    """
    Make an uploaded filename safe and treatable as plain text.

    Examples:
        >>> normalize_filename("policy.txt")
        'policy.txt'
        >>> normalize_filename("Q3 report.pdf")
        'Q3_report.pdf.txt'
    """
    allowed = [ext.lower() for ext in (allowed_extensions or settings.allowed_extensions)]
    name = sanitize_name(PurePath(filename or "").name)
    if not name:
        raise InvalidDocument(filename or "", "filename is empty")
    if PurePath(name).suffix.lower() not in allowed:
        name = f"{name}{allowed[0] if allowed else '.txt'}"
    return name


class UserFileStore:
    """Per-user upload storage with a JSON record list."""

    def __init__(self, root: Optional[Path] = None, max_upload_chars: Optional[int] = None):
        self.root = Path(root) if root is not None else settings.user_docs_dir
        self.max_upload_chars = max_upload_chars or settings.max_upload_chars
        self._locks: KeyedLock[asyncio.Lock] = KeyedLock(asyncio.Lock)

    def _user_dir(self, user_id: UserId) -> Path:
        return self.root / user_id.value

    async def save(self, user_id: UserId, filename: str, content: str) -> UserFileRecord:
        """
        Store an upload, replacing any previous file of the same name.

        Raises:
            InvalidDocument: If the content is empty or exceeds ``max_upload_chars``
        """
        name = normalize_filename(filename)
        if not content or not content.strip():
            raise InvalidDocument(name, "content is empty")
        if len(content) > self.max_upload_chars:
            raise InvalidDocument(
                name,
                f"content exceeds {self.max_upload_chars} characters",
                oversize=True,
            )

        record = UserFileRecord(
            user_id=user_id.value,
            filename=name,
            size_bytes=len(content.encode("utf-8")),
            created_at=datetime.now(timezone.utc),
        )
        async with self._locks.hold(user_id.value) as lock:
            async with lock:
                try:
                    await run_async_to_completion(write_text_atomic, self._user_dir(user_id) / name, content)
                except OSError as e:
                    raise PersistenceFailed(name, e) from e
                records = await run_async(self._read_records, user_id)
                records[name] = record
                await self._write_records(user_id, records)

        logger.info("User file saved", user_id=user_id.value, filename=name, size_bytes=record.size_bytes)
        return record

    async def list_files(self, user_id: UserId) -> List[UserFileRecord]:
        records = await run_async(self._read_records, user_id)
        return sorted(records.values(), key=lambda r: r.created_at, reverse=True)

    async def get_record(self, user_id: UserId, filename: str) -> Optional[UserFileRecord]:
        records = await run_async(self._read_records, user_id)
        return records.get(filename)

    async def read_content(self, user_id: UserId, filename: str) -> str:
        record = await self.get_record(user_id, filename)
        if record is None:
            raise InvalidDocument(filename, "file not found")
        path = self._user_dir(user_id) / record.filename
        try:
            return await run_async(path.read_text, encoding="utf-8")
        except OSError as e:
            raise PersistenceFailed(str(path), e) from e

    async def mark_vectorized(self, user_id: UserId, filename: str, stores: List[str]) -> UserFileRecord:
        """Flag a file as indexed into ``stores``."""
        async with self._locks.hold(user_id.value) as lock:
            async with lock:
                records = await run_async(self._read_records, user_id)
                record = records.get(filename)
                if record is None:
                    raise InvalidDocument(filename, "file not found")
                record = replace(
                    record,
                    vectorized=True,
                    stores=tuple(sorted(set(record.stores) | set(stores))),
                )
                records[filename] = record
                await self._write_records(user_id, records)
        return record

    def _read_records(self, user_id: UserId) -> Dict[str, UserFileRecord]:
        path = self._user_dir(user_id) / RECORDS_FILE
        if not path.is_file():
            return {}
        try:
            return {item['filename']: UserFileRecord.from_dict(item) for item in read_json(path)}
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceFailed(str(path), e) from e

    async def _write_records(self, user_id: UserId, records: Dict[str, UserFileRecord]) -> None:
        path = self._user_dir(user_id) / RECORDS_FILE
        try:
            await run_async_to_completion(write_json_atomic, path, [r.to_dict() for r in records.values()])
        except OSError as e:
            raise PersistenceFailed(str(path), e) from e

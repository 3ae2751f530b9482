"""
Users: identity, directory and uploaded file records.
"""

from .directory import UserDirectory, UserId, UserRecord
from .files import UserFileRecord, UserFileStore, normalize_filename

__all__ = [
    "UserDirectory",
    "UserId",
    "UserRecord",
    "UserFileRecord",
    "UserFileStore",
    "normalize_filename",
]

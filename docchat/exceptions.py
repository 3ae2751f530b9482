"""
Domain error taxonomy.

Every error raised by the core derives from ``DocChatError`` and carries a
machine-readable ``code`` plus a ``details`` dict naming the affected
document, store or session. The API layer maps these onto HTTP responses.
"""

from typing import Any, Dict, Optional


class DocChatError(Exception):
    """Base class for all domain errors."""

    code = "DOCCHAT_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidDocument(DocChatError):
    """Document content or name rejected before ingestion."""

    code = "INVALID_DOCUMENT"

    def __init__(self, document: str, reason: str, oversize: bool = False):
        super().__init__(
            f"Invalid document '{document}': {reason}",
            {"document": document, "reason": reason},
        )
        self.document = document
        self.oversize = oversize


class IngestionFailed(DocChatError):
    """Embedding failed for one chunk of a document; no chunks were produced."""

    code = "INGESTION_FAILED"

    def __init__(self, document: str, chunk_index: int, cause: Optional[BaseException] = None):
        reason = str(cause) if cause is not None else "embedding failed"
        super().__init__(
            f"Ingestion of '{document}' failed at chunk {chunk_index}: {reason}",
            {"document": document, "chunk_index": chunk_index, "cause": type(cause).__name__ if cause else None},
        )
        self.document = document
        self.chunk_index = chunk_index
        self.cause = cause


class StoreNotFound(DocChatError):
    code = "STORE_NOT_FOUND"

    def __init__(self, store_name: str, owner_user_id: Optional[str] = None):
        where = f" for user '{owner_user_id}'" if owner_user_id else ""
        super().__init__(
            f"Vector store '{store_name}' not found{where}",
            {"store": store_name, "owner_user_id": owner_user_id},
        )
        self.store_name = store_name
        self.owner_user_id = owner_user_id


class SessionNotFound(DocChatError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, user_id: str, store_name: Optional[str], chat_id: str):
        super().__init__(
            f"Chat session '{chat_id}' not found",
            {"user_id": user_id, "store": store_name, "chat_id": chat_id},
        )
        self.user_id = user_id
        self.store_name = store_name
        self.chat_id = chat_id


class UserNotFound(DocChatError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        super().__init__(f"User '{user_id}' not found", {"user_id": user_id})
        self.user_id = user_id


class PersistenceFailed(DocChatError):
    """A durable write failed; the previous persisted state is intact."""

    code = "PERSISTENCE_FAILED"

    def __init__(self, target: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Failed to persist '{target}': {cause}" if cause else f"Failed to persist '{target}'",
            {"target": target},
        )
        self.target = target
        self.cause = cause


class ProviderError(DocChatError):
    """Failure reported by an embedding or completion provider."""

    code = "PROVIDER_ERROR"
    retryable = False

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}", {"provider": provider})
        self.provider = provider


class ProviderTimeout(ProviderError):
    code = "PROVIDER_TIMEOUT"
    retryable = True


class ProviderRateLimited(ProviderError):
    code = "PROVIDER_RATE_LIMITED"
    retryable = True

    def __init__(self, provider: str, message: str, retry_after: Optional[float] = None):
        super().__init__(provider, message)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details["retry_after"] = retry_after


class ProviderUnavailable(ProviderError):
    """Non-transient provider failure (bad credentials, bad request, outage)."""

    code = "PROVIDER_UNAVAILABLE"


TRANSIENT_PROVIDER_ERRORS = (ProviderTimeout, ProviderRateLimited)

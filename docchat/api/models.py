"""
Pydantic models for API requests and responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docchat.config.settings import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Request Models

class IngestRequest(BaseModel):
    """Upload a document and index it."""
    userId: Optional[str] = Field(None, description="Owner of the document; system document when omitted")
    filename: str = Field(..., min_length=1, max_length=255, description="Document file name")
    content: str = Field(..., min_length=1, description="Plain-text document content")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "userId": "alice",
            "filename": "policy.txt",
            "content": "Employees must badge in by 9am."
        }
    })


class UploadRequest(BaseModel):
    """Upload a document without indexing it."""
    filename: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)


class ModelConfigRequest(BaseModel):
    """Per-request generation overrides."""
    modelName: Optional[str] = Field(None, description="One of the available chat models")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    maxTokens: Optional[int] = Field(None, ge=16, le=32000)
    topP: Optional[float] = Field(None, gt=0.0, le=1.0)

    @field_validator("modelName")
    @classmethod
    def validate_model_name(cls, v):
        if v is not None and v not in settings.available_llm_models:
            raise ValueError(f"Unknown model: {v}. Available: {', '.join(settings.available_llm_models)}")
        return v


class ChatRequest(BaseModel):
    """Ask a question against a store."""
    userId: str = Field(..., min_length=1, max_length=128, description="Asking user")
    chatId: str = Field(..., min_length=1, max_length=128, description="Conversation identifier")
    storeName: str = Field("combined", min_length=1, max_length=128, description="Vector store to query")
    question: str = Field(..., min_length=1, max_length=10000, description="User question")
    modelConfig: Optional[ModelConfigRequest] = Field(None, description="Generation overrides for this question")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "userId": "alice",
            "chatId": "chat1",
            "storeName": "alice_policy",
            "question": "What time must employees arrive?",
            "modelConfig": {"modelName": "gpt-4o-mini", "temperature": 0.2}
        }
    })


class CreateUserRequest(BaseModel):
    userId: str = Field(..., min_length=1, max_length=128)


class CreateChatRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=200, description="Display name; defaults to 'Chat <date>'")


class RenameChatRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


# Response Models

class IngestResponse(BaseModel):
    filename: str
    stores: List[str] = Field(..., description="Names of the stores updated by this ingest")
    chunks: int


class StoreListResponse(BaseModel):
    stores: List[str]
    default: str


class SourceModel(BaseModel):
    document: str
    chunk_index: int
    store_name: str
    score: float
    excerpt: str


class ChatResponse(BaseModel):
    answer: str
    sources: List[SourceModel] = Field(default_factory=list)


class FileRecordModel(BaseModel):
    filename: str
    size_bytes: int
    created_at: datetime
    vectorized: bool
    stores: List[str] = Field(default_factory=list)


class FileListResponse(BaseModel):
    userId: str
    files: List[FileRecordModel]


class ChatSummaryModel(BaseModel):
    chat_id: str
    store_name: str
    display_name: str
    last_activity_at: datetime
    turn_count: int
    created_at: datetime


class ChatListResponse(BaseModel):
    userId: str
    chats: List[ChatSummaryModel]


class TurnModel(BaseModel):
    question: str
    answer: str
    asked_at: datetime
    answered_at: datetime
    sources: List[SourceModel] = Field(default_factory=list)


class MessagesResponse(BaseModel):
    userId: str
    storeName: str
    chatId: str
    messages: List[TurnModel]


class UserListResponse(BaseModel):
    users: List[str]


class ModelListResponse(BaseModel):
    models: List[str]
    default: str


class ModelConfigModel(BaseModel):
    modelName: str
    temperature: float
    maxTokens: int
    topP: float


class ModelConfigResponse(BaseModel):
    """Default generation settings and the models a request may pick."""
    config: ModelConfigModel
    availableModels: List[str]


class MessageResponse(BaseModel):
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class SystemHealthResponse(BaseModel):
    """System health check response."""
    status: str = Field(..., description="Overall system status")
    timestamp: datetime = Field(default_factory=_now)
    uptime: float = Field(..., description="Uptime in seconds")
    resident_stores: List[str] = Field(default_factory=list, description="Stores currently loaded in memory")


# Error Models

class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Affected document, store or session")


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: ErrorDetail
    timestamp: datetime = Field(default_factory=_now)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": {
                "code": "STORE_NOT_FOUND",
                "message": "Vector store 'alice_policy' not found for user 'alice'",
                "details": {"store": "alice_policy", "owner_user_id": "alice"}
            },
            "timestamp": "2025-01-26T12:00:00Z"
        }
    })

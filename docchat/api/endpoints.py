"""
API endpoints for document ingestion, store listing, chat and session management.

Handlers are thin: they validate the request, call one core operation and
shape its result. Domain errors propagate to the handlers installed by
``setup_exception_handlers``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from docchat.api.dependencies import (
    ServiceContainer,
    get_ingestion_service,
    get_orchestrator,
    get_registry,
    get_services,
    get_session_store,
    get_user_directory,
)
from docchat.api.models import (
    ChatListResponse,
    ChatRequest,
    ChatResponse,
    ChatSummaryModel,
    CreateChatRequest,
    CreateUserRequest,
    FileListResponse,
    FileRecordModel,
    IngestRequest,
    IngestResponse,
    MessageResponse,
    MessagesResponse,
    ModelConfigModel,
    ModelConfigRequest,
    ModelConfigResponse,
    ModelListResponse,
    RenameChatRequest,
    SourceModel,
    StoreListResponse,
    TurnModel,
    UploadRequest,
    UserListResponse,
)
from docchat.chat.session_store import ChatSessionStore, SessionKey
from docchat.config.settings import settings
from docchat.generation.llm_providers import GenerationConfig
from docchat.generation.orchestrator import RetrievalOrchestrator
from docchat.ingestion.service import IngestionService
from docchat.users.directory import UserDirectory
from docchat.utils.logger import get_logger
from docchat.vector.registry import StoreScope, VectorStoreRegistry

logger = get_logger(__name__)

router = APIRouter()


# Ingestion Endpoints

@router.post("/ingest",
             response_model=IngestResponse,
             summary="Upload and index a document",
             description="Chunk, embed and write a document into every store selected by the fan-out policy.")
async def ingest(request: IngestRequest,
                 ingestion: IngestionService = Depends(get_ingestion_service)):
    logger.info("Processing ingest request", user_id=request.userId, filename=request.filename)
    result = await ingestion.ingest(
        request.userId,
        request.filename,
        request.content,
        timeout=settings.request_timeout,
    )
    return IngestResponse(**result.to_dict())


@router.post("/users/{user_id}/files",
             response_model=FileRecordModel,
             status_code=status.HTTP_201_CREATED,
             summary="Upload a document without indexing it")
async def upload_file(user_id: str,
                      request: UploadRequest,
                      ingestion: IngestionService = Depends(get_ingestion_service)):
    record = await ingestion.upload(user_id, request.filename, request.content)
    return FileRecordModel(**record.to_dict())


@router.post("/users/{user_id}/files/{filename}/vectorize",
             response_model=IngestResponse,
             summary="Index a previously uploaded document")
async def vectorize_file(user_id: str,
                         filename: str,
                         ingestion: IngestionService = Depends(get_ingestion_service)):
    result = await ingestion.vectorize(user_id, filename, timeout=settings.request_timeout)
    return IngestResponse(**result.to_dict())


@router.get("/users/{user_id}/files", response_model=FileListResponse, summary="List a user's uploads")
async def list_files(user_id: str, services: ServiceContainer = Depends(get_services)):
    uid = await services.users.require(user_id)
    records = await services.files.list_files(uid)
    return FileListResponse(userId=uid.value, files=[FileRecordModel(**r.to_dict()) for r in records])


# Vector Store Endpoints

@router.get("/vector-stores", response_model=StoreListResponse, summary="List system stores")
async def list_system_stores(registry: VectorStoreRegistry = Depends(get_registry),
                             services: ServiceContainer = Depends(get_services)):
    descriptors = await registry.list_stores(StoreScope.SYSTEM)
    return StoreListResponse(
        stores=[d.name for d in descriptors],
        default=services.policy.combined_store_name(None),
    )


@router.get("/users/{user_id}/vector-stores", response_model=StoreListResponse, summary="List a user's stores")
async def list_user_stores(user_id: str, services: ServiceContainer = Depends(get_services)):
    uid = await services.users.require(user_id)
    descriptors = await services.registry.list_stores(StoreScope.USER, uid.value)
    return StoreListResponse(
        stores=[d.name for d in descriptors],
        default=services.policy.combined_store_name(uid.value),
    )


# Chat Endpoints

@router.post("/chat",
             response_model=ChatResponse,
             summary="Ask a question",
             description="Retrieve the closest chunks from a store, generate a grounded answer and record the turn.")
async def chat(request: ChatRequest,
               users: UserDirectory = Depends(get_user_directory),
               orchestrator: RetrievalOrchestrator = Depends(get_orchestrator)):
    uid = await users.require(request.userId)
    logger.info(
        "Processing chat request",
        user_id=uid.value,
        chat_id=request.chatId,
        store=request.storeName,
        question_length=len(request.question)
    )
    result = await orchestrator.answer(
        uid.value,
        request.storeName,
        request.chatId,
        request.question,
        timeout=settings.request_timeout,
        config=_generation_config(request.modelConfig),
    )
    return ChatResponse(
        answer=result.answer,
        sources=[SourceModel(**s.to_dict()) for s in result.sources],
    )


# Session Management Endpoints

@router.get("/users/{user_id}/chats", response_model=ChatListResponse, summary="List a user's chats")
async def list_chats(user_id: str,
                     storeName: Optional[str] = None,
                     sessions: ChatSessionStore = Depends(get_session_store)):
    if storeName:
        summaries = await sessions.list_chats(user_id, storeName)
    else:
        summaries = await sessions.list_sessions(user_id)
    return ChatListResponse(userId=user_id, chats=[ChatSummaryModel(**s.to_dict()) for s in summaries])


@router.post("/users/{user_id}/vector-stores/{store_name}/chats/{chat_id}",
             response_model=ChatSummaryModel,
             status_code=status.HTTP_201_CREATED,
             summary="Create a chat")
async def create_chat(user_id: str,
                      store_name: str,
                      chat_id: str,
                      request: CreateChatRequest,
                      services: ServiceContainer = Depends(get_services)):
    uid = await services.users.require(user_id)
    session = await services.sessions.get_or_create_session(uid.value, store_name, chat_id, request.name)
    return ChatSummaryModel(**session.summary().to_dict())


@router.put("/users/{user_id}/vector-stores/{store_name}/chats/{chat_id}",
            response_model=ChatSummaryModel,
            summary="Rename a chat")
async def rename_chat(user_id: str,
                      store_name: str,
                      chat_id: str,
                      request: RenameChatRequest,
                      sessions: ChatSessionStore = Depends(get_session_store)):
    session = await sessions.rename(SessionKey(user_id, store_name, chat_id), request.name)
    return ChatSummaryModel(**session.summary().to_dict())


@router.post("/users/{user_id}/vector-stores/{store_name}/chats/{chat_id}/clear",
             response_model=MessageResponse,
             summary="Clear a chat's history")
async def clear_chat(user_id: str,
                     store_name: str,
                     chat_id: str,
                     sessions: ChatSessionStore = Depends(get_session_store)):
    await sessions.clear_history(SessionKey(user_id, store_name, chat_id))
    return MessageResponse(
        message="Chat history cleared successfully",
        details={"userId": user_id, "storeName": store_name, "chatId": chat_id},
    )


@router.delete("/users/{user_id}/vector-stores/{store_name}/chats/{chat_id}",
               response_model=MessageResponse,
               summary="Delete a chat")
async def delete_chat_session(user_id: str,
                              store_name: str,
                              chat_id: str,
                              sessions: ChatSessionStore = Depends(get_session_store)):
    await sessions.delete_session(SessionKey(user_id, store_name, chat_id))
    return MessageResponse(
        message="Chat deleted",
        details={"userId": user_id, "storeName": store_name, "chatId": chat_id},
    )


@router.delete("/users/{user_id}/chats/{chat_id}",
               response_model=MessageResponse,
               summary="Delete a chat from every store")
async def delete_chat_everywhere(user_id: str,
                                 chat_id: str,
                                 sessions: ChatSessionStore = Depends(get_session_store)):
    stores = await sessions.delete_chat(user_id, chat_id)
    return MessageResponse(
        message="Chat deleted completely",
        details={"userId": user_id, "chatId": chat_id, "stores": stores},
    )


@router.get("/users/{user_id}/vector-stores/{store_name}/chats/{chat_id}/messages",
            response_model=MessagesResponse,
            summary="Load a chat's turns")
async def get_messages(user_id: str,
                       store_name: str,
                       chat_id: str,
                       sessions: ChatSessionStore = Depends(get_session_store)):
    turns = await sessions.load_turns(user_id, store_name, chat_id)
    return MessagesResponse(
        userId=user_id,
        storeName=store_name,
        chatId=chat_id,
        messages=[TurnModel(**t.to_dict()) for t in turns],
    )


# User Endpoints

@router.get("/users", response_model=UserListResponse, summary="List users")
async def list_users(users: UserDirectory = Depends(get_user_directory)):
    records = await users.list_users()
    return UserListResponse(users=[r.user_id.value for r in records])


@router.post("/users",
             response_model=MessageResponse,
             status_code=status.HTTP_201_CREATED,
             summary="Create a user")
async def create_user(request: CreateUserRequest, users: UserDirectory = Depends(get_user_directory)):
    record = await users.create(request.userId)
    return MessageResponse(
        message="User created",
        details={"userId": record.user_id.value, "createdAt": record.created_at.isoformat()},
    )


# Model Endpoints

def _generation_config(overrides: Optional[ModelConfigRequest]) -> GenerationConfig:
    config = GenerationConfig.from_settings()
    if overrides is None:
        return config
    return config.override(
        model=overrides.modelName,
        temperature=overrides.temperature,
        max_tokens=overrides.maxTokens,
        top_p=overrides.topP,
    )


@router.get("/models", response_model=ModelListResponse, summary="List selectable chat models")
async def list_models():
    return ModelListResponse(models=settings.available_llm_models, default=settings.llm_model)


@router.get("/config/model", response_model=ModelConfigResponse, summary="Default generation settings")
async def get_model_config():
    config = GenerationConfig.from_settings()
    return ModelConfigResponse(
        config=ModelConfigModel(
            modelName=settings.llm_model,
            temperature=config.temperature,
            maxTokens=config.max_tokens,
            topP=config.top_p,
        ),
        availableModels=settings.available_llm_models,
    )

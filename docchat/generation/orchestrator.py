"""
Retrieval orchestrator.

Answers a question against a named store: embed the question, retrieve the
nearest chunks, ask the completion provider with those chunks and the recent
conversation as grounding, then record the turn in the chat session.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from docchat.chat.session_store import ChatSessionStore, ChatTurn, SessionKey, SourceRef
from docchat.config.settings import settings
from docchat.exceptions import ProviderTimeout, StoreNotFound, TRANSIENT_PROVIDER_ERRORS
from docchat.generation.llm_providers import BaseLLMProvider, GenerationConfig, GenerationRequest
from docchat.utils.async_utils import AsyncRetry
from docchat.utils.logger import get_logger
from docchat.utils.text_utils import is_safe_name, truncate_text
from docchat.vector.embeddings import BaseEmbeddingService
from docchat.vector.index import SearchHit
from docchat.vector.registry import StoreHandle, StoreKey, VectorStoreRegistry

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant answering questions about the user's documents. "
    "Answer using only the numbered context passages below. If the answer is not "
    "in the context, say that you do not know. Cite passages by their number."
)
EXCERPT_LENGTH = 200


@dataclass
class AnswerResult:
    answer: str
    sources: List[SourceRef] = field(default_factory=list)
    store_name: str = ""
    chat_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'answer': self.answer,
            'sources': [s.to_dict() for s in self.sources],
            'store_name': self.store_name,
            'chat_id': self.chat_id,
        }


def build_grounded_messages(question: str,
                            hits: Sequence[SearchHit],
                            history: Sequence[ChatTurn],
                            max_history_turns: int = 5) -> List[Dict[str, str]]:
    """System instruction, numbered context passages, prior turns, then the question."""
    if hits:
        passages = "\n\n".join(
            f"[{i}] ({hit.chunk.source_document}, part {hit.chunk.chunk_index + 1})\n{hit.chunk.text}"
            for i, hit in enumerate(hits, start=1)
        )
    else:
        passages = "(no relevant passages found)"

    messages = [{"role": "system", "content": f"{SYSTEM_PROMPT}\n\nContext:\n{passages}"}]
    recent = list(history)[-max_history_turns:] if max_history_turns > 0 else []
    for turn in recent:
        messages.append({"role": "user", "content": turn.question})
        messages.append({"role": "assistant", "content": turn.answer})
    messages.append({"role": "user", "content": question})
    return messages


class RetrievalOrchestrator:
    """
    Question answering over a vector store with persisted chat history.

    No store or session lock is held while the embedding or completion
    provider is awaited; the session is only locked to append the turn.
    """

    def __init__(self,
                 registry: VectorStoreRegistry,
                 sessions: ChatSessionStore,
                 embedding_service: BaseEmbeddingService,
                 llm: BaseLLMProvider,
                 k: Optional[int] = None,
                 max_history_turns: int = 5,
                 max_retries: Optional[int] = None,
                 retry_base_delay: Optional[float] = None):
        self.registry = registry
        self.sessions = sessions
        self.embedding_service = embedding_service
        self.llm = llm
        self.k = k or settings.retrieval_k
        self.max_history_turns = max_history_turns
        self.retry = AsyncRetry(
            max_attempts=max_retries or settings.embedding_max_retries,
            base_delay=settings.retry_base_delay if retry_base_delay is None else retry_base_delay,
            max_delay=settings.retry_max_delay,
            exceptions=TRANSIENT_PROVIDER_ERRORS,
        )

    async def resolve_store(self, user_id: Optional[str], store_name: str) -> StoreHandle:
        """
        Find a store by name: the user's own store first, then the system store.

        Raises:
            StoreNotFound: If neither exists; stores are never created here
        """
        if not is_safe_name(store_name):
            raise StoreNotFound(store_name, user_id)

        candidates = []
        if user_id and is_safe_name(user_id):
            candidates.append(StoreKey.user(user_id, store_name))
        candidates.append(StoreKey.system(store_name))

        for key in candidates:
            try:
                return await self.registry.open(key)
            except StoreNotFound:
                continue
        raise StoreNotFound(store_name, user_id)

    async def answer(self,
                     user_id: str,
                     store_name: str,
                     chat_id: str,
                     question: str,
                     timeout: Optional[float] = None,
                     config: Optional[GenerationConfig] = None) -> AnswerResult:
        """
        Answer ``question`` from ``store_name`` and append the turn to the chat.

        Args:
            timeout: Deadline in seconds for the provider calls; when it
                expires nothing is appended and ``ProviderTimeout`` is raised
            config: Generation parameters for this question; settings defaults
                when omitted

        Raises:
            StoreNotFound: If the store does not exist
            ProviderTimeout, ProviderRateLimited: After retries are exhausted
        """
        question = (question or "").strip()
        if not question:
            raise ValueError("Question must not be empty")

        handle = await self.resolve_store(user_id, store_name)
        # The session is only written with the first answered turn
        session = SessionKey(user_id, store_name, chat_id)
        history = await self.sessions.load_turns(user_id, store_name, chat_id)
        asked_at = datetime.now(timezone.utc)

        work = self._consult_providers(handle, history, question, timeout, config)
        if timeout is None:
            answer_text, hits = await work
        else:
            try:
                answer_text, hits = await asyncio.wait_for(work, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Answer deadline exceeded", user_id=user_id, store=store_name, chat_id=chat_id)
                raise ProviderTimeout(self.llm.provider, f"deadline of {timeout}s exceeded")

        sources = [
            SourceRef(
                document=hit.chunk.source_document,
                chunk_index=hit.chunk.chunk_index,
                store_name=handle.key.name,
                score=round(hit.score, 6),
                excerpt=truncate_text(hit.chunk.text, EXCERPT_LENGTH),
            )
            for hit in hits
        ]
        turn = ChatTurn(
            question=question,
            answer=answer_text,
            asked_at=asked_at,
            answered_at=datetime.now(timezone.utc),
            sources=tuple(sources),
        )
        await self.sessions.append_turn(session, turn)

        logger.info(
            "Question answered",
            user_id=user_id,
            store=store_name,
            chat_id=chat_id,
            sources=len(sources),
        )
        return AnswerResult(answer=answer_text, sources=sources, store_name=store_name, chat_id=chat_id)

    async def _consult_providers(self,
                                 handle: StoreHandle,
                                 history: Sequence[ChatTurn],
                                 question: str,
                                 timeout: Optional[float],
                                 config: Optional[GenerationConfig]):
        @self.retry
        async def embed_question() -> List[float]:
            return await self.embedding_service.embed(question, timeout=timeout)

        query_vector = await embed_question()
        hits = await self.registry.search(handle, query_vector, self.k)

        request = GenerationRequest(
            messages=build_grounded_messages(question, hits, history, self.max_history_turns),
            config=config or GenerationConfig.from_settings(),
        )

        @self.retry
        async def generate():
            return await self.llm.generate(request, timeout=timeout)

        response = await generate()
        return response.text, hits

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from .config import ChatConfig
from .context import ContextAssembler
from .errors import ChatError, ErrorKind
from .knowledge_base import Retriever
from .llm_client import GenerationBackend, OpenAICompatibleBackend
from .logging_utils import get_logger
from .protocol import StreamSession, resolve_stream_target
from .schemas import Conversation, HistoryItem, MessageCreateResponse, StatusResponse
from .storage import ConversationStore
from .streaming import ChatStreamer

log = get_logger(__name__)

DEFAULT_CONVERSATION_TITLE = "New Conversation"
MAX_HISTORY_LIMIT = 200


@dataclass(frozen=True)
class _Wiring:
    config: ChatConfig
    assembler: ContextAssembler
    streamer: ChatStreamer


class ChatService:
    def __init__(
        self,
        store: ConversationStore,
        *,
        config: ChatConfig,
        retriever: Retriever | None = None,
        backend: GenerationBackend | None = None,
    ) -> None:
        self.store = store
        self.retriever = retriever
        self._backend = backend
        self._wiring = self._wire(config)

    def _wire(self, config: ChatConfig) -> _Wiring:
        backend = self._backend
        if backend is None and config.generation_configured:
            backend = OpenAICompatibleBackend(
                api_key=config.llm_api_key, base_url=config.llm_base_url, timeout_s=config.timeout_s
            )
        if backend is None:
            log.warning("Generation API key not configured. Chat will use mock responses.")
        assembler = ContextAssembler(config, self.store, self.retriever)
        return _Wiring(config=config, assembler=assembler, streamer=ChatStreamer(config, assembler, backend))

    def reconfigure(self, config: ChatConfig) -> None:
        # Requests already streaming keep the wiring they started with.
        self._wiring = self._wire(config)

    @property
    def config(self) -> ChatConfig:
        return self._wiring.config

    async def create_conversation(self, title: str | None = None) -> Conversation:
        conv = await self.store.create_conversation((title or "").strip() or DEFAULT_CONVERSATION_TITLE)
        log.info("Created conversation %s", conv.id)
        return conv

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conv = await self.store.get_conversation(conversation_id)
        if conv is None:
            raise ChatError(ErrorKind.NOT_FOUND, "Conversation not found")
        return conv

    async def submit_message(
        self,
        conversation_id: str | None,
        content: str | None,
        context: dict[str, Any] | None = None,
    ) -> MessageCreateResponse:
        if not conversation_id or not content or not content.strip():
            raise ChatError(ErrorKind.BAD_REQUEST, "Missing conversation_id or content")

        await self.get_conversation(conversation_id)

        user_message = await self.store.create_message(conversation_id, "user", content)
        assistant_message = await self.store.create_message(conversation_id, "assistant", "")
        log.info("Created message %s for conversation %s", user_message.id, conversation_id)

        stream_url = f"/stream/{assistant_message.id}"
        if context:
            stream_url += "?context=" + quote(json.dumps(context, ensure_ascii=False), safe="")
        return MessageCreateResponse(
            message_id=assistant_message.id,
            user_message_id=user_message.id,
            stream_url=stream_url,
        )

    async def open_stream(self, message_id: str, page_context: dict[str, Any] | None = None) -> StreamSession:
        wiring = self._wiring
        target = await resolve_stream_target(self.store, message_id, page_context)
        return StreamSession(target, wiring.streamer, self.store)

    async def get_history(self, conversation_id: str, limit: int = 50) -> list[HistoryItem]:
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ChatError(ErrorKind.BAD_REQUEST, f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
        await self.get_conversation(conversation_id)
        messages = await self.store.get_recent_messages(conversation_id, limit)
        return [HistoryItem(role=m.role, content=m.content) for m in messages]

    def status(self) -> StatusResponse:
        return StatusResponse(
            generation_configured=not self._wiring.streamer.mock_mode,
            retrieval_available=bool(self.retriever is not None and self.retriever.is_available()),
        )

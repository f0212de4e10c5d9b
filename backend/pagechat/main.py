from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .config import APP_DB_PATH, KB_PATH
from .errors import ChatError, ErrorKind
from .knowledge_base import KnowledgeBase
from .logging_utils import get_logger
from .protocol import STREAM_HEADERS, QueueSink, parse_page_context
from .schemas import (
    AdminSettingsResponse,
    AdminSettingsUpdateRequest,
    Conversation,
    ConversationCreateRequest,
    ErrorResponse,
    HistoryResponse,
    MessageCreateRequest,
    MessageCreateResponse,
    StatusResponse,
)
from .service import ChatService
from .settings import SettingsError, build_chat_config, get_settings_bundle, update_settings
from .storage import SQLiteConversationStore

log = get_logger(__name__)

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def build_default_service(db_path: Path = APP_DB_PATH, kb_path: Path = KB_PATH) -> ChatService:
    store = SQLiteConversationStore(db_path)
    store.init()
    knowledge_base = KnowledgeBase(kb_path)
    knowledge_base.load()
    config = build_chat_config(get_settings_bundle(db_path)["effective"])
    return ChatService(store, config=config, retriever=knowledge_base)


def create_app(service: ChatService | None = None, *, db_path: Path = APP_DB_PATH) -> FastAPI:
    app = FastAPI(title="pagechat-backend")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = service

    @app.on_event("startup")
    def _startup() -> None:
        if app.state.service is None:
            app.state.service = build_default_service(db_path)

    def svc() -> ChatService:
        if app.state.service is None:
            raise HTTPException(status_code=503, detail="Service is not initialised")
        return app.state.service

    @app.exception_handler(ChatError)
    async def _chat_error(request: Request, exc: ChatError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    def health() -> dict[str, Any]:
        status = svc().status()
        return {"status": "ok", **status.model_dump()}

    @app.get("/status", response_model=StatusResponse)
    def status() -> StatusResponse:
        return svc().status()

    @app.post("/conversations", response_model=Conversation)
    async def conversations_create(req: ConversationCreateRequest) -> Conversation:
        return await svc().create_conversation(req.title)

    @app.get("/conversations/{conversation_id}", response_model=Conversation, responses=_ERROR_RESPONSES)
    async def conversations_get(conversation_id: str) -> Conversation:
        return await svc().get_conversation(conversation_id)

    @app.post("/messages", response_model=MessageCreateResponse, responses=_ERROR_RESPONSES)
    async def messages_create(req: MessageCreateRequest) -> MessageCreateResponse:
        return await svc().submit_message(req.conversation_id, req.content, req.context)

    @app.get("/history/{conversation_id}", response_model=HistoryResponse, responses=_ERROR_RESPONSES)
    async def history(conversation_id: str, limit: int = 50) -> HistoryResponse:
        return HistoryResponse(messages=await svc().get_history(conversation_id, limit))

    @app.get("/stream/{message_id}", responses=_ERROR_RESPONSES)
    async def stream(message_id: str, context: str | None = None) -> StreamingResponse:
        service = svc()
        page_context = parse_page_context(context)
        try:
            session = await service.open_stream(message_id, page_context)
        except ChatError:
            raise
        except Exception as e:
            log.exception("Error opening stream for message %s", message_id)
            raise ChatError(ErrorKind.UNKNOWN, "Failed to stream response") from e

        sink = QueueSink()

        async def gen() -> Any:
            task = asyncio.create_task(session.run(sink))
            try:
                async for record in sink.records():
                    yield record
            finally:
                sink.disconnect()
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        return StreamingResponse(gen(), media_type="text/event-stream", headers=STREAM_HEADERS)

    @app.get("/admin/settings", response_model=AdminSettingsResponse)
    def admin_get_settings() -> dict[str, Any]:
        try:
            return get_settings_bundle(db_path)
        except SettingsError as e:
            log.exception("Settings error")
            raise HTTPException(status_code=500, detail=str(e)) from e

    @app.post("/admin/settings", response_model=AdminSettingsResponse)
    def admin_update_settings(req: AdminSettingsUpdateRequest) -> dict[str, Any]:
        service = svc()
        try:
            bundle = update_settings(req.settings, db_path)
        except SettingsError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        service.reconfigure(
            build_chat_config(
                bundle["effective"],
                api_key=service.config.llm_api_key,
                base_url=service.config.llm_base_url,
            )
        )
        return bundle

    return app


app = create_app()

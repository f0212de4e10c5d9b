from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]


class Conversation(BaseModel):
    id: str
    title: str
    created_at: str


class Message(BaseModel):
    id: str
    conversation_id: str
    role: Role
    content: str
    created_at: str


class PromptSegment(BaseModel):
    role: Role
    content: str


class RetrievalResult(BaseModel):
    title: str
    content: str
    relevance_score: float = Field(ge=0.0, le=1.0)
    type: str | None = None
    href: str | None = None


class Citation(BaseModel):
    type: str
    title: str
    href: str | None = None
    relevance: float | None = None


class ConversationCreateRequest(BaseModel):
    title: str | None = None


class MessageCreateRequest(BaseModel):
    conversation_id: str | None = None
    content: str | None = None
    context: dict[str, Any] | None = None


class MessageCreateResponse(BaseModel):
    message_id: str
    user_message_id: str
    stream_url: str


class HistoryItem(BaseModel):
    role: Role
    content: str


class HistoryResponse(BaseModel):
    messages: list[HistoryItem]


class StatusResponse(BaseModel):
    generation_configured: bool
    retrieval_available: bool


class ErrorResponse(BaseModel):
    error: str
    detail: Any | None = None


class AdminSettingsUpdateRequest(BaseModel):
    settings: dict[str, Any]


class AdminSettingsResponse(BaseModel):
    defaults: dict[str, Any]
    settings: dict[str, Any]
    effective: dict[str, Any]

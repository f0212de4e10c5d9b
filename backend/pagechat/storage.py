from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from . import app_db
from .config import APP_DB_PATH
from .errors import ChatError, ErrorKind
from .schemas import Conversation, Message


class ConversationStore(Protocol):
    async def create_conversation(self, title: str) -> Conversation: ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def create_message(self, conversation_id: str, role: str, content: str) -> Message: ...

    async def get_message(self, message_id: str) -> Message | None: ...

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[Message]: ...

    async def update_message_content(self, message_id: str, content: str) -> None: ...


def _conversation_missing(conversation_id: str) -> ChatError:
    return ChatError(ErrorKind.NOT_FOUND, f"Conversation not found: {conversation_id}")


class SQLiteConversationStore:
    """app_db behind an async interface; every query runs off the event loop."""

    def __init__(self, db_path: Path = APP_DB_PATH) -> None:
        self.db_path = db_path

    def init(self) -> None:
        app_db.init_db(self.db_path)

    async def create_conversation(self, title: str) -> Conversation:
        row = await asyncio.to_thread(app_db.create_conversation, title, self.db_path)
        return Conversation(**row)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = await asyncio.to_thread(app_db.get_conversation, conversation_id, self.db_path)
        return Conversation(**row) if row else None

    async def create_message(self, conversation_id: str, role: str, content: str) -> Message:
        if await self.get_conversation(conversation_id) is None:
            raise _conversation_missing(conversation_id)
        row = await asyncio.to_thread(app_db.insert_message, conversation_id, role, content, self.db_path)
        return Message(**row)

    async def get_message(self, message_id: str) -> Message | None:
        row = await asyncio.to_thread(app_db.get_message, message_id, self.db_path)
        return Message(**row) if row else None

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        rows = await asyncio.to_thread(app_db.list_recent_messages, conversation_id, limit, self.db_path)
        return [Message(**r) for r in rows]

    async def update_message_content(self, message_id: str, content: str) -> None:
        updated = await asyncio.to_thread(app_db.update_message_content, message_id, content, self.db_path)
        if not updated:
            raise ChatError(ErrorKind.NOT_FOUND, f"Message not found: {message_id}")


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}
        self._by_id: dict[str, Message] = {}

    async def create_conversation(self, title: str) -> Conversation:
        conv = Conversation(id=str(uuid.uuid4()), title=title, created_at=datetime.now(timezone.utc).isoformat())
        self._conversations[conv.id] = conv
        self._messages[conv.id] = []
        return conv

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def create_message(self, conversation_id: str, role: str, content: str) -> Message:
        if conversation_id not in self._conversations:
            raise _conversation_missing(conversation_id)
        msg = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._messages[conversation_id].append(msg)
        self._by_id[msg.id] = msg
        return msg

    async def get_message(self, message_id: str) -> Message | None:
        return self._by_id.get(message_id)

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        msgs = self._messages.get(conversation_id) or []
        return list(msgs[-limit:]) if limit > 0 else []

    async def update_message_content(self, message_id: str, content: str) -> None:
        msg = self._by_id.get(message_id)
        if msg is None:
            raise ChatError(ErrorKind.NOT_FOUND, f"Message not found: {message_id}")
        updated = msg.model_copy(update={"content": content})
        self._by_id[message_id] = updated
        msgs = self._messages[msg.conversation_id]
        msgs[msgs.index(msg)] = updated

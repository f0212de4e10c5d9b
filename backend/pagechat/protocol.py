from __future__ import annotations

import asyncio
import contextlib
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol

from .errors import ChatError, ErrorKind
from .events import ChunkEvent, DoneEvent, ErrorEvent, StreamEvent, encode_event
from .logging_utils import get_logger
from .storage import ConversationStore
from .streaming import ChatStreamer, aclose_quietly

log = get_logger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_UNEXPECTED_STREAM_ERROR = "Unable to process your request: the response stream failed. Please try again."

# The turn to answer is the latest user message among this many stored entries.
TURN_LOOKUP_WINDOW = 10


class ChannelClosedError(RuntimeError):
    pass


class EventSink(Protocol):
    """One-way record channel to a client (an HTTP response, a websocket, ...)."""

    @property
    def is_open(self) -> bool: ...

    async def write(self, record: str) -> None: ...

    async def close(self) -> None: ...


class QueueSink:
    """Sink drained by an HTTP response body through a bounded queue."""

    def __init__(self, maxsize: int = 8) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._disconnected = False

    @property
    def is_open(self) -> bool:
        return not (self._closed or self._disconnected)

    async def write(self, record: str) -> None:
        if not self.is_open:
            raise ChannelClosedError("Event channel is closed")
        await self._queue.put(record)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._disconnected:
            await self._queue.put(None)

    def disconnect(self) -> None:
        self._disconnected = True

    async def records(self) -> AsyncIterator[str]:
        while True:
            record = await self._queue.get()
            if record is None:
                return
            yield record


def parse_page_context(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        log.warning("Failed to parse context parameter; using empty context")
        return {}
    if not isinstance(value, dict):
        log.warning("Context parameter is not a JSON object; using empty context")
        return {}
    return value


@dataclass
class StreamTarget:
    message_id: str
    conversation_id: str
    user_message: str
    page_context: dict[str, Any] = field(default_factory=dict)


async def resolve_stream_target(
    store: ConversationStore,
    message_id: str,
    page_context: dict[str, Any] | None = None,
) -> StreamTarget:
    """Validate a stream request before any byte of the stream is sent."""
    message = await store.get_message(message_id)
    if message is None:
        raise ChatError(ErrorKind.NOT_FOUND, "Message not found")

    recent = await store.get_recent_messages(message.conversation_id, TURN_LOOKUP_WINDOW)
    last_user = next((m for m in reversed(recent) if m.role == "user"), None)
    if last_user is None:
        raise ChatError(ErrorKind.BAD_REQUEST, "No user message found")

    return StreamTarget(
        message_id=message.id,
        conversation_id=message.conversation_id,
        user_message=last_user.content,
        page_context=dict(page_context or {}),
    )


class StreamSession:
    """Drives one validated request onto a sink and always closes it exactly once."""

    def __init__(self, target: StreamTarget, streamer: ChatStreamer, store: ConversationStore) -> None:
        self.target = target
        self.streamer = streamer
        self.store = store

    async def _emit(self, sink: EventSink, event: StreamEvent) -> None:
        await sink.write(encode_event(event))

    async def _fail(self, sink: EventSink, message: str) -> None:
        if not sink.is_open:
            return
        with contextlib.suppress(ChannelClosedError):
            await self._emit(sink, ErrorEvent(message))

    async def run(self, sink: EventSink) -> None:
        target = self.target
        events = self.streamer.stream(target.conversation_id, target.user_message, target.page_context or None)
        parts: list[str] = []
        try:
            while True:
                if not sink.is_open:
                    log.info("Client disconnected from stream %s", target.message_id)
                    return
                try:
                    event = await events.__anext__()
                except StopAsyncIteration:
                    break
                if isinstance(event, ChunkEvent):
                    parts.append(event.text)
                await self._emit(sink, event)

            await self.store.update_message_content(target.message_id, "".join(parts))
            await self._emit(sink, DoneEvent())
            log.info("Stream completed for message %s", target.message_id)
        except ChannelClosedError:
            log.info("Client disconnected from stream %s", target.message_id)
        except ChatError as e:
            log.warning("Stream for message %s failed: %s (%s)", target.message_id, e.kind.value, e.message)
            await self._fail(sink, e.message)
        except Exception:
            log.exception("Error in stream for message %s", target.message_id)
            await self._fail(sink, _UNEXPECTED_STREAM_ERROR)
        finally:
            try:
                await aclose_quietly(events)
            finally:
                await sink.close()

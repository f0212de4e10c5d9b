"""Stream events and their wire encoding.

A response stream is ``chunk* sources? (done | error)``: content fragments
in generation order, at most one citations event, then exactly one
terminal event.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from .schemas import Citation


@dataclass(frozen=True)
class ChunkEvent:
    text: str


@dataclass(frozen=True)
class SourcesEvent:
    citations: list[Citation] = field(default_factory=list)


@dataclass(frozen=True)
class DoneEvent:
    pass


@dataclass(frozen=True)
class ErrorEvent:
    message: str


StreamEvent = Union[ChunkEvent, SourcesEvent, DoneEvent, ErrorEvent]


def event_payload(event: StreamEvent) -> dict[str, Any]:
    if isinstance(event, ChunkEvent):
        return {"type": "chunk", "content": event.text}
    if isinstance(event, SourcesEvent):
        return {"type": "sources", "sources": [c.model_dump(exclude_none=True) for c in event.citations]}
    if isinstance(event, DoneEvent):
        return {"type": "done"}
    if isinstance(event, ErrorEvent):
        return {"type": "error", "message": event.message}
    raise TypeError(f"Unknown stream event: {event!r}")


def encode_event(event: StreamEvent) -> str:
    return f"data: {json.dumps(event_payload(event), ensure_ascii=False)}\n\n"

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Mapping

from .config import ChatConfig
from .context import AssembledPrompt, ContextAssembler
from .errors import ChatError, normalize_backend_error
from .events import ChunkEvent, SourcesEvent, StreamEvent
from .llm_client import GenerationBackend
from .logging_utils import get_logger

log = get_logger(__name__)

EMPTY_RESPONSE_FALLBACK = (
    "I apologize, but I was unable to generate a response. Please try rephrasing your question."
)

MOCK_FRAGMENTS = (
    "I understand your question. ",
    "Based on the current context, ",
    "I can help you with that. ",
    "\n\nHere are some key points:\n",
    "1. This is a mock response for demonstration\n",
    "2. Configure an API key for real responses\n",
    "3. I'm ready to help once configured\n\n",
    "Would you like more information?",
)


async def aclose_quietly(it: Any) -> None:
    aclose = getattr(it, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        log.warning("Error while closing stream iterator", exc_info=True)


class ChatStreamer:
    """Turns one assembled prompt into a lazy ``chunk* sources?`` event sequence.

    Normal exhaustion means success; the caller emits ``done``. Any failure
    is raised as a single ``ChatError`` carrying a user-facing message.
    """

    def __init__(
        self,
        config: ChatConfig,
        assembler: ContextAssembler,
        backend: GenerationBackend | None = None,
    ) -> None:
        self.config = config
        self.assembler = assembler
        self.backend = backend

    @property
    def mock_mode(self) -> bool:
        return self.backend is None

    async def _mock_fragments(self) -> AsyncIterator[str]:
        for fragment in MOCK_FRAGMENTS:
            await asyncio.sleep(self.config.mock_delay_s)
            yield fragment

    def _fragments(self, prompt: AssembledPrompt) -> AsyncIterator[str]:
        if self.backend is None:
            log.info("Using mock streaming response")
            return self._mock_fragments()
        return self.backend.stream_chat(
            prompt.as_messages(),
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )

    async def stream(
        self,
        conversation_id: str,
        user_message: str,
        page_context: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        try:
            prompt = await self.assembler.assemble(conversation_id, page_context, user_message)
            log.info("Streaming response for conversation %s", conversation_id)

            full_response: list[str] = []
            fragments = self._fragments(prompt)
            try:
                async for text in fragments:
                    if not text:
                        continue
                    full_response.append(text)
                    yield ChunkEvent(text)
            finally:
                await aclose_quietly(fragments)

            if not full_response:
                log.warning("Empty response for conversation %s", conversation_id)
                yield ChunkEvent(EMPTY_RESPONSE_FALLBACK)

            log.info(
                "Stream completed for conversation %s (%d chars)",
                conversation_id,
                sum(len(t) for t in full_response),
            )

            if prompt.citations:
                yield SourcesEvent(list(prompt.citations))
        except ChatError:
            raise
        except Exception as e:
            log.exception("Generation failed for conversation %s", conversation_id)
            raise normalize_backend_error(e) from e

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from .config import ChatConfig
from .knowledge_base import Retriever
from .logging_utils import get_logger
from .schemas import Citation, PromptSegment, RetrievalResult
from .storage import ConversationStore

log = get_logger(__name__)

_PAGE_KEYS = ("currentPage", "page", "route")
_KNOWN_KEYS = {"currentPage", "page", "route", "userRole", "navigationHistory", "recentActions", "timestamp"}


@dataclass
class AssembledPrompt:
    segments: list[PromptSegment]
    citations: list[Citation] = field(default_factory=list)

    def as_messages(self) -> list[dict[str, Any]]:
        return [s.model_dump() for s in self.segments]


def render_page_context(page_context: Mapping[str, Any]) -> str:
    """Render page/application state as labelled lines for the model.

    ``currentPage``/``page``/``route``, ``userRole``, ``navigationHistory``
    and ``recentActions`` get fixed labels; ``timestamp`` is dropped; any
    other key is rendered as ``key: <json>``.
    """
    lines = ["Current Context:"]

    current_page = next((page_context[k] for k in _PAGE_KEYS if page_context.get(k)), None)
    if current_page:
        lines.append(f"- Page: {current_page}")

    if page_context.get("userRole"):
        lines.append(f"- User Role: {page_context['userRole']}")

    nav = page_context.get("navigationHistory")
    if isinstance(nav, list) and nav:
        lines.append(f"- Recent Pages: {' → '.join(str(p) for p in nav)}")

    actions = page_context.get("recentActions")
    if isinstance(actions, list) and actions:
        lines.append("- Recent Actions:")
        lines.extend(f"  * {a}" for a in actions)

    for key, value in page_context.items():
        if key in _KNOWN_KEYS:
            continue
        lines.append(f"- {key}: {json.dumps(value, ensure_ascii=False, default=str)}")

    lines.append("")
    lines.append("Based on this context, provide relevant and specific assistance.")
    return "\n".join(lines)


def render_retrieval(results: list[RetrievalResult]) -> str:
    blocks = ["**Relevant Information from Knowledge Base:**", ""]
    for r in results:
        blocks.append(f"### {r.title}")
        blocks.append(r.content)
        blocks.append(f"*(Relevance: {r.relevance_score * 100:.0f}%)*")
        blocks.append("")
    blocks.append("Use this information to provide accurate guidance. Cite sources when relevant.")
    return "\n".join(blocks)


def build_citations(results: list[RetrievalResult]) -> list[Citation]:
    return [
        Citation(type=r.type or "knowledge-base", title=r.title, href=r.href, relevance=r.relevance_score)
        for r in results
    ]


class ContextAssembler:
    def __init__(
        self,
        config: ChatConfig,
        store: ConversationStore,
        retriever: Retriever | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.retriever = retriever

    async def _retrieve(self, user_message: str) -> list[RetrievalResult]:
        if not self.config.enable_retrieval or self.retriever is None:
            return []
        try:
            return await self.retriever.retrieve_relevant_documents(
                user_message, self.config.retrieval_max_results, self.config.relevance_floor
            )
        except Exception:
            log.warning("Retrieval failed; continuing without knowledge base context", exc_info=True)
            return []

    async def _history(self, conversation_id: str, user_message: str) -> list[PromptSegment]:
        recent = await self.store.get_recent_messages(conversation_id, self.config.history_limit)
        # Pending assistant placeholders have no text yet.
        turns = [m for m in recent if m.role in ("user", "assistant") and m.content]
        if turns and turns[-1].role == "user" and turns[-1].content == user_message:
            turns = turns[:-1]
        return [PromptSegment(role=m.role, content=m.content) for m in turns]

    async def assemble(
        self,
        conversation_id: str,
        page_context: Mapping[str, Any] | None,
        user_message: str,
    ) -> AssembledPrompt:
        segments = [PromptSegment(role="system", content=self.config.system_prompt)]

        if page_context:
            segments.append(PromptSegment(role="system", content=render_page_context(page_context)))

        citations: list[Citation] = []
        results = await self._retrieve(user_message)
        if results:
            log.info("Including %d knowledge base results in context", len(results))
            segments.append(PromptSegment(role="system", content=render_retrieval(results)))
            citations = build_citations(results)

        segments.extend(await self._history(conversation_id, user_message))
        segments.append(PromptSegment(role="user", content=user_message))
        return AssembledPrompt(segments=segments, citations=citations)

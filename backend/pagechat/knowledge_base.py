from __future__ import annotations

import json
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .logging_utils import get_logger
from .schemas import RetrievalResult

log = get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+", re.IGNORECASE)
_STOPWORDS = {
    "a",
    "an",
    "and",
    "are",
    "as",
    "at",
    "be",
    "by",
    "can",
    "do",
    "does",
    "for",
    "from",
    "how",
    "i",
    "in",
    "is",
    "it",
    "my",
    "of",
    "on",
    "or",
    "the",
    "to",
    "what",
    "when",
    "where",
    "which",
    "with",
    "you",
}


def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN_RE.findall((text or "").lower()) if t not in _STOPWORDS]


class Retriever(Protocol):
    async def retrieve_relevant_documents(
        self, query: str, max_results: int = 3, relevance_floor: float = 0.6
    ) -> list[RetrievalResult]: ...

    def is_available(self) -> bool: ...


@dataclass(frozen=True)
class Document:
    id: str
    title: str
    content: str
    type: str | None = None
    href: str | None = None
    terms: frozenset[str] = field(default=frozenset(), compare=False)


class KnowledgeBase:
    """Lexical retriever over a small document collection.

    Relevance is the IDF-weighted share of query terms that occur in a
    document's title or content, so 1.0 means every query term matched.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._docs: dict[str, Document] = {}
        self._df: Counter[str] = Counter()
        self._loaded = False

    def load(self) -> int:
        if self.path is None or not self.path.exists():
            log.info("Knowledge base file not found; retrieval stays unavailable (%s)", self.path)
            return 0

        docs: list[dict[str, Any]] = []
        with self.path.open("r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    docs.append(json.loads(line))
                except json.JSONDecodeError as e:
                    raise RuntimeError(f"Invalid knowledge base JSONL at line {line_no}: {e}") from e
        count = self.add_documents(docs)
        log.info("Loaded %d knowledge base documents from %s", count, self.path)
        return count

    def add_documents(self, documents: list[dict[str, Any]]) -> int:
        added = 0
        for rec in documents:
            doc_id = str(rec.get("id") or "").strip()
            content = str(rec.get("content") or "").strip()
            if not doc_id or not content:
                continue
            title = str(rec.get("title") or "").strip() or "Unknown"
            doc_type = rec.get("type")
            href = rec.get("href")
            if doc_id in self._docs:
                self._df.subtract(self._docs[doc_id].terms)
            doc = Document(
                id=doc_id,
                title=title,
                content=content,
                type=str(doc_type) if isinstance(doc_type, str) and doc_type.strip() else None,
                href=str(href) if isinstance(href, str) and href.strip() else None,
                terms=frozenset(tokenize(f"{title} {content}")),
            )
            self._docs[doc_id] = doc
            self._df.update(doc.terms)
            added += 1
        self._loaded = True
        return added

    def clear(self) -> None:
        self._docs.clear()
        self._df.clear()

    def stats(self) -> dict[str, Any]:
        return {"count": len(self._docs), "is_initialized": self._loaded}

    def is_available(self) -> bool:
        return self._loaded and bool(self._docs)

    def _idf(self, term: str) -> float:
        n = len(self._docs)
        df = self._df.get(term, 0)
        return math.log((n - df + 0.5) / (df + 0.5) + 1.0)

    def score(self, query: str, doc: Document) -> float:
        terms = set(tokenize(query))
        if not terms:
            return 0.0
        weights = {t: self._idf(t) for t in terms}
        total = sum(weights.values())
        if total <= 0.0:
            return 0.0
        matched = sum(w for t, w in weights.items() if t in doc.terms)
        return min(1.0, matched / total)

    async def retrieve_relevant_documents(
        self, query: str, max_results: int = 3, relevance_floor: float = 0.6
    ) -> list[RetrievalResult]:
        if not self._docs or max_results <= 0:
            return []
        scored = [(self.score(query, d), d) for d in self._docs.values()]
        scored = [(s, d) for s, d in scored if s > 0.0 and s >= relevance_floor]
        scored.sort(key=lambda sd: (-sd[0], sd[1].id))
        log.debug("Knowledge base query %r matched %d documents", query[:100], len(scored))
        return [
            RetrievalResult(title=d.title, content=d.content, relevance_score=s, type=d.type, href=d.href)
            for s, d in scored[:max_results]
        ]

"""Tests for the lexical knowledge base retriever."""

import json
from pathlib import Path

import pytest

from pagechat.knowledge_base import KnowledgeBase, tokenize

DOCS = [
    {"id": "refunds", "title": "Refund policy", "content": "Refunds are issued within 30 days of purchase.", "href": "/help/refunds"},
    {"id": "shipping", "title": "Shipping times", "content": "Orders ship within two business days.", "type": "faq"},
    {"id": "password", "title": "Reset your password", "content": "Use the forgot password link on the login page."},
]


@pytest.fixture
def kb() -> KnowledgeBase:
    k = KnowledgeBase()
    k.add_documents(DOCS)
    return k


def test_tokenize_drops_stopwords() -> None:
    assert tokenize("How do I reset my Password?") == ["reset", "password"]


def test_unloaded_knowledge_base_is_unavailable() -> None:
    assert not KnowledgeBase().is_available()


async def test_full_match_scores_one(kb) -> None:
    results = await kb.retrieve_relevant_documents("reset password", 3, 0.6)
    assert results[0].title == "Reset your password"
    assert results[0].relevance_score == pytest.approx(1.0)


async def test_results_respect_floor_and_cap(kb) -> None:
    results = await kb.retrieve_relevant_documents("refund shipping password", 1, 0.0)
    assert len(results) == 1

    assert await kb.retrieve_relevant_documents("quantum entanglement", 3, 0.0) == []
    assert await kb.retrieve_relevant_documents("password pricing tiers", 3, 0.9) == []


async def test_results_carry_type_and_href(kb) -> None:
    [refund] = await kb.retrieve_relevant_documents("refunds purchase", 3, 0.6)
    assert refund.href == "/help/refunds"
    assert refund.type is None

    [shipping] = await kb.retrieve_relevant_documents("orders ship", 3, 0.6)
    assert shipping.type == "faq"


def test_load_from_jsonl(tmp_path: Path) -> None:
    path = tmp_path / "kb.jsonl"
    path.write_text("\n".join(json.dumps(d) for d in DOCS) + "\n\n", encoding="utf-8")

    k = KnowledgeBase(path)
    assert k.load() == 3
    assert k.is_available()
    assert k.stats() == {"count": 3, "is_initialized": True}


def test_missing_file_leaves_retrieval_unavailable(tmp_path: Path) -> None:
    k = KnowledgeBase(tmp_path / "absent.jsonl")
    assert k.load() == 0
    assert not k.is_available()


def test_clear(kb) -> None:
    kb.clear()
    assert kb.stats()["count"] == 0
    assert not kb.is_available()

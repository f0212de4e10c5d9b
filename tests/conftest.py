"""Shared test fixtures."""

import json

import pytest

from pagechat.config import ChatConfig
from pagechat.storage import InMemoryConversationStore


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def config() -> ChatConfig:
    return ChatConfig(system_prompt="You are a test assistant.", mock_delay_s=0.0, llm_api_key="")


def decode_records(records: list[str]) -> list[dict]:
    """Parse ``data: <json>\\n\\n`` records into payload dicts."""
    out = []
    for record in records:
        assert record.startswith("data: ")
        assert record.endswith("\n\n")
        out.append(json.loads(record[len("data: ") : -2]))
    return out


@pytest.fixture
def decode():
    return decode_records

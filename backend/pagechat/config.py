from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


REPO_ROOT = _repo_root()

APP_DB_PATH = Path(os.getenv("PAGECHAT_DB_PATH", str(REPO_ROOT / "backend" / "data" / "app.sqlite")))

LLM_BASE_URL = os.getenv("PAGECHAT_LLM_BASE_URL", "https://api.openai.com").rstrip("/")
LLM_API_KEY = os.getenv("PAGECHAT_LLM_API_KEY", "")
LLM_MODEL = os.getenv("PAGECHAT_LLM_MODEL") or None

KB_PATH = Path(os.getenv("PAGECHAT_KB_PATH", str(REPO_ROOT / "backend" / "data" / "knowledge_base.jsonl")))

LOG_LEVEL = os.getenv("PAGECHAT_LOG_LEVEL", "INFO")

PLACEHOLDER_API_KEYS = {"", "sk-your-api-key-here"}

DEFAULT_SYSTEM_PROMPT = """You are a helpful AI assistant. You provide clear, accurate, and helpful responses to user questions.

## Communication Style:
- Professional but approachable
- Action-oriented with practical guidance
- Clear and concise explanations
- Use bullet points for clarity when appropriate

## Response Format:
1. Brief summary answering the question
2. Detailed explanation or steps
3. Additional context or examples if helpful

When uncertain:
- Admit knowledge gaps honestly
- Offer alternatives or related information
- Never guess or make up information
"""


def api_key_configured(api_key: str | None) -> bool:
    return (api_key or "").strip() not in PLACEHOLDER_API_KEYS


@dataclass(frozen=True)
class ChatConfig:
    """Everything one request needs to know; replaced wholesale, never mutated."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout_s: float = 60.0
    enable_retrieval: bool = False
    retrieval_max_results: int = 3
    relevance_floor: float = 0.6
    history_limit: int = 10
    mock_delay_s: float = 0.05
    llm_base_url: str = LLM_BASE_URL
    llm_api_key: str = ""

    @property
    def generation_configured(self) -> bool:
        return api_key_configured(self.llm_api_key)

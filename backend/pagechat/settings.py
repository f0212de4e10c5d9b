from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from . import app_db
from .config import (
    APP_DB_PATH,
    DEFAULT_SYSTEM_PROMPT,
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_MODEL,
    REPO_ROOT,
    ChatConfig,
)
from .logging_utils import get_logger

log = get_logger(__name__)

DEFAULT_SETTINGS_PATH = REPO_ROOT / "backend" / "default_settings.json"

EDITABLE_KEYS = ("persona", "system_prompt", "llm", "retrieval", "history_limit", "mock")


class SettingsError(RuntimeError):
    pass


def _read_json(path: Path) -> dict[str, Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SettingsError(f"Failed to read settings file {path}: {e}") from e


def load_defaults(path: Path = DEFAULT_SETTINGS_PATH) -> dict[str, Any]:
    if not path.exists():
        raise SettingsError(f"Default settings file not found: {path}")

    defaults = dict(_read_json(path))

    prompt_files = defaults.get("system_prompt_templates_files")
    templates: dict[str, str] = {}
    if isinstance(prompt_files, dict):
        for persona, rel_path in prompt_files.items():
            if not isinstance(persona, str) or not persona.strip():
                continue
            if not isinstance(rel_path, str) or not rel_path.strip():
                continue
            p = (REPO_ROOT / rel_path).resolve()
            if not p.exists():
                raise SettingsError(f"System prompt template file not found: {p}")
            templates[persona.strip()] = p.read_text(encoding="utf-8")
    defaults["system_prompt_templates"] = templates
    return defaults


def get_settings_bundle(db_path: Path = APP_DB_PATH, defaults_path: Path = DEFAULT_SETTINGS_PATH) -> dict[str, Any]:
    defaults = load_defaults(defaults_path)
    db_settings = app_db.list_settings(db_path)

    effective: dict[str, Any] = dict(defaults)
    for k, v in db_settings.items():
        if isinstance(v, dict) and isinstance(effective.get(k), dict):
            effective[k] = {**effective[k], **v}
        else:
            effective[k] = v

    return {"defaults": defaults, "settings": db_settings, "effective": effective}


def _number(block: dict[str, Any], key: str, lo: float, hi: float) -> None:
    if key not in block:
        return
    v = block[key]
    if isinstance(v, bool) or not isinstance(v, (int, float)) or not (lo <= float(v) <= hi):
        raise SettingsError(f"'{key}' must be a number between {lo} and {hi}")


def validate_settings(values: dict[str, Any], templates: dict[str, str]) -> None:
    unknown = sorted(set(values) - set(EDITABLE_KEYS))
    if unknown:
        raise SettingsError("Unknown settings keys: " + ", ".join(unknown))

    if "persona" in values and values["persona"] not in templates:
        raise SettingsError(f"Unknown persona '{values['persona']}'. Available: {', '.join(sorted(templates))}")

    if "system_prompt" in values:
        sp = values["system_prompt"]
        if sp is not None and (not isinstance(sp, str) or not sp.strip()):
            raise SettingsError("'system_prompt' must be a non-empty string or null")

    for key in ("llm", "retrieval", "mock"):
        if key in values and not isinstance(values[key], dict):
            raise SettingsError(f"'{key}' must be an object")

    llm = values.get("llm") or {}
    _number(llm, "temperature", 0.0, 2.0)
    _number(llm, "max_tokens", 1, 128_000)
    _number(llm, "timeout_s", 1, 3600)
    if "model" in llm and (not isinstance(llm["model"], str) or not llm["model"].strip()):
        raise SettingsError("'model' must be a non-empty string")

    retrieval = values.get("retrieval") or {}
    _number(retrieval, "relevance_floor", 0.0, 1.0)
    _number(retrieval, "max_results", 1, 50)
    if "enabled" in retrieval and not isinstance(retrieval["enabled"], bool):
        raise SettingsError("'enabled' must be a boolean")

    mock = values.get("mock") or {}
    _number(mock, "delay_s", 0.0, 10.0)

    if "history_limit" in values:
        h = values["history_limit"]
        if isinstance(h, bool) or not isinstance(h, int) or not (1 <= h <= 100):
            raise SettingsError("'history_limit' must be an integer between 1 and 100")


def update_settings(new_values: dict[str, Any], db_path: Path = APP_DB_PATH) -> dict[str, Any]:
    defaults = load_defaults()
    validate_settings(new_values, defaults["system_prompt_templates"])
    app_db.set_settings(new_values, db_path)
    log.info("Updated settings keys: %s", ", ".join(sorted(new_values)))
    return get_settings_bundle(db_path)


def select_system_prompt(effective: dict[str, Any]) -> str:
    explicit = effective.get("system_prompt")
    if isinstance(explicit, str) and explicit.strip():
        return explicit
    templates = effective.get("system_prompt_templates")
    persona = effective.get("persona")
    if isinstance(templates, dict) and isinstance(persona, str):
        t = templates.get(persona)
        if isinstance(t, str) and t.strip():
            return t
        log.warning("Persona %r has no template; using the default system prompt", persona)
    return DEFAULT_SYSTEM_PROMPT


def build_chat_config(
    effective: dict[str, Any],
    *,
    api_key: str = LLM_API_KEY,
    base_url: str = LLM_BASE_URL,
    model_override: str | None = LLM_MODEL,
) -> ChatConfig:
    llm = effective.get("llm") if isinstance(effective.get("llm"), dict) else {}
    retrieval = effective.get("retrieval") if isinstance(effective.get("retrieval"), dict) else {}
    mock = effective.get("mock") if isinstance(effective.get("mock"), dict) else {}

    return ChatConfig(
        system_prompt=select_system_prompt(effective),
        model=model_override or str(llm.get("model") or "gpt-4o-mini"),
        temperature=float(llm.get("temperature", 0.7)),
        max_tokens=int(llm.get("max_tokens", 1000)),
        timeout_s=float(llm.get("timeout_s", 60.0) or 60.0),
        enable_retrieval=bool(retrieval.get("enabled", False)),
        retrieval_max_results=int(retrieval.get("max_results", 3)),
        relevance_floor=float(retrieval.get("relevance_floor", 0.6)),
        history_limit=int(effective.get("history_limit", 10)),
        mock_delay_s=float(mock.get("delay_s", 0.05)),
        llm_base_url=base_url,
        llm_api_key=api_key,
    )

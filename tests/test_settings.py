"""Tests for default settings, persona selection and admin overrides."""

from pathlib import Path

import pytest

from pagechat import app_db
from pagechat.config import DEFAULT_SYSTEM_PROMPT
from pagechat.settings import (
    SettingsError,
    build_chat_config,
    get_settings_bundle,
    load_defaults,
    select_system_prompt,
    update_settings,
    validate_settings,
)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    p = tmp_path / "app.sqlite"
    app_db.init_db(p)
    return p


@pytest.fixture
def templates() -> dict[str, str]:
    return load_defaults()["system_prompt_templates"]


def test_defaults_load_every_persona_template(templates) -> None:
    assert set(templates) == {"general-assistant", "customer-support", "technical-docs"}
    assert all(t.strip() for t in templates.values())


@pytest.mark.parametrize(
    "values",
    [
        {"bogus": 1},
        {"persona": "pirate"},
        {"system_prompt": "   "},
        {"llm": "fast"},
        {"llm": {"temperature": 3}},
        {"llm": {"max_tokens": 0}},
        {"retrieval": {"relevance_floor": 1.5}},
        {"retrieval": {"enabled": "yes"}},
        {"history_limit": True},
        {"history_limit": -1},
        {"history_limit": 0},
    ],
)
def test_validate_rejects_bad_values(values, templates) -> None:
    with pytest.raises(SettingsError):
        validate_settings(values, templates)


def test_update_merges_overrides_over_defaults(db_path) -> None:
    bundle = update_settings({"persona": "customer-support", "llm": {"temperature": 0.2}}, db_path)

    assert bundle["settings"] == {"llm": {"temperature": 0.2}, "persona": "customer-support"}
    effective = bundle["effective"]
    assert effective["llm"]["temperature"] == 0.2
    assert effective["llm"]["model"] == "gpt-4o-mini"
    assert get_settings_bundle(db_path)["effective"]["persona"] == "customer-support"


def test_invalid_update_is_not_persisted(db_path) -> None:
    with pytest.raises(SettingsError):
        update_settings({"history_limit": 500}, db_path)
    assert app_db.list_settings(db_path) == {}


def test_system_prompt_precedence(templates) -> None:
    assert select_system_prompt({"system_prompt": "Be brief.", "persona": "technical-docs",
                                 "system_prompt_templates": templates}) == "Be brief."
    assert select_system_prompt({"persona": "technical-docs",
                                 "system_prompt_templates": templates}) == templates["technical-docs"]
    assert select_system_prompt({"persona": "missing", "system_prompt_templates": templates}) == DEFAULT_SYSTEM_PROMPT
    assert select_system_prompt({}) == DEFAULT_SYSTEM_PROMPT


def test_build_chat_config_from_effective_settings(db_path, templates) -> None:
    bundle = update_settings(
        {"persona": "customer-support", "retrieval": {"enabled": True, "max_results": 5}, "history_limit": 4},
        db_path,
    )

    cfg = build_chat_config(bundle["effective"], api_key="", base_url="http://llm.local", model_override=None)

    assert cfg.system_prompt == templates["customer-support"]
    assert cfg.enable_retrieval is True
    assert cfg.retrieval_max_results == 5
    assert cfg.relevance_floor == 0.6
    assert cfg.history_limit == 4
    assert cfg.model == "gpt-4o-mini"
    assert cfg.llm_base_url == "http://llm.local"
    assert not cfg.generation_configured


def test_model_override_wins() -> None:
    cfg = build_chat_config({"llm": {"model": "gpt-4o-mini"}}, api_key="sk-real", model_override="local-model")
    assert cfg.model == "local-model"
    assert cfg.generation_configured

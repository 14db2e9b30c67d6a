# tests/test_config.py

from __future__ import annotations

from pathlib import Path

from goalcoach.config import Settings


def test_defaults(monkeypatch) -> None:
    for name in ("GOALCOACH_LLM_API_KEY", "OPENAI_API_KEY", "GOALCOACH_DATA_DIR", "GOALCOACH_LLM_MODELS",
                 "GOALCOACH_STORE_DB_PATH", "GOALCOACH_HTTP_REFERER", "GOALCOACH_APP_TITLE"):
        monkeypatch.delenv(name, raising=False)

    s = Settings.from_env()
    assert s.llm_api_key is None
    assert s.llm_models == ["gpt-4-turbo"]
    assert s.store_db_path == Path(".local/goalcoach") / "store.sqlite3"
    assert s.extra_headers == {}


def test_env_overrides(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("GOALCOACH_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("GOALCOACH_LLM_MODELS", "model-a, model-b")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-fallback")
    monkeypatch.setenv("GOALCOACH_SUGGESTION_COUNT", "0")
    monkeypatch.setenv("GOALCOACH_APP_TITLE", "Goal Coach")

    s = Settings.from_env()
    assert s.store_db_path == tmp_path / "store.sqlite3"
    assert s.llm_models == ["model-a", "model-b"]
    assert s.llm_api_key == "sk-fallback"
    assert s.suggestion_count == 1
    assert s.extra_headers == {"X-Title": "Goal Coach"}

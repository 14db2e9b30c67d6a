# src/goalcoach/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Components take settings as an argument so tests can inject their own.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "GOALCOACH"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Local .env (gitignored) never overrides variables already set in the environment.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Identity (auth is out of scope; one local owner) ----
    owner_id: str
    goal_id: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    store_db_path: Path

    # ---- LLM (OpenAI-compatible) ----
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_models: List[str]
    llm_temperature: float
    llm_max_tokens: int
    llm_connect_timeout: float
    llm_read_timeout: float
    extra_headers: Dict[str, str]

    # ---- Suggestions ----
    suggestion_count: int
    offline_suggestions: bool

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "goalcoach") or "goalcoach"
        log_level = _env(_k("LOG_LEVEL"), "WARNING")

        owner_id = (_env(_k("OWNER_ID"), "local") or "local").strip()
        goal_id = (_env(_k("GOAL_ID"), "main") or "main").strip()

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/goalcoach"))
        store_db_path = _env_path(_k("STORE_DB_PATH"), data_dir / "store.sqlite3")

        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENAI_API_KEY", default=None)
        llm_base_url = _env(_k("LLM_BASE_URL"), "https://api.openai.com/v1")
        llm_models = _env_list(_k("LLM_MODELS"), ["gpt-4-turbo"])
        llm_temperature = _env_float(_k("LLM_TEMPERATURE"), 0.7)
        llm_max_tokens = _env_int(_k("LLM_MAX_TOKENS"), 1000)
        llm_connect_timeout = _env_float(_k("LLM_CONNECT_TIMEOUT_SECONDS"), 5.0)
        llm_read_timeout = _env_float(_k("LLM_READ_TIMEOUT_SECONDS"), 60.0)

        # Optional OpenRouter-style metadata headers; empty values are dropped.
        extra_headers = {
            k: v
            for k, v in {
                "HTTP-Referer": _env(_k("HTTP_REFERER"), ""),
                "X-Title": _env(_k("APP_TITLE"), ""),
            }.items()
            if v
        }

        suggestion_count = max(1, _env_int(_k("SUGGESTION_COUNT"), 5))
        offline_suggestions = _env_bool(_k("OFFLINE_SUGGESTIONS"), False)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            owner_id=owner_id,
            goal_id=goal_id,
            data_dir=data_dir,
            store_db_path=store_db_path,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_models=llm_models,
            llm_temperature=llm_temperature,
            llm_max_tokens=llm_max_tokens,
            llm_connect_timeout=llm_connect_timeout,
            llm_read_timeout=llm_read_timeout,
            extra_headers=extra_headers,
            suggestion_count=suggestion_count,
            offline_suggestions=offline_suggestions,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS

# src/goalcoach/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations (SQLite document store, AI coach) into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.errors import SuggestionServiceError
from ..core.planner import GoalPlanner
from ..core.ports import SuggestionService
from ..core.state import AppState
from ..llm.client import OpenAISuggestionClient, friendly_llm_error_message
from ..llm.offline import OfflineSuggestionService
from ..storage.sqlite_store import SqliteDocumentStore
from ..tasks.goals import GoalRepository
from ..tasks.suggestions import SuggestionWorkflow
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.store_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_suggestion_service(settings) -> tuple[SuggestionService, bool]:
    """Real LLM client when configured, offline coach otherwise. Returns (service, offline)."""
    count = int(getattr(settings, "suggestion_count", 5))
    if getattr(settings, "offline_suggestions", False):
        return OfflineSuggestionService(count=count), True
    try:
        return OpenAISuggestionClient(settings), False
    except SuggestionServiceError as exc:
        logger.warning("AI coach unavailable, using offline suggestions: %s", friendly_llm_error_message(exc))
        return OfflineSuggestionService(count=count), True


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    documents = SqliteDocumentStore(settings.store_db_path)
    service, offline = build_suggestion_service(settings)

    task_store = TaskStore(documents, owner_id=settings.owner_id)
    planner = GoalPlanner(
        task_store=task_store,
        suggestions=SuggestionWorkflow(service, task_store),
        goals=GoalRepository(documents, owner_id=settings.owner_id),
        goal_id=settings.goal_id,
    )

    return AppState(
        settings=settings,
        documents=documents,
        suggestion_service=service,
        planner=planner,
        offline_coach=offline,
    )

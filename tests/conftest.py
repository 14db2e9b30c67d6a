# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from goalcoach.core.planner import GoalPlanner
from goalcoach.core.state import AppState
from goalcoach.tasks.goals import GoalRepository
from goalcoach.tasks.suggestions import SuggestionWorkflow
from goalcoach.tasks.task_store import TaskStore

from .fakes import FakeSuggestionService, FlakyDocumentStore

OWNER = "u1"
GOAL = "g1"


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and the LLM client.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the developer's environment.
    """
    return SimpleNamespace(
        app_name="goalcoach-test",
        log_level="DEBUG",
        owner_id=OWNER,
        goal_id=GOAL,
        data_dir=tmp_path,
        store_db_path=tmp_path / "store.sqlite3",
        llm_api_key=None,
        llm_base_url="http://localhost:9/v1",
        llm_models=["model-a", "model-b"],
        llm_temperature=0.0,
        llm_max_tokens=200,
        llm_connect_timeout=1.0,
        llm_read_timeout=1.0,
        extra_headers={},
        suggestion_count=5,
        offline_suggestions=False,
    )


@pytest.fixture()
def documents(settings: SimpleNamespace) -> FlakyDocumentStore:
    """Real SQLite document store with failure injection switches (all off by default)."""
    return FlakyDocumentStore(settings.store_db_path)


@pytest.fixture()
def task_store(documents: FlakyDocumentStore) -> TaskStore:
    """Not subscribed yet: subscribe() needs the test's running event loop."""
    return TaskStore(documents, owner_id=OWNER)


@pytest.fixture()
def coach() -> FakeSuggestionService:
    return FakeSuggestionService()


@pytest.fixture()
def workflow(coach: FakeSuggestionService, task_store: TaskStore) -> SuggestionWorkflow:
    return SuggestionWorkflow(coach, task_store)


@pytest.fixture()
def planner(task_store: TaskStore, workflow: SuggestionWorkflow, documents: FlakyDocumentStore) -> GoalPlanner:
    return GoalPlanner(
        task_store=task_store,
        suggestions=workflow,
        goals=GoalRepository(documents, owner_id=OWNER),
        goal_id=GOAL,
    )


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    documents: FlakyDocumentStore,
    coach: FakeSuggestionService,
    planner: GoalPlanner,
) -> AppState:
    """AppState wired with the real SQLite store and a deterministic AI coach."""
    return AppState(
        settings=settings,
        documents=documents,
        suggestion_service=coach,
        planner=planner,
        offline_coach=False,
    )

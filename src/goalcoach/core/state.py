# src/goalcoach/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..core.ports import DocumentStore, SuggestionService
from .planner import GoalPlanner


@dataclass
class AppState:
    # Settings object (real Settings or a test SimpleNamespace).
    settings: Any

    documents: DocumentStore
    suggestion_service: SuggestionService
    planner: GoalPlanner

    # True when the offline coach is wired instead of the real LLM client.
    offline_coach: bool = False

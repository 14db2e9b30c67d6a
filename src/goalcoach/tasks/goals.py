# src/goalcoach/tasks/goals.py

from __future__ import annotations

import logging
import time

from ..core.errors import StoreError, StoreWriteError, ValidationError
from ..core.ports import DocumentStore
from .task_models import Goal, goals_collection_path

logger = logging.getLogger(__name__)


class GoalRepository:
    """Goal document: users/{owner}/goals/{goal_id} with a `text` field."""

    def __init__(self, documents: DocumentStore, *, owner_id: str) -> None:
        self._documents = documents
        self._path = goals_collection_path(owner_id)

    async def load_goal(self, goal_id: str) -> Goal | None:
        fields = await self._documents.get_document(self._path, goal_id)
        if not fields:
            return None
        text = str(fields.get("text") or "").strip()
        if not text:
            return None
        return Goal(id=goal_id, text=text)

    async def save_goal(self, goal_id: str, text: str) -> Goal:
        clean = (text or "").strip()
        if not clean:
            raise ValidationError("Goal text must not be empty.")
        try:
            await self._documents.set_document(
                self._path,
                goal_id,
                {"text": clean, "updatedAt": time.time()},
                merge=True,
            )
        except StoreError:
            raise
        except Exception as exc:
            raise StoreWriteError(f"Failed to save goal: {exc}") from exc
        logger.info("Goal saved id=%s len=%d", goal_id, len(clean))
        return Goal(id=goal_id, text=clean)

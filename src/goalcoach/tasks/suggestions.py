# src/goalcoach/tasks/suggestions.py

"""
Suggestion adoption workflow.

    idle -> requesting -> staged | failed
    staged -> idle (rejected)
    staged -> committing -> idle | failed

The request is single-flight: while one is outstanding (or a commit is
running) a new request is refused without calling the provider.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any

from ..core.errors import (
    PlannerError,
    PreconditionError,
    SingleFlightError,
    SuggestionServiceError,
    ValidationError,
)
from ..core.ports import SuggestionService
from .task_models import Task
from .task_store import TaskStore

logger = logging.getLogger(__name__)


class SuggestionPhase(StrEnum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STAGED = "staged"
    COMMITTING = "committing"
    FAILED = "failed"


def project_tasks(tasks: Sequence[Task]) -> list[dict[str, Any]]:
    """What the provider may see: no ids, no estimates, no order."""
    return [
        {
            "text": t.text,
            "completed": t.completed,
            "priority": t.priority.value,
            "dueDate": t.due_date.isoformat() if t.due_date else None,
        }
        for t in tasks
    ]


def build_request(goal_text: str, tasks: Sequence[Task]) -> dict[str, Any]:
    return {"goalText": goal_text, "tasks": project_tasks(tasks)}


def parse_suggestions(payload: Any) -> list[str]:
    """
    Validate a provider response of shape {"tasks": [str, ...]}.

    Blank items are dropped; zero usable items is a (soft) failure.
    """
    if not isinstance(payload, Mapping):
        raise SuggestionServiceError("The AI coach returned an unexpected response.")

    err = payload.get("error")
    if err:
        raise SuggestionServiceError(str(err))

    items = payload.get("tasks")
    if not isinstance(items, list):
        raise SuggestionServiceError("The AI coach response has no task list.")

    out: list[str] = []
    for item in items:
        if not isinstance(item, str):
            raise SuggestionServiceError("The AI coach response contains a non-text task.")
        text = item.strip()
        if text:
            out.append(text)

    if not out:
        raise SuggestionServiceError("The AI coach did not suggest any tasks. Try again.")
    return out


class SuggestionWorkflow:
    """Stages AI suggestions for one TaskStore and adopts them on confirmation."""

    def __init__(self, service: SuggestionService, task_store: TaskStore) -> None:
        self._service = service
        self._task_store = task_store
        self._phase = SuggestionPhase.IDLE
        self._staged: tuple[str, ...] = ()
        self._last_error: str | None = None

    @property
    def phase(self) -> SuggestionPhase:
        return self._phase

    @property
    def staged(self) -> tuple[str, ...]:
        return self._staged

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def busy(self) -> bool:
        return self._phase in (SuggestionPhase.REQUESTING, SuggestionPhase.COMMITTING)

    def _fail(self, message: str) -> None:
        self._phase = SuggestionPhase.FAILED
        self._staged = ()
        self._last_error = message

    async def request_suggestions(
            self,
            goal_text: str,
            current_tasks: Sequence[Task] | None = None,
    ) -> tuple[str, ...]:
        """Ask the provider for a new plan and stage it. Returns the staged texts."""
        if self.busy:
            raise SingleFlightError("A suggestion request is already in progress.")

        goal = (goal_text or "").strip()
        if not goal:
            raise ValidationError("Set a goal before asking the AI coach.")

        tasks = self._task_store.tasks if current_tasks is None else current_tasks
        request = build_request(goal, tasks)

        self._phase = SuggestionPhase.REQUESTING
        self._staged = ()
        self._last_error = None
        logger.info("Requesting suggestions goal_len=%d tasks=%d", len(goal), len(tasks))

        try:
            payload = await self._service.suggest(request)
            texts = parse_suggestions(payload)
        except asyncio.CancelledError:
            self._phase = SuggestionPhase.IDLE
            raise
        except SuggestionServiceError as exc:
            self._fail(str(exc))
            logger.warning("Suggestion request failed: %s", exc)
            raise
        except Exception as exc:
            self._fail(str(exc) or exc.__class__.__name__)
            logger.exception("Suggestion provider crashed")
            raise SuggestionServiceError(f"The AI coach failed: {exc}") from exc

        self._staged = tuple(texts)
        self._phase = SuggestionPhase.STAGED
        logger.info("Staged %d suggestion(s)", len(texts))
        return self._staged

    async def accept_staged(self) -> None:
        """Replace the whole task set with the staged suggestions in one atomic batch."""
        if self._phase != SuggestionPhase.STAGED or not self._staged:
            raise PreconditionError("There are no staged suggestions to accept.")

        texts = self._staged
        self._phase = SuggestionPhase.COMMITTING
        self._staged = ()

        try:
            await self._task_store.replace_all(texts)
        except PlannerError as exc:
            self._fail(str(exc))
            logger.warning("Adopting suggestions failed; previous tasks kept: %s", exc)
            raise
        except BaseException:
            self._fail("Adopting suggestions was interrupted.")
            raise

        self._phase = SuggestionPhase.IDLE
        self._last_error = None
        logger.info("Adopted %d suggestion(s)", len(texts))

    def reject_staged(self) -> None:
        """Drop staged (or failed) suggestions. No remote effect."""
        if self.busy:
            raise PreconditionError("Cannot reject while a suggestion request is in progress.")
        if self._staged:
            logger.info("Rejected %d suggestion(s)", len(self._staged))
        self._staged = ()
        self._phase = SuggestionPhase.IDLE
        self._last_error = None

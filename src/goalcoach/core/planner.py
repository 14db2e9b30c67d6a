# src/goalcoach/core/planner.py

"""
Presentation-facing façade.

Connectors (console today) read `display_list`, `loading`, `error` and the
suggestion state, and call the commands below. Every command records the last
failure in `error` and re-raises it, so a connector can either poll the flags
or handle the exception.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator, Sequence

from ..tasks.goals import GoalRepository
from ..tasks.ordering import compute_display_list
from ..tasks.suggestions import SuggestionPhase, SuggestionWorkflow
from ..tasks.task_models import (
    ALL_PRIORITIES,
    Goal,
    Priority,
    SortMode,
    Task,
    TaskDraft,
    parse_priority_filter,
)
from ..tasks.task_store import TaskStore
from .errors import PlannerError, PreconditionError

logger = logging.getLogger(__name__)

ViewListener = Callable[["GoalPlanner"], None]


class GoalPlanner:
    def __init__(
            self,
            *,
            task_store: TaskStore,
            suggestions: SuggestionWorkflow,
            goals: GoalRepository,
            goal_id: str,
    ) -> None:
        self.task_store = task_store
        self.suggestions = suggestions
        self.goals = goals
        self.goal_id = goal_id

        self.goal: Goal | None = None
        self.filter_priority: str | Priority = ALL_PRIORITIES
        self.sort_mode: SortMode = SortMode.CUSTOM
        self.error: str | None = None

        self._listeners: list[ViewListener] = []
        self._detach_store = task_store.add_listener(lambda _tasks: self._emit())

    # ---- reactive read ----

    @property
    def display_list(self) -> list[Task]:
        return compute_display_list(self.task_store.tasks, self.filter_priority, self.sort_mode)

    @property
    def loading(self) -> bool:
        return self.task_store.loading

    @property
    def suggestion_phase(self) -> SuggestionPhase:
        return self.suggestions.phase

    @property
    def staged(self) -> tuple[str, ...]:
        return self.suggestions.staged

    @property
    def reorder_enabled(self) -> bool:
        return self.filter_priority == ALL_PRIORITIES and self.sort_mode == SortMode.CUSTOM

    def add_listener(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("View listener failed")

    @contextlib.contextmanager
    def _reporting(self, action: str) -> Iterator[None]:
        try:
            yield
        except PlannerError as exc:
            self.error = str(exc)
            logger.info("%s failed: %s", action, exc)
            self._emit()
            raise
        self.error = None

    # ---- lifecycle ----

    async def open(self, goal_id: str | None = None) -> Goal | None:
        """Load the goal document and start following its tasks."""
        if goal_id:
            self.goal_id = goal_id
        with self._reporting("open"):
            self.goal = await self.goals.load_goal(self.goal_id)
            self.task_store.subscribe(self.goal_id)
        self._emit()
        return self.goal

    def close(self) -> None:
        self.task_store.unsubscribe()
        self._detach_store()

    # ---- goal ----

    async def set_goal(self, text: str) -> Goal:
        with self._reporting("set_goal"):
            self.goal = await self.goals.save_goal(self.goal_id, text)
        self._emit()
        return self.goal

    # ---- view ----

    def set_filter(self, priority: str | Priority) -> None:
        with self._reporting("set_filter"):
            self.filter_priority = parse_priority_filter(priority)
        self._emit()

    def set_sort(self, mode: str | SortMode) -> None:
        with self._reporting("set_sort"):
            self.sort_mode = SortMode.parse(mode)
        self._emit()

    # ---- tasks ----

    async def add(self, draft: TaskDraft) -> Task:
        with self._reporting("add"):
            return await self.task_store.add_task(draft)

    async def toggle(self, task_id: str) -> Task:
        with self._reporting("toggle"):
            return await self.task_store.toggle_completion(task_id)

    async def update(self, task_id: str, **changes) -> Task:
        with self._reporting("update"):
            return await self.task_store.update_task(task_id, **changes)

    async def delete(self, task_id: str) -> None:
        with self._reporting("delete"):
            await self.task_store.delete_task(task_id)

    async def reorder(self, task_ids: Sequence[str]) -> None:
        with self._reporting("reorder"):
            await self.task_store.reorder(
                task_ids,
                filter_priority=self.filter_priority,
                sort_mode=self.sort_mode,
            )

    async def move(self, task_id: str, new_position: int) -> None:
        with self._reporting("move"):
            await self.task_store.move_task(
                task_id,
                new_position,
                filter_priority=self.filter_priority,
                sort_mode=self.sort_mode,
            )

    # ---- AI coach ----

    async def request_suggestions(self) -> tuple[str, ...]:
        with self._reporting("request_suggestions"):
            if self.goal is None:
                raise PreconditionError("Set a goal before asking the AI coach.")
            staged = await self.suggestions.request_suggestions(self.goal.text, self.task_store.tasks)
        self._emit()
        return staged

    async def accept_staged(self) -> None:
        with self._reporting("accept_staged"):
            await self.suggestions.accept_staged()
        self._emit()

    def reject_staged(self) -> None:
        with self._reporting("reject_staged"):
            self.suggestions.reject_staged()
        self._emit()

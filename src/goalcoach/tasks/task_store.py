# src/goalcoach/tasks/task_store.py

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

from ..core.errors import PreconditionError, StoreBatchError, StoreError, StoreWriteError, ValidationError
from ..core.ports import BatchOp, CollectionSnapshot, DocumentStore, Subscription
from .ordering import (
    ensure_reorder_allowed,
    move_sequence,
    next_order,
    plan_reorder,
    plan_replacement,
)
from .task_models import (
    ALL_PRIORITIES,
    Priority,
    SortMode,
    Task,
    TaskDraft,
    parse_due_date,
    tasks_collection_path,
)

logger = logging.getLogger(__name__)

PROVISIONAL_PREFIX = "local-"
ORDER_FIELD = "order"

TasksListener = Callable[[tuple[Task, ...]], None]

_UNSET: Any = object()


class TaskStore:
    """
    In-memory ordered task collection for the active goal.

    The live subscription is the source of truth: every delivered snapshot
    replaces the local state. Local mutations are applied optimistically and
    settle in one of two ways:
    - add_task / reorder: restored on write failure
    - toggle_completion / update_task / delete_task: left for the next snapshot
      to correct (a failed write can look applied until then)

    Adds that are still in flight are overlaid on incoming snapshots so a
    concurrent snapshot does not make them flicker away.

    Nothing outside this class mutates the snapshot; readers get tuples.
    """

    def __init__(self, documents: DocumentStore, *, owner_id: str) -> None:
        self._documents = documents
        self._owner_id = owner_id

        self._goal_id: str | None = None
        self._path: str | None = None
        self._subscription: Subscription | None = None
        self._pump: asyncio.Task[None] | None = None

        self._tasks: tuple[Task, ...] = ()
        self._pending: dict[str, Task] = {}
        # Order sequence as of the last confirmed state while a reorder batch is in flight.
        self._reorder_before: tuple[Task, ...] | None = None
        self._loading = False
        self._listeners: list[TasksListener] = []
        self._snapshot_event = asyncio.Event()
        self._counter = itertools.count(1)

    # ---- read side ----

    @property
    def goal_id(self) -> str | None:
        return self._goal_id

    @property
    def collection_path(self) -> str | None:
        return self._path

    @property
    def tasks(self) -> tuple[Task, ...]:
        return self._tasks

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    def has_pending_writes(self) -> bool:
        return bool(self._pending)

    def get(self, task_id: str) -> Task:
        for t in self._tasks:
            if t.id == task_id:
                return t
        raise ValidationError(f"Unknown task id: {task_id}")

    def add_listener(self, listener: TasksListener) -> Callable[[], None]:
        """Register a callback fired after every local change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def wait_for_snapshot(self, timeout: float = 5.0) -> tuple[Task, ...]:
        """Wait until the next remote snapshot has been applied."""
        event = self._snapshot_event
        await asyncio.wait_for(event.wait(), timeout=timeout)
        return self._tasks

    # ---- subscription lifecycle ----

    def subscribe(self, goal_id: str) -> None:
        """
        Start following users/{owner}/goals/{goal_id}/tasks ordered by `order`.

        Must be called from a running event loop. Switching goals closes the
        previous subscription first.
        """
        goal_id = (goal_id or "").strip()
        if not goal_id:
            raise ValidationError("goal_id is required")

        self.unsubscribe()

        self._goal_id = goal_id
        self._path = tasks_collection_path(self._owner_id, goal_id)
        self._loading = True
        self._subscription = self._documents.subscribe_collection(self._path, ORDER_FIELD)
        self._pump = asyncio.get_running_loop().create_task(
            self._run_pump(self._subscription),
            name=f"tasks-subscription:{goal_id}",
        )
        logger.info("TaskStore subscribed goal=%s path=%s", goal_id, self._path)

    def unsubscribe(self) -> None:
        """Stop snapshot delivery and drop the local state. Safe to call twice."""
        sub, pump = self._subscription, self._pump
        self._subscription = None
        self._pump = None

        if sub is not None:
            sub.close()
        if pump is not None and not pump.done():
            pump.cancel()

        if self._goal_id is not None:
            logger.info("TaskStore unsubscribed goal=%s", self._goal_id)
        self._goal_id = None
        self._path = None
        self._pending.clear()
        self._reorder_before = None
        self._loading = False
        self._set_tasks(())

    async def _run_pump(self, sub: Subscription) -> None:
        async for snapshot in sub:
            if sub is not self._subscription:
                break
            try:
                self.apply_snapshot(snapshot)
            except Exception:
                logger.exception("Failed to apply snapshot path=%s", snapshot.path)

    def apply_snapshot(self, snapshot: CollectionSnapshot) -> None:
        """Reconcile: replace local state with the remote snapshot (+ in-flight adds)."""
        if snapshot.path != self._path:
            logger.debug("Ignoring snapshot for stale path=%s", snapshot.path)
            return

        remote = [Task.from_document(d.id, d.fields) for d in snapshot.documents]
        merged = remote + list(self._pending.values())
        merged.sort(key=lambda t: t.order)

        self._loading = False
        self._set_tasks(merged)
        logger.debug("Snapshot applied path=%s remote=%d pending=%d", snapshot.path, len(remote), len(self._pending))

        event, self._snapshot_event = self._snapshot_event, asyncio.Event()
        event.set()

    # ---- helpers ----

    def _require_path(self) -> str:
        if self._path is None:
            raise PreconditionError("No goal is open. Subscribe to a goal first.")
        return self._path

    def _require_persisted(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task.id in self._pending:
            raise PreconditionError("This task is still being saved. Try again in a moment.")
        return task

    def _provisional_id(self) -> str:
        return f"{PROVISIONAL_PREFIX}{time.time_ns()}-{next(self._counter)}"

    def _set_tasks(self, tasks: Sequence[Task]) -> None:
        self._tasks = tuple(tasks)
        for listener in list(self._listeners):
            try:
                listener(self._tasks)
            except Exception:
                logger.exception("Task listener failed")

    def _next_order(self) -> int:
        # A failed reorder restores the previous orders, so stay above both sequences.
        order = next_order(self._tasks)
        if self._reorder_before is not None:
            order = max(order, next_order(self._reorder_before))
        return order

    def _restore_orders(self, before: Sequence[Task]) -> list[Task]:
        """Put back the orders from `before`; tasks created meanwhile (pending or not) stay."""
        previous = {t.id: t.order for t in before}
        restored = [replace(t, order=previous[t.id]) if t.id in previous else t for t in self._tasks]
        restored.sort(key=lambda t: t.order)
        return restored

    def _replace_local(self, task: Task) -> None:
        self._set_tasks([task if t.id == task.id else t for t in self._tasks])

    # ---- commands ----

    async def add_task(self, draft: TaskDraft) -> Task:
        """
        Create a task at the end of the custom order.

        The task appears locally (with a provisional id) before the write
        resolves. On failure it is removed again and the error is raised.
        """
        path = self._require_path()
        draft = draft.validated()

        provisional = Task(
            id=self._provisional_id(),
            text=draft.text,
            completed=False,
            priority=Priority.parse(draft.priority),
            due_date=parse_due_date(draft.due_date),
            estimated_time_minutes=draft.estimated_time_minutes,
            order=self._next_order(),
            created_at=time.time(),
        )
        self._pending[provisional.id] = provisional
        self._set_tasks([*self._tasks, provisional])

        try:
            new_id = await self._documents.add_document(path, provisional.to_fields())
        except Exception as exc:
            self._pending.pop(provisional.id, None)
            if self._path == path:
                self._set_tasks([t for t in self._tasks if t.id != provisional.id])
            logger.warning("add_task failed, optimistic task removed: %s", exc)
            if isinstance(exc, StoreError):
                raise
            raise StoreWriteError(f"Failed to add task: {exc}") from exc

        self._pending.pop(provisional.id, None)
        saved = replace(provisional, id=new_id)

        if self._path == path:
            if any(t.id == new_id for t in self._tasks):
                # A snapshot already delivered the stored copy.
                self._set_tasks([t for t in self._tasks if t.id != provisional.id])
            else:
                self._set_tasks([saved if t.id == provisional.id else t for t in self._tasks])

        logger.info("Task added id=%s order=%s", new_id, saved.order)
        return saved

    async def toggle_completion(self, task_id: str) -> Task:
        """Flip `completed`. A failed write is raised but not rolled back locally."""
        path = self._require_path()
        task = self._require_persisted(task_id)
        flipped = replace(task, completed=not task.completed)
        self._replace_local(flipped)

        try:
            await self._documents.update_document(path, task.id, {"completed": flipped.completed})
        except Exception as exc:
            logger.warning("toggle_completion failed id=%s (local state kept until next snapshot): %s", task.id, exc)
            if isinstance(exc, StoreError):
                raise
            raise StoreWriteError(f"Failed to update task: {exc}") from exc
        return flipped

    async def update_task(
            self,
            task_id: str,
            *,
            text: str | None = None,
            priority: Priority | str | None = None,
            due_date: Any = _UNSET,
            estimated_time_minutes: int | None = None,
    ) -> Task:
        """
        Edit task attributes other than `order` and `completed`.

        due_date=None clears the date. Same settle policy as toggle_completion.
        """
        path = self._require_path()
        task = self._require_persisted(task_id)
        changes: dict[str, Any] = {}

        if text is not None:
            clean = text.strip()
            if not clean:
                raise ValidationError("Task text must not be empty.")
            changes["text"] = clean
        if priority is not None:
            changes["priority"] = Priority.parse(priority)
        if due_date is not _UNSET:
            changes["due_date"] = parse_due_date(due_date)
        if estimated_time_minutes is not None:
            est = estimated_time_minutes
            if isinstance(est, bool) or not isinstance(est, int) or est < 0:
                raise ValidationError("Estimated time must be a non-negative whole number of minutes.")
            changes["estimated_time_minutes"] = est

        if not changes:
            return task

        edited = replace(task, **changes)
        self._replace_local(edited)

        full = edited.to_fields()
        wire = {k: full[k] for k in _wire_names(changes)}
        try:
            await self._documents.update_document(path, task.id, wire)
        except Exception as exc:
            logger.warning("update_task failed id=%s (local state kept until next snapshot): %s", task.id, exc)
            if isinstance(exc, StoreError):
                raise
            raise StoreWriteError(f"Failed to update task: {exc}") from exc
        return edited

    async def delete_task(self, task_id: str) -> None:
        """Delete remotely; the local list changes when the next snapshot arrives."""
        path = self._require_path()
        task = self._require_persisted(task_id)
        try:
            await self._documents.delete_document(path, task.id)
        except Exception as exc:
            logger.warning("delete_task failed id=%s: %s", task.id, exc)
            if isinstance(exc, StoreError):
                raise
            raise StoreWriteError(f"Failed to delete task: {exc}") from exc
        logger.info("Task deleted id=%s", task.id)

    async def reorder(
            self,
            task_ids: Sequence[str],
            *,
            filter_priority: str | Priority = ALL_PRIORITIES,
            sort_mode: SortMode | str = SortMode.CUSTOM,
    ) -> None:
        """
        Persist a new custom order: order = index in task_ids.

        One atomic batch updates every task whose order changed. The local
        list is reordered first and restored if the batch fails.
        """
        ensure_reorder_allowed(filter_priority, sort_mode)
        path = self._require_path()
        if self._pending:
            raise PreconditionError("Wait until new tasks are saved before reordering.")

        task_ids = list(task_ids)
        changes = plan_reorder(self._tasks, task_ids)
        if not changes:
            return

        before = self._tasks
        position = {tid: idx for idx, tid in enumerate(task_ids)}
        reordered = sorted(
            (replace(t, order=changes.get(t.id, t.order)) for t in before),
            key=lambda t: position[t.id],
        )
        self._set_tasks(reordered)
        self._reorder_before = before

        ops = [BatchOp.update(path, tid, {ORDER_FIELD: order}) for tid, order in changes.items()]
        try:
            await self._documents.atomic_batch(ops)
        except Exception as exc:
            if self._path == path:
                self._set_tasks(self._restore_orders(before))
            logger.warning("reorder batch failed, local order restored: %s", exc)
            if isinstance(exc, StoreError):
                raise
            raise StoreBatchError(f"Failed to save the new order: {exc}") from exc
        finally:
            if self._path == path:
                self._reorder_before = None

        logger.info("Reordered %d task(s) goal=%s", len(changes), self._goal_id)

    async def move_task(
            self,
            task_id: str,
            new_position: int,
            *,
            filter_priority: str | Priority = ALL_PRIORITIES,
            sort_mode: SortMode | str = SortMode.CUSTOM,
    ) -> None:
        ensure_reorder_allowed(filter_priority, sort_mode)
        await self.reorder(
            move_sequence(self._tasks, task_id, new_position),
            filter_priority=filter_priority,
            sort_mode=sort_mode,
        )

    async def replace_all(self, texts: Sequence[str]) -> None:
        """
        Delete every stored task of the goal and create one per text, atomically.

        No optimistic change: the next snapshot shows the new set.
        """
        path = self._require_path()
        persisted = [t for t in self._tasks if t.id not in self._pending]
        new_ids = [self._documents.new_document_id(path) for _ in texts]
        ops = plan_replacement(path, persisted, list(texts), new_ids, start_order=self._next_order())

        try:
            await self._documents.atomic_batch(ops)
        except Exception as exc:
            logger.warning("replace_all batch failed, task set unchanged: %s", exc)
            if isinstance(exc, StoreError):
                raise
            raise StoreBatchError(f"Failed to replace tasks: {exc}") from exc

        logger.info("Replaced %d task(s) with %d new task(s) goal=%s", len(persisted), len(texts), self._goal_id)


def _wire_names(changes: dict[str, Any]) -> list[str]:
    names = {
        "text": "text",
        "priority": "priority",
        "due_date": "dueDate",
        "estimated_time_minutes": "estimatedTimeMinutes",
    }
    return [names[k] for k in changes]

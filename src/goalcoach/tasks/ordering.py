# src/goalcoach/tasks/ordering.py

"""
Ordering and reconciliation helpers.

Pure functions only: they never touch the local snapshot or the store.
TaskStore owns the snapshot and uses these to plan its writes.

- next_order: order index for a newly created task
- compute_display_list: filter + sort for the view
- ensure_reorder_allowed / plan_reorder: drag-reorder planning
- plan_replacement: destroy-all/recreate-all batch for suggestion adoption
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence

from ..core.errors import PreconditionError, ValidationError
from ..core.ports import BatchOp
from .task_models import ALL_PRIORITIES, Priority, SortMode, Task


def next_order(tasks: Iterable[Task]) -> int:
    """Strictly greater than every existing order; 0 for an empty collection."""
    orders = [t.order for t in tasks]
    return max(orders) + 1 if orders else 0


def compute_display_list(
        tasks: Sequence[Task],
        filter_priority: str | Priority = ALL_PRIORITIES,
        sort_mode: SortMode | str = SortMode.CUSTOM,
) -> list[Task]:
    """
    View of the collection.

    - filter_priority != "all": keep only that priority
    - sort_mode == due_date: stable ascending sort, undated tasks last
    - sort_mode == custom: keep the incoming (order-ascending) sequence
    """
    sort_mode = SortMode.parse(sort_mode)
    out = list(tasks)

    if filter_priority != ALL_PRIORITIES:
        wanted = Priority.parse(filter_priority)
        out = [t for t in out if t.priority == wanted]

    if sort_mode == SortMode.DUE_DATE:
        out.sort(key=lambda t: (t.due_date is None, t.due_date or 0))

    return out


def ensure_reorder_allowed(filter_priority: str | Priority, sort_mode: SortMode | str) -> None:
    if filter_priority != ALL_PRIORITIES:
        raise PreconditionError("Reordering is disabled while a priority filter is active.")
    if SortMode.parse(sort_mode) != SortMode.CUSTOM:
        raise PreconditionError("Reordering is only available in custom sort mode.")


def plan_reorder(tasks: Sequence[Task], task_ids: Sequence[str]) -> dict[str, int]:
    """
    Map task id -> new order for every task whose order changes.

    task_ids must be a permutation of the ids in tasks.
    """
    current = {t.id: t for t in tasks}
    if len(set(task_ids)) != len(task_ids):
        raise ValidationError("Reorder sequence contains duplicate ids.")
    if set(task_ids) != set(current):
        missing = sorted(set(current) - set(task_ids))
        unknown = sorted(set(task_ids) - set(current))
        raise ValidationError(f"Reorder sequence does not match the task list (missing={missing}, unknown={unknown}).")

    return {tid: idx for idx, tid in enumerate(task_ids) if current[tid].order != idx}


def move_sequence(tasks: Sequence[Task], task_id: str, new_position: int) -> list[str]:
    """Id sequence after moving one task to new_position (clamped)."""
    ids = [t.id for t in tasks]
    if task_id not in ids:
        raise ValidationError(f"Unknown task id: {task_id}")
    ids.remove(task_id)
    pos = max(0, min(int(new_position), len(ids)))
    ids.insert(pos, task_id)
    return ids


def plan_replacement(
        path: str,
        tasks: Sequence[Task],
        texts: Sequence[str],
        new_ids: Sequence[str],
        *,
        start_order: int | None = None,
        now_ts: float | None = None,
) -> list[BatchOp]:
    """
    Delete every task in `tasks`, then create one task per text.

    New orders are contiguous starting right after the previous maximum, or at
    start_order when the caller also knows about tasks that are not deleted.
    """
    if len(new_ids) != len(texts):
        raise ValueError("new_ids and texts must have the same length")
    if now_ts is None:
        now_ts = time.time()

    start = next_order(tasks) if start_order is None else start_order
    ops = [BatchOp.delete(path, t.id) for t in tasks]
    for offset, (doc_id, text) in enumerate(zip(new_ids, texts)):
        task = Task(
            id=doc_id,
            text=text,
            completed=False,
            priority=Priority.MEDIUM,
            due_date=None,
            estimated_time_minutes=0,
            order=start + offset,
            created_at=now_ts,
        )
        ops.append(BatchOp.set(path, doc_id, task.to_fields()))
    return ops

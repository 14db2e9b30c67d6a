# tests/test_ordering.py

from __future__ import annotations

import datetime as dt

import pytest

from goalcoach.core.errors import PreconditionError, ValidationError
from goalcoach.core.ports import BatchOpKind
from goalcoach.tasks.ordering import (
    compute_display_list,
    ensure_reorder_allowed,
    move_sequence,
    next_order,
    plan_reorder,
    plan_replacement,
)
from goalcoach.tasks.task_models import Priority, SortMode, Task, parse_due_date


def _task(tid: str, order: int, *, priority: Priority = Priority.MEDIUM, due: dt.date | None = None) -> Task:
    return Task(
        id=tid,
        text=f"task {tid}",
        completed=False,
        priority=priority,
        due_date=due,
        estimated_time_minutes=0,
        order=order,
        created_at=0.0,
    )


def test_next_order_is_zero_for_empty_and_max_plus_one_otherwise() -> None:
    assert next_order([]) == 0
    assert next_order([_task("a", 0), _task("b", 7), _task("c", 3)]) == 8


def test_display_list_filters_by_priority() -> None:
    tasks = [_task("a", 0, priority=Priority.HIGH), _task("b", 1), _task("c", 2, priority=Priority.HIGH)]
    assert [t.id for t in compute_display_list(tasks, "high")] == ["a", "c"]
    assert [t.id for t in compute_display_list(tasks, "all")] == ["a", "b", "c"]


def test_due_date_sort_puts_undated_last_and_is_stable() -> None:
    d1 = dt.date(2024, 1, 1)
    d2 = dt.date(2024, 2, 1)
    tasks = [_task("none1", 0), _task("late", 1, due=d2), _task("early", 2, due=d1), _task("none2", 3)]
    shown = compute_display_list(tasks, "all", SortMode.DUE_DATE)
    assert [t.id for t in shown] == ["early", "late", "none1", "none2"]


def test_reorder_only_allowed_in_unfiltered_custom_view() -> None:
    ensure_reorder_allowed("all", "custom")
    with pytest.raises(PreconditionError):
        ensure_reorder_allowed("high", "custom")
    with pytest.raises(PreconditionError):
        ensure_reorder_allowed("all", "due_date")


def test_plan_reorder_returns_only_changed_orders() -> None:
    tasks = [_task("a", 0), _task("b", 1), _task("c", 2)]
    assert plan_reorder(tasks, ["a", "c", "b"]) == {"c": 1, "b": 2}
    assert plan_reorder(tasks, ["a", "b", "c"]) == {}


def test_plan_reorder_normalizes_gapped_orders() -> None:
    tasks = [_task("a", 0), _task("b", 5), _task("c", 9)]
    assert plan_reorder(tasks, ["a", "b", "c"]) == {"b": 1, "c": 2}


@pytest.mark.parametrize(
    "ids",
    [["a", "b"], ["a", "b", "b"], ["a", "b", "x"]],
)
def test_plan_reorder_rejects_non_permutations(ids) -> None:
    tasks = [_task("a", 0), _task("b", 1), _task("c", 2)]
    with pytest.raises(ValidationError):
        plan_reorder(tasks, ids)


def test_move_sequence_clamps_position() -> None:
    tasks = [_task("a", 0), _task("b", 1), _task("c", 2)]
    assert move_sequence(tasks, "a", 2) == ["b", "c", "a"]
    assert move_sequence(tasks, "c", -3) == ["c", "a", "b"]
    assert move_sequence(tasks, "b", 99) == ["a", "c", "b"]
    with pytest.raises(ValidationError):
        move_sequence(tasks, "zzz", 0)


def test_plan_replacement_deletes_first_then_creates_contiguous_defaults() -> None:
    path = "users/u1/goals/g1/tasks"
    tasks = [_task("a", 0), _task("b", 4)]
    ops = plan_replacement(path, tasks, ["x", "y"], ["n1", "n2"], now_ts=123.0)

    assert [op.kind for op in ops] == [BatchOpKind.DELETE, BatchOpKind.DELETE, BatchOpKind.SET, BatchOpKind.SET]
    assert [op.doc_id for op in ops] == ["a", "b", "n1", "n2"]

    created = [op.fields for op in ops[2:]]
    assert [f["order"] for f in created] == [5, 6]
    assert all(f["priority"] == "medium" and f["completed"] is False for f in created)
    assert all(f["dueDate"] is None and f["estimatedTimeMinutes"] == 0 for f in created)
    assert all(f["createdAt"] == 123.0 for f in created)


def test_plan_replacement_respects_start_order_and_checks_ids() -> None:
    ops = plan_replacement("p", [], ["x"], ["n1"], start_order=10)
    assert ops[0].fields["order"] == 10
    with pytest.raises(ValueError):
        plan_replacement("p", [], ["x", "y"], ["n1"])


def test_due_date_view_is_idempotent_and_keeps_orders() -> None:
    tasks = [_task("b", 0, due=dt.date(2024, 3, 1)), _task("n", 1), _task("a", 2, due=dt.date(2024, 1, 1))]
    once = compute_display_list(tasks, "all", "dueDate")
    twice = compute_display_list(once, "all", "dueDate")
    assert once == twice
    assert [t.order for t in tasks] == [0, 1, 2]
    assert [t.id for t in tasks] == ["b", "n", "a"]


def test_datetime_due_dates_are_truncated_to_dates() -> None:
    parsed = parse_due_date(dt.datetime(2024, 4, 2, 18, 30))
    assert parsed == dt.date(2024, 4, 2)
    assert type(parsed) is dt.date

    tasks = [_task("dated", 0, due=dt.date(2024, 5, 1)), _task("from_dt", 1, due=parsed)]
    assert [t.id for t in compute_display_list(tasks, "all", "due_date")] == ["from_dt", "dated"]

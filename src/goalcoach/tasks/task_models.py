# src/goalcoach/tasks/task_models.py

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError

ALL_PRIORITIES = "all"


def goals_collection_path(owner_id: str) -> str:
    return f"users/{owner_id}/goals"


def tasks_collection_path(owner_id: str, goal_id: str) -> str:
    return f"users/{owner_id}/goals/{goal_id}/tasks"


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, raw: str | Priority | None) -> Priority:
        """Strict parse for user input."""
        if isinstance(raw, Priority):
            return raw
        s = (raw or "").strip().lower()
        try:
            return cls(s)
        except ValueError:
            raise ValidationError(f"Unknown priority: {raw!r} (expected high, medium or low)") from None

    @classmethod
    def from_db(cls, raw: Any) -> Priority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(str(raw))
        except Exception:
            return cls.MEDIUM


class SortMode(StrEnum):
    CUSTOM = "custom"
    DUE_DATE = "due_date"

    @classmethod
    def parse(cls, raw: str | SortMode) -> SortMode:
        if isinstance(raw, SortMode):
            return raw
        s = (raw or "").strip().lower().replace("-", "_")
        aliases = {"duedate": "due_date", "due": "due_date", "manual": "custom", "order": "custom"}
        s = aliases.get(s, s)
        try:
            return cls(s)
        except ValueError:
            raise ValidationError(f"Unknown sort mode: {raw!r} (expected custom or due_date)") from None


def parse_priority_filter(raw: str | Priority) -> str | Priority:
    """Return ALL_PRIORITIES or a Priority."""
    if isinstance(raw, Priority):
        return raw
    if (raw or "").strip().lower() == ALL_PRIORITIES:
        return ALL_PRIORITIES
    return Priority.parse(raw)


def parse_due_date(raw: str | dt.date | None) -> dt.date | None:
    if raw is None:
        return None
    if isinstance(raw, dt.datetime):
        return raw.date()
    if isinstance(raw, dt.date):
        return raw
    s = raw.strip()
    if not s or s.lower() in {"none", "-"}:
        return None
    try:
        return dt.date.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"Bad due date: {raw!r} (expected YYYY-MM-DD)") from None


def _date_from_db(raw: Any) -> dt.date | None:
    if not raw:
        return None
    try:
        return dt.date.fromisoformat(str(raw)[:10])
    except ValueError:
        return None


def _int_from_db(raw: Any, default: int = 0) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


@dataclass(slots=True, frozen=True)
class TaskDraft:
    """User input for a new task (everything except identity, order and timestamps)."""

    text: str
    priority: Priority | str = Priority.MEDIUM
    due_date: dt.date | str | None = None
    estimated_time_minutes: int = 0

    def validated(self) -> TaskDraft:
        text = (self.text or "").strip()
        if not text:
            raise ValidationError("Task text must not be empty.")
        est = self.estimated_time_minutes
        if isinstance(est, bool) or not isinstance(est, int) or est < 0:
            raise ValidationError("Estimated time must be a non-negative whole number of minutes.")
        return TaskDraft(
            text=text,
            priority=Priority.parse(self.priority),
            due_date=parse_due_date(self.due_date),
            estimated_time_minutes=est,
        )


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    text: str
    completed: bool
    priority: Priority
    due_date: dt.date | None
    estimated_time_minutes: int
    order: int
    created_at: float

    def to_fields(self) -> dict[str, Any]:
        """Document fields as stored remotely (id is the document key, not a field)."""
        return {
            "text": self.text,
            "completed": self.completed,
            "priority": self.priority.value,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "estimatedTimeMinutes": self.estimated_time_minutes,
            "order": self.order,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_document(cls, doc_id: str, fields: dict[str, Any]) -> Task:
        return cls(
            id=str(doc_id),
            text=str(fields.get("text") or ""),
            completed=bool(fields.get("completed", False)),
            priority=Priority.from_db(fields.get("priority")),
            due_date=_date_from_db(fields.get("dueDate")),
            estimated_time_minutes=max(0, _int_from_db(fields.get("estimatedTimeMinutes"))),
            order=_int_from_db(fields.get("order")),
            created_at=float(fields.get("createdAt") or 0.0),
        )


@dataclass(slots=True, frozen=True)
class Goal:
    id: str
    text: str

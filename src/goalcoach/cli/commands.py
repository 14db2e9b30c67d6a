# src/goalcoach/cli/commands.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..core.errors import ValidationError
from ..core.state import AppState
from ..tasks.suggestions import SuggestionPhase
from ..tasks.task_models import ALL_PRIORITIES, Priority, Task, TaskDraft

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]

logger = logging.getLogger(__name__)

SNAPSHOT_WAIT_SECONDS = 2.0


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return await handler(state, args, emit)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----

def format_task(position: int, task: Task) -> str:
    box = "[x]" if task.completed else "[ ]"
    extras = [task.priority.value]
    if task.due_date:
        extras.append(f"due {task.due_date.isoformat()}")
    if task.estimated_time_minutes:
        extras.append(f"{task.estimated_time_minutes} min")
    return f"{position:>2}. {box} {task.text} ({', '.join(extras)})"


def render_list(state: AppState) -> str:
    planner = state.planner
    if planner.loading:
        return "Loading tasks..."
    tasks = planner.display_list
    if not tasks:
        if planner.task_store.tasks:
            return "No tasks match the current filter."
        return "No tasks yet. Add your first one with /add."
    header = f"Tasks (filter={planner.filter_priority}, sort={planner.sort_mode}):"
    return "\n".join([header, *(format_task(i, t) for i, t in enumerate(tasks, start=1))])


def _task_at(state: AppState, raw: str) -> Task:
    """Resolve a 1-based position in the displayed list."""
    try:
        pos = int(raw)
    except ValueError:
        raise ValidationError(f"Expected a task number, got {raw!r}.") from None
    tasks = state.planner.display_list
    if pos < 1 or pos > len(tasks):
        raise ValidationError(f"No task #{pos}. Use /list to see task numbers.")
    return tasks[pos - 1]


def _parse_minutes(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Estimated time must be a whole number of minutes, got {raw!r}.") from None


def parse_draft(args: list[str]) -> TaskDraft:
    """
    /add text words [!high|!medium|!low] [due:YYYY-MM-DD] [est:MINUTES]
    """
    words: list[str] = []
    priority: str = Priority.MEDIUM
    due: str | None = None
    est = 0
    for token in args:
        low = token.lower()
        if low.startswith("!") and low[1:] in {p.value for p in Priority}:
            priority = low[1:]
        elif low.startswith("due:"):
            due = token[4:]
        elif low.startswith("est:"):
            est = _parse_minutes(token[4:])
        else:
            words.append(token)
    return TaskDraft(text=" ".join(words), priority=priority, due_date=due, estimated_time_minutes=est)


async def _settled_list(state: AppState) -> str:
    try:
        await state.planner.task_store.wait_for_snapshot(timeout=SNAPSHOT_WAIT_SECONDS)
    except asyncio.TimeoutError:
        logger.debug("No snapshot within %.1fs; showing local state", SNAPSHOT_WAIT_SECONDS)
    return render_list(state)


# ---- commands ----

async def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    planner = state.planner
    models = ", ".join(list(getattr(state.settings, "llm_models", []) or []))
    coach = "offline demo" if state.offline_coach else f"LLM ({models})"
    goal = planner.goal.text if planner.goal else "(not set)"
    return (
        "Status:\n"
        f"  Goal: {goal}\n"
        f"  Tasks: {len(planner.task_store.tasks)}\n"
        f"  View: filter={planner.filter_priority} sort={planner.sort_mode}\n"
        f"  AI coach: {coach} [{planner.suggestion_phase}]\n"
        f"  Last error: {planner.error or '-'}"
    )


async def cmd_goal(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /goal          -> show the current goal
    /goal <text>   -> save a new goal
    """
    planner = state.planner
    if not args:
        if planner.goal is None:
            return "No goal yet. Set one with /goal <text>."
        return f"Your goal: {planner.goal.text}"
    goal = await planner.set_goal(" ".join(args))
    return f"Goal saved: {goal.text}"


async def cmd_list(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return render_list(state)


async def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    draft = parse_draft(args)
    await state.planner.add(draft)
    return await _settled_list(state)


async def cmd_done(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /done <task number>"
    task = _task_at(state, args[0])
    await state.planner.toggle(task.id)
    return await _settled_list(state)


async def cmd_rm(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /rm <task number>"
    task = _task_at(state, args[0])
    await state.planner.delete(task.id)
    return await _settled_list(state)


async def cmd_edit(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /edit <n> text <new text>
    /edit <n> priority <high|medium|low>
    /edit <n> due <YYYY-MM-DD|none>
    /edit <n> est <minutes>
    """
    if len(args) < 3:
        return "Usage: /edit <task number> <text|priority|due|est> <value>"
    task = _task_at(state, args[0])
    field_name = args[1].lower()
    value = " ".join(args[2:])

    if field_name == "text":
        await state.planner.update(task.id, text=value)
    elif field_name == "priority":
        await state.planner.update(task.id, priority=value)
    elif field_name == "due":
        await state.planner.update(task.id, due_date=value)
    elif field_name in ("est", "estimate"):
        await state.planner.update(task.id, estimated_time_minutes=_parse_minutes(value))
    else:
        return f"Unknown field {field_name!r}. Use text, priority, due or est."
    return await _settled_list(state)


async def cmd_move(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) != 2:
        return "Usage: /move <task number> <new position>"
    task = _task_at(state, args[0])
    try:
        new_pos = int(args[1]) - 1
    except ValueError:
        return f"Expected a position number, got {args[1]!r}."
    await state.planner.move(task.id, new_pos)
    return render_list(state)


async def cmd_filter(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    state.planner.set_filter(args[0] if args else ALL_PRIORITIES)
    return render_list(state)


async def cmd_sort(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return f"Sort mode is {state.planner.sort_mode}. Use /sort custom or /sort due_date."
    state.planner.set_sort(args[0])
    return render_list(state)


async def cmd_coach(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("[COACH] Analyzing your plan...")
    staged = await state.planner.request_suggestions()
    lines = ["The AI coach suggests replacing your current plan with:"]
    lines.extend(f"  - {text}" for text in staged)
    lines.append("Use /accept to adopt this plan or /reject to keep your tasks.")
    return "\n".join(lines)


async def cmd_accept(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    await state.planner.accept_staged()
    return await _settled_list(state)


async def cmd_reject(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    had_staged = state.planner.suggestion_phase == SuggestionPhase.STAGED
    state.planner.reject_staged()
    return "Suggestions discarded. Your tasks are unchanged." if had_staged else "Nothing to reject."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show goal, view and AI coach status.")
registry.register("goal", cmd_goal, help_text="Show or set your goal: /goal <text>.")
registry.register("list", cmd_list, help_text="Show the task list.", aliases=["ls"])
registry.register(
    "add", cmd_add, help_text="Add a task: /add text [!high|!low] [due:YYYY-MM-DD] [est:MIN]."
)
registry.register("done", cmd_done, help_text="Toggle completion: /done <n>.", aliases=["toggle"])
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <n>.", aliases=["del"])
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <n> text|priority|due|est <value>.")
registry.register("move", cmd_move, help_text="Move a task: /move <n> <position> (custom order only).")
registry.register("filter", cmd_filter, help_text="Filter by priority: /filter all|high|medium|low.")
registry.register("sort", cmd_sort, help_text="Sort mode: /sort custom|due_date.")
registry.register("coach", cmd_coach, help_text="Ask the AI coach for a new plan.", aliases=["ai"])
registry.register("accept", cmd_accept, help_text="Adopt the staged AI plan (replaces all tasks).")
registry.register("reject", cmd_reject, help_text="Discard the staged AI plan.")

# tests/test_commands.py

from __future__ import annotations

import pytest

from goalcoach.cli.commands import CommandRegistry, parse_draft, registry
from goalcoach.core.errors import PreconditionError, ValidationError
from goalcoach.tasks.task_models import Priority


async def _open(state) -> None:
    await state.planner.open()
    await state.planner.task_store.wait_for_snapshot(timeout=1.0)


@pytest.mark.asyncio
async def test_command_registry_routes_and_emits(state) -> None:
    reg = CommandRegistry()
    called = {"a": 0}
    notes: list[str] = []

    async def handler(state, args, emit):
        called["a"] += 1
        if emit is not None:
            emit("note")
        return " ".join(args)

    reg.register("a", handler, "a", aliases=["alias"])

    assert await reg.handle(state, "/a x y", emit=notes.append) == "x y"
    assert await reg.handle(state, "/ALIAS z") == "z"
    assert called["a"] == 2
    assert notes == ["note"]


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Empty command" in (await reg.handle(state, "/") or "")


def test_parse_draft_tokens() -> None:
    draft = parse_draft(["Call", "the", "bank", "!HIGH", "due:2024-06-01", "est:20"])
    assert draft.text == "Call the bank"
    assert draft.priority == Priority.HIGH
    assert draft.due_date == "2024-06-01"
    assert draft.estimated_time_minutes == 20

    plain = parse_draft(["just", "text"])
    assert plain.priority == Priority.MEDIUM
    assert plain.due_date is None

    with pytest.raises(ValidationError):
        parse_draft(["x", "est:soon"])


@pytest.mark.asyncio
async def test_add_done_and_remove_by_position(state) -> None:
    await _open(state)

    out = await registry.handle(state, "/add Buy running shoes !high est:30")
    assert "Buy running shoes" in out
    assert "high" in out and "30 min" in out

    await registry.handle(state, "/add Sign up for a 5k")
    out = await registry.handle(state, "/done 1")
    assert "[x] Buy running shoes" in out

    out = await registry.handle(state, "/rm 1")
    assert "Buy running shoes" not in out
    assert "Sign up for a 5k" in out
    state.planner.close()


@pytest.mark.asyncio
async def test_bad_position_is_a_validation_error(state) -> None:
    await _open(state)
    with pytest.raises(ValidationError):
        await registry.handle(state, "/done 3")
    with pytest.raises(ValidationError):
        await registry.handle(state, "/done first")
    state.planner.close()


@pytest.mark.asyncio
async def test_edit_fields(state) -> None:
    await _open(state)
    await registry.handle(state, "/add Draft")

    await registry.handle(state, "/edit 1 text Final version")
    await registry.handle(state, "/edit 1 priority low")
    out = await registry.handle(state, "/edit 1 due 2024-12-24")
    assert "Final version (low, due 2024-12-24)" in out

    assert "Unknown field" in await registry.handle(state, "/edit 1 colour red")
    state.planner.close()


@pytest.mark.asyncio
async def test_move_and_sort_restrictions(state) -> None:
    await _open(state)
    for text in ("a", "b", "c"):
        await registry.handle(state, f"/add {text}")

    out = await registry.handle(state, "/move 3 1")
    assert [line.split("] ")[1].split(" (")[0] for line in out.splitlines()[1:]] == ["c", "a", "b"]

    await registry.handle(state, "/sort due")
    with pytest.raises(PreconditionError):
        await registry.handle(state, "/move 1 2")
    state.planner.close()


@pytest.mark.asyncio
async def test_filter_message_when_nothing_matches(state) -> None:
    await _open(state)
    await registry.handle(state, "/add low thing !low")
    assert "No tasks match" in await registry.handle(state, "/filter high")
    assert "low thing" in await registry.handle(state, "/filter")
    state.planner.close()


@pytest.mark.asyncio
async def test_goal_and_coach_flow(state, coach) -> None:
    await _open(state)
    assert "No goal yet" in await registry.handle(state, "/goal")

    await registry.handle(state, "/goal Run a marathon")
    assert "Run a marathon" in await registry.handle(state, "/goal")

    notes: list[str] = []
    out = await registry.handle(state, "/coach", emit=notes.append)
    assert "Step one" in out and "/accept" in out
    assert notes

    out = await registry.handle(state, "/accept")
    assert "Step three" in out
    assert "Nothing to reject" in await registry.handle(state, "/reject")
    state.planner.close()


@pytest.mark.asyncio
async def test_status_and_help(state) -> None:
    await _open(state)
    status = await registry.handle(state, "/status")
    assert "Goal: (not set)" in status
    assert "[idle]" in status

    help_text = await registry.handle(state, "/help")
    assert "/coach" in help_text and "/accept" in help_text
    state.planner.close()

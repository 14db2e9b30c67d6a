# tests/test_suggestions.py

from __future__ import annotations

import asyncio

import pytest

from goalcoach.core.errors import (
    PreconditionError,
    SingleFlightError,
    StoreBatchError,
    SuggestionServiceError,
    ValidationError,
)
from goalcoach.tasks.suggestions import (
    SuggestionPhase,
    SuggestionWorkflow,
    build_request,
    parse_suggestions,
)
from goalcoach.tasks.task_models import TaskDraft
from goalcoach.tasks.task_store import TaskStore

from .fakes import FakeSuggestionService, provider_error, settle


async def _open_with_tasks(task_store: TaskStore, *texts: str) -> None:
    task_store.subscribe("g1")
    await task_store.wait_for_snapshot(timeout=1.0)
    for text in texts:
        await task_store.add_task(TaskDraft(text=text, due_date="2024-03-01"))
    await settle()


def test_parse_suggestions_trims_and_drops_blank_items() -> None:
    assert parse_suggestions({"tasks": ["  a ", "", "   ", "b"]}) == ["a", "b"]


@pytest.mark.parametrize(
    "payload",
    [
        None,
        ["a"],
        {"error": "quota exceeded"},
        {"tasks": "a"},
        {"tasks": ["a", 3]},
        {"tasks": []},
        {"tasks": ["  ", ""]},
    ],
)
def test_parse_suggestions_rejects_bad_payloads(payload) -> None:
    with pytest.raises(SuggestionServiceError):
        parse_suggestions(payload)


@pytest.mark.asyncio
async def test_request_sends_sanitized_projection_and_stages(
    workflow: SuggestionWorkflow, coach: FakeSuggestionService, task_store: TaskStore
) -> None:
    await _open_with_tasks(task_store, "Buy shoes")

    staged = await workflow.request_suggestions("Run a marathon")

    assert staged == ("Step one", "Step two", "Step three")
    assert workflow.phase == SuggestionPhase.STAGED
    (payload,) = coach.calls
    assert payload == {
        "goalText": "Run a marathon",
        "tasks": [{"text": "Buy shoes", "completed": False, "priority": "medium", "dueDate": "2024-03-01"}],
    }


def test_build_request_omits_ids_and_estimates() -> None:
    request = build_request("Goal", [])
    assert request == {"goalText": "Goal", "tasks": []}


@pytest.mark.asyncio
async def test_empty_goal_is_rejected_without_calling_provider(
    workflow: SuggestionWorkflow, coach: FakeSuggestionService
) -> None:
    with pytest.raises(ValidationError):
        await workflow.request_suggestions("   ", [])
    assert coach.calls == []
    assert workflow.phase == SuggestionPhase.IDLE


@pytest.mark.asyncio
async def test_request_is_single_flight(workflow: SuggestionWorkflow, coach: FakeSuggestionService) -> None:
    coach.gate = asyncio.Event()
    first = asyncio.create_task(workflow.request_suggestions("Goal", []))
    await settle()
    assert workflow.phase == SuggestionPhase.REQUESTING

    with pytest.raises(SingleFlightError):
        await workflow.request_suggestions("Goal", [])
    assert len(coach.calls) == 1

    coach.gate.set()
    await first
    assert workflow.phase == SuggestionPhase.STAGED


@pytest.mark.asyncio
async def test_provider_failure_moves_to_failed(workflow: SuggestionWorkflow, coach: FakeSuggestionService) -> None:
    coach.error = provider_error("quota exceeded")

    with pytest.raises(SuggestionServiceError):
        await workflow.request_suggestions("Goal", [])

    assert workflow.phase == SuggestionPhase.FAILED
    assert workflow.staged == ()
    assert workflow.last_error == "quota exceeded"


@pytest.mark.asyncio
async def test_unexpected_provider_crash_is_wrapped(workflow: SuggestionWorkflow, coach: FakeSuggestionService) -> None:
    coach.error = RuntimeError("boom")
    with pytest.raises(SuggestionServiceError):
        await workflow.request_suggestions("Goal", [])
    assert workflow.phase == SuggestionPhase.FAILED


@pytest.mark.asyncio
async def test_empty_suggestion_list_is_a_failure(workflow: SuggestionWorkflow, coach: FakeSuggestionService) -> None:
    coach.response = {"tasks": []}
    with pytest.raises(SuggestionServiceError):
        await workflow.request_suggestions("Goal", [])
    assert workflow.phase == SuggestionPhase.FAILED


@pytest.mark.asyncio
async def test_failed_request_can_be_retried(workflow: SuggestionWorkflow, coach: FakeSuggestionService) -> None:
    coach.error = provider_error()
    with pytest.raises(SuggestionServiceError):
        await workflow.request_suggestions("Goal", [])

    coach.error = None
    assert await workflow.request_suggestions("Goal", [])
    assert workflow.phase == SuggestionPhase.STAGED
    assert workflow.last_error is None


@pytest.mark.asyncio
async def test_cancelled_request_returns_to_idle(workflow: SuggestionWorkflow, coach: FakeSuggestionService) -> None:
    coach.gate = asyncio.Event()
    pending = asyncio.create_task(workflow.request_suggestions("Goal", []))
    await settle()

    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending
    assert workflow.phase == SuggestionPhase.IDLE


@pytest.mark.asyncio
async def test_reject_discards_staged_without_writes(
    workflow: SuggestionWorkflow, task_store: TaskStore, documents
) -> None:
    await _open_with_tasks(task_store, "keep me")
    await workflow.request_suggestions("Goal")

    workflow.reject_staged()

    assert workflow.phase == SuggestionPhase.IDLE
    assert workflow.staged == ()
    assert documents.batches == []
    assert [t.text for t in task_store.tasks] == ["keep me"]


@pytest.mark.asyncio
async def test_accept_replaces_all_tasks(workflow: SuggestionWorkflow, task_store: TaskStore) -> None:
    await _open_with_tasks(task_store, "old a", "old b")
    await workflow.request_suggestions("Goal")

    await workflow.accept_staged()
    assert workflow.phase == SuggestionPhase.IDLE
    assert workflow.staged == ()

    await settle()
    assert [t.text for t in task_store.tasks] == ["Step one", "Step two", "Step three"]
    assert [t.order for t in task_store.tasks] == [2, 3, 4]


@pytest.mark.asyncio
async def test_accept_failure_keeps_previous_tasks(
    workflow: SuggestionWorkflow, task_store: TaskStore, documents
) -> None:
    await _open_with_tasks(task_store, "old a", "old b")
    await workflow.request_suggestions("Goal")
    documents.fail_batch_at_op = 2

    with pytest.raises(StoreBatchError):
        await workflow.accept_staged()

    assert workflow.phase == SuggestionPhase.FAILED
    await settle()
    assert [t.text for t in task_store.tasks] == ["old a", "old b"]


@pytest.mark.asyncio
async def test_accept_requires_staged_suggestions(workflow: SuggestionWorkflow) -> None:
    with pytest.raises(PreconditionError):
        await workflow.accept_staged()


@pytest.mark.asyncio
async def test_new_request_replaces_staged_set(workflow: SuggestionWorkflow, coach: FakeSuggestionService) -> None:
    await workflow.request_suggestions("Goal", [])
    coach.response = {"tasks": ["Only this"]}
    assert await workflow.request_suggestions("Goal", []) == ("Only this",)

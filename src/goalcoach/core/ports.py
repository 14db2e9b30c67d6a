# src/goalcoach/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the document store and the suggestion provider swappable and makes
testing easier.
"""

from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Protocol

DocumentFields = dict[str, Any]


@dataclass(slots=True, frozen=True)
class Document:
    id: str
    fields: DocumentFields


@dataclass(slots=True, frozen=True)
class CollectionSnapshot:
    """Full state of one collection at delivery time, already ordered."""

    path: str
    documents: tuple[Document, ...]


class BatchOpKind(StrEnum):
    DELETE = "delete"
    SET = "set"
    UPDATE = "update"


@dataclass(slots=True, frozen=True)
class BatchOp:
    kind: BatchOpKind
    path: str
    doc_id: str
    fields: DocumentFields = field(default_factory=dict)

    @classmethod
    def delete(cls, path: str, doc_id: str) -> BatchOp:
        return cls(BatchOpKind.DELETE, path, doc_id)

    @classmethod
    def set(cls, path: str, doc_id: str, fields: DocumentFields) -> BatchOp:
        return cls(BatchOpKind.SET, path, doc_id, dict(fields))

    @classmethod
    def update(cls, path: str, doc_id: str, fields: DocumentFields) -> BatchOp:
        return cls(BatchOpKind.UPDATE, path, doc_id, dict(fields))


class Subscription(Protocol):
    """Live stream of collection snapshots. close() is idempotent."""

    def __aiter__(self) -> AsyncIterator[CollectionSnapshot]: ...
    def close(self) -> None: ...

    @property
    def closed(self) -> bool: ...


class DocumentStore(Protocol):
    """
    Real-time document backend (hierarchical paths like users/{owner}/goals/{goal}/tasks).

    Writes fan out to every open subscription on the touched collection.
    """

    def subscribe_collection(self, path: str, order_field: str) -> Subscription: ...
    def new_document_id(self, path: str) -> str: ...

    def add_document(self, path: str, fields: DocumentFields) -> Awaitable[str]: ...
    def update_document(self, path: str, doc_id: str, fields: DocumentFields) -> Awaitable[None]: ...
    def delete_document(self, path: str, doc_id: str) -> Awaitable[None]: ...
    def atomic_batch(self, ops: Sequence[BatchOp]) -> Awaitable[None]: ...

    # Single-document helpers (goal document)
    def get_document(self, path: str, doc_id: str) -> Awaitable[DocumentFields | None]: ...
    def set_document(
            self,
            path: str,
            doc_id: str,
            fields: DocumentFields,
            *,
            merge: bool = True,
    ) -> Awaitable[None]: ...


class SuggestionService(Protocol):
    """
    Black-box AI coach.

    Request:  {"goalText": str, "tasks": [{"text", "completed", "priority", "dueDate"}]}
    Response: {"tasks": [str, ...]}
    Raises SuggestionServiceError on provider failure.
    """

    def suggest(self, payload: Mapping[str, Any]) -> Awaitable[Mapping[str, Any]]: ...

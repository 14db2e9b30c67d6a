# src/goalcoach/storage/sqlite_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ..core.errors import StoreBatchError, StoreWriteError
from ..core.ports import BatchOp, BatchOpKind, CollectionSnapshot, Document, DocumentFields

logger = logging.getLogger(__name__)

_CLOSED = object()


class CollectionSubscription:
    """
    Queue-backed subscription handed out by SqliteDocumentStore.

    Snapshots are delivered in the order the store committed them.
    close() is idempotent; after it, iteration stops and nothing is queued.
    """

    def __init__(self, store: SqliteDocumentStore, path: str, order_field: str) -> None:
        self.path = path
        self.order_field = order_field
        self._store = store
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, snapshot: CollectionSnapshot) -> None:
        if self._closed:
            return
        self._queue.put_nowait(snapshot)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._detach(self)
        self._queue.put_nowait(_CLOSED)
        logger.debug("Subscription closed path=%s", self.path)

    def __aiter__(self) -> CollectionSubscription:
        return self

    async def __anext__(self) -> CollectionSnapshot:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item


class SqliteDocumentStore:
    """
    SQLite-backed real-time document store.

    Documents live in one table keyed by (collection path, document id); the
    fields are a JSON object. Every committed write pushes a fresh snapshot to
    the open subscriptions of the touched collection.

    Thread-safety:
    - each method opens its own SQLite connection
    - subscriptions are asyncio objects and must be used from the event loop
    """

    def __init__(self, db_path: str | Path = "goalcoach.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._listeners: dict[str, list[CollectionSubscription]] = {}
        self._ensure_schema()
        try:
            total = self.count_documents()
        except sqlite3.Error:
            total = -1
        logger.info("DocumentStore ready db=%s documents=%s", self._db_path, total)

    def close(self) -> None:
        """Close every open subscription (connections are per call)."""
        for subs in list(self._listeners.values()):
            for sub in list(subs):
                sub.close()

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    path TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    fields TEXT NOT NULL DEFAULT '{}',
                    UNIQUE(path, doc_id)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_path ON documents(path)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _fields_to_str(fields: DocumentFields) -> str:
        return json.dumps(fields, ensure_ascii=False, sort_keys=True)

    @staticmethod
    def _str_to_fields(s: str | None) -> DocumentFields:
        if not s:
            return {}
        try:
            val = json.loads(s)
            return val if isinstance(val, dict) else {}
        except json.JSONDecodeError:
            logger.warning("Corrupt document fields ignored: %.80s", s)
            return {}

    @staticmethod
    def _order_key(value: Any) -> tuple[int, Any]:
        # Missing/non-numeric order values sort after every numeric one.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (0, value)
        return (1, 0)

    def _read_fields(self, cur: sqlite3.Cursor, path: str, doc_id: str) -> DocumentFields | None:
        cur.execute("SELECT fields FROM documents WHERE path = ? AND doc_id = ?", (path, doc_id))
        row = cur.fetchone()
        return self._str_to_fields(row["fields"]) if row else None

    def _apply_op(self, cur: sqlite3.Cursor, op: BatchOp) -> None:
        """Apply one write inside an open transaction. Raises StoreWriteError on a bad op."""
        if op.kind == BatchOpKind.DELETE:
            cur.execute("DELETE FROM documents WHERE path = ? AND doc_id = ?", (op.path, op.doc_id))
            return

        if op.kind == BatchOpKind.SET:
            cur.execute(
                """
                INSERT INTO documents(path, doc_id, fields) VALUES (?, ?, ?)
                ON CONFLICT(path, doc_id) DO UPDATE SET fields = excluded.fields
                """,
                (op.path, op.doc_id, self._fields_to_str(op.fields)),
            )
            return

        if op.kind == BatchOpKind.UPDATE:
            current = self._read_fields(cur, op.path, op.doc_id)
            if current is None:
                raise StoreWriteError(f"No document to update: {op.path}/{op.doc_id}")
            current.update(op.fields)
            cur.execute(
                "UPDATE documents SET fields = ? WHERE path = ? AND doc_id = ?",
                (self._fields_to_str(current), op.path, op.doc_id),
            )
            return

        raise StoreWriteError(f"Unknown batch op kind: {op.kind!r}")

    def _commit_ops(self, ops: Sequence[BatchOp]) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            try:
                for op in ops:
                    self._apply_op(cur, op)
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
        finally:
            conn.close()

    def _load_snapshot(self, path: str, order_field: str) -> CollectionSnapshot:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT doc_id, fields FROM documents WHERE path = ? ORDER BY seq ASC", (path,))
            docs = [Document(id=row["doc_id"], fields=self._str_to_fields(row["fields"])) for row in cur.fetchall()]
        finally:
            conn.close()
        # sorted() is stable, so insertion order breaks ties.
        docs.sort(key=lambda d: self._order_key(d.fields.get(order_field)))
        return CollectionSnapshot(path=path, documents=tuple(docs))

    def _notify(self, paths: set[str]) -> None:
        for path in paths:
            subs = list(self._listeners.get(path, ()))
            if not subs:
                continue
            by_field: dict[str, CollectionSnapshot] = {}
            for sub in subs:
                snap = by_field.get(sub.order_field)
                if snap is None:
                    snap = self._load_snapshot(path, sub.order_field)
                    by_field[sub.order_field] = snap
                sub._push(snap)
            logger.debug("Fan-out path=%s subscribers=%d", path, len(subs))

    def _detach(self, sub: CollectionSubscription) -> None:
        subs = self._listeners.get(sub.path)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._listeners[sub.path]

    # ---- public API ----

    def count_documents(self, path: str | None = None) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if path is None:
                cur.execute("SELECT COUNT(*) FROM documents")
            else:
                cur.execute("SELECT COUNT(*) FROM documents WHERE path = ?", (path,))
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def new_document_id(self, path: str) -> str:
        return uuid.uuid4().hex[:20]

    def subscribe_collection(self, path: str, order_field: str) -> CollectionSubscription:
        """Open a live subscription; the current state is queued immediately."""
        sub = CollectionSubscription(self, path, order_field)
        self._listeners.setdefault(path, []).append(sub)
        sub._push(self._load_snapshot(path, order_field))
        logger.debug("Subscription opened path=%s order_by=%s", path, order_field)
        return sub

    async def add_document(self, path: str, fields: DocumentFields) -> str:
        doc_id = self.new_document_id(path)
        try:
            self._commit_ops([BatchOp.set(path, doc_id, fields)])
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Add failed in {path}: {exc}") from exc
        logger.debug("Document added path=%s id=%s", path, doc_id)
        self._notify({path})
        return doc_id

    async def update_document(self, path: str, doc_id: str, fields: DocumentFields) -> None:
        try:
            self._commit_ops([BatchOp.update(path, doc_id, fields)])
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Update failed for {path}/{doc_id}: {exc}") from exc
        self._notify({path})

    async def delete_document(self, path: str, doc_id: str) -> None:
        try:
            self._commit_ops([BatchOp.delete(path, doc_id)])
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Delete failed for {path}/{doc_id}: {exc}") from exc
        self._notify({path})

    async def atomic_batch(self, ops: Sequence[BatchOp]) -> None:
        """All-or-nothing: on any failure the transaction is rolled back."""
        if not ops:
            return
        try:
            self._commit_ops(ops)
        except (sqlite3.Error, StoreWriteError) as exc:
            logger.warning("Batch of %d ops rolled back: %s", len(ops), exc)
            raise StoreBatchError(f"Batch failed: {exc}") from exc
        logger.debug("Batch committed ops=%d", len(ops))
        self._notify({op.path for op in ops})

    async def get_document(self, path: str, doc_id: str) -> DocumentFields | None:
        conn = self._get_conn()
        try:
            return self._read_fields(conn.cursor(), path, doc_id)
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Read failed for {path}/{doc_id}: {exc}") from exc
        finally:
            conn.close()

    async def set_document(
            self,
            path: str,
            doc_id: str,
            fields: DocumentFields,
            *,
            merge: bool = True,
    ) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            payload = dict(fields)
            if merge:
                current = self._read_fields(cur, path, doc_id) or {}
                current.update(payload)
                payload = current
            self._apply_op(cur, BatchOp.set(path, doc_id, payload))
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreWriteError(f"Set failed for {path}/{doc_id}: {exc}") from exc
        finally:
            conn.close()
        self._notify({path})

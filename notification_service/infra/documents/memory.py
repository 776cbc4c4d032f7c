"""In-process document store.

Backs tests and single-process deployments. Documents are kept in their
encoded JSON shape and copied on every read and write, so callers can
never mutate stored state by accident.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel

from .base import (
    Document,
    DocumentAlreadyExistsError,
    FieldFilter,
    encode_document,
    encode_value,
    resolve_path,
)

T = TypeVar("T")

_MISSING = object()


def _comparable(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool)
    if isinstance(left, int | float) and isinstance(right, int | float):
        return True
    return type(left) is type(right)


def matches(data: Mapping[str, Any], flt: FieldFilter) -> bool:
    """Evaluate one filter against an encoded document."""
    actual = resolve_path(data, flt.path)
    expected = encode_value(flt.value)

    if flt.op == "==":
        if expected is None:
            return actual is None
        return actual is not None and _comparable(actual, expected) and actual == expected
    if actual is None:
        return False
    if flt.op == "!=":
        return expected is None or not _comparable(actual, expected) or actual != expected
    if flt.op == "in":
        return actual in list(expected or [])
    if not _comparable(actual, expected):
        return False
    match flt.op:
        case "<":
            return actual < expected
        case "<=":
            return actual <= expected
        case ">":
            return actual > expected
        case ">=":
            return actual >= expected
    msg = f"Unsupported filter operator: {flt.op}"
    raise ValueError(msg)


class _MemoryTransaction:
    """Buffers writes until the transaction callback returns."""

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._writes: dict[tuple[str, str], dict[str, Any] | None] = {}

    def _current(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        key = (collection, doc_id)
        if key in self._writes:
            return self._writes[key]
        return self._store._collections.get(collection, {}).get(doc_id)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        current = self._current(collection, doc_id)
        return copy.deepcopy(current) if current is not None else None

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        self._writes[(collection, doc_id)] = encode_document(data)

    async def merge_patch(
        self, collection: str, doc_id: str, patch: Mapping[str, Any] | BaseModel
    ) -> None:
        current = copy.deepcopy(self._current(collection, doc_id)) or {}
        current.update(encode_document(patch))
        self._writes[(collection, doc_id)] = current

    async def create(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        if self._current(collection, doc_id) is not None:
            raise DocumentAlreadyExistsError(collection, doc_id)
        self._writes[(collection, doc_id)] = encode_document(data)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._writes[(collection, doc_id)] = None

    def commit(self) -> None:
        for (collection, doc_id), data in self._writes.items():
            bucket = self._store._collections.setdefault(collection, {})
            if data is None:
                bucket.pop(doc_id, None)
            else:
                bucket[doc_id] = data


class InMemoryDocumentStore:
    """Dictionary-backed ``DocumentStore`` guarded by a single asyncio lock.

    Transaction callbacks must use the transaction handle they receive;
    calling back into the store from inside a callback would deadlock.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._lock:
            data = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    async def create(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        if not await self.create_if_absent(collection, doc_id, data):
            raise DocumentAlreadyExistsError(collection, doc_id)

    async def create_if_absent(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> bool:
        encoded = encode_document(data)
        async with self._lock:
            bucket = self._collections.setdefault(collection, {})
            if doc_id in bucket:
                return False
            bucket[doc_id] = encoded
            return True

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        encoded = encode_document(data)
        async with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = encoded

    async def merge_patch(
        self, collection: str, doc_id: str, patch: Mapping[str, Any] | BaseModel
    ) -> None:
        encoded = encode_document(patch)
        async with self._lock:
            bucket = self._collections.setdefault(collection, {})
            bucket.setdefault(doc_id, {}).update(encoded)

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            return self._collections.get(collection, {}).pop(doc_id, _MISSING) is not _MISSING

    async def query(
        self,
        collection: str,
        filters: Iterable[FieldFilter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        filters = list(filters)
        async with self._lock:
            rows = [
                Document(id=doc_id, data=copy.deepcopy(data))
                for doc_id, data in self._collections.get(collection, {}).items()
                if all(matches(data, flt) for flt in filters)
            ]

        if order_by is not None:
            path = tuple(order_by.split("."))

            def sort_key(doc: Document) -> tuple[bool, str]:
                value = resolve_path(doc.data, path)
                return (value is not None, "" if value is None else str(value))

            rows.sort(key=sort_key, reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def run_transaction(self, fn: Callable[[_MemoryTransaction], Awaitable[T]]) -> T:
        async with self._lock:
            txn = _MemoryTransaction(self)
            result = await fn(txn)
            txn.commit()
            return result

    async def close(self) -> None:
        return None

    def dump(self, collection: str) -> dict[str, dict[str, Any]]:
        """Snapshot of one collection, for tests and the CLI."""
        return copy.deepcopy(self._collections.get(collection, {}))

"""Document store port.

Every record the service owns (jobs, in-app notifications, mail, dead
letters, reservations, audit entries, device tokens) is a JSON document
addressed by ``(collection, doc_id)``. Backends implement the
``DocumentStore`` protocol; the rest of the code never touches a backend
directly.

Values are normalized by ``encode_document`` before they are stored:
datetimes become canonical UTC strings, tuples become lists and pydantic
models are dumped in JSON mode. Both backends therefore compare and
return the same shapes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Protocol, TypeVar

from pydantic import BaseModel

from notification_service.utils.timestamps import to_iso

T = TypeVar("T")

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in"]


class DocumentStoreError(Exception):
    """Base class for document store failures."""


class DocumentAlreadyExistsError(DocumentStoreError):
    """Raised by ``create`` when the target document already exists."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} already exists")


@dataclass(frozen=True)
class FieldFilter:
    """A single ``field op value`` predicate.

    ``field`` may be a dotted path into nested objects
    (``pickup_window.status``). Comparing against ``None`` with ``==``
    matches documents where the field is missing or null.
    """

    field: str
    op: FilterOp
    value: Any

    @property
    def path(self) -> tuple[str, ...]:
        return tuple(self.field.split("."))


@dataclass
class Document:
    """A stored document and its id."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)


def encode_value(value: Any) -> Any:
    """Normalize a value into its stored JSON shape."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [encode_value(v) for v in value]
    return value


def encode_document(data: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    encoded = encode_value(data)
    if not isinstance(encoded, dict):
        msg = "documents must encode to a JSON object"
        raise TypeError(msg)
    return encoded


def resolve_path(data: Mapping[str, Any], path: Sequence[str]) -> Any:
    """Follow a field path, returning None when any segment is missing."""
    current: Any = data
    for segment in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(segment)
    return current


class Transaction(Protocol):
    """Read-modify-write handle passed to ``run_transaction`` callbacks.

    Writes become visible only when the callback returns; an exception
    raised by the callback discards them.
    """

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None: ...

    async def merge_patch(
        self, collection: str, doc_id: str, patch: Mapping[str, Any] | BaseModel
    ) -> None: ...

    async def create(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...


class DocumentStore(Protocol):
    """Persistence port used by the queue, channels and storage policy."""

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return a copy of the document, or None when it does not exist."""
        ...

    async def create(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        """Create a document.

        Raises:
            DocumentAlreadyExistsError: If ``doc_id`` already exists.
        """
        ...

    async def create_if_absent(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> bool:
        """Create a document unless it exists. Returns True when created."""
        ...

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        """Create or fully replace a document."""
        ...

    async def merge_patch(
        self, collection: str, doc_id: str, patch: Mapping[str, Any] | BaseModel
    ) -> None:
        """Shallow-merge top-level fields, creating the document if missing."""
        ...

    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns True when something was removed."""
        ...

    async def query(
        self,
        collection: str,
        filters: Iterable[FieldFilter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents matching every filter.

        ``order_by`` names a string or timestamp field; documents missing
        the field sort first in ascending order.
        """
        ...

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``fn`` atomically against the store and return its result."""
        ...

    async def close(self) -> None: ...

"""Document store port and its in-memory and SQLAlchemy backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    Document,
    DocumentAlreadyExistsError,
    DocumentStore,
    DocumentStoreError,
    FieldFilter,
    Transaction,
    encode_document,
    encode_value,
)
from .memory import InMemoryDocumentStore

if TYPE_CHECKING:
    from notification_service.core.settings.store import DocumentStoreSettings


async def build_document_store(settings: DocumentStoreSettings) -> DocumentStore:
    """Construct the configured backend, creating tables when asked to."""
    if settings.backend == "memory":
        return InMemoryDocumentStore()

    from .sql import SQLAlchemyDocumentStore

    store = SQLAlchemyDocumentStore.from_url(settings.database_url, echo=settings.echo)
    if settings.create_tables:
        await store.create_tables()
    return store


__all__ = [
    "Document",
    "DocumentAlreadyExistsError",
    "DocumentStore",
    "DocumentStoreError",
    "FieldFilter",
    "InMemoryDocumentStore",
    "Transaction",
    "build_document_store",
    "encode_document",
    "encode_value",
]

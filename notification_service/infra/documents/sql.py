"""SQLAlchemy async document store.

All collections share one ``documents`` table keyed by
``(collection, doc_id)`` with the body in a JSON column (JSONB on
PostgreSQL). Filters compile to JSON path extraction, so the same
``FieldFilter`` objects work against SQLite in tests and PostgreSQL in
production.
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from sqlalchemy import JSON, DateTime, MetaData, String, delete, false, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .base import (
    Document,
    DocumentAlreadyExistsError,
    FieldFilter,
    encode_document,
    encode_value,
)

T = TypeVar("T")


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class StoredDocument(Base):
    """One JSON document in one logical collection."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )


def _json_path(path: tuple[str, ...]) -> Any:
    return StoredDocument.data[path[0]] if len(path) == 1 else StoredDocument.data[path]


def _typed(element: Any, sample: Any) -> Any:
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, int):
        return element.as_integer()
    if isinstance(sample, float):
        return element.as_float()
    return element.as_string()


def _compile_filter(flt: FieldFilter) -> Any:
    element = _json_path(flt.path)
    value = encode_value(flt.value)

    if value is None:
        if flt.op == "==":
            return element.as_string().is_(None)
        if flt.op == "!=":
            return element.as_string().is_not(None)
        msg = f"Operator {flt.op} cannot compare against None"
        raise ValueError(msg)

    if flt.op == "in":
        values = list(value)
        if not values:
            return false()
        return _typed(element, values[0]).in_(values)

    column = _typed(element, value)
    match flt.op:
        case "==":
            return column == value
        case "!=":
            return column != value
        case "<":
            return column < value
        case "<=":
            return column <= value
        case ">":
            return column > value
        case ">=":
            return column >= value
    msg = f"Unsupported filter operator: {flt.op}"
    raise ValueError(msg)


class _SqlTransaction:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _row(self, collection: str, doc_id: str) -> StoredDocument | None:
        return await self._session.get(
            StoredDocument, (collection, doc_id), with_for_update=True
        )

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        row = await self._row(collection, doc_id)
        return copy.deepcopy(row.data) if row is not None else None

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        encoded = encode_document(data)
        row = await self._row(collection, doc_id)
        if row is None:
            self._session.add(StoredDocument(collection=collection, doc_id=doc_id, data=encoded))
            await self._session.flush()
        else:
            row.data = encoded

    async def merge_patch(
        self, collection: str, doc_id: str, patch: Mapping[str, Any] | BaseModel
    ) -> None:
        encoded = encode_document(patch)
        row = await self._row(collection, doc_id)
        if row is None:
            self._session.add(StoredDocument(collection=collection, doc_id=doc_id, data=encoded))
            await self._session.flush()
        else:
            row.data = {**row.data, **encoded}

    async def create(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        if await self._row(collection, doc_id) is not None:
            raise DocumentAlreadyExistsError(collection, doc_id)
        self._session.add(
            StoredDocument(collection=collection, doc_id=doc_id, data=encode_document(data))
        )
        await self._session.flush()

    async def delete(self, collection: str, doc_id: str) -> None:
        row = await self._row(collection, doc_id)
        if row is not None:
            await self._session.delete(row)
            await self._session.flush()


class SQLAlchemyDocumentStore:
    """``DocumentStore`` over an async SQLAlchemy engine.

    Example:
        store = SQLAlchemyDocumentStore.from_url("sqlite+aiosqlite:///./docs.db")
        await store.create_tables()
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> SQLAlchemyDocumentStore:
        return cls(create_async_engine(url, echo=echo))

    async def create_tables(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._sessions() as session:
            row = await session.get(StoredDocument, (collection, doc_id))
            return copy.deepcopy(row.data) if row is not None else None

    async def create(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        encoded = encode_document(data)
        try:
            async with self._sessions() as session, session.begin():
                session.add(StoredDocument(collection=collection, doc_id=doc_id, data=encoded))
        except IntegrityError as exc:
            raise DocumentAlreadyExistsError(collection, doc_id) from exc

    async def create_if_absent(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> bool:
        try:
            await self.create(collection, doc_id, data)
        except DocumentAlreadyExistsError:
            return False
        return True

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any] | BaseModel
    ) -> None:
        await self.run_transaction(lambda txn: txn.set(collection, doc_id, data))

    async def merge_patch(
        self, collection: str, doc_id: str, patch: Mapping[str, Any] | BaseModel
    ) -> None:
        await self.run_transaction(lambda txn: txn.merge_patch(collection, doc_id, patch))

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                delete(StoredDocument).where(
                    StoredDocument.collection == collection,
                    StoredDocument.doc_id == doc_id,
                )
            )
            return bool(result.rowcount)

    async def query(
        self,
        collection: str,
        filters: Iterable[FieldFilter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        stmt = select(StoredDocument).where(StoredDocument.collection == collection)
        for flt in filters:
            stmt = stmt.where(_compile_filter(flt))
        if order_by is not None:
            column = _json_path(tuple(order_by.split("."))).as_string()
            stmt = stmt.order_by(
                column.desc().nulls_last() if descending else column.asc().nulls_first()
            )
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._sessions() as session:
            rows = (await session.scalars(stmt)).all()
            return [Document(id=row.doc_id, data=copy.deepcopy(row.data)) for row in rows]

    async def run_transaction(self, fn: Callable[[_SqlTransaction], Awaitable[T]]) -> T:
        async with self._sessions() as session, session.begin():
            return await fn(_SqlTransaction(session))

    async def close(self) -> None:
        await self._engine.dispose()

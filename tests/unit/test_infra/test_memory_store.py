"""Unit tests for the in-memory document store."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from notification_service.features.notifications.models import JobStatus
from notification_service.infra.documents import (
    DocumentAlreadyExistsError,
    FieldFilter,
    InMemoryDocumentStore,
)


@pytest.mark.unit
class TestWrites:
    """create / create_if_absent / set / merge_patch / delete."""

    async def test_create_if_absent_keeps_first_write(self, store: InMemoryDocumentStore):
        assert await store.create_if_absent("jobs", "a", {"n": 1}) is True
        assert await store.create_if_absent("jobs", "a", {"n": 2}) is False

        assert await store.get("jobs", "a") == {"n": 1}

    async def test_create_raises_for_existing_document(self, store: InMemoryDocumentStore):
        await store.create("jobs", "a", {"n": 1})

        with pytest.raises(DocumentAlreadyExistsError) as exc_info:
            await store.create("jobs", "a", {"n": 2})

        assert exc_info.value.doc_id == "a"

    async def test_reads_return_copies(self, store: InMemoryDocumentStore):
        """Mutating a read result must not change stored state."""
        await store.set("jobs", "a", {"nested": {"n": 1}})

        data = await store.get("jobs", "a")
        data["nested"]["n"] = 99

        assert await store.get("jobs", "a") == {"nested": {"n": 1}}

    async def test_merge_patch_creates_then_merges_top_level(self, store: InMemoryDocumentStore):
        await store.merge_patch("jobs", "a", {"status": "queued", "attempt_count": 0})
        await store.merge_patch("jobs", "a", {"attempt_count": 1})

        assert await store.get("jobs", "a") == {"status": "queued", "attempt_count": 1}

    async def test_values_are_encoded(self, store: InMemoryDocumentStore):
        """Datetimes become canonical UTC strings and enums their values."""
        await store.set(
            "jobs",
            "a",
            {"at": datetime(2026, 10, 14, 17, 0, tzinfo=UTC), "status": JobStatus.QUEUED, "ids": ("x",)},
        )

        assert await store.get("jobs", "a") == {
            "at": "2026-10-14T17:00:00.000000Z",
            "status": "queued",
            "ids": ["x"],
        }

    async def test_delete_reports_removal(self, store: InMemoryDocumentStore):
        await store.set("jobs", "a", {})

        assert await store.delete("jobs", "a") is True
        assert await store.delete("jobs", "a") is False
        assert await store.get("jobs", "a") is None


@pytest.mark.unit
class TestQuery:
    """Filters, ordering and limits."""

    @pytest.fixture
    async def jobs(self, store: InMemoryDocumentStore) -> InMemoryDocumentStore:
        await store.set("jobs", "late", {"status": "queued", "run_after": "2026-10-14T18:00:00.000000Z"})
        await store.set("jobs", "early", {"status": "queued", "run_after": "2026-10-14T16:00:00.000000Z"})
        await store.set("jobs", "unscheduled", {"status": "queued", "run_after": None})
        await store.set("jobs", "done", {"status": "done", "run_after": "2026-10-14T15:00:00.000000Z"})
        return store

    async def test_range_filter_on_timestamps(self, jobs: InMemoryDocumentStore):
        docs = await jobs.query(
            "jobs",
            [
                FieldFilter("status", "==", "queued"),
                FieldFilter("run_after", "<=", datetime(2026, 10, 14, 17, 0, tzinfo=UTC)),
            ],
        )

        assert [doc.id for doc in docs] == ["early"]

    async def test_equality_with_none_matches_null_and_missing(self, jobs: InMemoryDocumentStore):
        await jobs.set("jobs", "missing", {"status": "queued"})

        docs = await jobs.query("jobs", [FieldFilter("run_after", "==", None)])

        assert {doc.id for doc in docs} == {"unscheduled", "missing"}

    async def test_order_by_sorts_missing_values_first(self, jobs: InMemoryDocumentStore):
        docs = await jobs.query("jobs", order_by="run_after")

        assert [doc.id for doc in docs] == ["unscheduled", "done", "early", "late"]

    async def test_descending_order_with_limit(self, jobs: InMemoryDocumentStore):
        docs = await jobs.query("jobs", order_by="run_after", descending=True, limit=2)

        assert [doc.id for doc in docs] == ["late", "early"]

    async def test_nested_paths_and_in_operator(self, store: InMemoryDocumentStore):
        await store.set("reservations", "r1", {"pickup_window": {"status": "open"}})
        await store.set("reservations", "r2", {"pickup_window": {"status": "missed"}})
        await store.set("reservations", "r3", {})

        opened = await store.query("reservations", [FieldFilter("pickup_window.status", "==", "open")])
        either = await store.query(
            "reservations", [FieldFilter("pickup_window.status", "in", ["open", "missed"])]
        )

        assert [doc.id for doc in opened] == ["r1"]
        assert {doc.id for doc in either} == {"r1", "r2"}

    async def test_booleans_do_not_match_integers(self, store: InMemoryDocumentStore):
        await store.set("device_tokens", "a", {"active": True})
        await store.set("device_tokens", "b", {"active": 1})

        docs = await store.query("device_tokens", [FieldFilter("active", "==", True)])

        assert [doc.id for doc in docs] == ["a"]


@pytest.mark.unit
class TestTransactions:
    async def test_writes_commit_when_callback_returns(self, store: InMemoryDocumentStore):
        await store.set("jobs", "a", {"status": "queued", "attempt_count": 0})

        async def claim(txn):
            data = await txn.get("jobs", "a")
            await txn.merge_patch("jobs", "a", {"attempt_count": data["attempt_count"] + 1})
            await txn.create("jobs", "b", {"status": "queued"})
            return data["status"]

        assert await store.run_transaction(claim) == "queued"
        assert (await store.get("jobs", "a"))["attempt_count"] == 1
        assert await store.get("jobs", "b") == {"status": "queued"}

    async def test_writes_are_discarded_on_error(self, store: InMemoryDocumentStore):
        await store.set("jobs", "a", {"status": "queued"})

        async def failing(txn):
            await txn.set("jobs", "a", {"status": "processing"})
            await txn.delete("jobs", "a")
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            await store.run_transaction(failing)

        assert await store.get("jobs", "a") == {"status": "queued"}

    async def test_transaction_reads_its_own_writes(self, store: InMemoryDocumentStore):
        async def write_then_read(txn):
            await txn.set("jobs", "a", {"n": 1})
            return await txn.get("jobs", "a")

        assert await store.run_transaction(write_then_read) == {"n": 1}

    async def test_transaction_create_conflicts(self, store: InMemoryDocumentStore):
        await store.set("jobs", "a", {})

        async def create(txn):
            await txn.create("jobs", "a", {"n": 1})

        with pytest.raises(DocumentAlreadyExistsError):
            await store.run_transaction(create)

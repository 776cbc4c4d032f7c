"""Kiln unload notifications.

When a firing document first gains ``unloaded_at``, every owner of a batch
or piece in the firing receives one ``KILN_UNLOADED`` job. Owners come from
``batches/{id}.owner_uid`` directly and from ``pieces/{id}.batch_id`` for
loose pieces.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from notification_service.infra.documents import DocumentStore
from notification_service.infra.logging import get_logger
from notification_service.utils.timestamps import utc_now

from ..notifications.directory import IdentityDirectory
from ..notifications.models import (
    FiringType,
    JobStatus,
    JobType,
    NotificationJob,
    NotificationPayload,
    SkipReason,
)
from ..notifications.preferences import PreferenceReader, should_notify_kiln
from ..notifications.scheduling import resolve_run_after

if TYPE_CHECKING:
    from ..notifications.queue import JobQueue

logger = get_logger(__name__)

FIRINGS_COLLECTION = "kiln_firings"
KILNS_COLLECTION = "kilns"
BATCHES_COLLECTION = "batches"
PIECES_COLLECTION = "pieces"

AudienceSegment = Literal["all", "members", "staff"]


@dataclass
class OwnerItems:
    batch_ids: list[str] = field(default_factory=list)
    piece_ids: list[str] = field(default_factory=list)


def _ids(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, str) and item.strip()]


def _firing_type(value: Any) -> FiringType | None:
    text = value.strip().lower() if isinstance(value, str) else ""
    if text == "bisque":
        return "bisque"
    if text == "glaze":
        return "glaze"
    return None


class KilnUnloadHandler:
    """Fans one kiln unload out to the owners of its batches and pieces."""

    def __init__(
        self,
        store: DocumentStore,
        queue: JobQueue,
        preferences: PreferenceReader,
        directory: IdentityDirectory,
        *,
        segment: AudienceSegment = "members",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._queue = queue
        self._preferences = preferences
        self._directory = directory
        self._segment = segment
        self._clock = clock

    async def on_firing_written(
        self,
        firing_id: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> int:
        """Enqueue unload jobs the first time ``unloaded_at`` is set.

        Returns:
            Number of jobs newly created.
        """
        if after is None:
            return 0
        if (before or {}).get("unloaded_at") or not after.get("unloaded_at"):
            return 0

        try:
            return await self._handle(firing_id, after)
        except Exception:
            logger.exception("Kiln unload handling failed", extra={"firing_id": firing_id})
            return 0

    async def _handle(self, firing_id: str, firing: Mapping[str, Any]) -> int:
        kiln_id = str(firing.get("kiln_id") or "").strip() or None
        firing_type = _firing_type(firing.get("cycle_type"))
        batch_ids = _ids(firing.get("batch_ids"))
        piece_ids = _ids(firing.get("piece_ids"))

        owners = await self.resolve_owners(batch_ids, piece_ids)
        if not owners:
            logger.warning(
                "Kiln unload notification skipped: no owners resolved",
                extra={
                    "firing_id": firing_id,
                    "batch_ids_count": len(batch_ids),
                    "piece_ids_count": len(piece_ids),
                },
            )
            return 0

        kiln_name = str(firing.get("kiln_name") or "").strip() or await self._kiln_name(kiln_id)
        logger.info(
            "Kiln unload notification queued",
            extra={
                "firing_id": firing_id,
                "owners": len(owners),
                "kiln_name": kiln_name,
                "firing_type": firing_type,
            },
        )

        eligible = set(await self.filter_by_segment(owners))
        created = 0
        for uid, items in owners.items():
            if uid not in eligible:
                logger.info(
                    "Notification recipient skipped by audience segment",
                    extra={"uid": uid, "segment": self._segment, "firing_id": firing_id},
                )
                continue

            prefs = await self._preferences.read_preferences(uid)
            now = self._clock()
            job = NotificationJob(
                type=JobType.KILN_UNLOADED,
                uid=uid,
                channels=prefs.channels.model_copy(),
                payload=NotificationPayload(
                    dedupe_key=f"KILN_UNLOADED:{firing_id}:{uid}",
                    firing_id=firing_id,
                    kiln_id=kiln_id,
                    kiln_name=kiln_name,
                    firing_type=firing_type,
                    batch_ids=items.batch_ids or batch_ids,
                    piece_ids=items.piece_ids or piece_ids,
                ),
                run_after=resolve_run_after(now, prefs),
                created_at=now,
                updated_at=now,
            )
            if not should_notify_kiln(prefs, firing_type):
                job.status = JobStatus.SKIPPED
                job.last_error = SkipReason.PREFS_DISABLED.value
            if await self._queue.enqueue(job):
                created += 1
        return created

    async def resolve_owners(
        self, batch_ids: Iterable[str], piece_ids: Iterable[str]
    ) -> dict[str, OwnerItems]:
        """Map owner uid to the batches and pieces of theirs in the firing."""
        owners: dict[str, OwnerItems] = {}

        def add(uid: str, *, batch_id: str | None = None, piece_id: str | None = None) -> None:
            items = owners.setdefault(uid, OwnerItems())
            if batch_id and batch_id not in items.batch_ids:
                items.batch_ids.append(batch_id)
            if piece_id and piece_id not in items.piece_ids:
                items.piece_ids.append(piece_id)

        batch_owners = await self._batch_owners(batch_ids)
        for batch_id, uid in batch_owners.items():
            add(uid, batch_id=batch_id)

        piece_batches: dict[str, str] = {}
        for piece_id in dict.fromkeys(piece_ids):
            piece = await self._store.get(PIECES_COLLECTION, piece_id)
            batch_id = (piece or {}).get("batch_id")
            if isinstance(batch_id, str) and batch_id:
                piece_batches[piece_id] = batch_id
        piece_owners = await self._batch_owners(piece_batches.values())
        for piece_id, batch_id in piece_batches.items():
            uid = piece_owners.get(batch_id)
            if uid:
                add(uid, piece_id=piece_id)
        return owners

    async def _batch_owners(self, batch_ids: Iterable[str]) -> dict[str, str]:
        result: dict[str, str] = {}
        for batch_id in dict.fromkeys(batch_ids):
            batch = await self._store.get(BATCHES_COLLECTION, batch_id)
            owner = (batch or {}).get("owner_uid")
            if isinstance(owner, str) and owner:
                result[batch_id] = owner
        return result

    async def filter_by_segment(self, uids: Iterable[str]) -> list[str]:
        uids = list(uids)
        if self._segment == "all":
            return uids
        eligible: list[str] = []
        for uid in uids:
            identity = await self._directory.get_identity(uid)
            staff = identity.is_staff if identity is not None else False
            if staff == (self._segment == "staff"):
                eligible.append(uid)
        return eligible

    async def _kiln_name(self, kiln_id: str | None) -> str | None:
        if not kiln_id:
            return None
        kiln = await self._store.get(KILNS_COLLECTION, kiln_id)
        name = (kiln or {}).get("name")
        return name.strip() or None if isinstance(name, str) else None

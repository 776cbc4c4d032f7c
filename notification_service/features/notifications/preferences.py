"""User notification preferences and reservation routing."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from notification_service.infra.documents import DocumentStore
from notification_service.infra.logging import get_logger

from .models import ChannelFlags, FiringType, SkipReason

logger = get_logger(__name__)

PREFERENCES_COLLECTION = "notification_preferences"
PROFILES_COLLECTION = "profiles"
DEFAULT_TIMEZONE = "America/Phoenix"


class EventToggles(BaseModel):
    kiln_unloaded: bool = True
    kiln_unloaded_bisque: bool = True
    kiln_unloaded_glaze: bool = True


class QuietHours(BaseModel):
    enabled: bool = False
    start_local: str = "21:00"
    end_local: str = "08:00"
    timezone: str = DEFAULT_TIMEZONE


class Frequency(BaseModel):
    mode: Literal["immediate", "digest"] = "immediate"
    digest_hours: int = 6


class NotificationPreferences(BaseModel):
    """Per-user preferences; missing fields take the defaults."""

    enabled: bool = True
    channels: ChannelFlags = Field(default_factory=lambda: ChannelFlags(in_app=True))
    events: EventToggles = Field(default_factory=EventToggles)
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    frequency: Frequency = Field(default_factory=Frequency)


_SECTIONS: dict[str, type[BaseModel]] = {
    "channels": ChannelFlags,
    "events": EventToggles,
    "quiet_hours": QuietHours,
    "frequency": Frequency,
}


def _valid_leaves(model: type[BaseModel], raw: Mapping[str, Any]) -> dict[str, Any]:
    """Return the fields of ``raw`` that validate on their own."""
    leaves: dict[str, Any] = {}
    for name in model.model_fields:
        if name not in raw:
            continue
        try:
            checked = model.model_validate({name: raw[name]})
        except ValidationError:
            logger.warning(
                "Ignoring invalid notification preference",
                extra={"field": f"{model.__name__}.{name}"},
            )
            continue
        leaves[name] = getattr(checked, name)
    return leaves


def merge_preferences(raw: Mapping[str, Any] | None) -> NotificationPreferences:
    """Overlay a stored preferences document on the defaults, field by field.

    Missing or invalid leaves take their default; every valid leaf is kept,
    so a bad ``frequency.mode`` never re-enables a disabled user.
    """
    defaults = NotificationPreferences()
    if not raw:
        return defaults
    merged: dict[str, Any] = {}
    top = {key: raw[key] for key in ("enabled",) if key in raw}
    merged.update(_valid_leaves(NotificationPreferences, top))
    for section, model in _SECTIONS.items():
        stored = raw.get(section)
        base = getattr(defaults, section)
        if not isinstance(stored, Mapping):
            merged[section] = base
            continue
        merged[section] = base.model_copy(update=_valid_leaves(model, stored))
    return NotificationPreferences(**merged)


def should_notify_kiln(prefs: NotificationPreferences, firing_type: FiringType | None) -> bool:
    if not prefs.enabled or not prefs.events.kiln_unloaded:
        return False
    if firing_type == "bisque" and not prefs.events.kiln_unloaded_bisque:
        return False
    if firing_type == "glaze" and not prefs.events.kiln_unloaded_glaze:
        return False
    return True


@dataclass(frozen=True)
class ReservationRouting:
    """Resolved delivery routing for one user's reservation notifications."""

    prefs: NotificationPreferences
    notify_reservations: bool
    channels: ChannelFlags

    def skip_reason(self) -> SkipReason | None:
        if not self.notify_reservations:
            return SkipReason.RESERVATION_PREF_DISABLED
        if not self.prefs.enabled:
            return SkipReason.PREFS_DISABLED
        if not self.channels.any_enabled():
            return SkipReason.NO_CHANNELS_ENABLED
        return None

    @property
    def deliverable(self) -> bool:
        return self.skip_reason() is None


class PreferenceReader:
    """Reads preferences and the reservation opt-in from the document store."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def read_preferences(self, uid: str) -> NotificationPreferences:
        return merge_preferences(await self._store.get(PREFERENCES_COLLECTION, uid))

    async def read_reservation_opt_in(self, uid: str) -> bool:
        profile = await self._store.get(PROFILES_COLLECTION, uid)
        if not profile:
            return True
        value = profile.get("notify_reservations")
        return value if isinstance(value, bool) else True

    async def read_reservation_routing(self, uid: str) -> ReservationRouting:
        prefs = await self.read_preferences(uid)
        return ReservationRouting(
            prefs=prefs,
            notify_reservations=await self.read_reservation_opt_in(uid),
            channels=prefs.channels.model_copy(),
        )

    async def read_profile(self, uid: str) -> dict[str, Any]:
        return await self._store.get(PROFILES_COLLECTION, uid) or {}

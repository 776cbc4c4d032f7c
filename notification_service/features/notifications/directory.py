"""Identity directory lookups (email, phone, custom claims)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import BaseModel, Field

from notification_service.infra.documents import DocumentStore

IDENTITIES_COLLECTION = "identities"


class IdentityRecord(BaseModel):
    uid: str
    email: str | None = None
    phone_number: str | None = None
    custom_claims: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_staff(self) -> bool:
        return is_staff_claims(self.custom_claims)


def is_staff_claims(claims: Mapping[str, Any] | None) -> bool:
    """Staff are flagged by ``staff: true`` or a ``staff`` role."""
    if not claims:
        return False
    if claims.get("staff") is True:
        return True
    roles = claims.get("roles")
    return isinstance(roles, list) and "staff" in roles


class IdentityDirectory(Protocol):
    async def get_identity(self, uid: str) -> IdentityRecord | None: ...


class StoreIdentityDirectory:
    """``IdentityDirectory`` backed by ``identities/{uid}`` documents."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get_identity(self, uid: str) -> IdentityRecord | None:
        data = await self._store.get(IDENTITIES_COLLECTION, uid)
        if data is None:
            return None
        return IdentityRecord.model_validate({**data, "uid": uid})

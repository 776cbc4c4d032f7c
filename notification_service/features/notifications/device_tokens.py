"""Push device token registry."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel

from notification_service.core.exceptions import ValidationException
from notification_service.infra.documents import DocumentStore, FieldFilter, Transaction
from notification_service.infra.logging import get_logger
from notification_service.utils.hashing import stable_id
from notification_service.utils.timestamps import utc_now

from .metrics import notification_push_tokens_deactivated_total
from .models import DEVICE_TOKENS_COLLECTION, DeviceToken

logger = get_logger(__name__)

STALE_TOKEN_REASON = "STALE_TOKEN_TIMEOUT"
UNREGISTERED_REASON = "UNREGISTERED"


def normalize_token(token: str) -> str:
    return "".join(token.split())


def token_hash_for(token: str) -> str:
    return stable_id(normalize_token(token))


def token_doc_id(uid: str, token_hash: str) -> str:
    return f"{uid}:{token_hash}"


class TokenCleanupSummary(BaseModel):
    scanned: int = 0
    deactivated: int = 0


class DeviceTokenRegistry:
    """Registers, lists and retires push device tokens.

    Tokens are stored per user under ``<uid>:<sha256(token)>`` so the same
    device hash can be tracked independently for each account.
    """

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def register(
        self,
        uid: str,
        token: str,
        *,
        platform: str = "ios",
        environment: Literal["sandbox", "production"] = "production",
        app_version: str | None = None,
        app_build: str | None = None,
        device_model: str | None = None,
    ) -> DeviceToken:
        normalized = normalize_token(token)
        if not normalized:
            raise ValidationException("Device token is required", type="device-token-required")

        token_hash = stable_id(normalized)
        doc_id = token_doc_id(uid, token_hash)
        now = self._clock()

        async def _upsert(txn: Transaction) -> DeviceToken:
            existing = await txn.get(DEVICE_TOKENS_COLLECTION, doc_id)
            record = DeviceToken(
                uid=uid,
                token=normalized,
                token_hash=token_hash,
                active=True,
                platform=platform,
                environment=environment,
                app_version=app_version,
                app_build=app_build,
                device_model=device_model,
                created_at=(existing or {}).get("created_at") or now,
                last_seen_at=now,
                updated_at=now,
            )
            await txn.set(DEVICE_TOKENS_COLLECTION, doc_id, record)
            return record

        record = await self._store.run_transaction(_upsert)
        logger.info(
            "Registered device token",
            extra={"uid": uid, "token_hash": token_hash[:16], "environment": environment},
        )
        return record

    async def unregister(
        self, uid: str, *, token: str | None = None, token_hash: str | None = None
    ) -> str:
        """Deactivate a token given either the raw token or its hash.

        Returns:
            The token hash that was deactivated.
        """
        resolved = token_hash or (token_hash_for(token) if token and normalize_token(token) else "")
        if not resolved:
            raise ValidationException("token or token_hash is required", type="device-token-required")
        await self.deactivate(uid, resolved, UNREGISTERED_REASON)
        return resolved

    async def deactivate(self, uid: str, token_hash: str, reason: str) -> None:
        now = self._clock()
        patch: dict[str, Any] = {
            "active": False,
            "deactivated_at": now,
            "deactivation_reason": reason,
            "updated_at": now,
        }
        await self._store.merge_patch(DEVICE_TOKENS_COLLECTION, token_doc_id(uid, token_hash), patch)
        notification_push_tokens_deactivated_total.labels(reason=reason).inc()

    async def list_active(self, uid: str, limit: int = 20) -> list[DeviceToken]:
        docs = await self._store.query(
            DEVICE_TOKENS_COLLECTION,
            [FieldFilter("uid", "==", uid), FieldFilter("active", "==", True)],
            limit=limit,
        )
        tokens = []
        for doc in docs:
            if not doc.data.get("token"):
                continue
            tokens.append(DeviceToken.model_validate(doc.data))
        return tokens

    async def cleanup_stale(self, older_than_days: int = 90, limit: int = 250) -> TokenCleanupSummary:
        """Deactivate active tokens not refreshed within ``older_than_days``."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        docs = await self._store.query(
            DEVICE_TOKENS_COLLECTION,
            [FieldFilter("active", "==", True), FieldFilter("updated_at", "<", cutoff)],
            limit=limit,
        )
        summary = TokenCleanupSummary(scanned=len(docs))
        for doc in docs:
            uid = doc.data.get("uid")
            token_hash = doc.data.get("token_hash")
            if not uid or not token_hash:
                continue
            await self.deactivate(uid, token_hash, STALE_TOKEN_REASON)
            summary.deactivated += 1

        if summary.deactivated:
            logger.info(
                "Deactivated stale device tokens",
                extra={"deactivated": summary.deactivated, "older_than_days": older_than_days},
            )
        return summary

"""Request and response schemas for the admin API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from notification_service.utils.timestamps import Timestamp


class DeviceTokenRegister(BaseModel):
    uid: str = Field(min_length=1)
    token: str = Field(min_length=16, max_length=1024)
    platform: str = "ios"
    environment: Literal["sandbox", "production"] = "production"
    app_version: str | None = None
    app_build: str | None = None
    device_model: str | None = None


class DeviceTokenUnregister(BaseModel):
    uid: str = Field(min_length=1)
    token: str | None = Field(default=None, min_length=16, max_length=1024)
    token_hash: str | None = Field(default=None, min_length=64, max_length=64)

    @model_validator(mode="after")
    def _token_or_hash(self) -> DeviceTokenUnregister:
        if not self.token and not self.token_hash:
            msg = "token or token_hash is required"
            raise ValueError(msg)
        return self


class DeviceTokenRead(BaseModel):
    """A registered token without the raw token value."""

    uid: str
    token_hash: str
    active: bool
    platform: str | None = None
    environment: str | None = None
    updated_at: Timestamp | None = None


class DeviceTokenUnregistered(BaseModel):
    uid: str
    token_hash: str
    active: bool = False

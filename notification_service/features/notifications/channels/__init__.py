"""Delivery channels and the dispatcher that fans jobs out to them."""

from __future__ import annotations

from .base import DeliveryResult
from .dispatcher import ChannelDispatcher, DispatchOutcome
from .email import EmailChannel
from .in_app import InAppChannel
from .push import PushChannel, PushRelayClient
from .sms import SmsChannel, TwilioClient, normalize_e164
from .telemetry import DeliveryTelemetry

__all__ = [
    "ChannelDispatcher",
    "DeliveryResult",
    "DeliveryTelemetry",
    "DispatchOutcome",
    "EmailChannel",
    "InAppChannel",
    "PushChannel",
    "PushRelayClient",
    "SmsChannel",
    "TwilioClient",
    "normalize_e164",
]

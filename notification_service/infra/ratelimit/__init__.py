"""Outbound provider rate limiting."""

from .pacer import ProviderPacer

__all__ = ["ProviderPacer"]

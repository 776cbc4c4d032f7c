"""Kiln firing events."""

from .events import FIRINGS_COLLECTION, KilnUnloadHandler

__all__ = ["FIRINGS_COLLECTION", "KilnUnloadHandler"]

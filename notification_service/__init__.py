"""Notification delivery queue and reservation storage-policy engine."""

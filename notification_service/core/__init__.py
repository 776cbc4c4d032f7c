"""Core configuration and exception types."""

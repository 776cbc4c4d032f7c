"""Infrastructure adapters: logging, document storage, provider pacing."""

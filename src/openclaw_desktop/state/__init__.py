"""Persisted manager state (``state.json``) and its schema."""

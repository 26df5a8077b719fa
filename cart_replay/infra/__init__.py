"""Infra layer utilities (storage)."""

from .storage import KeyValueStore, SQLiteManager

__all__ = ["KeyValueStore", "SQLiteManager"]

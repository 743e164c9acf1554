"""Persistence layer — durable grid storage."""

from digzone.persistence.grid_store import GridStore

__all__ = ["GridStore"]

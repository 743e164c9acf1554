"""Claim engine."""

from digzone.engine.grid_engine import GridEngine

__all__ = ["GridEngine"]

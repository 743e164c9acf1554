"""Data models — blocks, users and the grid document."""

from digzone.models.block import (
    Block,
    BlockStatus,
    ClaimResult,
    GridDocument,
    TIMESTAMP_FORMAT,
    UserRecord,
)

__all__ = [
    "Block",
    "BlockStatus",
    "ClaimResult",
    "GridDocument",
    "TIMESTAMP_FORMAT",
    "UserRecord",
]

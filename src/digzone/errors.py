"""Error taxonomy for the digging board.

Every error is local to the operation that detects it. None of them is
meant to take the process down:

- OutOfRangeError / AlreadyClaimedError / DailyLimitError are caller
  errors. They are definitive and carry no state change.
- CorruptStateError means the durable document failed validation. Writes
  stop until an operator repairs the file.
- NotificationError never leaves the notifier.
"""

from __future__ import annotations

from typing import Optional


class DigzoneError(Exception):
    """Base exception for the digging board."""


class OutOfRangeError(DigzoneError):
    """Raised when a block index falls outside ``[0, total_blocks)``."""

    def __init__(self, index: int, total_blocks: int) -> None:
        self.index = index
        self.total_blocks = total_blocks
        super().__init__(
            f"Block index {index} out of range [0, {total_blocks})"
        )


class AlreadyClaimedError(DigzoneError):
    """Raised when a claim targets a block that is already dug."""

    def __init__(self, index: int, owner: Optional[str]) -> None:
        self.index = index
        self.owner = owner
        super().__init__(f"Block {index} already claimed by {owner}")


class DailyLimitError(DigzoneError):
    """Raised when a user has used up their claims for the day."""

    def __init__(self, identity: str, limit: int) -> None:
        self.identity = identity
        self.limit = limit
        super().__init__(
            f"Daily claim limit reached for {identity} ({limit} per day)"
        )


class CorruptStateError(DigzoneError):
    """Raised when the durable document is unreadable or inconsistent."""


class NotificationError(DigzoneError):
    """Raised inside the notifier when a delivery attempt fails."""


class ConfigurationError(DigzoneError, ValueError):
    """Raised when configuration is missing or invalid."""

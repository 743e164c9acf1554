"""Block, user and document models for the digging board.

A block moves through exactly one transition in its lifetime:

    UNDUG → DUG

DUG is terminal. The owner is set by that transition and never changes.
``dug_by`` is kept only as a read-only alias of ``owner`` so the two can
never diverge.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class BlockStatus(str, enum.Enum):
    """Dig status of a single block."""
    UNDUG = "undug"
    DUG = "dug"


@dataclass
class Block:
    """One cell of the grid, the unit of ownership.

    ``extra`` carries record fields this version does not know about
    (added by migration tooling) so they survive a load/save cycle.
    """
    index: int
    status: BlockStatus = BlockStatus.UNDUG
    owner: Optional[str] = None
    color: Optional[str] = None
    visual: Optional[Any] = None
    dug_utc: Optional[datetime] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def dug_by(self) -> Optional[str]:
        return self.owner

    @property
    def is_dug(self) -> bool:
        return self.status == BlockStatus.DUG

    def invariant_errors(self) -> list[str]:
        """Return a description of every invariant this block breaks."""
        errors: list[str] = []
        if self.status == BlockStatus.DUG:
            if not self.owner:
                errors.append(f"Block {self.index} is dug but has no owner")
        else:
            if self.owner is not None:
                errors.append(
                    f"Block {self.index} is undug but owned by {self.owner}"
                )
            if self.dug_utc is not None:
                errors.append(
                    f"Block {self.index} is undug but has a dig timestamp"
                )
        return errors

    def copy(self) -> Block:
        return copy.deepcopy(self)


@dataclass
class UserRecord:
    """An entry in the auxiliary list of known users.

    Only the fields the board reads are typed. Everything else the
    document stores for a user (credentials, keys, balances) rides in
    ``extra`` untouched.
    """
    username: str
    color: Optional[str] = None
    last_dig_date: Optional[str] = None  # YYYY-MM-DD, UTC
    daily_dig_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def claims_today(self, today: str) -> int:
        """Claims already made on ``today``; a stale counter reads as zero."""
        if self.last_dig_date != today:
            return 0
        return self.daily_dig_count

    def record_claim(self, today: str) -> None:
        if self.last_dig_date != today:
            self.last_dig_date = today
            self.daily_dig_count = 0
        self.daily_dig_count += 1


@dataclass
class GridDocument:
    """The full durable state: every block plus the known users.

    Block positions are fixed for the lifetime of a deployment. Changing
    the length of ``blocks`` is a migration, not a runtime operation.
    """
    blocks: list[Block] = field(default_factory=list)
    users: list[UserRecord] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def fresh(cls, total_blocks: int) -> GridDocument:
        """Create a document with ``total_blocks`` undug blocks."""
        if total_blocks <= 0:
            raise ValueError(
                f"Grid must have at least one block, got {total_blocks}"
            )
        return cls(blocks=[Block(index=i) for i in range(total_blocks)])

    @property
    def total_blocks(self) -> int:
        return len(self.blocks)

    def find_user(self, username: str) -> Optional[UserRecord]:
        for user in self.users:
            if user.username == username:
                return user
        return None

    def user_colors(self) -> dict[str, Optional[str]]:
        return {u.username: u.color for u in self.users}

    def invariant_errors(self) -> list[str]:
        """Check positional indices, per-block invariants and user uniqueness."""
        errors: list[str] = []
        for position, block in enumerate(self.blocks):
            if block.index != position:
                errors.append(
                    f"Block at position {position} has index {block.index}"
                )
            errors.extend(block.invariant_errors())
        seen: set[str] = set()
        for user in self.users:
            if user.username in seen:
                errors.append(f"Duplicate user: {user.username}")
            seen.add(user.username)
        return errors

    def copy(self) -> GridDocument:
        return copy.deepcopy(self)


@dataclass(frozen=True)
class ClaimResult:
    """Outcome of a successful claim."""
    block: Block
    claimed_utc: str
    notification_scheduled: bool = False

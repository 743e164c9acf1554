"""Stats aggregator — derived counts over a grid snapshot.

One counting rule: a block is claimed iff its status is DUG. Per-user
counts key on the block's owner. Both are recomputed from the grid on
every call and never persisted, so there is no second source of truth
that could drift.

Pure computation: no side effects, no store access. Callers pass in
whatever snapshot they read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from digzone.models.block import Block, UserRecord

DEFAULT_MINER_COLOR = "#888"


@dataclass(frozen=True)
class MinerEntry:
    """One row of the top-miners table."""
    name: str
    block_count: int
    color: str


@dataclass(frozen=True)
class UserSummary:
    """Per-user slice of the grid summary."""
    username: str
    total_blocks: int
    remaining_claims: Optional[int]
    color: str


@dataclass(frozen=True)
class GridSummary:
    """Headline numbers for the dashboard."""
    total_blocks: int
    claimed_blocks: int
    empty_blocks: int
    top_miners: list[MinerEntry] = field(default_factory=list)
    current_user: Optional[UserSummary] = None


@dataclass(frozen=True)
class FieldAudit:
    """How many raw records look claimed under each legacy signal.

    Reporting only. The three counts agree on any document the store
    accepts; disagreement points at a document that needs repair.
    """
    status_dug: int
    with_dug_by: int
    with_owner: int

    @property
    def consistent(self) -> bool:
        return self.status_dug == self.with_dug_by == self.with_owner


def count_claimed(blocks: Iterable[Block]) -> int:
    """Count blocks whose status is DUG."""
    return sum(1 for b in blocks if b.is_dug)


def per_user_distribution(blocks: Iterable[Block]) -> dict[str, int]:
    """Map each owner to their number of dug blocks.

    Sorted by descending count, ties broken by identity.
    """
    counts: dict[str, int] = {}
    for block in blocks:
        if block.is_dug:
            counts[block.owner] = counts.get(block.owner, 0) + 1
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return dict(ordered)


def top_miners(
    blocks: Iterable[Block],
    users: Iterable[UserRecord] = (),
    limit: int = 10,
) -> list[MinerEntry]:
    """Return the ``limit`` biggest owners with their display color.

    The color comes from the users list, then from one of the owner's
    blocks, then DEFAULT_MINER_COLOR.
    """
    if limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")
    blocks = list(blocks)
    user_colors = {u.username: u.color for u in users}
    block_colors: dict[str, str] = {}
    for block in blocks:
        if block.is_dug and block.color and block.owner not in block_colors:
            block_colors[block.owner] = block.color

    entries = []
    for name, count in list(per_user_distribution(blocks).items())[:limit]:
        color = user_colors.get(name) or block_colors.get(name) or DEFAULT_MINER_COLOR
        entries.append(MinerEntry(name=name, block_count=count, color=color))
    return entries


def grid_summary(
    blocks: Iterable[Block],
    users: Iterable[UserRecord] = (),
    username: Optional[str] = None,
    remaining_claims: Optional[int] = None,
) -> GridSummary:
    """Totals, top three miners and, optionally, one user's standing.

    ``remaining_claims`` is the caller's view of the user's daily
    allowance (None when no limit applies).
    """
    blocks = list(blocks)
    users = list(users)
    total = len(blocks)
    claimed = count_claimed(blocks)

    current = None
    if username is not None:
        distribution = per_user_distribution(blocks)
        record = next((u for u in users if u.username == username), None)
        current = UserSummary(
            username=username,
            total_blocks=distribution.get(username, 0),
            remaining_claims=remaining_claims,
            color=(record.color if record and record.color else DEFAULT_MINER_COLOR),
        )

    return GridSummary(
        total_blocks=total,
        claimed_blocks=claimed,
        empty_blocks=total - claimed,
        top_miners=top_miners(blocks, users, limit=3),
        current_user=current,
    )


def audit_claim_fields(records: Iterable[Mapping[str, Any]]) -> FieldAudit:
    """Count raw block records by each legacy "is claimed" signal."""
    status_dug = with_dug_by = with_owner = 0
    for record in records:
        if not record:
            continue
        if record.get("status") == "dug":
            status_dug += 1
        if record.get("dugBy"):
            with_dug_by += 1
        if record.get("owner"):
            with_owner += 1
    return FieldAudit(
        status_dug=status_dug,
        with_dug_by=with_dug_by,
        with_owner=with_owner,
    )

"""Tests for the stats aggregator — one counting rule, no drift."""

import random

import pytest

from digzone.models.block import Block, BlockStatus, UserRecord
from digzone.stats.aggregator import (
    DEFAULT_MINER_COLOR,
    audit_claim_fields,
    count_claimed,
    grid_summary,
    per_user_distribution,
    top_miners,
)


def _dug(index: int, owner: str, color: str = "red") -> Block:
    return Block(index=index, status=BlockStatus.DUG, owner=owner, color=color)


def _scenario_grid() -> list[Block]:
    """50 blocks for alice, 30 for bob, 20 undug."""
    blocks = [_dug(i, "alice") for i in range(50)]
    blocks += [_dug(i, "bob", "blue") for i in range(50, 80)]
    blocks += [Block(index=i) for i in range(80, 100)]
    return blocks


# =====================================================================
# Canonical counts
# =====================================================================


class TestCounts:
    def test_scenario_counts(self) -> None:
        grid = _scenario_grid()
        assert count_claimed(grid) == 80
        distribution = per_user_distribution(grid)
        assert distribution == {"alice": 50, "bob": 30}
        assert list(distribution) == ["alice", "bob"]

    def test_sum_matches_count(self) -> None:
        rng = random.Random(7)
        owners = ["alice", "bob", "carol", "dave"]
        grid = [
            _dug(i, rng.choice(owners)) if rng.random() < 0.6 else Block(index=i)
            for i in range(200)
        ]
        assert sum(per_user_distribution(grid).values()) == count_claimed(grid)

    def test_order_invariant(self) -> None:
        grid = _scenario_grid()
        shuffled = list(grid)
        random.Random(3).shuffle(shuffled)
        assert count_claimed(shuffled) == count_claimed(grid)
        assert per_user_distribution(shuffled) == per_user_distribution(grid)
        assert list(per_user_distribution(shuffled)) == list(per_user_distribution(grid))

    def test_ties_sorted_by_identity(self) -> None:
        grid = [_dug(0, "zed"), _dug(1, "amy"), _dug(2, "zed"), _dug(3, "amy"), _dug(4, "kim")]
        assert list(per_user_distribution(grid).items()) == [
            ("amy", 2), ("zed", 2), ("kim", 1),
        ]

    def test_empty_grid(self) -> None:
        assert count_claimed([]) == 0
        assert per_user_distribution([]) == {}

    def test_accepts_generators(self) -> None:
        assert count_claimed(b for b in _scenario_grid()) == 80


# =====================================================================
# Top miners and summary
# =====================================================================


class TestTopMiners:
    def test_colors_prefer_user_list(self) -> None:
        grid = _scenario_grid()
        users = [UserRecord(username="alice", color="#a11ce0")]
        miners = top_miners(grid, users)
        assert [(m.name, m.block_count) for m in miners] == [("alice", 50), ("bob", 30)]
        assert miners[0].color == "#a11ce0"
        assert miners[1].color == "blue"

    def test_default_color(self) -> None:
        miners = top_miners([Block(index=0, status=BlockStatus.DUG, owner="x")])
        assert miners[0].color == DEFAULT_MINER_COLOR

    def test_limit(self) -> None:
        grid = [_dug(i, f"user{i}") for i in range(15)]
        assert len(top_miners(grid)) == 10
        assert len(top_miners(grid, limit=3)) == 3
        with pytest.raises(ValueError):
            top_miners(grid, limit=-1)


class TestGridSummary:
    def test_totals(self) -> None:
        summary = grid_summary(_scenario_grid())
        assert summary.total_blocks == 100
        assert summary.claimed_blocks == 80
        assert summary.empty_blocks == 20
        assert [m.name for m in summary.top_miners] == ["alice", "bob"]
        assert summary.current_user is None

    def test_current_user(self) -> None:
        users = [UserRecord(username="bob", color="#00f")]
        summary = grid_summary(_scenario_grid(), users, username="bob", remaining_claims=4)
        assert summary.current_user.total_blocks == 30
        assert summary.current_user.remaining_claims == 4
        assert summary.current_user.color == "#00f"

    def test_unknown_current_user(self) -> None:
        summary = grid_summary(_scenario_grid(), username="nobody")
        assert summary.current_user.total_blocks == 0
        assert summary.current_user.color == DEFAULT_MINER_COLOR


# =====================================================================
# Legacy field audit
# =====================================================================


class TestAuditClaimFields:
    def test_consistent_document(self) -> None:
        records = [
            {"index": 0, "status": "dug", "owner": "a", "dugBy": "a"},
            {"index": 1, "status": "undug", "owner": None, "dugBy": None},
        ]
        audit = audit_claim_fields(records)
        assert (audit.status_dug, audit.with_dug_by, audit.with_owner) == (1, 1, 1)
        assert audit.consistent

    def test_drifted_document(self) -> None:
        records = [
            {"index": 0, "dugBy": "a"},
            {"index": 1, "status": "dug", "owner": "b"},
            {"index": 2, "dugBy": "c", "owner": "c"},
            None,
        ]
        audit = audit_claim_fields(records)
        assert audit.status_dug == 1
        assert audit.with_dug_by == 2
        assert audit.with_owner == 2
        assert not audit.consistent

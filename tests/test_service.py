"""Tests for DigzoneService — proves the facade maps engine outcomes correctly."""

import pytest
from pathlib import Path

from digzone.config import DigzoneConfig
from digzone.service import DigzoneService


@pytest.fixture
def service(tmp_path: Path) -> DigzoneService:
    config = DigzoneConfig(state_path=tmp_path / "db.json", total_blocks=100)
    return DigzoneService.from_config(config)


class TestClaimBlock:
    def test_claim_success(self, service: DigzoneService) -> None:
        result = service.claim_block(5, "alice", "red")
        assert result.success
        block = result.data["block"]
        assert block["status"] == "dug"
        assert block["owner"] == "alice"
        assert block["dugBy"] == "alice"
        assert block["color"] == "red"
        assert result.data["notification_scheduled"] is False

    def test_claim_conflict(self, service: DigzoneService) -> None:
        service.claim_block(5, "alice", "red")
        result = service.claim_block(5, "bob", "blue")
        assert not result.success
        assert result.error_code == "already_claimed"
        assert result.data["owner"] == "alice"

    def test_claim_out_of_range(self, service: DigzoneService) -> None:
        result = service.claim_block(100, "alice", "red")
        assert not result.success
        assert result.error_code == "out_of_range"

    def test_claim_blank_identity(self, service: DigzoneService) -> None:
        result = service.claim_block(1, "", "red")
        assert result.error_code == "invalid_request"

    def test_daily_limit(self, tmp_path: Path) -> None:
        config = DigzoneConfig(
            state_path=tmp_path / "db.json", total_blocks=10, daily_dig_limit=1,
        )
        service = DigzoneService.from_config(config)
        assert service.claim_block(0, "alice", "red").success
        result = service.claim_block(1, "alice", "red")
        assert result.error_code == "daily_limit"
        assert result.data["limit"] == 1


class TestVisualAndReads:
    def test_set_visual(self, service: DigzoneService) -> None:
        result = service.set_block_visual(3, "ipfs://x")
        assert result.success
        assert service.get_block(3).data["block"]["visual"] == "ipfs://x"

    def test_set_visual_out_of_range(self, service: DigzoneService) -> None:
        assert service.set_block_visual(-1, "ipfs://x").error_code == "out_of_range"

    def test_set_visual_not_json(self, service: DigzoneService) -> None:
        result = service.set_block_visual(3, {"a", "b"})
        assert not result.success
        assert result.error_code == "invalid_request"
        assert service.get_block(3).data["block"]["visual"] is None

    def test_claim_boolean_index(self, service: DigzoneService) -> None:
        assert service.claim_block(True, "alice", "red").error_code == "out_of_range"
        assert service.get_block(1).data["block"]["status"] == "undug"

    def test_get_grid(self, service: DigzoneService) -> None:
        grid = service.get_grid().data["grid"]
        assert len(grid) == 100
        assert grid[0]["status"] == "undug"

    def test_get_block_out_of_range(self, service: DigzoneService) -> None:
        assert service.get_block(500).error_code == "out_of_range"


class TestStats:
    def test_counts_and_distribution(self, service: DigzoneService) -> None:
        for i in range(3):
            service.claim_block(i, "alice", "red")
        service.claim_block(10, "bob", "blue")

        counts = service.claimed_count().data
        assert counts == {"total_blocks": 100, "claimed_blocks": 4}
        assert service.user_distribution().data["distribution"] == {"alice": 3, "bob": 1}

    def test_top_miners_uses_registered_color(self, service: DigzoneService) -> None:
        service.register_user("alice", "#a11ce0")
        service.claim_block(0, "alice", "red")
        miners = service.top_miners().data["miners"]
        assert miners == [{"name": "alice", "block_count": 1, "color": "#a11ce0"}]

    def test_summary(self, service: DigzoneService) -> None:
        service.claim_block(0, "alice", "red")
        summary = service.stats_summary(username="alice").data
        assert summary["claimed_blocks"] == 1
        assert summary["empty_blocks"] == 99
        assert summary["current_user"]["total_blocks"] == 1
        assert summary["current_user"]["remaining_claims"] is None


class TestHealth:
    def test_healthy(self, service: DigzoneService) -> None:
        result = service.health()
        assert result.success
        assert result.data["writes_blocked"] is False

    def test_corrupt_state(self, service: DigzoneService, tmp_path: Path) -> None:
        service.claim_block(0, "alice", "red")
        (tmp_path / "db.json").write_text("oops", encoding="utf-8")

        result = service.claim_block(1, "bob", "blue")
        assert result.error_code == "corrupt_state"

        health = service.health()
        assert not health.success
        assert health.error_code == "corrupt_state"
        assert health.data["writes_blocked"] is True

        # Reads still serve the last good snapshot.
        assert service.get_block(0).data["block"]["owner"] == "alice"

"""Digzone service — boundary facade for the HTTP layer and reporting tools.

Wraps the grid engine and the stats aggregator behind operations that
never raise for expected failures. Each call returns a ServiceResult
with an ``error_code`` the outer layer can map onto its own responses:

- "out_of_range"     → invalid index (caller error)
- "already_claimed"  → block already dug; ``data["owner"]`` names the owner
- "daily_limit"      → requester has no claims left today
- "invalid_request"  → blank identity or similar
- "corrupt_state"    → durable state needs operator intervention
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from digzone.config import DigzoneConfig
from digzone.engine.grid_engine import GridEngine
from digzone.errors import (
    AlreadyClaimedError,
    CorruptStateError,
    DailyLimitError,
    OutOfRangeError,
)
from digzone.models.block import Block, TIMESTAMP_FORMAT
from digzone import stats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None


def block_to_dict(block: Block) -> dict[str, Any]:
    """Public view of a block."""
    return {
        "index": block.index,
        "status": block.status.value,
        "owner": block.owner,
        "dugBy": block.dug_by,
        "color": block.color,
        "visual": block.visual,
        "dugAt": block.dug_utc.strftime(TIMESTAMP_FORMAT) if block.dug_utc else None,
    }


class DigzoneService:
    """Unified facade over the digging board.

    Usage:
        service = DigzoneService.from_config(DigzoneConfig.from_env())

        result = service.claim_block(5, "alice", "#ff0000")
        if not result.success and result.error_code == "already_claimed":
            ...
        service.set_block_visual(5, "ipfs://...")
        service.stats_summary(username="alice")
    """

    def __init__(self, engine: GridEngine) -> None:
        self._engine = engine

    @classmethod
    def from_config(cls, config: DigzoneConfig) -> DigzoneService:
        return cls(GridEngine.from_config(config))

    @property
    def engine(self) -> GridEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def claim_block(
        self,
        index: int,
        identity: str,
        color: Optional[str],
    ) -> ServiceResult:
        """Claim a block by index with an identity and color."""
        try:
            result = self._engine.claim(index, identity, color)
        except AlreadyClaimedError as e:
            return ServiceResult(
                success=False, errors=[str(e)],
                data={"index": e.index, "owner": e.owner},
                error_code="already_claimed",
            )
        except DailyLimitError as e:
            return ServiceResult(
                success=False, errors=[str(e)],
                data={"limit": e.limit}, error_code="daily_limit",
            )
        except (OutOfRangeError, CorruptStateError, ValueError) as e:
            return _failure(e)
        return ServiceResult(
            success=True,
            data={
                "block": block_to_dict(result.block),
                "claimed_utc": result.claimed_utc,
                "notification_scheduled": result.notification_scheduled,
            },
        )

    def set_block_visual(self, index: int, visual: Optional[Any]) -> ServiceResult:
        """Set or clear a block's visual reference."""
        try:
            block = self._engine.set_visual(index, visual)
        except (OutOfRangeError, CorruptStateError, ValueError) as e:
            return _failure(e)
        return ServiceResult(success=True, data={"block": block_to_dict(block)})

    def register_user(self, username: str, color: Optional[str] = None) -> ServiceResult:
        """Add a user to the known-users list or update their color."""
        try:
            user = self._engine.register_user(username, color)
        except (CorruptStateError, ValueError) as e:
            return _failure(e)
        return ServiceResult(
            success=True,
            data={"username": user.username, "color": user.color},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_block(self, index: int) -> ServiceResult:
        try:
            block = self._engine.get_block(index)
        except (OutOfRangeError, CorruptStateError) as e:
            return _failure(e)
        return ServiceResult(success=True, data={"block": block_to_dict(block)})

    def get_grid(self) -> ServiceResult:
        try:
            blocks = self._engine.get_grid()
        except CorruptStateError as e:
            return _failure(e)
        return ServiceResult(
            success=True,
            data={"grid": [block_to_dict(b) for b in blocks]},
        )

    def claimed_count(self) -> ServiceResult:
        try:
            blocks = self._engine.get_grid()
        except CorruptStateError as e:
            return _failure(e)
        return ServiceResult(
            success=True,
            data={
                "total_blocks": len(blocks),
                "claimed_blocks": stats.count_claimed(blocks),
            },
        )

    def user_distribution(self) -> ServiceResult:
        try:
            blocks = self._engine.get_grid()
        except CorruptStateError as e:
            return _failure(e)
        return ServiceResult(
            success=True,
            data={"distribution": stats.per_user_distribution(blocks)},
        )

    def top_miners(self, limit: int = 10) -> ServiceResult:
        try:
            document = self._engine.get_document()
        except CorruptStateError as e:
            return _failure(e)
        miners = stats.top_miners(document.blocks, document.users, limit=limit)
        return ServiceResult(
            success=True,
            data={"miners": [asdict(m) for m in miners]},
        )

    def stats_summary(self, username: Optional[str] = None) -> ServiceResult:
        try:
            document = self._engine.get_document()
            remaining = (
                self._engine.remaining_claims(username) if username else None
            )
        except CorruptStateError as e:
            return _failure(e)
        summary = stats.grid_summary(
            document.blocks, document.users,
            username=username, remaining_claims=remaining,
        )
        return ServiceResult(success=True, data=asdict(summary))

    def health(self) -> ServiceResult:
        """Report whether the durable state is clean and writes are allowed."""
        healthy = self._engine.check_state()
        return ServiceResult(
            success=healthy,
            errors=[] if healthy else ["Grid state is corrupt; writes suspended"],
            data={"writes_blocked": self._engine.writes_blocked},
            error_code=None if healthy else "corrupt_state",
        )


_ERROR_CODES: tuple[tuple[type, str], ...] = (
    (OutOfRangeError, "out_of_range"),
    (CorruptStateError, "corrupt_state"),
    (ValueError, "invalid_request"),
)


def _failure(error: Exception) -> ServiceResult:
    for kind, code in _ERROR_CODES:
        if isinstance(error, kind):
            if code == "corrupt_state":
                logger.error("Service operation failed on corrupt state: %s", error)
            return ServiceResult(success=False, errors=[str(error)], error_code=code)
    raise error

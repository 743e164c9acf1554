"""Grid engine — the claim protocol over the durable grid.

A claim is the single, irreversible UNDUG → DUG transition of one block.
It runs entirely inside one GridStore transaction, so two concurrent
claims on the same index can never both observe UNDUG: the first one
wins, every later one gets AlreadyClaimedError carrying the winner.

Once the transaction has committed, the engine hands a payload to the
verification notifier. That hand-off happens outside the write lock,
does not wait for delivery, and can never roll the claim back.

Fail-closed on corrupt state: as soon as the store reports a corrupt
document, writes are refused until ``check_state()`` sees a clean one
again. Reads keep serving the last document that loaded cleanly.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from digzone.config import DigzoneConfig
from digzone.errors import (
    AlreadyClaimedError,
    CorruptStateError,
    DailyLimitError,
    OutOfRangeError,
)
from digzone.models.block import (
    Block,
    BlockStatus,
    ClaimResult,
    GridDocument,
    TIMESTAMP_FORMAT,
    UserRecord,
)
from digzone.notify.webhook import VerificationNotifier
from digzone.persistence.grid_store import GridStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLAIM_EVENT = "block_claimed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GridEngine:
    """Enforces claim rules and state transitions on the grid.

    Usage:
        store = GridStore(Path("data/db.json"))
        store.initialize(total_blocks=100)
        engine = GridEngine(store, notifier=VerificationNotifier(url))

        result = engine.claim(5, "alice", "red")
        engine.set_visual(5, "ipfs://...")
        block = engine.get_block(5)
    """

    def __init__(
        self,
        store: GridStore,
        notifier: Optional[VerificationNotifier] = None,
        daily_dig_limit: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if daily_dig_limit is not None and daily_dig_limit <= 0:
            raise ValueError(
                f"daily_dig_limit must be positive, got {daily_dig_limit}"
            )
        self._store = store
        self._notifier = notifier
        self._daily_dig_limit = daily_dig_limit
        self._clock = clock
        self._writes_blocked = False

    @classmethod
    def from_config(cls, config: DigzoneConfig) -> GridEngine:
        """Build the store and notifier from config, creating the grid if needed."""
        store = GridStore(config.state_path)
        store.initialize(config.total_blocks)
        notifier = VerificationNotifier(
            config.webhook_url, timeout_seconds=config.webhook_timeout_seconds,
        )
        return cls(store, notifier=notifier, daily_dig_limit=config.daily_dig_limit)

    @property
    def writes_blocked(self) -> bool:
        return self._writes_blocked

    @property
    def daily_dig_limit(self) -> Optional[int]:
        return self._daily_dig_limit

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(
        self,
        index: int,
        requester_identity: str,
        requested_color: Optional[str],
    ) -> ClaimResult:
        """Claim block ``index`` for ``requester_identity``.

        Raises:
            ValueError: blank identity.
            OutOfRangeError: index outside the grid.
            AlreadyClaimedError: the block is already dug (definitive).
            DailyLimitError: the requester has no claims left today.
            CorruptStateError: the durable state is corrupt.
        """
        identity = _require_identity(requester_identity)
        now = self._clock().replace(microsecond=0)
        today = now.strftime("%Y-%m-%d")
        limit = self._daily_dig_limit

        def _claim(document: GridDocument) -> Block:
            _check_range(index, document)
            block = document.blocks[index]
            if block.is_dug:
                raise AlreadyClaimedError(index, block.owner)

            if limit is not None:
                user = document.find_user(identity)
                if user is None:
                    user = UserRecord(username=identity, color=requested_color)
                    document.users.append(user)
                if user.claims_today(today) >= limit:
                    raise DailyLimitError(identity, limit)
                user.record_claim(today)

            block.status = BlockStatus.DUG
            block.owner = identity
            block.color = requested_color
            block.dug_utc = now
            return block.copy()

        try:
            block = self._write(lambda: self._store.transact(_claim))
        except (AlreadyClaimedError, DailyLimitError) as e:
            logger.info("Claim rejected: %s", e)
            raise

        claimed_utc = now.strftime(TIMESTAMP_FORMAT)
        logger.info("Block %d claimed by %s", index, identity)
        scheduled = self._schedule_notification({
            "event": CLAIM_EVENT,
            "index": index,
            "identity": identity,
            "color": requested_color,
            "timestamp": claimed_utc,
        })
        return ClaimResult(
            block=block,
            claimed_utc=claimed_utc,
            notification_scheduled=scheduled,
        )

    def set_visual(self, index: int, visual_ref: Optional[Any]) -> Block:
        """Set or clear a block's visual reference, whatever its status.

        No ownership check: the visual is managed independently of
        digging. Setting the same value twice is a no-op the second time.

        Raises ValueError if ``visual_ref`` is not a JSON value.
        """
        try:
            json.dumps(visual_ref, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Visual reference must be a JSON value: {e}") from e

        def _set(block: Block) -> None:
            block.visual = visual_ref

        block = self._write(lambda: self._store.mutate(index, _set))
        logger.debug("Block %d visual set to %r", index, visual_ref)
        return block

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def register_user(self, username: str, color: Optional[str] = None) -> UserRecord:
        """Add a user to the known-users list, or update their color."""
        name = _require_identity(username)

        def _upsert(document: GridDocument) -> UserRecord:
            user = document.find_user(name)
            if user is None:
                user = UserRecord(username=name, color=color)
                document.users.append(user)
            elif color is not None:
                user.color = color
            return UserRecord(
                username=user.username,
                color=user.color,
                last_dig_date=user.last_dig_date,
                daily_dig_count=user.daily_dig_count,
                extra=dict(user.extra),
            )

        return self._write(lambda: self._store.transact(_upsert))

    def remaining_claims(self, identity: str) -> Optional[int]:
        """Claims ``identity`` may still make today; None when unlimited."""
        if self._daily_dig_limit is None:
            return None
        today = self._clock().strftime("%Y-%m-%d")
        user = self.get_document().find_user(identity)
        used = user.claims_today(today) if user else 0
        return max(0, self._daily_dig_limit - used)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_block(self, index: int) -> Block:
        document = self.get_document()
        _check_range(index, document)
        return document.blocks[index]

    def get_grid(self) -> list[Block]:
        return self.get_document().blocks

    def get_document(self) -> GridDocument:
        """Read the current document, falling back to the last good snapshot.

        Raises CorruptStateError only if nothing has ever loaded cleanly.
        """
        try:
            return self._store.load()
        except CorruptStateError:
            self._writes_blocked = True
            cached = self._store.snapshot()
            if cached is None:
                raise
            logger.warning(
                "Serving last known good grid snapshot; writes are suspended"
            )
            return cached

    def check_state(self) -> bool:
        """Re-validate the durable document and lift the write block if clean."""
        try:
            self._store.load()
        except CorruptStateError as e:
            self._writes_blocked = True
            logger.error("Grid state still corrupt: %s", e)
            return False
        if self._writes_blocked:
            logger.info("Grid state validated; writes resumed")
        self._writes_blocked = False
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write(self, operation: Callable[[], T]) -> T:
        if self._writes_blocked:
            raise CorruptStateError(
                "Writes suspended until the grid state is repaired"
            )
        try:
            return operation()
        except CorruptStateError:
            self._writes_blocked = True
            logger.error("Corrupt grid state detected; suspending writes")
            raise

    def _schedule_notification(self, payload: dict[str, Any]) -> bool:
        if self._notifier is None:
            return False
        try:
            return self._notifier.dispatch(payload) is not None
        except Exception:
            logger.exception(
                "Could not schedule verification webhook for block %s",
                payload.get("index"),
            )
            return False


def _require_identity(identity: str) -> str:
    """Reject blank identities; the token itself is stored untouched."""
    if not isinstance(identity, str) or not identity.strip():
        raise ValueError("Identity must be a non-empty string")
    return identity


def _check_range(index: int, document: GridDocument) -> None:
    if (
        not isinstance(index, int)
        or isinstance(index, bool)
        or not 0 <= index < document.total_blocks
    ):
        raise OutOfRangeError(index, document.total_blocks)

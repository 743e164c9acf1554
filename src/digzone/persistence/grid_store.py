"""Grid store — JSON file persistence for the digging board.

Stores and recovers:
- The grid (every block with status, owner, color, visual reference)
- The auxiliary list of known users (colors, daily claim counters)

The store is the only component that touches the backing file. Every
read-modify-write cycle goes through ``transact`` (or ``mutate`` for a
single block), which holds an in-process lock plus an exclusive
``fcntl`` lock on a sidecar ``.lock`` file for the whole cycle, so
claims from several threads or processes sharing the file are
linearized. Saves go to a temp file that replaces the document as the
last step, so readers never observe a partially written document and
need no lock at all.

Document layout (legacy-compatible)::

    {
      "grid": [
        {"index": 0, "status": "dug", "owner": "alice", "dugBy": "alice",
         "color": "#ff0000", "visual": null, "dugAt": "2026-01-01T00:00:00Z"},
        ...
      ],
      "users": [{"username": "alice", "color": "#ff0000", ...}]
    }

``dugBy`` is written as a copy of ``owner`` for legacy readers. It is
never read as an independent source of truth.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

from digzone.errors import CorruptStateError, OutOfRangeError
from digzone.models.block import (
    Block,
    BlockStatus,
    GridDocument,
    TIMESTAMP_FORMAT,
    UserRecord,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOCK_SUFFIX = ".lock"

_BLOCK_FIELDS = frozenset(
    {"index", "status", "owner", "dugBy", "color", "visual", "dugAt"}
)
_USER_FIELDS = frozenset({"username", "color", "lastDigDate", "dailyDigCount"})
_DOCUMENT_FIELDS = frozenset({"grid", "users"})


class GridStore:
    """JSON file-based grid persistence with a single-writer discipline.

    Usage:
        store = GridStore(Path("data/db.json"))
        store.initialize(total_blocks=100)

        block = store.mutate(5, lambda b: ...)   # load → apply → validate → save
        document = store.load()

        # After a failed load, the last good document is still readable:
        cached = store.snapshot()
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = Path(storage_path)
        self._lock_path = self._path.with_suffix(self._path.suffix + _LOCK_SUFFIX)
        self._mutex = threading.RLock()
        self._last_good: Optional[GridDocument] = None

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def initialize(self, total_blocks: int) -> GridDocument:
        """Create a fresh all-undug grid unless a document already exists.

        An existing document is never resized. If its length disagrees
        with ``total_blocks`` the document wins and a warning is logged.
        """
        with self._exclusive():
            if self._path.exists():
                document = self._read()
                if document.total_blocks != total_blocks:
                    logger.warning(
                        "Grid at %s has %d blocks, configured size is %d; "
                        "keeping the stored size (resizing is a migration)",
                        self._path, document.total_blocks, total_blocks,
                    )
                return document
            document = GridDocument.fresh(total_blocks)
            self._write(document)
            logger.info(
                "Created grid of %d blocks at %s", total_blocks, self._path
            )
            return document

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self) -> GridDocument:
        """Deserialize the current durable state.

        Raises CorruptStateError if the file is missing, is not well-formed
        JSON, or breaks a block invariant.
        """
        return self._read()

    def snapshot(self) -> Optional[GridDocument]:
        """Return a copy of the last document that loaded cleanly, if any."""
        cached = self._last_good
        return cached.copy() if cached is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, document: GridDocument) -> None:
        """Validate and atomically overwrite the durable state."""
        errors = document.invariant_errors()
        if errors:
            raise ValueError(f"Refusing to save invalid grid: {errors[0]}")
        with self._exclusive():
            self._write(document)

    def transact(self, fn: Callable[[GridDocument], T]) -> T:
        """Run one load → ``fn`` → validate → save cycle under the write lock.

        ``fn`` mutates the document in place and returns the value handed
        back to the caller. If ``fn`` raises, nothing is written. The
        grid size is fixed and dug blocks are terminal: a transaction that
        resizes the grid, un-digs a block or changes an owner is rejected
        with ValueError.
        """
        with self._exclusive():
            document = self._read()
            size = document.total_blocks
            claimed = {b.index: b.owner for b in document.blocks if b.is_dug}

            result = fn(document)

            if document.total_blocks != size:
                raise ValueError(
                    f"Grid size is fixed at {size}, transaction produced "
                    f"{document.total_blocks}"
                )
            for index, owner in claimed.items():
                block = document.blocks[index]
                if not block.is_dug or block.owner != owner:
                    raise ValueError(
                        f"Block {index} is dug by {owner}; dug blocks are terminal"
                    )
            errors = document.invariant_errors()
            if errors:
                raise ValueError(f"Transaction broke an invariant: {errors[0]}")

            self._write(document)
            return result

    def mutate(
        self,
        index: int,
        transition: Callable[[Block], Optional[Block]],
    ) -> Block:
        """Apply ``transition`` to one block as a single logical unit.

        ``transition`` may modify the block in place (returning None) or
        return a replacement. Returns a copy of the stored block.
        """
        def _apply(document: GridDocument) -> Block:
            if (
                not isinstance(index, int)
                or isinstance(index, bool)
                or not 0 <= index < document.total_blocks
            ):
                raise OutOfRangeError(index, document.total_blocks)
            current = document.blocks[index]
            updated = transition(current)
            if updated is not None:
                document.blocks[index] = updated
            return document.blocks[index].copy()

        return self.transact(_apply)

    def normalize(self) -> int:
        """Rewrite the document so every record carries every current field.

        This is the offline upgrade path for new optional fields: loading
        fills in their defaults and saving writes them out. It must not run
        while a live server is writing to the same file. Returns the number
        of blocks rewritten.
        """
        with self._exclusive():
            document = self._read()
            self._write(document)
            return document.total_blocks

    # ------------------------------------------------------------------
    # File handling
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the in-process mutex and the cross-process file lock."""
        with self._mutex:
            self._lock_path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock_path.open("a+", encoding="utf-8") as lock_handle:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)

    def _read(self) -> GridDocument:
        if not self._path.exists():
            raise CorruptStateError(f"Grid state not found: {self._path}")
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("Unreadable grid state at %s: %s", self._path, e)
            raise CorruptStateError(
                f"Grid state at {self._path} is unreadable: {e}"
            ) from e
        try:
            document = _document_from_raw(raw)
        except CorruptStateError as e:
            logger.error("Invalid grid state at %s: %s", self._path, e)
            raise
        self._last_good = document.copy()
        return document

    def _write(self, document: GridDocument) -> None:
        """Write to a temp file in the same directory, then replace."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._path.parent),
            prefix=f".{self._path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(_document_to_raw(document), f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        self._last_good = document.copy()
        logger.debug("Saved %d blocks to %s", document.total_blocks, self._path)


# ----------------------------------------------------------------------
# Serialization
# ----------------------------------------------------------------------

def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(TIMESTAMP_FORMAT) if value else None


def _parse_ts(value: Any, where: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(
            tzinfo=timezone.utc
        )
    except (TypeError, ValueError) as e:
        raise CorruptStateError(f"{where}: bad timestamp {value!r}") from e


def _identity(value: Any, where: str) -> Optional[str]:
    # Legacy documents use empty strings for "nobody".
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise CorruptStateError(f"{where}: identity must be a string, got {value!r}")
    return value


def _block_to_record(block: Block) -> dict[str, Any]:
    record = dict(block.extra)
    record.update({
        "index": block.index,
        "status": block.status.value,
        "owner": block.owner,
        "dugBy": block.owner,
        "color": block.color,
        "visual": block.visual,
        "dugAt": _format_ts(block.dug_utc),
    })
    return record


def _block_from_record(position: int, data: Any) -> Block:
    where = f"Block record {position}"
    if not isinstance(data, dict):
        raise CorruptStateError(f"{where} is not an object")

    index = data.get("index")
    if not isinstance(index, int) or isinstance(index, bool):
        raise CorruptStateError(f"{where}: index must be an integer, got {index!r}")
    if index != position:
        raise CorruptStateError(f"{where}: index {index} does not match its position")

    owner = _identity(data.get("owner"), where)
    dug_by = _identity(data.get("dugBy"), where)
    if owner and dug_by and owner != dug_by:
        raise CorruptStateError(
            f"{where}: owner {owner!r} and dugBy {dug_by!r} diverge"
        )
    owner = owner or dug_by

    raw_status = data.get("status")
    if raw_status is None:
        # Legacy records predate the status field.
        status = BlockStatus.DUG if owner else BlockStatus.UNDUG
    else:
        try:
            status = BlockStatus(raw_status)
        except ValueError as e:
            raise CorruptStateError(f"{where}: unknown status {raw_status!r}") from e

    block = Block(
        index=index,
        status=status,
        owner=owner,
        color=data.get("color"),
        visual=data.get("visual"),
        dug_utc=_parse_ts(data.get("dugAt"), where),
        extra={k: v for k, v in data.items() if k not in _BLOCK_FIELDS},
    )
    errors = block.invariant_errors()
    if errors:
        raise CorruptStateError(errors[0])
    return block


def _user_to_record(user: UserRecord) -> dict[str, Any]:
    record = dict(user.extra)
    record.update({
        "username": user.username,
        "color": user.color,
        "lastDigDate": user.last_dig_date,
        "dailyDigCount": user.daily_dig_count,
    })
    return record


def _user_from_record(position: int, data: Any) -> UserRecord:
    if not isinstance(data, dict):
        raise CorruptStateError(f"User record {position} is not an object")
    username = data.get("username")
    if not isinstance(username, str) or not username:
        raise CorruptStateError(f"User record {position} has no username")
    count = data.get("dailyDigCount") or 0
    if not isinstance(count, int) or isinstance(count, bool) or count < 0:
        raise CorruptStateError(
            f"User record {position}: bad dailyDigCount {count!r}"
        )
    return UserRecord(
        username=username,
        color=data.get("color"),
        last_dig_date=data.get("lastDigDate"),
        daily_dig_count=count,
        extra={k: v for k, v in data.items() if k not in _USER_FIELDS},
    )


def _document_to_raw(document: GridDocument) -> dict[str, Any]:
    raw = dict(document.extra)
    raw["grid"] = [_block_to_record(b) for b in document.blocks]
    raw["users"] = [_user_to_record(u) for u in document.users]
    return raw


def _document_from_raw(raw: Any) -> GridDocument:
    if not isinstance(raw, dict):
        raise CorruptStateError("Grid state is not a JSON object")
    grid = raw.get("grid")
    if not isinstance(grid, list) or not grid:
        raise CorruptStateError("Grid state has no block list")
    users = raw.get("users", [])
    if not isinstance(users, list):
        raise CorruptStateError("Grid state users entry is not a list")

    document = GridDocument(
        blocks=[_block_from_record(i, data) for i, data in enumerate(grid)],
        users=[_user_from_record(i, data) for i, data in enumerate(users)],
        extra={k: v for k, v in raw.items() if k not in _DOCUMENT_FIELDS},
    )
    errors = document.invariant_errors()
    if errors:
        raise CorruptStateError(errors[0])
    return document

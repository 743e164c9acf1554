"""Configuration — state location, grid size, webhook and claim limits.

Loaded either from a JSON file or from the process environment. Values
are validated up front; a bad value fails loud with ConfigurationError.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from digzone.errors import ConfigurationError

DEFAULT_STATE_PATH = Path("db.json")
DEFAULT_TOTAL_BLOCKS = 100
DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 2.0


@dataclass(frozen=True)
class DigzoneConfig:
    """Runtime configuration for the digging board.

    Attributes:
        state_path: Path of the JSON document holding the grid.
        total_blocks: Grid size used when creating a fresh document.
        webhook_url: Verification webhook destination; None disables it.
        webhook_timeout_seconds: Bound on each webhook attempt.
        daily_dig_limit: Claims allowed per user per UTC day; None for
            no limit.
        debug_log: Enable DEBUG-level logging.
    """

    state_path: Path = DEFAULT_STATE_PATH
    total_blocks: int = DEFAULT_TOTAL_BLOCKS
    webhook_url: Optional[str] = None
    webhook_timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS
    daily_dig_limit: Optional[int] = None
    debug_log: bool = False

    def __post_init__(self) -> None:
        if self.total_blocks <= 0:
            raise ConfigurationError(
                f"total_blocks must be positive, got {self.total_blocks}"
            )
        if self.webhook_timeout_seconds <= 0:
            raise ConfigurationError(
                "webhook_timeout_seconds must be positive, "
                f"got {self.webhook_timeout_seconds}"
            )
        if self.daily_dig_limit is not None and self.daily_dig_limit <= 0:
            raise ConfigurationError(
                f"daily_dig_limit must be positive, got {self.daily_dig_limit}"
            )

    @classmethod
    def from_json_file(cls, path: Path) -> DigzoneConfig:
        """Load configuration from a JSON file.

        Relative ``state_path`` values resolve against the file's directory.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must hold a JSON object")

        unknown = set(data) - {
            "state_path", "total_blocks", "webhook_url",
            "webhook_timeout_seconds", "daily_dig_limit", "debug_log",
        }
        if unknown:
            raise ConfigurationError(
                f"Unknown config keys in {path}: {', '.join(sorted(unknown))}"
            )

        state_path = Path(data.get("state_path", DEFAULT_STATE_PATH))
        if not state_path.is_absolute():
            state_path = path.parent / state_path
        return cls(
            state_path=state_path,
            total_blocks=_as_int(data.get("total_blocks", DEFAULT_TOTAL_BLOCKS), "total_blocks"),
            webhook_url=data.get("webhook_url") or None,
            webhook_timeout_seconds=_as_float(
                data.get("webhook_timeout_seconds", DEFAULT_WEBHOOK_TIMEOUT_SECONDS),
                "webhook_timeout_seconds",
            ),
            daily_dig_limit=_optional_int(data.get("daily_dig_limit"), "daily_dig_limit"),
            debug_log=bool(data.get("debug_log", False)),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> DigzoneConfig:
        """Load configuration from environment variables.

        GAME_DB_PATH, DIG_TOTAL_BLOCKS, VERIFY_WEBHOOK_URL,
        VERIFY_WEBHOOK_TIMEOUT, DIG_DAILY_LIMIT, DEBUG_LOG ("1" enables).
        """
        env = os.environ if environ is None else environ
        return cls(
            state_path=Path(env.get("GAME_DB_PATH") or DEFAULT_STATE_PATH),
            total_blocks=_as_int(
                env.get("DIG_TOTAL_BLOCKS") or DEFAULT_TOTAL_BLOCKS, "DIG_TOTAL_BLOCKS",
            ),
            webhook_url=(env.get("VERIFY_WEBHOOK_URL") or "").strip() or None,
            webhook_timeout_seconds=_as_float(
                env.get("VERIFY_WEBHOOK_TIMEOUT") or DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
                "VERIFY_WEBHOOK_TIMEOUT",
            ),
            daily_dig_limit=_optional_int(env.get("DIG_DAILY_LIMIT") or None, "DIG_DAILY_LIMIT"),
            debug_log=env.get("DEBUG_LOG", "") == "1",
        )


def configure_logging(config: DigzoneConfig) -> None:
    """Set up root logging for a process hosting the board."""
    logging.basicConfig(
        level=logging.DEBUG if config.debug_log else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _optional_int(value: Any, name: str) -> Optional[int]:
    return None if value is None else _as_int(value, name)


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e

"""Verification webhook — best-effort notification of finalized claims.

The notification is advisory telemetry, not part of the ownership
record. Delivery is attempted once:
- no destination configured → SKIPPED, no network call
- transport error, timeout or non-2xx response → FAILED
- otherwise → DELIVERED

Nothing is queued or retried. A failed notification is lost, and the
failure never reaches the claim that triggered it.

``timeout_seconds`` bounds the connect and each socket read separately,
not the whole request. A server that trickles its reply can hold the
background thread for longer than that.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Optional

import requests

from digzone.errors import NotificationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 2.0


class NotifyOutcome(str, enum.Enum):
    """Result of a single notification attempt."""
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


class VerificationNotifier:
    """POSTs a JSON payload to the configured verification endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError(
                f"Webhook timeout must be positive, got {timeout_seconds}"
            )
        self.url = (url or "").strip() or None
        self.timeout_seconds = timeout_seconds
        self._session = session

    def is_configured(self) -> bool:
        return self.url is not None

    def notify(self, payload: dict[str, Any]) -> NotifyOutcome:
        """Attempt one delivery. Never raises."""
        if not self.is_configured():
            logger.debug("Verification webhook not configured - skipping")
            return NotifyOutcome.SKIPPED
        try:
            self._deliver(payload)
        except NotificationError as e:
            logger.warning("Verification webhook failed: %s", e)
            return NotifyOutcome.FAILED
        logger.debug("Verification webhook delivered for block %s", payload.get("index"))
        return NotifyOutcome.DELIVERED

    def dispatch(self, payload: dict[str, Any]) -> Optional[threading.Thread]:
        """Run ``notify`` on a background thread and return immediately.

        Returns None without starting a thread when no destination is
        configured.
        """
        if not self.is_configured():
            logger.debug("Verification webhook not configured - skipping")
            return None
        thread = threading.Thread(
            target=self.notify,
            args=(payload,),
            name=f"verify-webhook-{payload.get('index')}",
            daemon=True,
        )
        thread.start()
        return thread

    def _deliver(self, payload: dict[str, Any]) -> None:
        post = self._session.post if self._session is not None else requests.post
        try:
            response = post(self.url, json=payload, timeout=self.timeout_seconds)
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Network error: {e}") from e
        if not 200 <= response.status_code < 300:
            raise NotificationError(f"HTTP {response.status_code} from {self.url}")

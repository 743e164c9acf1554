"""Outbound notifications."""

from digzone.notify.webhook import NotifyOutcome, VerificationNotifier

__all__ = ["NotifyOutcome", "VerificationNotifier"]

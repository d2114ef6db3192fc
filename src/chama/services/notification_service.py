"""Notification dispatch for payment and payout events.

Delivery (SMS, push, chat) lives outside the ledger. Callers hand a
dispatcher to the services; failures are logged and never undo the
committed ledger change that triggered them.
"""

import logging
from typing import Any, Callable, Protocol

from chama.models import Payout
from chama.schemas.payments import AllocationResult

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Receiver of ledger events, called after the transaction commits."""

    def payment_recorded(self, result: AllocationResult) -> None:
        """A payment was applied."""

    def payout_updated(self, payout: Payout) -> None:
        """A payout was created or changed status."""


class LoggingNotificationDispatcher:
    """Default dispatcher: writes events to the application log."""

    def payment_recorded(self, result: AllocationResult) -> None:
        """Log the applied payment."""
        logger.info(
            "Payment recorded: member=%d, cycle=%d, amount=%s, new_balance=%s, reference=%s",
            result.member_id,
            result.cycle_id,
            result.total_paid,
            result.new_balance,
            result.reference,
        )

    def payout_updated(self, payout: Payout) -> None:
        """Log the payout change."""
        logger.info(
            "Payout %d for member %d: %s %s",
            payout.id,
            payout.member_id,
            payout.status.value,
            payout.amount,
        )


def dispatch_safely(callback: Callable[..., Any], *args: Any) -> bool:
    """Invoke a dispatcher callback, logging instead of raising on failure.

    Returns:
        True if the callback completed
    """
    try:
        callback(*args)
        return True
    except Exception:
        logger.exception("Notification %s failed", getattr(callback, "__name__", callback))
        return False


__all__ = ["NotificationDispatcher", "LoggingNotificationDispatcher", "dispatch_safely"]

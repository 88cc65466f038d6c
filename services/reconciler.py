"""
Payment Reconciliation Service.

Matches M-Pesa payment notifications to pending orders and settles them.

The gateway callback carries no reference to our order, so matching is
heuristic: the exact amount selects candidates among pending orders and
the payer's phone suffix picks one of them. Anything that cannot be
matched unambiguously is reported and left pending.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Dict, Optional, TypeVar

from config import config
from database.store import DuplicateReceiptError, OrderStore, StoreError
from models.notification import PaymentNotification
from models.order import PaymentStatus

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ReconciliationStatus(str, Enum):
    """Result of reconciling a single notification."""
    MATCHED_AND_UPDATED = "matched_and_updated"
    PHONE_MISMATCH = "matched_but_phone_mismatch"
    NO_CANDIDATE = "no_candidate_found"
    STORE_ERROR = "store_error"
    PAYMENT_FAILED = "notification_indicates_failure"
    ALREADY_RECONCILED = "already_reconciled"


@dataclass
class ReconciliationOutcome:
    """What the reconciler decided for one notification."""

    status: ReconciliationStatus
    order_id: Optional[str] = None
    message: str = ''

    @property
    def updated(self) -> bool:
        return self.status == ReconciliationStatus.MATCHED_AND_UPDATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'order_id': self.order_id,
            'message': self.message
        }


class PaymentReconciler:
    """
    Reconciles payment notifications against the order store.

    Each call to reconcile() is independent and settles at most one order.
    Writes are conditional on the order still being pending, so concurrent
    or repeated deliveries cannot pay an order twice.
    """

    def __init__(
        self,
        store: OrderStore,
        phone_suffix_length: Optional[int] = None,
        store_timeout: Optional[float] = None
    ):
        """
        Initialize the reconciler.

        Args:
            store: Order store (Database in production, a fake in tests)
            phone_suffix_length: Trailing phone digits used for matching
            store_timeout: Seconds allowed for each store operation
        """
        if phone_suffix_length is None:
            phone_suffix_length = config.reconciliation.phone_suffix_length
        if store_timeout is None:
            store_timeout = config.database.query_timeout
        if phone_suffix_length < 1:
            raise ValueError("phone_suffix_length must be at least 1")
        if store_timeout <= 0:
            raise ValueError("store_timeout must be greater than zero")

        self.store = store
        self.phone_suffix_length = phone_suffix_length
        self.store_timeout = store_timeout
        self._stats = {"total_notifications": 0}
        for status in ReconciliationStatus:
            self._stats[status.value] = 0

    async def reconcile(self, notification: PaymentNotification) -> ReconciliationOutcome:
        """
        Reconcile a notification with at most one pending order.

        Never raises for store problems; they are reported as STORE_ERROR.

        Args:
            notification: Normalized payment notification

        Returns:
            ReconciliationOutcome describing what happened
        """
        self._stats["total_notifications"] += 1

        if not notification.is_success():
            # No reliable way to tell which order failed, so nothing is marked
            logger.warning(
                f"Payment failed/cancelled: code={notification.result_code}, "
                f"desc={notification.result_desc!r}, "
                f"checkout={notification.checkout_request_id}"
            )
            return self._finish(ReconciliationOutcome(
                status=ReconciliationStatus.PAYMENT_FAILED,
                message=notification.result_desc
            ))

        logger.info(f"Payment successful: {notification.short_description()}")

        try:
            outcome = await self._reconcile_success(notification)
        except StoreError as e:
            logger.error(
                f"Store error while reconciling receipt {notification.receipt_number}: {e}",
                exc_info=True
            )
            outcome = ReconciliationOutcome(
                status=ReconciliationStatus.STORE_ERROR,
                message=str(e)
            )

        return self._finish(outcome)

    async def _reconcile_success(self, notification: PaymentNotification) -> ReconciliationOutcome:
        if notification.has_receipt():
            existing = await self._call(
                self.store.find_order_by_receipt(notification.receipt_number)
            )
            if existing is not None:
                logger.info(
                    f"Receipt {notification.receipt_number} already applied to "
                    f"order {existing.id}, ignoring redelivery"
                )
                return ReconciliationOutcome(
                    status=ReconciliationStatus.ALREADY_RECONCILED,
                    order_id=existing.id,
                    message="Receipt already recorded"
                )

        phone_key = notification.phone_suffix(self.phone_suffix_length)

        candidates = await self._call(
            self.store.find_pending_orders_by_amount(notification.amount)
        )
        if not candidates:
            logger.warning(
                f"No pending order found for amount {notification.amount} "
                f"(receipt {notification.receipt_number})"
            )
            return ReconciliationOutcome(
                status=ReconciliationStatus.NO_CANDIDATE,
                message=f"No pending order with amount {notification.amount}"
            )

        order = next((o for o in candidates if o.phone_matches(phone_key)), None)
        if order is None:
            logger.warning(
                f"{len(candidates)} pending order(s) match amount {notification.amount}, "
                f"but none matches phone {notification.phone_number} (last digits: {phone_key!r}). "
                f"Candidate phones: {', '.join(o.phone_number for o in candidates)}"
            )
            return ReconciliationOutcome(
                status=ReconciliationStatus.PHONE_MISMATCH,
                message="Amount matched but phone number did not"
            )

        logger.info(f"Found matching order {order.id}, marking as paid")
        receipt = notification.receipt_number if notification.has_receipt() else None
        try:
            rows = await self._call(
                self.store.update_order_if_pending(order.id, PaymentStatus.PAID, receipt)
            )
        except DuplicateReceiptError:
            # A concurrent delivery of the same receipt settled another order first
            logger.info(
                f"Receipt {notification.receipt_number} was recorded by a concurrent "
                f"delivery, order {order.id} left pending"
            )
            return ReconciliationOutcome(
                status=ReconciliationStatus.ALREADY_RECONCILED,
                message="Receipt already recorded"
            )
        if rows == 0:
            logger.warning(
                f"Order {order.id} was settled by a concurrent notification, "
                f"receipt {notification.receipt_number} not applied"
            )
            return ReconciliationOutcome(
                status=ReconciliationStatus.NO_CANDIDATE,
                order_id=order.id,
                message="Order no longer pending"
            )

        logger.info(f"Order {order.id} updated to PAID (receipt {notification.receipt_number})")
        return ReconciliationOutcome(
            status=ReconciliationStatus.MATCHED_AND_UPDATED,
            order_id=order.id,
            message="Order marked as paid"
        )

    async def _call(self, operation: Awaitable[T]) -> T:
        """Run a store operation under the configured timeout."""
        try:
            return await asyncio.wait_for(operation, timeout=self.store_timeout)
        except StoreError:
            raise
        except asyncio.TimeoutError as e:
            raise StoreError(f"Store operation timed out after {self.store_timeout}s") from e
        except Exception as e:
            raise StoreError(f"{type(e).__name__}: {e}") from e

    def _finish(self, outcome: ReconciliationOutcome) -> ReconciliationOutcome:
        self._stats[outcome.status.value] += 1
        return outcome

    def get_stats(self) -> Dict[str, int]:
        """Get reconciliation statistics."""
        return self._stats.copy()

"""Order store interface consumed by the reconciliation engine."""

from decimal import Decimal
from typing import List, Optional, Protocol

from models.order import Order, PaymentStatus


class StoreError(Exception):
    """Raised when an order store read or write fails or times out."""


class DuplicateReceiptError(StoreError):
    """Raised when a receipt is already recorded against another order."""


class OrderStore(Protocol):
    """Operations the reconciler needs from an order store."""

    async def find_pending_orders_by_amount(self, amount: Decimal) -> List[Order]:
        """Pending orders whose total equals `amount`, newest first."""
        ...

    async def update_order_if_pending(
        self,
        order_id: str,
        new_status: PaymentStatus,
        receipt: Optional[str] = None
    ) -> int:
        """
        Settle an order only if it is still pending. Returns rows affected.

        Raises DuplicateReceiptError if another order already holds `receipt`.
        """
        ...

    async def find_order_by_receipt(self, receipt: str) -> Optional[Order]:
        """Order already settled with the given M-Pesa receipt, if any."""
        ...

"""
Shared fixtures for the callback service tests.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from database.store import DuplicateReceiptError
from models.order import Order, PaymentStatus


class InMemoryOrderStore:
    """
    Order store kept in a dict.

    Mirrors Database semantics: newest-first candidate queries, and a
    status-guarded update that refuses a receipt held by another order.
    Each call yields to the event loop so that concurrent reconciliations
    interleave as they would against a server.
    """

    def __init__(self, orders: Optional[List[Order]] = None):
        self.orders: Dict[str, Order] = {o.id: o for o in (orders or [])}
        self.calls: List[str] = []
        self.updates_applied = 0
        self.fail_on: Optional[str] = None
        self.delay = 0.0

    def add(self, order_id: str, amount: str, phone: str, minutes_ago: int = 0) -> Order:
        order = Order(
            id=order_id,
            total_amount=Decimal(amount),
            phone_number=phone,
            created_at=datetime(2024, 5, 14, 12, 0, 0) - timedelta(minutes=minutes_ago)
        )
        self.orders[order.id] = order
        return order

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        await asyncio.sleep(self.delay)
        if self.fail_on == name:
            raise ConnectionError(f"{name} failed")

    async def find_pending_orders_by_amount(self, amount: Decimal) -> List[Order]:
        await self._enter('find_pending_orders_by_amount')
        matches = [
            o for o in self.orders.values()
            if o.is_pending() and o.total_amount == amount
        ]
        return sorted(matches, key=lambda o: o.created_at, reverse=True)

    async def find_order_by_receipt(self, receipt: str) -> Optional[Order]:
        await self._enter('find_order_by_receipt')
        for order in self.orders.values():
            if order.mpesa_receipt == receipt:
                return order
        return None

    async def update_order_if_pending(
        self,
        order_id: str,
        new_status: PaymentStatus,
        receipt: Optional[str] = None
    ) -> int:
        await self._enter('update_order_if_pending')
        order = self.orders.get(order_id)
        if order is None or not order.is_pending():
            return 0
        if receipt is not None and any(
            o.mpesa_receipt == receipt for o in self.orders.values() if o.id != order_id
        ):
            raise DuplicateReceiptError(f"Receipt {receipt} is already recorded on another order")
        order.payment_status = new_status
        order.mpesa_receipt = receipt
        order.updated_at = datetime.utcnow()
        self.updates_applied += 1
        return 1


def make_callback(
    amount=5.00,
    phone=254702322277,
    receipt='QBH1234567',
    result_code=0,
    result_desc='The service request is processed successfully.'
) -> dict:
    """Build an stkCallback body like the ones Safaricom posts."""
    callback = {
        'MerchantRequestID': '29123-312312',
        'CheckoutRequestID': 'ws_CO_DMZ_1232123',
        'ResultCode': result_code,
        'ResultDesc': result_desc,
    }
    if result_code == 0:
        callback['CallbackMetadata'] = {
            'Item': [
                {'Name': 'Amount', 'Value': amount},
                {'Name': 'MpesaReceiptNumber', 'Value': receipt},
                {'Name': 'Balance', 'Value': 0},
                {'Name': 'TransactionDate', 'Value': 20230514120000},
                {'Name': 'PhoneNumber', 'Value': phone},
            ]
        }
    return {'Body': {'stkCallback': callback}}


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def callback_payload() -> dict:
    return make_callback()

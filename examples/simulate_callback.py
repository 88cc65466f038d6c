#!/usr/bin/env python3
"""
Example: Simulate an M-Pesa STK push callback for testing.

Posts a sample callback to a running callback server, the same shape
Safaricom sends after a customer completes (or cancels) a payment.

Usage:
    python simulate_callback.py
    python simulate_callback.py --amount 250 --phone 254712345678
    python simulate_callback.py --seed-order 0702322277
    python simulate_callback.py --result-code 1032

Make sure the server is running (python main.py) and, unless --seed-order
is used, that a PENDING order with the same amount and phone exists.
"""

import argparse
import asyncio
import os
import secrets
import sys
from datetime import datetime
from decimal import Decimal

import aiohttp

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import config
from database.db import Database


def build_payload(
    amount: Decimal,
    phone: int,
    receipt: str,
    result_code: int = 0
) -> dict:
    """Build an stkCallback body."""
    callback = {
        "MerchantRequestID": "29123-312312",
        "CheckoutRequestID": f"ws_CO_DMZ_{secrets.token_hex(4)}",
        "ResultCode": result_code,
    }

    if result_code == 0:
        callback["ResultDesc"] = "The service request is processed successfully."
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": float(amount)},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "Balance", "Value": 0},
                {"Name": "TransactionDate", "Value": int(datetime.now().strftime('%Y%m%d%H%M%S'))},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    else:
        callback["ResultDesc"] = "Request cancelled by user"

    return {"Body": {"stkCallback": callback}}


async def seed_order(amount: Decimal, phone_number: str) -> None:
    """Insert a pending order straight into the configured database."""
    db = Database()
    await db.connect()
    try:
        await db.init_schema()
        order = await db.create_order(
            order_id=f"order_{secrets.token_hex(6)}",
            total_amount=amount,
            phone_number=phone_number
        )
        print(f"Seeded pending order {order.id} ({order.total_amount}, {order.phone_number})")
    finally:
        await db.disconnect()


async def simulate_callback(
    url: str,
    amount: Decimal,
    phone: int,
    receipt: str,
    result_code: int
) -> None:
    """Send the simulated callback and print the response."""
    payload = build_payload(amount, phone, receipt, result_code)

    print(f"Sending callback to {url}")
    print(f"  Result code: {result_code}")
    if result_code == 0:
        print(f"  Amount: {amount}")
        print(f"  Phone: {phone}")
        print(f"  Receipt: {receipt}")
    print()

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload) as response:
                body = await response.text()
                print(f"Callback sent. Status: {response.status}")
                print(f"Response: {body}")
    except aiohttp.ClientError as e:
        print(f"\n❌ Error sending callback: {e}")
        sys.exit(1)


async def main():
    parser = argparse.ArgumentParser(
        description='Simulate an M-Pesa STK push callback'
    )
    parser.add_argument(
        '--url',
        default=f"http://localhost:{config.api.port}{config.api.callback_path}",
        help='Callback URL (default: local server)'
    )
    parser.add_argument(
        '--amount',
        type=Decimal,
        default=Decimal('5.00'),
        help='Paid amount (default: 5.00)'
    )
    parser.add_argument(
        '--phone',
        type=int,
        default=254702322277,
        help='Payer MSISDN as sent by M-Pesa (default: 254702322277)'
    )
    parser.add_argument(
        '--receipt',
        default='QBH1234567',
        help='M-Pesa receipt number (default: QBH1234567)'
    )
    parser.add_argument(
        '--result-code',
        type=int,
        default=0,
        help='Result code, 0 for success (default: 0)'
    )
    parser.add_argument(
        '--seed-order',
        metavar='PHONE',
        help='Insert a pending order with this phone and the amount before sending'
    )

    args = parser.parse_args()

    if args.seed_order:
        await seed_order(args.amount, args.seed_order)

    await simulate_callback(
        url=args.url,
        amount=args.amount,
        phone=args.phone,
        receipt=args.receipt,
        result_code=args.result_code
    )


if __name__ == '__main__':
    asyncio.run(main())

"""
Order store backed by PostgreSQL (asyncpg) or SQLite (aiosqlite).

Queries are written with PostgreSQL ``$n`` placeholders and rewritten
to ``?`` when running against SQLite.
"""

import logging
import os
import re
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import asyncpg
import aiosqlite

from config import config
from database.store import DuplicateReceiptError
from models.order import Order, PaymentStatus

logger = logging.getLogger(__name__)

ORDER_COLUMNS = (
    "id, total_amount, phone_number, payment_status, mpesa_receipt, "
    "created_at, updated_at"
)

PLACEHOLDER = re.compile(r'\$\d+')
SCHEMA_PATH = os.path.join(os.path.dirname(__file__), 'schema.sql')


class Database:
    """
    Async order store.

    A PostgreSQL URL opens an asyncpg pool; anything else is treated as
    a SQLite path and served over a single aiosqlite connection.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or config.database.url
        self._pool: Optional[asyncpg.Pool] = None
        self._sqlite_conn: Optional[aiosqlite.Connection] = None
        self._is_postgres = self.database_url.startswith(('postgresql', 'postgres://'))

    async def connect(self) -> None:
        if self._is_postgres:
            logger.info("Opening PostgreSQL pool")
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=2,
                max_size=10,
                command_timeout=config.database.query_timeout
            )
        else:
            db_path = self.database_url.replace('sqlite:///', '')
            logger.info(f"Opening SQLite database {db_path}")
            self._sqlite_conn = await aiosqlite.connect(db_path)

    async def disconnect(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
        if self._sqlite_conn:
            await self._sqlite_conn.close()
            self._sqlite_conn = None
        logger.info("Order store closed")

    async def _sqlite(self, query: str, args: Sequence[Any]) -> aiosqlite.Cursor:
        return await self._sqlite_conn.execute(PLACEHOLDER.sub('?', query), args)

    @staticmethod
    def _row_dicts(cursor: aiosqlite.Cursor, rows) -> List[Dict[str, Any]]:
        columns = [d[0] for d in cursor.description or ()]
        return [dict(zip(columns, row)) for row in rows]

    async def execute(self, query: str, *args) -> str:
        """
        Run a statement and return its command status, e.g. "UPDATE 1".

        SQLite has no command status, so one is built from the row count.
        """
        if self._is_postgres:
            async with self._pool.acquire() as conn:
                return await conn.execute(query, *args)

        cursor = await self._sqlite(query, args)
        await self._sqlite_conn.commit()
        return f"{query.split(None, 1)[0].upper()} {cursor.rowcount}"

    async def fetch_one(self, query: str, *args) -> Optional[Dict[str, Any]]:
        rows = await self.fetch_all(query, *args)
        return rows[0] if rows else None

    async def fetch_all(self, query: str, *args) -> List[Dict[str, Any]]:
        if self._is_postgres:
            async with self._pool.acquire() as conn:
                return [dict(row) for row in await conn.fetch(query, *args)]

        cursor = await self._sqlite(query, args)
        return self._row_dicts(cursor, await cursor.fetchall())

    def _amount_param(self, amount: Decimal) -> Any:
        # sqlite3 cannot bind Decimal; NUMERIC affinity coerces the text back
        return amount if self._is_postgres else str(amount)

    def _time_param(self, value: Optional[datetime]) -> Any:
        if value is None or self._is_postgres:
            return value
        return value.isoformat()

    @staticmethod
    def _rows_affected(status: str) -> int:
        """Parse the row count out of a command status like "UPDATE 1"."""
        try:
            return int(status.rsplit(' ', 1)[-1])
        except (ValueError, AttributeError):
            return 0

    async def init_schema(self) -> None:
        """Create the orders table and its indexes if they are missing."""
        with open(SCHEMA_PATH) as f:
            lines = [line for line in f if not line.lstrip().startswith('--')]

        for statement in filter(None, (s.strip() for s in ''.join(lines).split(';'))):
            await self.execute(statement)

        logger.info("Order schema ready")

    # -------------------------------------------------------------------------
    # Order Operations
    # -------------------------------------------------------------------------

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Get order by ID."""
        row = await self.fetch_one(
            f"SELECT {ORDER_COLUMNS} FROM orders WHERE id = $1",
            order_id
        )
        return Order.from_dict(row) if row else None

    async def create_order(
        self,
        order_id: str,
        total_amount: Decimal,
        phone_number: str,
        created_at: Optional[datetime] = None
    ) -> Order:
        """
        Insert a pending order.

        Orders are normally created by the checkout flow; this exists for
        seeding development databases and tests.
        """
        created_at = created_at or datetime.utcnow()

        await self.execute(
            """
            INSERT INTO orders (id, total_amount, phone_number, payment_status, created_at)
            VALUES ($1, $2, $3, $4, $5)
            """,
            order_id, self._amount_param(total_amount), phone_number,
            PaymentStatus.PENDING.value, self._time_param(created_at)
        )

        return await self.get_order(order_id)

    async def find_pending_orders_by_amount(self, amount: Decimal) -> List[Order]:
        """Get pending orders with the exact total amount, newest first."""
        rows = await self.fetch_all(
            f"""
            SELECT {ORDER_COLUMNS} FROM orders
            WHERE payment_status = $1 AND total_amount = $2
            ORDER BY created_at DESC
            """,
            PaymentStatus.PENDING.value, self._amount_param(amount)
        )
        return [Order.from_dict(row) for row in rows]

    async def find_order_by_receipt(self, receipt: str) -> Optional[Order]:
        """Get the order already settled with this M-Pesa receipt."""
        row = await self.fetch_one(
            f"SELECT {ORDER_COLUMNS} FROM orders WHERE mpesa_receipt = $1",
            receipt
        )
        return Order.from_dict(row) if row else None

    async def update_order_if_pending(
        self,
        order_id: str,
        new_status: PaymentStatus,
        receipt: Optional[str] = None
    ) -> int:
        """
        Move a single order out of pending.

        The status guard in the WHERE clause makes this a compare-and-swap:
        an order that was settled in the meantime is left untouched and
        zero rows are reported. The unique index on mpesa_receipt keeps one
        receipt from settling two orders.

        Returns:
            Number of rows updated (0 or 1)

        Raises:
            DuplicateReceiptError: If another order already holds the receipt
        """
        try:
            status = await self.execute(
                """
                UPDATE orders
                SET payment_status = $1, mpesa_receipt = $2, updated_at = $3
                WHERE id = $4 AND payment_status = $5
                """,
                new_status.value, receipt, self._time_param(datetime.utcnow()),
                order_id, PaymentStatus.PENDING.value
            )
        except (asyncpg.UniqueViolationError, sqlite3.IntegrityError) as e:
            if not self._is_postgres:
                await self._sqlite_conn.rollback()
            raise DuplicateReceiptError(
                f"Receipt {receipt} is already recorded on another order"
            ) from e
        return self._rows_affected(status)

    async def count_orders_by_status(self) -> Dict[str, int]:
        """Get order counts keyed by payment status."""
        rows = await self.fetch_all(
            "SELECT payment_status, COUNT(*) AS total FROM orders GROUP BY payment_status"
        )
        return {row['payment_status']: int(row['total']) for row in rows}

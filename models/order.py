"""
Order data model.

Represents an order record owned by the storefront. Orders are created
pending by the checkout flow and settled here when M-Pesa reports payment.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class PaymentStatus(str, Enum):
    """Payment state of an order."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


def to_decimal(value: Any) -> Decimal:
    """Convert a stored or wire amount to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Order:
    """
    A storefront order awaiting (or done with) M-Pesa payment.

    Attributes:
        id: Unique order identifier
        total_amount: Amount the customer was asked to pay
        phone_number: Customer phone, usually in local form (07XXXXXXXX)
        payment_status: Current payment state
        created_at: When the order was placed
        mpesa_receipt: M-Pesa receipt number, set once paid
        updated_at: Timestamp of the payment transition
    """

    id: str
    total_amount: Decimal
    phone_number: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = field(default_factory=datetime.utcnow)
    mpesa_receipt: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Normalize field types coming from the store."""
        if isinstance(self.payment_status, str):
            self.payment_status = PaymentStatus(self.payment_status)
        self.total_amount = to_decimal(self.total_amount)
        self.phone_number = str(self.phone_number)
        self.id = str(self.id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Order':
        """Create an Order from a database row."""
        return cls(
            id=data['id'],
            total_amount=data['total_amount'],
            phone_number=data['phone_number'],
            payment_status=data.get('payment_status', PaymentStatus.PENDING.value),
            created_at=_to_datetime(data.get('created_at')) or datetime.utcnow(),
            mpesa_receipt=data.get('mpesa_receipt'),
            updated_at=_to_datetime(data.get('updated_at'))
        )

    def is_pending(self) -> bool:
        return self.payment_status == PaymentStatus.PENDING

    def phone_matches(self, phone_key: str) -> bool:
        """
        Check whether the stored phone number contains the given suffix key.

        Containment rather than equality lets 07XXXXXXXX, 2547XXXXXXXX and
        +2547XXXXXXXX all match the same key. An empty key never matches.
        """
        if not phone_key:
            return False
        return phone_key in self.phone_number

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'total_amount': str(self.total_amount),
            'phone_number': self.phone_number,
            'payment_status': self.payment_status.value,
            'created_at': self.created_at.isoformat(),
            'mpesa_receipt': self.mpesa_receipt,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

"""
M-Pesa STK push callback model.

Parses the gateway's nested callback envelope into a flat, typed
PaymentNotification. Parsing is pure: no I/O and no store access.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional


SUCCESS_RESULT_CODE = 0

# Sentinels used when the gateway omits a metadata item
DEFAULT_AMOUNT = Decimal('0')
DEFAULT_RECEIPT = 'N/A'
DEFAULT_PHONE = 'N/A'

# CallbackMetadata item names
AMOUNT_ITEM = 'Amount'
RECEIPT_ITEM = 'MpesaReceiptNumber'
PHONE_ITEM = 'PhoneNumber'


class MalformedPayloadError(ValueError):
    """Raised when a callback body does not carry the expected envelope."""


def _metadata_map(callback: Dict[str, Any]) -> Dict[str, Any]:
    """Fold CallbackMetadata.Item into a name -> value mapping."""
    metadata = callback.get('CallbackMetadata')
    if not isinstance(metadata, dict):
        raise MalformedPayloadError("Successful callback is missing CallbackMetadata")

    items = metadata.get('Item', [])
    if not isinstance(items, list):
        raise MalformedPayloadError("CallbackMetadata.Item must be a list")

    values = {}
    for item in items:
        if isinstance(item, dict) and 'Name' in item:
            values[item['Name']] = item.get('Value')
    return values


def _parse_amount(value: Any) -> Decimal:
    if value is None:
        return DEFAULT_AMOUNT
    if isinstance(value, bool):
        raise MalformedPayloadError(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise MalformedPayloadError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise MalformedPayloadError(f"Invalid amount: {value!r}")
    return amount


def _parse_phone(value: Any) -> str:
    if value is None:
        return DEFAULT_PHONE
    # JSON numbers may be decoded as floats (254702322277.0)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


@dataclass
class PaymentNotification:
    """
    A normalized STK push result.

    Only successful notifications carry amount, phone number and receipt;
    failed ones keep the sentinel defaults.
    """

    result_code: int
    result_desc: str = ''
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    amount: Decimal = DEFAULT_AMOUNT
    phone_number: str = DEFAULT_PHONE
    receipt_number: str = DEFAULT_RECEIPT
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_callback(cls, payload: Any) -> 'PaymentNotification':
        """
        Create a PaymentNotification from a raw callback body.

        Args:
            payload: Decoded JSON body as posted by the gateway

        Returns:
            PaymentNotification instance

        Raises:
            MalformedPayloadError: If Body.stkCallback or ResultCode is absent,
                or a successful callback has no usable metadata block
        """
        if not isinstance(payload, dict):
            raise MalformedPayloadError("Callback body must be a JSON object")

        body = payload.get('Body')
        callback = body.get('stkCallback') if isinstance(body, dict) else None
        if not isinstance(callback, dict):
            raise MalformedPayloadError("Missing Body.stkCallback envelope")

        if 'ResultCode' not in callback:
            raise MalformedPayloadError("stkCallback is missing ResultCode")

        try:
            result_code = int(callback['ResultCode'])
        except (TypeError, ValueError):
            raise MalformedPayloadError(f"Invalid ResultCode: {callback['ResultCode']!r}")

        notification = cls(
            result_code=result_code,
            result_desc=str(callback.get('ResultDesc') or ''),
            merchant_request_id=callback.get('MerchantRequestID'),
            checkout_request_id=callback.get('CheckoutRequestID')
        )

        if result_code != SUCCESS_RESULT_CODE:
            return notification

        values = _metadata_map(callback)
        notification.amount = _parse_amount(values.get(AMOUNT_ITEM))
        notification.phone_number = _parse_phone(values.get(PHONE_ITEM))
        receipt = values.get(RECEIPT_ITEM)
        notification.receipt_number = str(receipt) if receipt is not None else DEFAULT_RECEIPT
        notification.metadata = values
        return notification

    def is_success(self) -> bool:
        return self.result_code == SUCCESS_RESULT_CODE

    def has_receipt(self) -> bool:
        return bool(self.receipt_number) and self.receipt_number != DEFAULT_RECEIPT

    def phone_suffix(self, length: int = 9) -> str:
        """
        Get the last `length` digits of the payer's phone number.

        The gateway sends 2547XXXXXXXX while orders usually hold 07XXXXXXXX;
        both share the trailing nine digits. Returns an empty string when
        the phone carries no digits.
        """
        digits = ''.join(ch for ch in self.phone_number if ch.isdigit())
        return digits[-length:] if digits else ''

    def short_description(self) -> str:
        """One-line summary for log messages."""
        if self.is_success():
            return (
                f"receipt={self.receipt_number} amount={self.amount} "
                f"phone={self.phone_number}"
            )
        return f"code={self.result_code} desc={self.result_desc!r}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'result_code': self.result_code,
            'result_desc': self.result_desc,
            'merchant_request_id': self.merchant_request_id,
            'checkout_request_id': self.checkout_request_id,
            'amount': str(self.amount),
            'phone_number': self.phone_number,
            'receipt_number': self.receipt_number
        }


def normalize(payload: Any) -> PaymentNotification:
    """Normalize a raw callback body into a PaymentNotification."""
    return PaymentNotification.from_callback(payload)

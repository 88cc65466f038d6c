"""Data models for the M-Pesa Callback service."""

from .notification import MalformedPayloadError, PaymentNotification, normalize
from .order import Order, PaymentStatus

__all__ = [
    'MalformedPayloadError',
    'PaymentNotification',
    'normalize',
    'Order',
    'PaymentStatus'
]

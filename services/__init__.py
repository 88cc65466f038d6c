"""Services module for the M-Pesa Callback service."""

from .reconciler import PaymentReconciler, ReconciliationOutcome, ReconciliationStatus

__all__ = [
    'PaymentReconciler',
    'ReconciliationOutcome',
    'ReconciliationStatus'
]

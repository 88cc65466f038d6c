"""Database module for the M-Pesa Callback service."""

from .db import Database
from .store import OrderStore, StoreError

__all__ = ['Database', 'OrderStore', 'StoreError']

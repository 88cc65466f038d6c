"""API module for the M-Pesa Callback service."""

from .callback_api import create_app, CallbackAPI

__all__ = ['create_app', 'CallbackAPI']

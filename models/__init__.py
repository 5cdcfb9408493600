"""Data models for the PanelFlow billing service."""

from .account import Account, Plan
from .payment import PaymentNotification, PaymentReference, PaymentRequest
from .signing import SIGN_ALL_FIELDS, SKIP_MERCHANT_KEY, SigningPolicy

__all__ = [
    'Account', 'Plan', 'PaymentNotification', 'PaymentReference',
    'PaymentRequest', 'SigningPolicy', 'SIGN_ALL_FIELDS', 'SKIP_MERCHANT_KEY'
]

"""Services module for the PanelFlow billing service."""

from .auth_client import AuthClient, Identity
from .initiation_service import PaymentInitiationService, PaymentIntent
from .notification_verifier import NotificationVerifier, Outcome, VerificationResult

__all__ = [
    'AuthClient',
    'Identity',
    'PaymentInitiationService',
    'PaymentIntent',
    'NotificationVerifier',
    'Outcome',
    'VerificationResult'
]

"""
Error taxonomy for the billing service.

Each error maps directly onto an HTTP status and a machine-readable code
that is returned in the response body.
"""

from typing import Any, Dict, Iterable, Optional


class BillingError(Exception):
    """Base class for errors surfaced to HTTP callers."""

    code = 'billing_error'
    status = 500

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__.strip())
        self.message = message or self.__class__.__doc__.strip()

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as a JSON response body."""
        return {
            'ok': False,
            'error': self.code,
            'message': self.message
        }


class ConfigurationError(BillingError):
    """Required configuration is missing."""

    code = 'configuration_error'
    status = 500

    def __init__(self, missing: Iterable[str], message: Optional[str] = None):
        self.missing = list(missing)
        super().__init__(message or f"Missing {' or '.join(self.missing)} in env vars")


class Unauthenticated(BillingError):
    """Missing or invalid caller credential."""

    code = 'unauthenticated'
    status = 401


class IdentityUnavailable(BillingError):
    """Identity provider could not be reached."""

    code = 'identity_unavailable'
    status = 503


class BadSignature(BillingError):
    """Signature does not match the notification payload."""

    code = 'bad_signature'
    status = 400


class AmountMismatch(BillingError):
    """Amount does not match the product price."""

    code = 'amount_mismatch'
    status = 400


class BadReference(BillingError):
    """Payment reference cannot be resolved to an account."""

    code = 'bad_reference'
    status = 400


class TransientStorageError(BillingError):
    """Account store is temporarily unavailable."""

    code = 'storage_error'
    status = 500

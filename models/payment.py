"""
Payment data models.

Represents the outbound PayFast payment request, the payment reference that
ties it to an account, and the inbound ITN (Instant Transaction
Notification) callback.
"""

import re
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional


COMPLETE_STATUS = 'COMPLETE'

# pf_{user id}_{milliseconds}_{8 hex nonce}
REFERENCE_REGEX = re.compile(r'^pf_([A-Za-z0-9-]{1,64})_(\d{10,16})_([0-9a-f]{8})$')

AMOUNT_REGEX = re.compile(r'^\d+\.\d{2}$')


@dataclass
class PaymentRequest:
    """
    Validated field set for a PayFast payment.

    Required fields must be present before anything is signed, so that a
    missing value shows up here rather than as a signature mismatch at the
    gateway.
    """

    merchant_id: str
    merchant_key: str
    return_url: str
    cancel_url: str
    notify_url: str
    m_payment_id: str
    amount: str
    item_name: str
    email_address: Optional[str] = None
    custom_str1: Optional[str] = None

    REQUIRED = (
        'merchant_id', 'merchant_key', 'return_url', 'cancel_url',
        'notify_url', 'm_payment_id', 'amount', 'item_name'
    )

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Validate the field set.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        for name in self.REQUIRED:
            value = getattr(self, name)
            if value is None or not str(value).strip():
                raise ValueError(f"{name} is required")

        if not AMOUNT_REGEX.match(self.amount):
            raise ValueError("amount must have exactly two decimal places")

        for name in ('return_url', 'cancel_url', 'notify_url'):
            if not getattr(self, name).startswith(('http://', 'https://')):
                raise ValueError(f"{name} must be a valid HTTP(S) URL")

    def to_fields(self) -> Dict[str, str]:
        """
        Convert to the gateway's field mapping.

        Returns:
            Field name to value, empty optionals omitted
        """
        fields = {
            'merchant_id': self.merchant_id,
            'merchant_key': self.merchant_key,
            'return_url': self.return_url,
            'cancel_url': self.cancel_url,
            'notify_url': self.notify_url,
            'email_address': self.email_address,
            'm_payment_id': self.m_payment_id,
            'amount': self.amount,
            'item_name': self.item_name,
            'custom_str1': self.custom_str1,
        }
        return {k: v for k, v in fields.items() if v is not None and str(v).strip()}


@dataclass
class PaymentReference:
    """
    Unique reference correlating a payment with an account.

    Sent as m_payment_id and echoed back unmodified in the ITN. The nonce
    keeps two initiations by the same user within one millisecond apart.
    """

    user_id: str
    issued_at_ms: int
    nonce: str

    @classmethod
    def generate(cls, user_id: str, now_ms: Optional[int] = None) -> 'PaymentReference':
        """
        Create a fresh reference for a user.

        Args:
            user_id: Account identifier
            now_ms: Issue time in epoch milliseconds (defaults to now)

        Returns:
            PaymentReference instance
        """
        if not user_id or not re.match(r'^[A-Za-z0-9-]{1,64}$', user_id):
            raise ValueError("user_id cannot be embedded in a payment reference")

        return cls(
            user_id=user_id,
            issued_at_ms=now_ms if now_ms is not None else int(time.time() * 1000),
            nonce=secrets.token_hex(4)
        )

    @classmethod
    def parse(cls, text: str) -> 'PaymentReference':
        """
        Parse a reference received from the gateway.

        Raises:
            ValueError: If the text is not a reference issued by this service
        """
        match = REFERENCE_REGEX.match((text or '').strip())
        if not match:
            raise ValueError(f"Malformed payment reference: {text!r}")

        user_id, issued_at_ms, nonce = match.groups()
        return cls(user_id=user_id, issued_at_ms=int(issued_at_ms), nonce=nonce)

    def __str__(self) -> str:
        return f"pf_{self.user_id}_{self.issued_at_ms}_{self.nonce}"


@dataclass
class PaymentNotification:
    """
    Inbound ITN callback from PayFast.

    ``raw`` keeps the exact received mapping, which is what the signature
    is recomputed over.
    """

    m_payment_id: str
    payment_status: str
    amount: str
    signature: str
    pf_payment_id: Optional[str] = None
    custom_str1: Optional[str] = None
    raw: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_form(cls, data: Mapping[str, Any]) -> 'PaymentNotification':
        """
        Create PaymentNotification from posted form data.

        Args:
            data: Form fields as received

        Returns:
            PaymentNotification instance
        """
        raw = {str(k): str(v) for k, v in data.items()}

        amount = raw.get('amount_gross', '').strip() or raw.get('amount', '').strip()

        return cls(
            m_payment_id=raw.get('m_payment_id', '').strip(),
            payment_status=raw.get('payment_status', '').strip(),
            amount=amount,
            signature=raw.get('signature', '').strip(),
            pf_payment_id=raw.get('pf_payment_id', '').strip() or None,
            custom_str1=raw.get('custom_str1', '').strip() or None,
            raw=raw
        )

    def is_complete(self) -> bool:
        """Check if the gateway reports final successful completion."""
        return self.payment_status.upper() == COMPLETE_STATUS

    def amount_matches(self, expected: str) -> bool:
        """
        Compare the reported amount with the expected price.

        Uses Decimal so that "99.0" and "99.00" agree while float rounding
        never enters the comparison.
        """
        try:
            received = Decimal(self.amount)
            wanted = Decimal(expected)
        except (InvalidOperation, TypeError):
            return False

        if not received.is_finite() or not wanted.is_finite():
            return False
        return received == wanted

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (signature omitted)."""
        return {
            'm_payment_id': self.m_payment_id,
            'payment_status': self.payment_status,
            'amount': self.amount,
            'pf_payment_id': self.pf_payment_id,
            'custom_str1': self.custom_str1
        }

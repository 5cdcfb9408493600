"""
Notification Verifier.

Handles PayFast ITN callbacks: authenticates them by signature, checks
status and amount, resolves the account and grants the pro plan exactly
once per completed payment.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from config import Config
from database.db import Database
from errors import AmountMismatch, BadReference, BadSignature, TransientStorageError
from models.payment import PaymentNotification, PaymentReference
from services.signature import verify_signature

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Final state of a callback that was not rejected."""
    ACKNOWLEDGED = "acknowledged"
    IGNORED = "ignored"


@dataclass
class VerificationResult:
    """Result of processing one callback."""

    outcome: Outcome
    reference: str
    user_id: Optional[str] = None
    pro_until: Optional[datetime] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Response body returned to the gateway."""
        if self.outcome == Outcome.IGNORED:
            return {'ok': True, 'ignored': self.reason or 'Not complete'}
        return {'ok': True}


class NotificationVerifier:
    """
    Verifier for PayFast ITN callbacks.

    Each call runs RECEIVED -> SIGNATURE_CHECK -> STATUS_CHECK ->
    AMOUNT_CHECK -> REFERENCE_RESOLUTION -> APPLY. Nothing is written
    before APPLY, and APPLY is idempotent at the storage layer so the
    gateway's redeliveries are safe.
    """

    def __init__(
        self,
        config: Config,
        db: Database,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the verifier.

        Args:
            config: Service configuration (passphrase, price, signing policy)
            db: Account store
            clock: Returns the current UTC time (overridable in tests)
        """
        self.config = config
        self.db = db
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def verify(self, form: Mapping[str, Any]) -> VerificationResult:
        """
        Process one callback.

        Args:
            form: Form fields exactly as posted by the gateway

        Returns:
            VerificationResult (acknowledged or ignored)

        Raises:
            BadSignature: Signature missing or wrong
            AmountMismatch: Amount differs from the product price
            BadReference: Reference malformed or account unknown
            TransientStorageError: Account store failed; gateway should retry
        """
        payfast = self.config.payfast
        notification = PaymentNotification.from_form(form)
        reference_text = notification.m_payment_id

        # SIGNATURE_CHECK
        if not verify_signature(notification.raw, payfast.passphrase, payfast.signing):
            logger.warning(f"Rejected ITN {reference_text or '<none>'}: bad signature")
            raise BadSignature("Bad signature")

        # STATUS_CHECK
        if not notification.is_complete():
            logger.info(
                f"Ignored ITN {reference_text}: status "
                f"{notification.payment_status or '<none>'}"
            )
            return VerificationResult(
                outcome=Outcome.IGNORED,
                reference=reference_text,
                reason='Not complete'
            )

        # AMOUNT_CHECK
        if not notification.amount_matches(payfast.amount):
            logger.warning(
                f"Rejected ITN {reference_text}: amount {notification.amount!r} "
                f"!= {payfast.amount}"
            )
            raise AmountMismatch("Amount mismatch")

        # REFERENCE_RESOLUTION
        user_id = await self._resolve_user(notification)

        # APPLY
        pro_until = await self._apply(notification, user_id)

        logger.info(
            f"Acknowledged ITN {reference_text}: user {user_id} "
            f"pro until {pro_until.isoformat()}"
        )
        return VerificationResult(
            outcome=Outcome.ACKNOWLEDGED,
            reference=reference_text,
            user_id=user_id,
            pro_until=pro_until
        )

    async def _resolve_user(self, notification: PaymentNotification) -> str:
        try:
            reference = PaymentReference.parse(notification.m_payment_id)
        except ValueError:
            logger.warning(f"Rejected ITN {notification.m_payment_id!r}: malformed reference")
            raise BadReference("Bad m_payment_id")

        if notification.custom_str1 and notification.custom_str1 != reference.user_id:
            logger.warning(
                f"Rejected ITN {notification.m_payment_id}: custom_str1 does not "
                f"match the reference"
            )
            raise BadReference("Bad m_payment_id")

        try:
            user = await self.db.get_user(reference.user_id)
        except Exception as e:
            logger.error(f"Error loading user {reference.user_id}: {e}")
            raise TransientStorageError("Failed to load account") from e

        if not user:
            logger.warning(
                f"Rejected ITN {notification.m_payment_id}: "
                f"unknown user {reference.user_id}"
            )
            raise BadReference("Unknown account")

        return reference.user_id

    async def _apply(self, notification: PaymentNotification, user_id: str) -> datetime:
        duration = timedelta(days=self.config.payfast.pro_duration_days)
        now = self.clock()

        try:
            completed_at = await self.db.claim_payment_reference(
                reference=notification.m_payment_id,
                user_id=user_id,
                amount=notification.amount,
                pf_payment_id=notification.pf_payment_id,
                now=now
            )
            pro_until = completed_at + duration
            await self.db.grant_pro(user_id, pro_until, now)
        except Exception as e:
            logger.error(
                f"Error applying ITN {notification.m_payment_id} "
                f"for user {user_id}: {e}"
            )
            raise TransientStorageError("Failed to update account") from e

        return pro_until

"""
Payment Initiation Service.

Builds and signs the field set the browser submits to PayFast for a
PanelFlow Pro purchase.
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from config import Config
from database.db import Database
from errors import TransientStorageError, Unauthenticated
from models.payment import PaymentReference, PaymentRequest
from services.auth_client import AuthClient, Identity, bearer_token
from services.signature import encode_component, generate_signature

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntent:
    """
    Signed payment ready for submission to the gateway.

    POSTing ``fields`` to ``target_url`` is the preferred route; the
    redirect URL form can exceed URL length limits of proxies in between.
    """

    target_url: str
    fields: Dict[str, str]

    @property
    def reference(self) -> str:
        return self.fields['m_payment_id']

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processUrl': self.target_url,
            'fields': self.fields
        }

    def redirect_url(self) -> str:
        """Target URL with every field in canonical key order, signature last."""
        pairs = [
            f"{k}={encode_component(self.fields[k])}"
            for k in sorted(self.fields) if k != 'signature'
        ]
        pairs.append(f"signature={self.fields['signature']}")
        return f"{self.target_url}?{'&'.join(pairs)}"

    def to_form_html(self) -> str:
        """Minimal page that auto-submits the fields to the gateway."""
        inputs = '\n'.join(
            f'    <input type="hidden" name="{html.escape(k)}" value="{html.escape(v)}">'
            for k, v in self.fields.items()
        )
        return f"""<!doctype html>
<html><body onload="document.forms[0].submit()">
  <p>Redirecting to PayFast...</p>
  <form method="post" action="{html.escape(self.target_url)}">
{inputs}
    <noscript><button type="submit">Continue</button></noscript>
  </form>
</body></html>
"""


class PaymentInitiationService:
    """
    Service that starts PayFast payments.

    Stateless between calls; the optional database is only used to record
    the issued reference for later reconciliation.
    """

    def __init__(
        self,
        config: Config,
        auth_client: AuthClient,
        db: Optional[Database] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the service.

        Args:
            config: Service configuration
            auth_client: Identity provider client
            db: Optional account store for recording references
            clock: Returns the current UTC time (overridable in tests)
        """
        self.config = config
        self.auth_client = auth_client
        self.db = db
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def initiate(self, authorization: Optional[str]) -> PaymentIntent:
        """
        Start a payment for the caller.

        Args:
            authorization: Raw Authorization header of the request

        Returns:
            PaymentIntent with signed fields and the process URL

        Raises:
            ConfigurationError: A required setting is missing
            Unauthenticated: No valid bearer token
            IdentityUnavailable: Identity provider unreachable
            TransientStorageError: Reference could not be recorded
        """
        # Header presence first, settings before the identity provider is called
        token = bearer_token(authorization)
        self.config.require_payfast()

        identity = await self.auth_client.verify_token(token)

        now = self.clock()
        intent = self.build_intent(identity, now)

        if self.db is not None:
            await self._record(identity, intent, now)

        logger.info(
            f"Started PayFast payment {intent.reference} "
            f"for user {identity.user_id}"
        )
        return intent

    def build_intent(self, identity: Identity, now: datetime) -> PaymentIntent:
        """
        Build and sign the field set for one payment.

        Args:
            identity: Verified caller
            now: Issue time

        Returns:
            PaymentIntent ready for submission
        """
        payfast = self.config.payfast
        base_url = self.config.app.base_url

        try:
            reference = PaymentReference.generate(
                identity.user_id, int(now.timestamp() * 1000)
            )
        except ValueError as e:
            raise Unauthenticated("Invalid auth") from e

        request = PaymentRequest(
            merchant_id=payfast.merchant_id,
            merchant_key=payfast.merchant_key,
            return_url=f"{base_url}/billing/success",
            cancel_url=f"{base_url}/pricing",
            notify_url=payfast.notify_url,
            m_payment_id=str(reference),
            amount=payfast.amount,
            item_name=payfast.item_name,
            email_address=identity.email,
            custom_str1=identity.user_id
        )

        fields = request.to_fields()
        fields['signature'] = generate_signature(
            fields, payfast.passphrase, payfast.signing
        )

        return PaymentIntent(target_url=payfast.process_url, fields=fields)

    async def _record(self, identity: Identity, intent: PaymentIntent, now: datetime) -> None:
        try:
            await self.db.ensure_user(identity.user_id, identity.email, now)
            await self.db.record_payment_reference(
                reference=intent.reference,
                user_id=identity.user_id,
                amount=intent.fields['amount'],
                created_at=now
            )
        except Exception as e:
            logger.error(f"Error recording payment reference {intent.reference}: {e}")
            raise TransientStorageError("Failed to record payment reference") from e

"""
Unit tests for the payment initiation service.

Run with: pytest tests/test_initiation_service.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from errors import ConfigurationError, TransientStorageError, Unauthenticated
from models.payment import PaymentReference
from services.auth_client import Identity
from services.initiation_service import PaymentInitiationService
from services.signature import build_canonical_string, sign, verify_signature

from conftest import GOOD_TOKEN, NOW, USER_EMAIL, USER_ID, FakeAuthClient, make_config


def _service(config=None, auth_client=None, db=None):
    return PaymentInitiationService(
        config or make_config(),
        auth_client or FakeAuthClient(),
        db=db,
        clock=lambda: NOW
    )


class TestPaymentInitiationService:
    """Tests for PaymentInitiationService."""

    def test_builds_signed_fields(self):
        """Test the full field set and its signature."""
        config = make_config()
        intent = asyncio.run(_service(config).initiate(f'Bearer {GOOD_TOKEN}'))
        fields = intent.fields

        assert intent.target_url == 'https://sandbox.payfast.co.za/eng/process'
        assert fields['merchant_id'] == '10000100'
        assert fields['merchant_key'] == '46f0cd694581a'
        assert fields['return_url'] == 'https://panelflow.test/billing/success'
        assert fields['cancel_url'] == 'https://panelflow.test/pricing'
        assert fields['notify_url'] == 'https://panelflow.test/api/payfast/itn'
        assert fields['amount'] == '99.00'
        assert fields['item_name'] == 'PanelFlow Pro'
        assert fields['email_address'] == USER_EMAIL
        assert fields['custom_str1'] == USER_ID
        assert verify_signature(fields, config.payfast.passphrase, config.payfast.signing)

    def test_reference_embeds_user(self):
        intent = asyncio.run(_service().initiate(f'Bearer {GOOD_TOKEN}'))

        reference = PaymentReference.parse(intent.reference)
        assert reference.user_id == USER_ID
        assert reference.issued_at_ms == int(NOW.timestamp() * 1000)

    def test_references_are_unique(self):
        """Test that two initiations at the same instant get different references."""
        service = _service()

        async def twice():
            first = await service.initiate(f'Bearer {GOOD_TOKEN}')
            second = await service.initiate(f'Bearer {GOOD_TOKEN}')
            return first, second

        first, second = asyncio.run(twice())

        assert first.reference != second.reference

    def test_passphrase_never_transmitted(self):
        config = make_config()
        intent = asyncio.run(_service(config).initiate(f'Bearer {GOOD_TOKEN}'))

        assert 'passphrase' not in intent.fields
        assert config.payfast.passphrase not in intent.fields.values()
        assert 'salt' not in intent.redirect_url()

    def test_skip_merchant_key_policy(self):
        """Test that merchant_key is sent but left out of the signature."""
        config = make_config(PAYFAST_SIGN_MERCHANT_KEY='false', PAYFAST_PASSPHRASE=None)
        intent = asyncio.run(_service(config).initiate(f'Bearer {GOOD_TOKEN}'))
        fields = intent.fields

        unsigned = {k: v for k, v in fields.items() if k not in ('signature', 'merchant_key')}
        assert fields['merchant_key'] == '46f0cd694581a'
        assert fields['signature'] == sign(build_canonical_string(unsigned))

    def test_email_optional(self):
        auth = FakeAuthClient(Identity(user_id=USER_ID, email=None))
        intent = asyncio.run(_service(auth_client=auth).initiate(f'Bearer {GOOD_TOKEN}'))

        assert 'email_address' not in intent.fields

    def test_missing_configuration_named(self):
        """Test that a missing merchant id is reported by name."""
        auth = FakeAuthClient()
        service = _service(make_config(PAYFAST_MERCHANT_ID=None), auth_client=auth)

        with pytest.raises(ConfigurationError, match="PAYFAST_MERCHANT_ID"):
            asyncio.run(service.initiate(f'Bearer {GOOD_TOKEN}'))

        assert auth.calls == []

    def test_missing_authorization(self):
        with pytest.raises(Unauthenticated):
            asyncio.run(_service().initiate(None))

    def test_missing_authorization_checked_before_configuration(self):
        """Test that a request without credentials gets 401 even when misconfigured."""
        auth = FakeAuthClient()
        service = _service(make_config(PAYFAST_MERCHANT_ID=None), auth_client=auth)

        with pytest.raises(Unauthenticated):
            asyncio.run(service.initiate(None))

        assert auth.calls == []

    def test_invalid_token(self):
        with pytest.raises(Unauthenticated):
            asyncio.run(_service().initiate('Bearer wrong-token'))

    def test_token_without_bearer_prefix(self):
        intent = asyncio.run(_service().initiate(GOOD_TOKEN))

        assert intent.fields['custom_str1'] == USER_ID


class TestReferenceRecording:
    """Tests for recording issued references."""

    def test_records_pending_reference(self, run_with_db):
        async def scenario(db):
            intent = await _service(db=db).initiate(f'Bearer {GOOD_TOKEN}')
            return (
                intent,
                await db.get_payment_reference(intent.reference),
                await db.get_user(USER_ID)
            )

        intent, reference_row, user_row = run_with_db(scenario)

        assert reference_row['status'] == 'pending'
        assert reference_row['user_id'] == USER_ID
        assert reference_row['amount'] == '99.00'
        assert reference_row['completed_at'] is None
        assert user_row['email'] == USER_EMAIL
        assert user_row['plan'] == 'free'

    def test_storage_failure(self):
        db = MagicMock()
        db.ensure_user = AsyncMock(side_effect=RuntimeError("disk full"))
        db.record_payment_reference = AsyncMock()

        with pytest.raises(TransientStorageError):
            asyncio.run(_service(db=db).initiate(f'Bearer {GOOD_TOKEN}'))


class TestPaymentIntent:
    """Tests for the PaymentIntent representations."""

    def _intent(self):
        return asyncio.run(_service().initiate(f'Bearer {GOOD_TOKEN}'))

    def test_to_dict(self):
        intent = self._intent()

        assert intent.to_dict() == {'processUrl': intent.target_url, 'fields': intent.fields}

    def test_redirect_url(self):
        """Test that the query string is the canonical string plus the signature."""
        intent = self._intent()
        url = intent.redirect_url()
        target, _, query = url.partition('?')

        assert target == 'https://sandbox.payfast.co.za/eng/process'
        assert query == (
            f"{build_canonical_string(intent.fields)}&signature={intent.fields['signature']}"
        )
        assert query.startswith('amount=99.00&cancel_url=')
        assert 'return_url=https%3A%2F%2Fpanelflow.test%2Fbilling%2Fsuccess' in query
        assert 'item_name=PanelFlow%20Pro' in query

    def test_form_html(self):
        intent = self._intent()
        page = intent.to_form_html()

        assert '<form method="post" action="https://sandbox.payfast.co.za/eng/process">' in page
        assert f'name="signature" value="{intent.fields["signature"]}"' in page
        assert 'name="item_name" value="PanelFlow Pro"' in page
        assert 'document.forms[0].submit()' in page

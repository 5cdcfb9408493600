"""Shared fixtures for the billing service tests."""

import asyncio
from datetime import datetime, timezone

import pytest

from config import Config
from database.db import Database
from errors import Unauthenticated
from models.payment import PaymentReference
from services.auth_client import Identity
from services.signature import generate_signature

USER_ID = 'c0ffee00-1111-2222-3333-444455556666'
USER_EMAIL = 'reader@panelflow.test'
GOOD_TOKEN = 'good-token'

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

PAYFAST_ENV = {
    'APP_URL': 'https://panelflow.test',
    'PAYFAST_MERCHANT_ID': '10000100',
    'PAYFAST_MERCHANT_KEY': '46f0cd694581a',
    'PAYFAST_PASSPHRASE': 'salt & pepper',
    'PAYFAST_PROCESS_URL': 'https://sandbox.payfast.co.za/eng/process',
    'AUTH_URL': 'https://auth.panelflow.test',
    'AUTH_SERVICE_KEY': 'service-key',
    'DATABASE_URL': 'sqlite:///:memory:',
}


class FakeAuthClient:
    """Identity provider stand-in that accepts a single token."""

    def __init__(self, identity: Identity = None):
        self.identity = identity or Identity(user_id=USER_ID, email=USER_EMAIL)
        self.calls = []

    async def verify_token(self, token: str) -> Identity:
        self.calls.append(token)
        if token != GOOD_TOKEN:
            raise Unauthenticated("Invalid auth")
        return self.identity


def make_config(**overrides) -> Config:
    """Config built from the test environment plus overrides (None removes a key)."""
    env = dict(PAYFAST_ENV)
    for key, value in overrides.items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = value
    return Config(env)


def make_reference(user_id: str = USER_ID, issued_at_ms: int = 1767268800000,
                   nonce: str = 'ab12cd34') -> str:
    return str(PaymentReference(user_id=user_id, issued_at_ms=issued_at_ms, nonce=nonce))


def signed_itn(config: Config, reference: str = None, status: str = 'COMPLETE',
               amount_gross: str = '99.00', **extra) -> dict:
    """ITN form fields signed the way the gateway signs them."""
    fields = {
        'm_payment_id': reference or make_reference(),
        'pf_payment_id': '1089250',
        'payment_status': status,
        'item_name': 'PanelFlow Pro',
        'amount_gross': amount_gross,
        'amount_fee': '-2.28',
        'amount_net': '96.72',
        'custom_str1': USER_ID,
        'merchant_id': config.payfast.merchant_id,
    }
    fields.update(extra)
    fields['signature'] = generate_signature(
        fields, config.payfast.passphrase, config.payfast.signing
    )
    return fields


async def _open_db() -> Database:
    db = Database('sqlite:///:memory:')
    await db.connect()
    await db.init_schema()
    return db


def _run_with_db(test):
    """Run ``await test(db)`` against a fresh in-memory database."""
    async def runner():
        db = await _open_db()
        try:
            return await test(db)
        finally:
            await db.disconnect()

    return asyncio.run(runner())


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def run_with_db():
    return _run_with_db

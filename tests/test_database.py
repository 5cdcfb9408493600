"""
Tests for the account store against SQLite.

Run with: pytest tests/test_database.py -v
"""

from datetime import timedelta

from conftest import NOW, USER_EMAIL, USER_ID


class TestUsers:
    """Tests for user operations."""

    def test_ensure_user_is_idempotent(self, run_with_db):
        async def scenario(db):
            await db.ensure_user(USER_ID, USER_EMAIL, NOW)
            await db.grant_pro(USER_ID, NOW + timedelta(days=30), NOW)
            await db.ensure_user(USER_ID, 'other@panelflow.test', NOW)
            return await db.get_user(USER_ID)

        row = run_with_db(scenario)

        assert row['email'] == USER_EMAIL
        assert row['plan'] == 'pro'

    def test_get_missing_user(self, run_with_db):
        async def scenario(db):
            return await db.get_user('nobody')

        assert run_with_db(scenario) is None

    def test_grant_pro_only_moves_forward(self, run_with_db):
        """Test that an earlier expiry never replaces a later one."""
        later = NOW + timedelta(days=40)
        earlier = NOW + timedelta(days=30)

        async def scenario(db):
            await db.ensure_user(USER_ID, USER_EMAIL, NOW)
            await db.grant_pro(USER_ID, later, NOW)
            await db.grant_pro(USER_ID, earlier, NOW)
            return await db.get_user(USER_ID)

        row = run_with_db(scenario)

        assert row['pro_until'] == later.isoformat(timespec='microseconds')


class TestPaymentReferences:
    """Tests for payment reference operations."""

    def test_claim_returns_first_completion(self, run_with_db):
        """Test that repeated claims report the first completion time."""
        async def scenario(db):
            first = await db.claim_payment_reference('ref-1', USER_ID, '99.00', '111', NOW)
            second = await db.claim_payment_reference(
                'ref-1', USER_ID, '99.00', '222', NOW + timedelta(hours=1)
            )
            return first, second, await db.get_payment_reference('ref-1')

        first, second, row = run_with_db(scenario)

        assert first == NOW
        assert second == NOW
        assert row['status'] == 'complete'
        assert row['pf_payment_id'] == '111'

    def test_claim_completes_pending_reference(self, run_with_db):
        async def scenario(db):
            await db.record_payment_reference('ref-2', USER_ID, '99.00', NOW)
            pending = await db.get_payment_reference('ref-2')
            completed_at = await db.claim_payment_reference(
                'ref-2', USER_ID, '99.00', None, NOW + timedelta(minutes=5)
            )
            return pending, completed_at, await db.get_payment_reference('ref-2')

        pending, completed_at, row = run_with_db(scenario)

        assert pending['status'] == 'pending'
        assert completed_at == NOW + timedelta(minutes=5)
        assert row['status'] == 'complete'

    def test_record_ignores_duplicates(self, run_with_db):
        async def scenario(db):
            await db.record_payment_reference('ref-3', USER_ID, '99.00', NOW)
            await db.record_payment_reference('ref-3', 'someone-else', '1.00', NOW)
            return await db.get_payment_reference('ref-3')

        row = run_with_db(scenario)

        assert row['user_id'] == USER_ID
        assert row['amount'] == '99.00'

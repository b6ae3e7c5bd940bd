from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

import pytest
from rest_framework.test import APIClient

from accounts.models import User
from commissions.models import CommissionRequest
from payments.processor import BalanceSnapshot, PaymentStatus


@pytest.fixture
def customer(db):
    return User.objects.create_user(
        email="customer@example.com", password="pass1234", full_name="Casey Customer", role="customer"
    )


@pytest.fixture
def artist(db):
    return User.objects.create_user(
        email="artist@example.com",
        password="pass1234",
        full_name="Robin Artist",
        role="artist",
        subscription_tier="free",
        commission_price=Decimal("10.00"),
        commission_delivery_time="1 week",
        stripe_account_id="acct_artist",
        stripe_payouts_enabled=True,
        stripe_onboarding_complete=True,
        stripe_account_status="active",
    )


@pytest.fixture
def admin_user(db):
    return User.objects.create_superuser(email="admin@example.com", password="pass1234", full_name="Admin")


@pytest.fixture
def make_commission(customer, artist):
    def _make(status=CommissionRequest.Status.PENDING_ARTIST, **fields):
        fields.setdefault("artist_price", Decimal("10.00"))
        fields.setdefault("customer_price", Decimal("11.50"))
        return CommissionRequest.objects.create(
            customer=fields.pop("customer", customer),
            artist=fields.pop("artist", artist),
            requirements="A portrait of my dog",
            status=status,
            **fields,
        )
    return _make


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client():
    def _client(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client
    return _client


@pytest.fixture
def stripe_gateway():
    """Patch every Stripe-facing call in payments.processor."""
    with mock.patch("payments.processor.retrieve_balance") as retrieve_balance, \
            mock.patch("payments.processor.create_transfer") as create_transfer, \
            mock.patch("payments.processor.retrieve_payment") as retrieve_payment, \
            mock.patch("payments.processor.create_refund") as create_refund, \
            mock.patch("payments.processor.create_checkout_session") as create_checkout_session, \
            mock.patch("payments.processor.list_recent_checkout_sessions") as list_sessions:
        retrieve_balance.return_value = BalanceSnapshot(available=100000, pending=0, currency="gbp")
        create_transfer.side_effect = lambda **kwargs: f"tr_{kwargs['idempotency_key']}"
        retrieve_payment.side_effect = lambda pi: PaymentStatus(payment_intent_id=pi, status="succeeded", captured=True)
        create_refund.return_value = {"id": "re_123"}
        create_checkout_session.return_value = {"id": "cs_test_123", "url": "https://checkout.stripe.test/cs_test_123"}
        list_sessions.return_value = iter([])
        yield SimpleNamespace(
            retrieve_balance=retrieve_balance,
            create_transfer=create_transfer,
            retrieve_payment=retrieve_payment,
            create_refund=create_refund,
            create_checkout_session=create_checkout_session,
            list_recent_checkout_sessions=list_sessions,
        )

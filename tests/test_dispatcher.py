from decimal import Decimal

import pytest

from accounts.models import User
from commissions.exceptions import ExternalProcessorError
from commissions.models import CommissionRequest
from payments import dispatcher, ledger
from payments.models import ManualReviewItem, MoneyOwed
from payments.processor import BalanceSnapshot

Status = CommissionRequest.Status

pytestmark = pytest.mark.django_db


def owe(payee, amount, source=MoneyOwed.Source.MANUAL, **fields):
    return MoneyOwed.objects.create(payee=payee, amount=Decimal(amount), source=source, reference=f"owed {amount}", **fields)


def balance(available_pence):
    return BalanceSnapshot(available=available_pence, pending=0, currency="gbp")


@pytest.fixture
def second_artist(db):
    return User.objects.create_user(
        email="second@example.com", password="pass1234", role="artist",
        stripe_account_id="acct_second", stripe_payouts_enabled=True, stripe_account_status="active",
    )


def test_pays_earliest_first_within_liquidity(artist, stripe_gateway):
    stripe_gateway.retrieve_balance.return_value = balance(2000)
    first = owe(artist, "10.00")
    too_big = owe(artist, "15.00")
    last = owe(artist, "5.00")

    report = dispatcher.dispatch_payouts()

    assert report.succeeded == 2
    assert report.deferred == 1
    assert report.amount_transferred == Decimal("15.00")
    assert report.remaining_liquidity == 500
    assert list(MoneyOwed.objects.values_list("pk", flat=True)) == [too_big.pk]

    calls = stripe_gateway.create_transfer.call_args_list
    assert [c.kwargs["amount"] for c in calls] == [1000, 500]
    assert [c.kwargs["idempotency_key"] for c in calls] == [f"money-owed-{first.pk}", f"money-owed-{last.pk}"]
    assert all(c.kwargs["destination"] == "acct_artist" for c in calls)


def test_total_transferred_never_exceeds_snapshot(artist, second_artist, stripe_gateway):
    stripe_gateway.retrieve_balance.return_value = balance(3000)
    for amount in ("12.00", "9.99", "8.01", "4.00"):
        owe(artist, amount)
        owe(second_artist, amount)

    report = dispatcher.dispatch_payouts()

    sent = sum(c.kwargs["amount"] for c in stripe_gateway.create_transfer.call_args_list)
    assert sent <= 3000
    assert report.amount_transferred * 100 == sent
    assert report.processed == 8


def test_zero_balance_aborts_run(artist, stripe_gateway):
    stripe_gateway.retrieve_balance.return_value = balance(0)
    owe(artist, "10.00")

    report = dispatcher.dispatch_payouts()

    assert report.aborted
    assert report.processed == 0
    stripe_gateway.create_transfer.assert_not_called()
    assert MoneyOwed.objects.count() == 1


def test_balance_error_aborts_run(artist, stripe_gateway):
    stripe_gateway.retrieve_balance.side_effect = ExternalProcessorError("timeout")
    owe(artist, "10.00")

    report = dispatcher.dispatch_payouts()

    assert report.aborted
    stripe_gateway.create_transfer.assert_not_called()


def test_failed_transfer_keeps_entry_and_run_continues(artist, second_artist, stripe_gateway):
    def transfer(**kwargs):
        if kwargs["destination"] == "acct_artist":
            raise ExternalProcessorError("account restricted")
        return "tr_ok"

    stripe_gateway.create_transfer.side_effect = transfer
    failing = owe(artist, "10.00")
    owe(second_artist, "10.00")

    report = dispatcher.dispatch_payouts()

    assert report.failed == 1
    assert report.succeeded == 1
    assert list(MoneyOwed.objects.values_list("pk", flat=True)) == [failing.pk]
    # Failed transfers don't consume liquidity
    assert report.remaining_liquidity == 100000 - 1000


def test_ineligible_payees_are_skipped(artist, stripe_gateway):
    artist.stripe_payouts_enabled = False
    artist.save()
    owe(artist, "10.00")

    report = dispatcher.dispatch_payouts()

    assert report.payees == 0
    stripe_gateway.create_transfer.assert_not_called()
    assert MoneyOwed.objects.count() == 1


def test_commission_payout_completes_commission(make_commission, artist, stripe_gateway):
    commission = make_commission(status=Status.CRON_PENDING, stripe_payment_intent_id="pi_1")
    entry = owe(artist, "10.00", source=MoneyOwed.Source.COMMISSION, commission=commission, payment_intent_id="pi_1")

    report = dispatcher.dispatch_payouts()

    commission.refresh_from_db()
    assert report.succeeded == 1
    assert commission.status == Status.COMPLETED
    assert commission.stripe_transfer_id == f"tr_money-owed-{entry.pk}"
    assert commission.completed_at is not None


def test_already_advanced_commission_still_clears_entry(make_commission, artist, stripe_gateway):
    commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")
    owe(artist, "10.00", source=MoneyOwed.Source.COMMISSION, commission=commission)

    report = dispatcher.dispatch_payouts()

    assert report.succeeded == 1
    assert not MoneyOwed.objects.exists()
    assert CommissionRequest.objects.get(pk=commission.pk).status == Status.DELIVERED


def test_missing_commission_still_clears_entry(artist, stripe_gateway):
    owe(artist, "10.00", source=MoneyOwed.Source.COMMISSION, commission=None)

    report = dispatcher.dispatch_payouts()

    assert report.succeeded == 1
    assert not MoneyOwed.objects.exists()


def test_cancelled_commission_is_not_paid(make_commission, artist, stripe_gateway):
    commission = make_commission(status=Status.CANCELLED, stripe_payment_intent_id="pi_1")
    entry = owe(artist, "10.00", source=MoneyOwed.Source.COMMISSION, commission=commission)

    report = dispatcher.dispatch_payouts()

    assert report.blocked == 1
    stripe_gateway.create_transfer.assert_not_called()
    assert MoneyOwed.objects.filter(pk=entry.pk).exists()
    assert ManualReviewItem.objects.get(kind="payout_blocked").reference == f"money_owed:{entry.pk}"


def test_entry_removed_during_run_is_not_paid(artist, stripe_gateway):
    first = owe(artist, "10.00", payment_intent_id="pi_1")
    owe(artist, "10.00", payment_intent_id="pi_1")

    def transfer(**kwargs):
        # A cleanup landing mid-run collapses the twin entry
        ledger.cleanup_money_owed()
        return f"tr_{kwargs['idempotency_key']}"

    stripe_gateway.create_transfer.side_effect = transfer

    report = dispatcher.dispatch_payouts()

    assert report.transfers == [f"tr_money-owed-{first.pk}"]
    assert report.succeeded == 1
    assert report.skipped == 1
    assert report.amount_transferred == Decimal("10.00")
    assert not MoneyOwed.objects.exists()

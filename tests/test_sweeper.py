from datetime import timedelta
from unittest import mock

import pytest
from django.db import DatabaseError
from django.utils import timezone

from activity.models import ActivityLog
from commissions.exceptions import ExternalProcessorError
from commissions.models import CommissionRequest
from payments import sweeper
from payments.models import ManualReviewItem
from payments.processor import PaymentStatus

Status = CommissionRequest.Status


@pytest.mark.parametrize("value, expected", [
    ("1 week", timedelta(days=7)),
    ("2 weeks", timedelta(days=14)),
    ("3 days", timedelta(days=3)),
    ("48 hours", timedelta(hours=48)),
    ("90 minutes", timedelta(minutes=90)),
    ("1 month", timedelta(days=30)),
    ("10", timedelta(days=10)),
    ("Within 2 Weeks", timedelta(days=14)),
    ("", timedelta(days=7)),
    (None, timedelta(days=7)),
    ("whenever I can", timedelta(days=7)),
    ("0 days", timedelta(days=7)),
])
def test_parse_delivery_time(value, expected):
    assert sweeper.parse_delivery_time(value) == expected


@pytest.fixture
def expired(make_commission):
    """A commission created ten days ago for an artist with a one week SLA."""
    def _make(status=Status.IN_PROGRESS, **fields):
        commission = make_commission(status=status, **fields)
        CommissionRequest.objects.filter(pk=commission.pk).update(created_at=timezone.now() - timedelta(days=10))
        commission.refresh_from_db()
        return commission
    return _make


@pytest.mark.django_db
class TestSweep:
    def test_unpaid_commission_is_cancelled_without_refund(self, expired, stripe_gateway):
        commission = expired(status=Status.REQUESTED)

        report = sweeper.sweep_expired_commissions()

        commission.refresh_from_db()
        assert commission.status == Status.CANCELLED
        assert "no payment to refund" in commission.cancellation_reason
        assert [o.kind for o in report.outcomes] == [sweeper.CANCELLED_UNPAID]
        stripe_gateway.retrieve_payment.assert_not_called()
        stripe_gateway.create_refund.assert_not_called()

    def test_captured_payment_is_refunded_before_cancelling(self, expired, stripe_gateway):
        commission = expired(stripe_payment_intent_id="pi_paid")
        seen_status = []

        def refund(pi, **kwargs):
            seen_status.append(CommissionRequest.objects.get(pk=commission.pk).status)
            return {"id": "re_exp"}

        stripe_gateway.create_refund.side_effect = refund

        report = sweeper.sweep_expired_commissions()

        commission.refresh_from_db()
        assert seen_status == [Status.IN_PROGRESS]
        assert commission.status == Status.CANCELLED
        assert commission.stripe_refund_id == "re_exp"
        assert commission.cancellation_reason == sweeper.REASON_REFUNDED
        assert report.outcomes[0].kind == sweeper.REFUNDED
        assert stripe_gateway.create_refund.call_args.kwargs["idempotency_key"] == f"expiry-refund-{commission.pk}"

    def test_uncaptured_payment_is_cancelled_without_refund(self, expired, stripe_gateway):
        stripe_gateway.retrieve_payment.side_effect = lambda pi: PaymentStatus(pi, "requires_payment_method", False)
        commission = expired(stripe_payment_intent_id="pi_auth")

        report = sweeper.sweep_expired_commissions()

        commission.refresh_from_db()
        assert commission.status == Status.CANCELLED
        assert commission.cancellation_reason == sweeper.REASON_UNCAPTURED
        assert report.outcomes[0].kind == sweeper.CANCELLED_UNCAPTURED
        stripe_gateway.create_refund.assert_not_called()

    def test_failed_refund_leaves_commission_for_next_run(self, expired, stripe_gateway):
        stripe_gateway.create_refund.side_effect = ExternalProcessorError("card network down")
        commission = expired(stripe_payment_intent_id="pi_paid")

        report = sweeper.sweep_expired_commissions()

        commission.refresh_from_db()
        assert commission.status == Status.IN_PROGRESS
        assert report.outcomes[0].kind == sweeper.REFUND_FAILED
        assert ManualReviewItem.objects.filter(kind="refund_failed", reference=f"commission:{commission.pk}").exists()

    def test_one_failure_does_not_halt_the_sweep(self, expired, stripe_gateway):
        broken = expired(stripe_payment_intent_id="pi_broken")
        unpaid = expired(status=Status.REQUESTED)

        def retrieve(pi):
            if pi == "pi_broken":
                raise ExternalProcessorError("timeout")
            return PaymentStatus(pi, "succeeded", True)

        stripe_gateway.retrieve_payment.side_effect = retrieve

        report = sweeper.sweep_expired_commissions()

        kinds = {o.commission_id: o.kind for o in report.outcomes}
        assert kinds == {broken.pk: sweeper.ERROR, unpaid.pk: sweeper.CANCELLED_UNPAID}
        assert CommissionRequest.objects.get(pk=broken.pk).status == Status.IN_PROGRESS

    def test_commission_inside_its_window_is_left_alone(self, make_commission, stripe_gateway):
        commission = make_commission(status=Status.IN_PROGRESS, stripe_payment_intent_id="pi_1")

        report = sweeper.sweep_expired_commissions()

        assert report.checked == 1
        assert report.expired == 0
        assert CommissionRequest.objects.get(pk=commission.pk).status == Status.IN_PROGRESS

    def test_longer_sla_is_respected(self, expired, artist, stripe_gateway):
        artist.commission_delivery_time = "2 weeks"
        artist.save()
        commission = expired(status=Status.REQUESTED)

        report = sweeper.sweep_expired_commissions()

        assert report.expired == 0
        assert CommissionRequest.objects.get(pk=commission.pk).status == Status.REQUESTED

    def test_delivered_commissions_are_not_swept(self, expired, stripe_gateway):
        commission = expired(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")

        report = sweeper.sweep_expired_commissions()

        assert report.checked == 0
        assert CommissionRequest.objects.get(pk=commission.pk).status == Status.DELIVERED

    def test_activity_log_failure_does_not_undo_the_outcome(self, expired, stripe_gateway):
        commission = expired(stripe_payment_intent_id="pi_paid")

        with mock.patch.object(ActivityLog.objects, "create", side_effect=DatabaseError("audit table locked")):
            report = sweeper.sweep_expired_commissions()

        assert report.outcomes[0].kind == sweeper.REFUNDED
        assert CommissionRequest.objects.get(pk=commission.pk).status == Status.CANCELLED

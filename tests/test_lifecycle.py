from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.core import mail
from django.db import DatabaseError
from django.utils import timezone

from activity.models import ActivityLog, Notification
from commissions import services
from commissions.exceptions import (
    AlreadyQueued,
    IllegalTransition,
    IneligiblePayee,
    InvalidCommission,
    NotAuthorized,
    RevisionLimitExceeded,
)
from commissions.models import CommissionRequest
from payments.models import MoneyOwed
from payments.processor import PaymentStatus

Status = CommissionRequest.Status

pytestmark = pytest.mark.django_db


class TestCreate:
    def test_customer_price_includes_tier_margin(self, customer, artist):
        commission = services.create_commission(customer, artist, "A portrait", price="10.00")

        assert commission.artist_price == Decimal("10.00")
        assert commission.customer_price == Decimal("11.50")
        assert commission.status == Status.PENDING_ARTIST
        assert commission.max_revisions == 2

    def test_tier_change_does_not_reprice_existing_commissions(self, customer, artist):
        existing = services.create_commission(customer, artist, "A portrait", price="10.00")

        artist.subscription_tier = "enterprise"
        artist.save()
        fresh = services.create_commission(customer, artist, "Another portrait", price="10.00")

        existing.refresh_from_db()
        assert existing.customer_price == Decimal("11.50")
        assert fresh.customer_price == Decimal("10.40")

    def test_price_falls_back_to_artist_default(self, customer, artist):
        artist.commission_price = Decimal("40.00")
        artist.save()

        commission = services.create_commission(customer, artist, "A mural sketch")

        assert commission.artist_price == Decimal("40.00")
        assert commission.customer_price == Decimal("46.00")

    def test_cannot_commission_yourself(self, artist):
        with pytest.raises(InvalidCommission):
            services.create_commission(artist, artist, "Self portrait", price="10.00")

    def test_artist_is_notified(self, customer, artist):
        services.create_commission(customer, artist, "A portrait", price="10.00")

        assert Notification.objects.filter(user=artist, event_type="commission.requested").count() == 1


class TestArtistResponse:
    def test_accept_moves_to_requested(self, make_commission, artist, customer):
        commission = make_commission()

        services.respond_to_request(commission, artist, "accept")

        assert commission.status == Status.REQUESTED
        assert Notification.objects.filter(user=customer, event_type="commission.accepted").exists()

    def test_accept_requires_payout_ready_account(self, make_commission, artist):
        artist.stripe_account_status = "restricted"
        artist.save()
        commission = make_commission()

        with pytest.raises(IneligiblePayee):
            services.respond_to_request(commission, artist, "accept")
        assert CommissionRequest.objects.get(pk=commission.pk).status == Status.PENDING_ARTIST

    def test_reject_is_terminal(self, make_commission, artist):
        commission = make_commission()

        services.respond_to_request(commission, artist, "reject")

        assert commission.status == Status.REJECTED_BY_ARTIST
        with pytest.raises(IllegalTransition):
            services.respond_to_request(commission, artist, "accept")

    def test_only_named_artist_can_respond(self, make_commission, customer):
        commission = make_commission()

        with pytest.raises(NotAuthorized):
            services.respond_to_request(commission, customer, "accept")


class TestCheckout:
    def test_creates_session_and_stores_id(self, make_commission, customer, stripe_gateway):
        commission = make_commission(status=Status.REQUESTED)

        session = services.create_checkout(commission, customer)

        assert session["id"] == "cs_test_123"
        assert commission.stripe_session_id == "cs_test_123"
        kwargs = stripe_gateway.create_checkout_session.call_args.kwargs
        assert kwargs["amount"] == Decimal("11.50")
        assert kwargs["metadata"]["commission_id"] == commission.pk

    def test_only_from_requested(self, make_commission, customer, stripe_gateway):
        commission = make_commission(status=Status.PENDING_ARTIST)

        with pytest.raises(IllegalTransition):
            services.create_checkout(commission, customer)
        stripe_gateway.create_checkout_session.assert_not_called()


class TestDeliveryAndRevisions:
    def test_deliver_emails_customer(self, make_commission, artist, customer):
        commission = make_commission(status=Status.IN_PROGRESS, stripe_payment_intent_id="pi_1")

        services.deliver(commission, artist, finished_asset_url="https://cdn.test/final.png")

        assert commission.status == Status.DELIVERED
        assert commission.finished_asset_url == "https://cdn.test/final.png"
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == [customer.email]

    def test_third_revision_is_refused(self, make_commission, artist, customer):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1", max_revisions=2)

        services.request_revision(commission, customer)
        assert commission.revision_count == 1
        services.deliver(commission, artist, finished_asset_url="https://cdn.test/v2.png")

        services.request_revision(commission, customer)
        assert commission.revision_count == 2
        services.deliver(commission, artist, finished_asset_url="https://cdn.test/v3.png")

        with pytest.raises(RevisionLimitExceeded):
            services.request_revision(commission, customer)

        stored = CommissionRequest.objects.get(pk=commission.pk)
        assert stored.revision_count == 2
        assert stored.status == Status.DELIVERED

    def test_stale_revision_request_cannot_overwrite_the_count(self, make_commission, artist, customer):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1", max_revisions=3)
        stale = CommissionRequest.objects.get(pk=commission.pk)

        services.request_revision(commission, customer)
        services.deliver(commission, artist, finished_asset_url="https://cdn.test/v2.png")

        with pytest.raises(IllegalTransition):
            services.request_revision(stale, customer)

        stored = CommissionRequest.objects.get(pk=commission.pk)
        assert stored.revision_count == 1
        assert stored.status == Status.DELIVERED

    def test_deny_is_a_revision_request(self, make_commission, customer):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")

        services.respond_to_delivery(commission, customer, "deny")

        assert commission.status == Status.IN_PROGRESS
        assert commission.revision_count == 1


class TestApproval:
    def test_approve_queues_artist_payout(self, make_commission, customer, artist):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")

        services.approve(commission, customer)

        assert commission.status == Status.CRON_PENDING
        entry = MoneyOwed.objects.get(commission=commission)
        assert entry.payee == artist
        assert entry.amount == Decimal("10.00")
        assert entry.source == MoneyOwed.Source.COMMISSION
        assert entry.metadata["payment_intent_id"] == "pi_1"
        assert ActivityLog.objects.filter(commission=commission, event="payout_queued").count() == 1

    def test_approve_twice_queues_once(self, make_commission, customer):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")
        services.approve(commission, customer)

        with pytest.raises(IllegalTransition):
            services.approve(commission, customer)
        assert MoneyOwed.objects.filter(commission=commission).count() == 1

    def test_existing_entry_blocks_enqueue_and_rolls_back(self, make_commission, customer, artist):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")
        MoneyOwed.objects.create(
            payee=artist, amount=Decimal("10.00"), source=MoneyOwed.Source.COMMISSION,
            commission=commission, payment_intent_id="pi_1",
        )

        with pytest.raises(AlreadyQueued):
            services.approve(commission, customer)
        assert CommissionRequest.objects.get(pk=commission.pk).status == Status.DELIVERED

    def test_activity_log_failure_does_not_block_approval(self, make_commission, customer):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")

        with mock.patch.object(ActivityLog.objects, "create", side_effect=DatabaseError("audit table locked")):
            services.approve(commission, customer)

        assert commission.status == Status.CRON_PENDING
        assert MoneyOwed.objects.filter(commission=commission).count() == 1
        assert not ActivityLog.objects.exists()

    def test_artist_cannot_approve_own_work(self, make_commission, artist):
        commission = make_commission(status=Status.DELIVERED)

        with pytest.raises(NotAuthorized):
            services.approve(commission, artist)

    def test_admin_can_queue_delivered_commission(self, make_commission, admin_user):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")

        services.queue_payout(commission, admin_user)

        assert commission.status == Status.CRON_PENDING
        assert MoneyOwed.objects.filter(commission=commission).count() == 1

    def test_customer_cannot_queue_payout(self, make_commission, customer):
        commission = make_commission(status=Status.DELIVERED)

        with pytest.raises(NotAuthorized):
            services.queue_payout(commission, customer)


class TestCancel:
    def test_pre_payment_cancel_needs_no_refund(self, make_commission, customer, stripe_gateway):
        commission = make_commission(status=Status.REQUESTED)

        services.cancel(commission, customer)

        assert commission.status == Status.CANCELLED
        stripe_gateway.create_refund.assert_not_called()

    def test_delivered_cancel_requires_reason(self, make_commission, customer, stripe_gateway):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")

        with pytest.raises(InvalidCommission):
            services.cancel(commission, customer, "")
        assert CommissionRequest.objects.get(pk=commission.pk).status == Status.DELIVERED

    def test_delivered_cancel_refunds_captured_payment(self, make_commission, customer, stripe_gateway):
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")

        services.cancel(commission, customer, "Not what I asked for")

        assert commission.status == Status.CANCELLED
        assert commission.stripe_refund_id == "re_123"
        assert commission.cancellation_reason == "Not what I asked for"
        assert stripe_gateway.create_refund.call_args.kwargs["idempotency_key"] == f"cancel-refund-{commission.pk}"
        assert mail.outbox[-1].to == [customer.email]

    def test_uncaptured_payment_is_not_refunded(self, make_commission, customer, stripe_gateway):
        stripe_gateway.retrieve_payment.side_effect = lambda pi: PaymentStatus(pi, "requires_capture", False)
        commission = make_commission(status=Status.DELIVERED, stripe_payment_intent_id="pi_1")

        services.cancel(commission, customer, "Changed my mind")

        assert commission.status == Status.CANCELLED
        stripe_gateway.create_refund.assert_not_called()

    def test_in_progress_cannot_be_cancelled_by_customer(self, make_commission, customer):
        commission = make_commission(status=Status.IN_PROGRESS, stripe_payment_intent_id="pi_1")

        with pytest.raises(IllegalTransition):
            services.cancel(commission, customer, "Too slow")


class TestDelete:
    def test_same_day_unpaid_request_can_be_deleted(self, make_commission, customer):
        commission = make_commission()

        services.delete_commission(commission, customer)

        assert not CommissionRequest.objects.filter(pk=commission.pk).exists()

    def test_older_request_is_kept(self, make_commission, customer):
        commission = make_commission()
        CommissionRequest.objects.filter(pk=commission.pk).update(created_at=timezone.now() - timedelta(days=2))
        commission.refresh_from_db()

        with pytest.raises(IllegalTransition):
            services.delete_commission(commission, customer)

    def test_paid_commission_cannot_be_deleted(self, make_commission, customer):
        commission = make_commission(status=Status.IN_PROGRESS, stripe_payment_intent_id="pi_1")

        with pytest.raises(IllegalTransition):
            services.delete_commission(commission, customer)

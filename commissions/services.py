"""
Commission lifecycle controller.

Actor-initiated operations on a commission. Authorization and legality are
checked here; the edge table itself lives in state_machine. Notifications,
activity logs and emails are side effects that never block a transition.
"""

import logging
from decimal import InvalidOperation

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from payments import processor
from payments.ledger import enqueue_commission_payout
from utils.activity import log_activity
from utils.email_service import send_commission_cancelled_email, send_commission_preview_email
from utils.notify import notify_users

from . import state_machine
from .exceptions import (
    IllegalTransition,
    IneligiblePayee,
    InvalidCommission,
    NotAuthorized,
    RevisionLimitExceeded,
)
from .models import CommissionRequest
from .pricing import customer_price_for, to_money

logger = logging.getLogger(__name__)

Status = CommissionRequest.Status


# ---------- helpers ----------

def _require_customer_or_admin(commission, user):
    if commission.customer_id != user.id and not user.is_admin:
        raise NotAuthorized("Only the customer or an admin can do this")


def _require_artist(commission, user):
    if commission.artist_id != user.id:
        raise NotAuthorized("Only the artist on this commission can do this")


def _require_status(commission, *allowed):
    if commission.status not in allowed:
        raise IllegalTransition(
            f"Commission is '{commission.status}', expected one of {', '.join(allowed)}",
            commission_id=commission.pk, status=commission.status,
        )


def _notify(recipient_id, commission, *, event, title, message, actor=None, meta=None):
    notify_users(
        [recipient_id],
        {
            "event": event,
            "title": title,
            "message": message,
            "commission_id": commission.pk,
            "actor_id": actor.id if actor else None,
            "meta": {"status": commission.status, **(meta or {})},
        },
    )


# ---------- reads ----------

def get_commission(commission_id, user):
    try:
        commission = CommissionRequest.objects.select_related("customer", "artist").get(pk=commission_id)
    except CommissionRequest.DoesNotExist:
        return None
    if not commission.is_party(user) and not user.is_admin:
        raise NotAuthorized("You are not a party to this commission")
    return commission


def list_for_customer(customer):
    return CommissionRequest.objects.filter(customer=customer).select_related("artist")


def list_for_artist(artist):
    return CommissionRequest.objects.filter(artist=artist).select_related("customer")


# ---------- creation ----------

def create_commission(customer, artist, requirements, price=None, guide_asset_url="", max_revisions=None):
    if artist.role not in ("artist", "admin"):
        raise InvalidCommission("Commissions can only be requested from artists")
    if customer.id == artist.id:
        raise InvalidCommission("You can't commission yourself")
    if not (requirements or "").strip():
        raise InvalidCommission("Requirements are required")

    artist_price = price
    try:
        artist_price = to_money(artist_price) if artist_price not in (None, "") else None
    except (InvalidOperation, TypeError, ValueError):
        artist_price = None
    if artist_price is None or artist_price <= 0:
        artist_price = to_money(artist.commission_price or 0)
    if artist_price <= 0:
        raise InvalidCommission("No valid commission price set for this artist")

    if max_revisions is None:
        max_revisions = settings.COMMISSION_MAX_REVISIONS

    commission = CommissionRequest.objects.create(
        customer=customer,
        artist=artist,
        requirements=requirements.strip(),
        artist_price=artist_price,
        customer_price=customer_price_for(artist_price, artist),
        guide_asset_url=guide_asset_url or "",
        max_revisions=max_revisions,
        status=Status.PENDING_ARTIST,
    )

    log_activity(
        event="commission_created",
        actor=customer,
        commission=commission,
        subject_user=artist,
        title="Commission requested",
        body=f"{customer.email} requested a commission from {artist.email}",
        meta={"artist_price": str(commission.artist_price), "customer_price": str(commission.customer_price)},
    )
    _notify(
        artist.id, commission,
        event="commission.requested",
        title="New commission request",
        message=f"{customer.full_name or customer.email} sent you a commission request",
        actor=customer,
    )
    return commission


# ---------- artist response ----------

def respond_to_request(commission, artist, action):
    _require_artist(commission, artist)
    _require_status(commission, Status.PENDING_ARTIST)

    if action == "accept":
        if not artist.is_payout_eligible():
            raise IneligiblePayee(
                f"Set up payouts before accepting commissions: {artist.payout_ineligibility_reason()}",
                artist_id=artist.id,
            )
        state_machine.transition(commission, Status.REQUESTED, expected=Status.PENDING_ARTIST)
        log_activity(event="artist_accepted", actor=artist, commission=commission,
                     title="Commission accepted", body="Awaiting customer payment")
        _notify(commission.customer_id, commission,
                event="commission.accepted",
                title="Commission accepted",
                message="Your commission was accepted. Complete payment to get started.",
                actor=artist)
    elif action == "reject":
        state_machine.transition(commission, Status.REJECTED_BY_ARTIST, expected=Status.PENDING_ARTIST)
        log_activity(event="artist_rejected", actor=artist, commission=commission,
                     title="Commission rejected")
        _notify(commission.customer_id, commission,
                event="commission.rejected",
                title="Commission declined",
                message="The artist declined your commission request.",
                actor=artist)
    else:
        raise InvalidCommission(f"Invalid action '{action}', expected 'accept' or 'reject'")
    return commission


# ---------- payment ----------

def create_checkout(commission, customer):
    """Open a Stripe Checkout Session for an accepted commission."""
    if commission.customer_id != customer.id:
        raise NotAuthorized("Only the customer can pay for this commission")
    _require_status(commission, Status.REQUESTED)
    if commission.has_payment:
        raise IllegalTransition("Commission is already paid", commission_id=commission.pk)

    artist = commission.artist
    if not artist.is_payout_eligible():
        raise IneligiblePayee(
            f"Commission can't be paid at this time: {artist.payout_ineligibility_reason()}",
            artist_id=artist.id,
        )

    session = processor.create_checkout_session(
        amount=commission.customer_price,
        name="Custom Commission",
        description=commission.requirements,
        metadata={
            "commission_id": commission.pk,
            "customer_id": commission.customer_id,
            "artist_id": commission.artist_id,
        },
        success_url=f"{settings.FRONTEND_URL}/commission/success/{commission.pk}",
        cancel_url=f"{settings.FRONTEND_URL}/commission/cancel/{commission.pk}",
    )

    CommissionRequest.objects.filter(pk=commission.pk).update(
        stripe_session_id=session["id"], updated_at=timezone.now()
    )
    commission.refresh_from_db()
    log_activity(event="checkout_created", actor=customer, commission=commission,
                 title="Checkout started", meta={"session_id": session["id"]})
    return session


# ---------- delivery & review ----------

def deliver(commission, artist, finished_asset_url, preview_asset_url=""):
    _require_artist(commission, artist)
    if not finished_asset_url:
        raise InvalidCommission("finished_asset_url is required")

    state_machine.transition(
        commission, Status.DELIVERED,
        expected=Status.IN_PROGRESS,
        finished_asset_url=finished_asset_url,
        preview_asset_url=preview_asset_url or "",
    )
    log_activity(event="delivered", actor=artist, commission=commission,
                 title="Commission delivered",
                 meta={"revision_count": commission.revision_count})
    _notify(commission.customer_id, commission,
            event="commission.delivered",
            title="Your commission is ready",
            message="Preview your commission and approve it or ask for a revision.",
            actor=artist)
    send_commission_preview_email(commission)
    return commission


def approve(commission, actor):
    """Customer (or admin) accepts the delivery; the artist payout is queued."""
    _require_customer_or_admin(commission, actor)

    with transaction.atomic():
        locked = CommissionRequest.objects.select_for_update().get(pk=commission.pk)
        state_machine.transition(locked, Status.APPROVED, expected=Status.DELIVERED)
        entry = enqueue_commission_payout(locked)
        state_machine.transition(locked, Status.CRON_PENDING, expected=Status.APPROVED)

    commission.refresh_from_db()
    log_activity(event="approved", actor=actor, commission=commission,
                 title="Commission approved")
    log_activity(event="payout_queued", actor=actor, commission=commission,
                 subject_user=commission.artist,
                 title="Artist payout queued",
                 meta={"money_owed_id": entry.pk, "amount": str(entry.amount)})
    _notify(commission.artist_id, commission,
            event="commission.approved",
            title="Commission approved",
            message="Your delivery was approved. Your payout has been queued.",
            actor=actor)
    return commission


def queue_payout(commission, admin):
    """Administrative push of an approved or delivered commission into the payout queue."""
    if not admin.is_admin:
        raise NotAuthorized("Only admins can queue payouts")

    with transaction.atomic():
        locked = CommissionRequest.objects.select_for_update().get(pk=commission.pk)
        _require_status(locked, Status.APPROVED, Status.DELIVERED)
        entry = enqueue_commission_payout(locked)
        state_machine.transition(locked, Status.CRON_PENDING, expected=locked.status)

    commission.refresh_from_db()
    log_activity(event="payout_queued", actor=admin, commission=commission,
                 subject_user=commission.artist,
                 title="Artist payout queued by admin",
                 meta={"money_owed_id": entry.pk, "amount": str(entry.amount)})
    return commission


def request_revision(commission, actor):
    _require_customer_or_admin(commission, actor)
    _require_status(commission, Status.DELIVERED)

    if commission.revision_count >= commission.max_revisions:
        raise RevisionLimitExceeded(
            f"All {commission.max_revisions} revisions have been used",
            commission_id=commission.pk,
        )

    state_machine.transition(
        commission, Status.IN_PROGRESS,
        expected=Status.DELIVERED,
        where={"revision_count": commission.revision_count},
        revision_count=F("revision_count") + 1,
    )
    log_activity(event="revision_requested", actor=actor, commission=commission,
                 title="Revision requested",
                 meta={"revision_count": commission.revision_count})
    _notify(commission.artist_id, commission,
            event="commission.revision_requested",
            title="Revision requested",
            message=f"Revision {commission.revision_count} of {commission.max_revisions} requested.",
            actor=actor)
    return commission


def respond_to_delivery(commission, actor, action):
    if action == "approve":
        return approve(commission, actor)
    if action == "deny":
        return request_revision(commission, actor)
    raise InvalidCommission(f"Invalid action '{action}', expected 'approve' or 'deny'")


# ---------- cancellation ----------

def cancel(commission, actor, reason=""):
    """
    Pre-payment commissions cancel outright. A delivered commission can be
    cancelled with a reason, and the customer is refunded first.
    """
    _require_customer_or_admin(commission, actor)
    reason = (reason or "").strip()
    refunded = False

    if commission.status in state_machine.PRE_PAYMENT_STATES:
        if commission.has_payment:
            raise IllegalTransition(
                "Payment has already been taken for this commission",
                commission_id=commission.pk, status=commission.status,
            )
        state_machine.transition(
            commission, Status.CANCELLED,
            expected=commission.status,
            cancellation_reason=reason or "Cancelled before payment",
        )
    elif commission.status == Status.DELIVERED:
        if not reason:
            raise InvalidCommission("A reason is required to cancel a delivered commission")
        refund_id = None
        if commission.has_payment:
            payment = processor.retrieve_payment(commission.stripe_payment_intent_id)
            if payment.captured:
                refund = processor.create_refund(
                    commission.stripe_payment_intent_id,
                    metadata={"commission_id": commission.pk},
                    idempotency_key=f"cancel-refund-{commission.pk}",
                )
                refund_id = refund["id"]
                refunded = True
        fields = {"cancellation_reason": reason}
        if refund_id:
            fields["stripe_refund_id"] = refund_id
        state_machine.transition(commission, Status.CANCELLED, expected=Status.DELIVERED, **fields)
    else:
        raise IllegalTransition(
            f"A '{commission.status}' commission can't be cancelled",
            commission_id=commission.pk, status=commission.status,
        )

    log_activity(event="refunded" if refunded else "cancelled", actor=actor, commission=commission,
                 title="Commission cancelled", body=commission.cancellation_reason,
                 meta={"refunded": refunded, "refund_id": commission.stripe_refund_id})
    _notify(commission.artist_id, commission,
            event="commission.cancelled",
            title="Commission cancelled",
            message=f"The commission was cancelled: {commission.cancellation_reason}",
            actor=actor, meta={"refunded": refunded})
    send_commission_cancelled_email(commission, commission.customer, refunded=refunded)
    return commission


def delete_commission(commission, customer):
    """Customers may delete a request they made today, while it is still unpaid."""
    if commission.customer_id != customer.id:
        raise NotAuthorized("Only the customer can delete this commission")
    _require_status(commission, *state_machine.PRE_PAYMENT_STATES)
    if commission.has_payment:
        raise IllegalTransition("Paid commissions can't be deleted", commission_id=commission.pk)
    if timezone.localdate(commission.created_at) != timezone.localdate():
        raise IllegalTransition("Only commissions created today can be deleted", commission_id=commission.pk)

    commission_id = commission.pk
    deleted, _ = CommissionRequest.objects.filter(
        pk=commission_id,
        status__in=state_machine.PRE_PAYMENT_STATES,
        stripe_payment_intent_id__isnull=True,
    ).delete()
    if not deleted:
        raise IllegalTransition("Commission changed before it could be deleted", commission_id=commission_id)

    log_activity(event="deleted", actor=customer, title="Commission deleted",
                 meta={"commission_id": commission_id})
    logger.info(f"Commission {commission_id} deleted by customer {customer.id}")
    return commission_id

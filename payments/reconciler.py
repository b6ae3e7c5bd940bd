"""
Settlement reconciler.

apply_checkout_completed() is the single place a confirmed Stripe checkout
is applied to local state. The webhook view calls it as events arrive and
reconcile_recent_sessions() replays the last hour of sessions every 45
minutes as a safety net. The payment intent id is the idempotency key:
replaying a session any number of times has the effect of applying it once.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounts.models import User
from commissions import state_machine
from commissions.exceptions import (
    DuplicateSettlementEvent,
    ExternalProcessorError,
    IllegalTransition,
    InvalidLedgerEntry,
    UnresolvableEvent,
)
from commissions.models import CommissionRequest
from utils.activity import flag_for_review, log_activity
from utils.notify import notify_users

from . import ledger, processor
from .models import MoneyOwed

logger = logging.getLogger(__name__)

Status = CommissionRequest.Status

APPLIED = "applied"
DUPLICATE = "duplicate"
UNRESOLVED = "unresolved"
IGNORED = "ignored"

PURCHASE_TYPE = "checkout_purchase"


@dataclass
class ReconcileResult:
    outcome: str
    session_id: str = ""
    commission_id: int = None
    detail: str = ""


@dataclass
class ReconcileRunReport:
    sessions_seen: int = 0
    errors: int = 0
    aborted: bool = False
    outcomes: Counter = field(default_factory=Counter)

    def as_dict(self):
        return {
            "sessions_seen": self.sessions_seen,
            "errors": self.errors,
            "aborted": self.aborted,
            **{k: self.outcomes.get(k, 0) for k in (APPLIED, DUPLICATE, UNRESOLVED, IGNORED)},
        }


def _payment_intent_id(session):
    pi = session.get("payment_intent")
    if isinstance(pi, dict):
        pi = pi.get("id")
    return pi or None


def _find_commission(session, metadata):
    commission_id = metadata.get("commission_id")
    if commission_id:
        try:
            return CommissionRequest.objects.select_related("artist").get(pk=int(commission_id))
        except (CommissionRequest.DoesNotExist, TypeError, ValueError):
            raise UnresolvableEvent(f"Session {session.get('id')} references unknown commission {commission_id!r}")
    return (
        CommissionRequest.objects.select_related("artist")
        .filter(stripe_session_id=session.get("id"))
        .first()
    )


def _apply_to_commission(commission, session, payment_intent_id, source):
    session_id = session.get("id")

    if commission.stripe_payment_intent_id == payment_intent_id:
        raise DuplicateSettlementEvent(f"Commission {commission.pk} already has payment {payment_intent_id}")

    if commission.stripe_payment_intent_id:
        flag_for_review(
            kind="payment_mismatch",
            reference=f"commission:{commission.pk}",
            detail=(
                f"Session {session_id} paid with {payment_intent_id} but commission already "
                f"holds {commission.stripe_payment_intent_id}"
            ),
            payload={"session_id": session_id, "payment_intent_id": payment_intent_id, "source": source},
        )
        return ReconcileResult(UNRESOLVED, session_id, commission.pk, "payment intent mismatch")

    if commission.status in (Status.CANCELLED, Status.REJECTED_BY_ARTIST, Status.PENDING_ARTIST):
        flag_for_review(
            kind="payment_mismatch",
            reference=f"commission:{commission.pk}",
            detail=f"Payment {payment_intent_id} received for a '{commission.status}' commission",
            payload={"session_id": session_id, "payment_intent_id": payment_intent_id, "source": source},
        )
        return ReconcileResult(UNRESOLVED, session_id, commission.pk, f"payment for {commission.status} commission")

    if commission.status == Status.REQUESTED:
        try:
            state_machine.transition(
                commission, Status.IN_PROGRESS,
                expected=Status.REQUESTED,
                stripe_payment_intent_id=payment_intent_id,
                stripe_session_id=session_id or commission.stripe_session_id,
            )
        except IllegalTransition:
            # Someone else moved it first; re-read and record the intent without advancing
            commission.refresh_from_db()
            if commission.stripe_payment_intent_id == payment_intent_id:
                raise DuplicateSettlementEvent(f"Commission {commission.pk} already has payment {payment_intent_id}")
            return _record_payment_only(commission, session_id, payment_intent_id)
    else:
        # Already past payment (e.g. delivered): record, never regress
        return _record_payment_only(commission, session_id, payment_intent_id)

    log_activity(
        event="payment_confirmed",
        commission=commission,
        subject_user=commission.customer,
        title="Payment confirmed",
        meta={"payment_intent_id": payment_intent_id, "session_id": session_id, "source": source},
    )
    notify_users(
        [commission.artist_id, commission.customer_id],
        {
            "event": "commission.paid",
            "title": "Payment received",
            "message": f"Payment for commission #{commission.pk} is confirmed. Work can begin.",
            "commission_id": commission.pk,
            "meta": {"status": commission.status},
        },
    )
    return ReconcileResult(APPLIED, session_id, commission.pk, "requested -> in_progress")


def _record_payment_only(commission, session_id, payment_intent_id):
    updated = CommissionRequest.objects.filter(
        pk=commission.pk, stripe_payment_intent_id__isnull=True
    ).update(stripe_payment_intent_id=payment_intent_id, updated_at=timezone.now())
    commission.refresh_from_db()
    if not updated:
        if commission.stripe_payment_intent_id == payment_intent_id:
            raise DuplicateSettlementEvent(f"Commission {commission.pk} already has payment {payment_intent_id}")
        return ReconcileResult(UNRESOLVED, session_id, commission.pk, "payment intent mismatch")
    logger.info(f"[RECONCILE] Recorded payment {payment_intent_id} on commission {commission.pk} ({commission.status})")
    return ReconcileResult(APPLIED, session_id, commission.pk, f"payment recorded, status {commission.status} kept")


def _apply_purchase(session, metadata, payment_intent_id, source):
    session_id = session.get("id")
    seller_id = metadata.get("seller_id")
    try:
        seller = User.objects.get(pk=int(seller_id))
    except (User.DoesNotExist, TypeError, ValueError):
        raise UnresolvableEvent(f"Purchase session {session_id} names unknown seller {seller_id!r}")

    try:
        entry = ledger.enqueue(
            seller,
            amount=metadata.get("seller_amount"),
            source=MoneyOwed.Source.CHECKOUT_PURCHASE,
            reference=metadata.get("reference") or f"Checkout purchase {session_id}",
            metadata={
                "payment_intent_id": payment_intent_id,
                "session_id": session_id,
                "buyer_id": metadata.get("customer_id") or metadata.get("buyer_id"),
                "source": source,
            },
        )
    except InvalidLedgerEntry as e:
        raise UnresolvableEvent(f"Purchase session {session_id}: {e.message}")

    log_activity(
        event="payment_confirmed",
        subject_user=seller,
        title="Purchase payment confirmed",
        meta={"money_owed_id": entry.pk, "amount": str(entry.amount), "payment_intent_id": payment_intent_id},
    )
    return ReconcileResult(APPLIED, session_id, None, f"queued {entry.amount} for seller {seller.pk}")


def apply_checkout_completed(session, source="webhook"):
    """
    Apply one completed checkout session. Never raises for a bad or
    replayed event: duplicates are absorbed and unresolvable sessions are
    logged and flagged for manual review.
    """
    session_id = session.get("id") or ""
    metadata = dict(session.get("metadata") or {})

    if session.get("payment_status") != "paid":
        return ReconcileResult(IGNORED, session_id, detail=f"payment_status={session.get('payment_status')}")

    payment_intent_id = _payment_intent_id(session)
    try:
        with transaction.atomic():
            if metadata.get("purchase_type") == PURCHASE_TYPE:
                if not payment_intent_id:
                    raise UnresolvableEvent(f"Purchase session {session_id} has no payment intent")
                return _apply_purchase(session, metadata, payment_intent_id, source)

            commission = _find_commission(session, metadata)
            if commission is None:
                return ReconcileResult(IGNORED, session_id, detail="not a commission or purchase session")
            if not payment_intent_id:
                raise UnresolvableEvent(f"Session {session_id} for commission {commission.pk} has no payment intent")
            return _apply_to_commission(commission, session, payment_intent_id, source)

    except DuplicateSettlementEvent as e:
        logger.info(f"[RECONCILE] Duplicate ({source}) for session {session_id}: {e}")
        return ReconcileResult(DUPLICATE, session_id, metadata.get("commission_id"), str(e))

    except UnresolvableEvent as e:
        logger.warning(f"[RECONCILE] Unresolvable session {session_id} ({source}): {e}")
        flag_for_review(
            kind="unresolvable_event",
            reference=f"session:{session_id}",
            detail=str(e),
            payload={"session_id": session_id, "payment_intent_id": payment_intent_id,
                     "metadata": metadata, "source": source},
        )
        return ReconcileResult(UNRESOLVED, session_id, metadata.get("commission_id"), str(e))


def reconcile_recent_sessions(minutes=None):
    """Replay recently completed checkout sessions through apply_checkout_completed."""
    minutes = minutes or settings.RECONCILE_LOOKBACK_MINUTES
    report = ReconcileRunReport()
    logger.info(f"[RECONCILE] Starting reconciliation of sessions from the last {minutes} minutes")

    try:
        for session in processor.list_recent_checkout_sessions(minutes):
            report.sessions_seen += 1
            try:
                result = apply_checkout_completed(session, source="pull")
            except Exception:
                report.errors += 1
                logger.exception(f"[RECONCILE] Failed to apply session {session.get('id')}")
                continue
            report.outcomes[result.outcome] += 1
            if result.outcome == APPLIED:
                logger.info(f"[RECONCILE] Applied session {result.session_id}: {result.detail}")
    except ExternalProcessorError as e:
        report.aborted = True
        logger.error(f"[RECONCILE] Listing sessions failed, will retry next run: {e}")

    logger.info(f"[RECONCILE] Completed: {report.as_dict()}")
    return report

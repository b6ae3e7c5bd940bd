"""
Expiry sweeper.

Cancels in-flight commissions whose artist missed their delivery window.
A captured payment is refunded before the commission is cancelled; an
intent that was never captured is cancelled without a refund call. Every
commission gets its own outcome, and one failure never stops the sweep.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from commissions import state_machine
from commissions.exceptions import ExternalProcessorError, IllegalTransition
from commissions.models import CommissionRequest
from utils.activity import flag_for_review, log_activity
from utils.email_service import send_commission_cancelled_email
from utils.notify import notify_users

from . import processor

logger = logging.getLogger(__name__)

Status = CommissionRequest.Status

CANCELLED_UNPAID = "cancelled_unpaid"
REFUNDED = "refunded"
CANCELLED_UNCAPTURED = "cancelled_uncaptured"
REFUND_FAILED = "refund_failed"
SKIPPED = "skipped"
ERROR = "error"

REASON_UNPAID = "Expired: no payment to refund"
REASON_REFUNDED = "Expired: payment refunded"
REASON_UNCAPTURED = "Expired: payment was never captured, nothing to refund"

_DURATION_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(minutes?|mins?|hours?|hrs?|days?|weeks?|wks?|months?)?\b",
    re.IGNORECASE,
)

_UNIT_DAYS = {
    "min": 1 / (24 * 60),
    "hour": 1 / 24,
    "hr": 1 / 24,
    "day": 1,
    "week": 7,
    "wk": 7,
    "month": 30,
}


def parse_delivery_time(value):
    """
    Parse a free-text SLA like "2 weeks", "3 days" or "48 hours" into a
    timedelta. A bare number means days; anything unparsable is the default
    delivery window.
    """
    default = timedelta(days=settings.DEFAULT_DELIVERY_DAYS)
    if not value:
        return default

    match = _DURATION_RE.search(str(value).strip())
    if not match:
        return default

    amount = float(match.group(1))
    unit = (match.group(2) or "day").lower()
    for prefix, days in _UNIT_DAYS.items():
        if unit.startswith(prefix):
            break
    else:
        return default

    if amount <= 0:
        return default
    return timedelta(days=amount * days)


@dataclass
class SweepOutcome:
    commission_id: int
    kind: str
    detail: str = ""
    refund_id: str = None


@dataclass
class SweepReport:
    checked: int = 0
    expired: int = 0
    outcomes: list = field(default_factory=list)

    def count(self, kind):
        return sum(1 for o in self.outcomes if o.kind == kind)

    def as_dict(self):
        return {
            "checked": self.checked,
            "expired": self.expired,
            **{kind: self.count(kind) for kind in
               (CANCELLED_UNPAID, REFUNDED, CANCELLED_UNCAPTURED, REFUND_FAILED, SKIPPED, ERROR)},
            "outcomes": [o.__dict__ for o in self.outcomes],
        }


def _cancel(commission, reason, **fields):
    state_machine.transition(
        commission, Status.CANCELLED,
        expected=commission.status,
        cancellation_reason=reason,
        **fields,
    )


def _announce(commission, outcome):
    refunded = outcome.kind == REFUNDED
    log_activity(
        event="refunded" if refunded else "expired",
        commission=commission,
        subject_user=commission.customer,
        title="Commission expired",
        body=commission.cancellation_reason,
        meta={"outcome": outcome.kind, "refund_id": outcome.refund_id},
    )
    notify_users(
        [commission.customer_id, commission.artist_id],
        {
            "event": "commission.expired",
            "title": "Commission expired",
            "message": f"Commission #{commission.pk} passed its delivery deadline. {commission.cancellation_reason}",
            "commission_id": commission.pk,
            "meta": {"status": commission.status, "refunded": refunded},
        },
    )
    send_commission_cancelled_email(commission, commission.customer, refunded=refunded)


def _sweep_one(commission):
    if not commission.stripe_payment_intent_id:
        try:
            _cancel(commission, REASON_UNPAID)
        except IllegalTransition as e:
            return SweepOutcome(commission.pk, SKIPPED, e.message)
        return SweepOutcome(commission.pk, CANCELLED_UNPAID, REASON_UNPAID)

    try:
        payment = processor.retrieve_payment(commission.stripe_payment_intent_id)
    except ExternalProcessorError as e:
        logger.error(f"[EXPIRY] Could not retrieve payment for commission {commission.pk}, retrying next run: {e.message}")
        return SweepOutcome(commission.pk, ERROR, e.message)

    if not payment.captured:
        try:
            _cancel(commission, REASON_UNCAPTURED)
        except IllegalTransition as e:
            return SweepOutcome(commission.pk, SKIPPED, e.message)
        return SweepOutcome(commission.pk, CANCELLED_UNCAPTURED, f"payment status {payment.status}")

    # Last look before money moves
    commission.refresh_from_db()
    if commission.status not in state_machine.IN_FLIGHT_STATES:
        return SweepOutcome(commission.pk, SKIPPED, f"status changed to '{commission.status}'")

    try:
        refund = processor.create_refund(
            commission.stripe_payment_intent_id,
            metadata={"commission_id": commission.pk, "reason": "expired"},
            idempotency_key=f"expiry-refund-{commission.pk}",
        )
    except ExternalProcessorError as e:
        logger.error(f"[EXPIRY] Refund failed for commission {commission.pk}, leaving it for next run: {e.message}")
        flag_for_review(
            kind="refund_failed",
            reference=f"commission:{commission.pk}",
            detail=e.message,
            payload={"payment_intent_id": commission.stripe_payment_intent_id},
        )
        return SweepOutcome(commission.pk, REFUND_FAILED, e.message)

    refund_id = refund["id"]
    try:
        _cancel(commission, REASON_REFUNDED, stripe_refund_id=refund_id)
    except IllegalTransition as e:
        flag_for_review(
            kind="payment_mismatch",
            reference=f"commission:{commission.pk}",
            detail=f"Refunded with {refund_id} but commission could not be cancelled: {e.message}",
            payload={"refund_id": refund_id, "payment_intent_id": commission.stripe_payment_intent_id},
        )
        return SweepOutcome(commission.pk, SKIPPED, e.message, refund_id)
    return SweepOutcome(commission.pk, REFUNDED, REASON_REFUNDED, refund_id)


def sweep_expired_commissions(now=None):
    now = now or timezone.now()
    report = SweepReport()
    logger.info("[EXPIRY] Checking in-flight commissions for missed deadlines")

    commissions = (
        CommissionRequest.objects.filter(status__in=state_machine.IN_FLIGHT_STATES)
        .select_related("artist", "customer")
        .order_by("created_at", "id")
    )
    for commission in commissions:
        report.checked += 1
        if now <= commission.expiry_date:
            continue
        report.expired += 1

        try:
            outcome = _sweep_one(commission)
        except Exception as e:
            logger.exception(f"[EXPIRY] Unexpected error sweeping commission {commission.pk}")
            outcome = SweepOutcome(commission.pk, ERROR, str(e))
        report.outcomes.append(outcome)
        logger.info(f"[EXPIRY] Commission {commission.pk}: {outcome.kind} ({outcome.detail})")

        if outcome.kind in (CANCELLED_UNPAID, REFUNDED, CANCELLED_UNCAPTURED):
            _announce(commission, outcome)

    logger.info(
        f"[EXPIRY] Completed: {report.checked} checked, {report.expired} expired, "
        f"{report.count(REFUNDED)} refunded, {report.count(REFUND_FAILED)} refund failures"
    )
    return report

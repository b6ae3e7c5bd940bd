"""
Commission lifecycle state machine.

TRANSITIONS is the only place legal edges are defined. Every status write
in the codebase goes through transition(), which performs a conditional
UPDATE keyed on (id, expected status). If another request or background
job moved the commission first, no row matches and IllegalTransition is
raised with nothing written.
"""

import logging

from django.utils import timezone

from .exceptions import IllegalTransition
from .models import CommissionRequest

logger = logging.getLogger(__name__)

Status = CommissionRequest.Status

TRANSITIONS = {
    Status.PENDING_ARTIST: {Status.REJECTED_BY_ARTIST, Status.REQUESTED, Status.CANCELLED},
    Status.REQUESTED: {Status.IN_PROGRESS, Status.CANCELLED},
    Status.IN_PROGRESS: {Status.DELIVERED, Status.CANCELLED},
    Status.DELIVERED: {Status.APPROVED, Status.IN_PROGRESS, Status.CANCELLED, Status.CRON_PENDING},
    Status.APPROVED: {Status.CRON_PENDING},
    Status.CRON_PENDING: {Status.COMPLETED},
    Status.COMPLETED: set(),
    Status.CANCELLED: set(),
    Status.REJECTED_BY_ARTIST: set(),
}

PRE_PAYMENT_STATES = frozenset({Status.PENDING_ARTIST, Status.REQUESTED})
IN_FLIGHT_STATES = frozenset({Status.REQUESTED, Status.IN_PROGRESS})
TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Fields a transition may write alongside the status
TRANSITION_FIELDS = frozenset({
    "revision_count",
    "cancellation_reason",
    "stripe_session_id",
    "stripe_payment_intent_id",
    "stripe_transfer_id",
    "stripe_refund_id",
    "finished_asset_url",
    "preview_asset_url",
    "completed_at",
})


def can_transition(from_status, to_status):
    return Status(to_status) in TRANSITIONS.get(Status(from_status), set())


def transition(commission, to_status, *, expected=None, where=None, **fields):
    """
    Move ``commission`` to ``to_status``.

    ``expected`` is the status the caller observed (defaults to the
    in-memory value). ``where`` adds further column values the row
    must still hold for the write to apply. The instance is refreshed from the database after
    a successful write.
    """
    from_status = Status(expected or commission.status)
    to_status = Status(to_status)

    if not can_transition(from_status, to_status):
        raise IllegalTransition(
            f"Can't move commission from '{from_status.value}' to '{to_status.value}'",
            commission_id=commission.pk, status=from_status.value,
        )

    unknown = set(fields) - TRANSITION_FIELDS
    if unknown:
        raise ValueError(f"Fields not writable through a transition: {sorted(unknown)}")

    if to_status == Status.COMPLETED:
        fields.setdefault("completed_at", timezone.now())

    updated = CommissionRequest.objects.filter(pk=commission.pk, status=from_status, **(where or {})).update(
        status=to_status, updated_at=timezone.now(), **fields
    )
    if not updated:
        current = (
            CommissionRequest.objects.filter(pk=commission.pk)
            .values_list("status", flat=True)
            .first()
        )
        raise IllegalTransition(
            f"Commission changed state before '{to_status.value}' could be applied "
            f"(expected '{from_status.value}', found '{current}')",
            commission_id=commission.pk, status=current,
        )

    commission.refresh_from_db()
    logger.info(f"Commission {commission.pk}: {from_status.value} -> {to_status.value}")
    return commission

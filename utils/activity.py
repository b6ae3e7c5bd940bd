# utils/activity.py
import logging
from typing import Optional, Dict, Any
from django.db import transaction
from activity.models import ActivityLog

logger = logging.getLogger(__name__)


def log_activity(
    *,
    event: str,
    actor=None,
    commission=None,
    title: str = "",
    body: str = "",
    subject_user=None,
    meta: Optional[Dict[str, Any]] = None,
):
    """Write an audit row. A failure is logged and never reaches the caller."""
    try:
        with transaction.atomic():
            return ActivityLog.objects.create(
                event=event,
                actor=actor,
                commission=commission,
                title=title[:200] if title else "",
                body=body or "",
                subject_user=subject_user,
                meta=meta or {},
            )
    except Exception as e:
        logger.error(f"Failed to log activity {event}: {e}")
        return None


def flag_for_review(*, kind: str, reference: str, detail: str = "", payload: Optional[Dict[str, Any]] = None):
    """Record something the automated jobs gave up on, for an operator to resolve."""
    from payments.models import ManualReviewItem

    item, created = ManualReviewItem.objects.get_or_create(
        kind=kind,
        reference=str(reference)[:255],
        resolved=False,
        defaults={"detail": detail, "payload": payload or {}},
    )
    if created:
        logger.warning(f"Flagged for manual review [{kind}] {reference}: {detail}")
    return item

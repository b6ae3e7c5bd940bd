"""
Money owed queue.

One MoneyOwed row per amount owed to a payee, drained earliest first by the
payout dispatcher. Appends lock the payee row so concurrent reconciler and
controller writes for the same payee serialise on the dedup check.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounts.models import User
from commissions.exceptions import AlreadyQueued, DuplicateSettlementEvent, InvalidLedgerEntry
from commissions.pricing import to_money
from utils.activity import flag_for_review

from .models import MoneyOwed

logger = logging.getLogger(__name__)

VALID_SOURCES = frozenset(MoneyOwed.Source.values)


def validate_amount(amount):
    try:
        amount = to_money(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidLedgerEntry(f"Amount {amount!r} is not a number")
    if amount <= 0 or amount > settings.MONEY_OWED_MAX_AMOUNT:
        raise InvalidLedgerEntry(
            f"Amount {amount} outside 0 < amount <= {settings.MONEY_OWED_MAX_AMOUNT}",
            amount=amount,
        )
    return amount


def is_valid_entry(entry):
    if entry.source not in VALID_SOURCES:
        return False
    try:
        validate_amount(entry.amount)
    except InvalidLedgerEntry:
        return False
    return True


def enqueue(payee, *, amount, source, reference="", commission=None, metadata=None):
    """
    Append an entry to the payee's queue.

    Raises DuplicateSettlementEvent when an entry with the same
    (payment_intent_id, amount, source) is already queued for the payee.
    """
    if source not in VALID_SOURCES:
        raise InvalidLedgerEntry(f"Unknown money owed source '{source}'")
    amount = validate_amount(amount)
    metadata = dict(metadata or {})
    payment_intent_id = metadata.get("payment_intent_id") or None

    with transaction.atomic():
        # Serialise appends for this payee
        User.objects.select_for_update().only("id").get(pk=payee.pk)

        if payment_intent_id and MoneyOwed.objects.filter(
            payee=payee, payment_intent_id=payment_intent_id, amount=amount, source=source
        ).exists():
            raise DuplicateSettlementEvent(
                f"Money owed for {payment_intent_id} ({amount}, {source}) already queued for payee {payee.pk}"
            )

        entry = MoneyOwed.objects.create(
            payee=payee,
            amount=amount,
            source=source,
            reference=reference[:255],
            commission=commission,
            payment_intent_id=payment_intent_id,
            metadata=metadata,
        )

    logger.info(f"Queued {amount} owed to payee {payee.pk} ({source}): {reference}")
    return entry


def enqueue_commission_payout(commission):
    """
    Queue the artist's share of a commission. Call inside the transaction
    that holds the commission row lock; raises AlreadyQueued when the
    commission already has a payout entry.
    """
    if MoneyOwed.objects.filter(commission=commission, source=MoneyOwed.Source.COMMISSION).exists():
        raise AlreadyQueued(f"Payout for commission {commission.pk} is already queued", commission_id=commission.pk)
    if commission.stripe_transfer_id:
        raise AlreadyQueued(f"Commission {commission.pk} has already been paid out", commission_id=commission.pk)

    try:
        return enqueue(
            commission.artist,
            amount=commission.artist_price,
            source=MoneyOwed.Source.COMMISSION,
            reference=f"Commission #{commission.pk} payout",
            commission=commission,
            metadata={
                "commission_id": commission.pk,
                "customer_id": commission.customer_id,
                "payment_intent_id": commission.stripe_payment_intent_id,
            },
        )
    except DuplicateSettlementEvent as e:
        raise AlreadyQueued(str(e), commission_id=commission.pk)


def pending_entries(payee):
    return list(MoneyOwed.objects.filter(payee=payee).order_by("created_at", "id"))


def total_owed(payee):
    return sum((e.amount for e in MoneyOwed.objects.filter(payee=payee)), Decimal("0.00"))


@dataclass
class CleanupReport:
    payees_scanned: int = 0
    payees_cleaned: int = 0
    invalid_removed: int = 0
    duplicates_removed: int = 0
    flagged_stale: int = 0
    value_removed: Decimal = Decimal("0.00")
    removed: list = field(default_factory=list)

    @property
    def entries_removed(self):
        return self.invalid_removed + self.duplicates_removed

    def as_dict(self):
        return {
            "payees_scanned": self.payees_scanned,
            "payees_cleaned": self.payees_cleaned,
            "invalid_removed": self.invalid_removed,
            "duplicates_removed": self.duplicates_removed,
            "flagged_stale": self.flagged_stale,
            "value_removed": str(self.value_removed),
        }


def cleanup_money_owed(now=None):
    """
    Remove invalid entries and exact duplicates, flag stale ones.

    Entries older than the retention window are never deleted here; they go
    to manual review instead.
    """
    now = now or timezone.now()
    stale_before = now - timedelta(days=settings.MONEY_OWED_RETENTION_DAYS)
    report = CleanupReport()

    payee_ids = MoneyOwed.objects.values_list("payee_id", flat=True).distinct()
    for payee_id in payee_ids:
        report.payees_scanned += 1
        cleaned_before = report.entries_removed
        with transaction.atomic():
            User.objects.select_for_update().only("id").get(pk=payee_id)
            entries = list(MoneyOwed.objects.filter(payee_id=payee_id).order_by("created_at", "id"))

            seen = set()
            for entry in entries:
                if not is_valid_entry(entry):
                    logger.info(
                        f"[CLEANUP] Removing invalid entry {entry.pk} for payee {payee_id}: "
                        f"amount={entry.amount} source={entry.source}"
                    )
                    report.invalid_removed += 1
                    report.value_removed += entry.amount if entry.amount > 0 else Decimal("0.00")
                    report.removed.append(entry.pk)
                    entry.delete()
                    continue

                if entry.payment_intent_id:
                    key = entry.dedup_key
                    if key in seen:
                        logger.info(f"[CLEANUP] Removing duplicate entry {entry.pk} for payee {payee_id}: {entry.reference}")
                        report.duplicates_removed += 1
                        report.value_removed += entry.amount
                        report.removed.append(entry.pk)
                        entry.delete()
                        continue
                    seen.add(key)

                if entry.created_at <= stale_before:
                    logger.warning(
                        f"[CLEANUP] Old entry {entry.pk} ({entry.created_at:%Y-%m-%d}): "
                        f"{entry.amount} for payee {payee_id} - keeping for manual review"
                    )
                    flag_for_review(
                        kind="stale_money_owed",
                        reference=f"money_owed:{entry.pk}",
                        detail=f"{entry.amount} owed to payee {payee_id} since {entry.created_at.isoformat()}",
                        payload={"payee_id": payee_id, "amount": str(entry.amount), "source": entry.source},
                    )
                    report.flagged_stale += 1

        if report.entries_removed > cleaned_before:
            report.payees_cleaned += 1

    logger.info(
        f"[CLEANUP] Completed: {report.entries_removed} entries removed from {report.payees_cleaned} payees, "
        f"{report.flagged_stale} flagged for review"
    )
    return report

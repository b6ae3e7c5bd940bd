"""
Payout dispatcher.

Drains MoneyOwed entries into Stripe Connect transfers, bounded by the
platform's available balance at the start of the run. Each payee's entries
are paid earliest first; anything that doesn't fit, or fails, stays queued
for the next run.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.db import transaction
from django.db.models import Q

from accounts.models import User
from commissions import state_machine
from commissions.exceptions import ExternalProcessorError, IllegalTransition, InsufficientLiquidity
from commissions.models import CommissionRequest
from commissions.pricing import from_minor_units, to_minor_units
from utils.activity import flag_for_review, log_activity
from utils.notify import notify_users

from . import processor
from .models import MoneyOwed

logger = logging.getLogger(__name__)

Status = CommissionRequest.Status


@dataclass
class PayoutRunReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    deferred: int = 0
    blocked: int = 0
    skipped: int = 0
    payees: int = 0
    amount_transferred: Decimal = Decimal("0.00")
    available_at_start: int = 0
    pending_at_start: int = 0
    remaining_liquidity: int = 0
    aborted: bool = False
    abort_reason: str = ""
    transfers: list = field(default_factory=list)

    def as_dict(self):
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "deferred": self.deferred,
            "blocked": self.blocked,
            "skipped": self.skipped,
            "payees": self.payees,
            "amount_transferred": str(self.amount_transferred),
            "available_at_start": str(from_minor_units(self.available_at_start)),
            "pending_at_start": str(from_minor_units(self.pending_at_start)),
            "remaining_liquidity": str(from_minor_units(self.remaining_liquidity)),
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
        }


class _Liquidity:
    """Advisory balance snapshot in minor units, decremented only on confirmed transfers."""

    def __init__(self, available):
        self.remaining = available

    def reserve(self, amount):
        if amount > self.remaining:
            raise InsufficientLiquidity(f"need {amount}, have {self.remaining}")

    def spend(self, amount):
        self.remaining -= amount


def eligible_payees():
    """Payees with at least one queued entry and a payout-ready Stripe account."""
    return (
        User.objects.filter(
            money_owed__isnull=False,
            stripe_payouts_enabled=True,
            stripe_account_status="active",
        )
        .exclude(Q(stripe_account_id__isnull=True) | Q(stripe_account_id=""))
        .distinct()
        .order_by("id")
    )


def _check_commission_payable(entry):
    """
    Re-read the commission behind a commission payout entry. Returns None
    when the transfer may go ahead, otherwise the reason it is blocked.
    """
    if entry.source != MoneyOwed.Source.COMMISSION or not entry.commission_id:
        return None
    commission = CommissionRequest.objects.filter(pk=entry.commission_id).first()
    if commission is None:
        return None
    if commission.status == Status.CANCELLED:
        return f"commission {commission.pk} was cancelled"
    if commission.stripe_transfer_id:
        return f"commission {commission.pk} already paid out with {commission.stripe_transfer_id}"
    return None


def _complete_commission(entry, transfer_id):
    if not entry.commission_id:
        if entry.source == MoneyOwed.Source.COMMISSION:
            logger.error(f"[PAYOUT] Entry {entry.pk} has no commission, payout successful but nothing to complete")
        return None

    commission = CommissionRequest.objects.filter(pk=entry.commission_id).first()
    if commission is None:
        logger.error(
            f"[PAYOUT] Commission {entry.commission_id} not found, payout successful but commission doesn't exist"
        )
        return None

    try:
        state_machine.transition(
            commission, Status.COMPLETED,
            expected=Status.CRON_PENDING,
            stripe_transfer_id=transfer_id,
        )
    except IllegalTransition as e:
        logger.warning(
            f"[PAYOUT] Commission {commission.pk} not completed, payout successful but status not updated: {e.message}"
        )
        return None
    logger.info(f"[PAYOUT] Updated commission {commission.pk} status to 'completed'")
    return commission


def _transfer_locked(payee, entry, liquidity, report):
    """
    Transfer one entry while holding the payee row lock that enqueue and
    cleanup take. Returns (transfer_id, commission) on success, else None.
    """
    with transaction.atomic():
        User.objects.select_for_update().only("id").get(pk=payee.pk)
        if MoneyOwed.objects.select_for_update().filter(pk=entry.pk).only("id").first() is None:
            logger.info(f"[PAYOUT] Entry {entry.pk} for {payee.email} was removed before transfer, skipping")
            report.skipped += 1
            return None

        transfer_amount = to_minor_units(entry.amount)
        try:
            liquidity.reserve(transfer_amount)
        except InsufficientLiquidity as e:
            logger.info(
                f"[PAYOUT] Insufficient balance for {entry.amount} to {payee.email} ({e}), keeping entry {entry.pk}"
            )
            report.deferred += 1
            return None

        blocked = _check_commission_payable(entry)
        if blocked:
            logger.warning(f"[PAYOUT] Not paying entry {entry.pk} to {payee.email}: {blocked}")
            flag_for_review(
                kind="payout_blocked",
                reference=f"money_owed:{entry.pk}",
                detail=blocked,
                payload={"payee_id": payee.pk, "amount": str(entry.amount), "commission_id": entry.commission_id},
            )
            report.blocked += 1
            return None

        try:
            transfer_id = processor.create_transfer(
                amount=transfer_amount,
                destination=payee.stripe_account_id,
                description=entry.reference,
                metadata={
                    "payee_id": payee.pk,
                    "money_owed_id": entry.pk,
                    "source": entry.source,
                    "original_amount": entry.amount,
                    "created_at": entry.created_at.isoformat(),
                    **(entry.metadata or {}),
                },
                transfer_group=f"commission_{entry.commission_id}" if entry.commission_id else None,
                idempotency_key=f"money-owed-{entry.pk}",
            )
        except ExternalProcessorError as e:
            logger.error(
                f"[PAYOUT] Failed to transfer {entry.amount} to {payee.email}: {e.message} ({entry.reference})"
            )
            report.failed += 1
            log_activity(
                event="payout_failed",
                commission=entry.commission,
                subject_user=payee,
                title="Payout failed, will retry",
                body=e.message,
                meta={"money_owed_id": entry.pk, "amount": str(entry.amount)},
            )
            return None

        liquidity.spend(transfer_amount)
        MoneyOwed.objects.filter(pk=entry.pk).delete()
        commission = _complete_commission(entry, transfer_id)
    return transfer_id, commission


def _pay_entry(payee, entry, liquidity, report):
    paid = _transfer_locked(payee, entry, liquidity, report)
    if paid is None:
        return
    transfer_id, commission = paid

    report.succeeded += 1
    report.amount_transferred += entry.amount
    report.transfers.append(transfer_id)
    logger.info(f"[PAYOUT] Transferred {entry.amount} to {payee.email}: {entry.reference} ({transfer_id})")

    log_activity(
        event="payout_sent",
        commission=commission,
        subject_user=payee,
        title="Payout sent",
        body=entry.reference,
        meta={"transfer_id": transfer_id, "amount": str(entry.amount), "source": entry.source},
    )
    notify_users(
        [payee.pk],
        {
            "event": "payout.sent",
            "title": "Payout sent",
            "message": f"£{entry.amount} is on its way to your account: {entry.reference}",
            "commission_id": commission.pk if commission else None,
            "meta": {"transfer_id": transfer_id},
        },
    )


def dispatch_payouts():
    """Run one payout pass. Returns a PayoutRunReport; never raises for a single payee's failure."""
    report = PayoutRunReport()
    logger.info("[PAYOUT] Starting payout run")

    try:
        balance = processor.retrieve_balance()
    except ExternalProcessorError as e:
        report.aborted = True
        report.abort_reason = f"balance unavailable: {e.message}"
        logger.error(f"[PAYOUT] Could not read platform balance, skipping run: {e.message}")
        return report

    report.available_at_start = balance.available
    report.pending_at_start = balance.pending
    logger.info(
        f"[PAYOUT] Platform balance: available {from_minor_units(balance.available)}, "
        f"pending {from_minor_units(balance.pending)} {balance.currency.upper()}"
    )
    if balance.available <= 0:
        report.aborted = True
        report.abort_reason = "no available balance"
        logger.info("[PAYOUT] No available balance, skipping payouts")
        return report

    liquidity = _Liquidity(balance.available)
    payees = list(eligible_payees())
    report.payees = len(payees)
    logger.info(f"[PAYOUT] Found {len(payees)} payees with money owed")

    for payee in payees:
        entries = list(MoneyOwed.objects.filter(payee=payee).order_by("created_at", "id"))
        for entry in entries:
            report.processed += 1
            try:
                _pay_entry(payee, entry, liquidity, report)
            except Exception:
                report.failed += 1
                logger.exception(f"[PAYOUT] Unexpected error paying entry {entry.pk} to payee {payee.pk}")

        remaining = MoneyOwed.objects.filter(payee=payee).count()
        if remaining:
            logger.info(f"[PAYOUT] {remaining} payouts still pending for {payee.email}")
        else:
            logger.info(f"[PAYOUT] All payouts completed for {payee.email}")

    report.remaining_liquidity = liquidity.remaining
    logger.info(f"[PAYOUT] Payout run completed: {report.as_dict()}")
    if report.failed:
        logger.warning(f"[PAYOUT] {report.failed} payouts failed and will be retried next time")
    return report

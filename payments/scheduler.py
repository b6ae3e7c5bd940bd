"""
Background job scheduler for the settlement jobs.

Run with ``python manage.py run_scheduler``. Each job also has its own
management command so system cron or an operator can trigger it directly.
"""

import logging
from datetime import timedelta

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.blocking import BlockingScheduler
from django.conf import settings
from django.db import close_old_connections
from django.db.models import Q
from django.utils import timezone

from .models import CronWatermark

logger = logging.getLogger(__name__)

CLEANUP_WATERMARK = "money_owed_cleanup"

job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 300,
}


def claim_watermark(name, interval, now=None):
    """
    Claim a job's run slot if ``interval`` has passed since its last run.
    The conditional update means only one scheduler process wins the slot.
    """
    now = now or timezone.now()
    watermark, _ = CronWatermark.objects.get_or_create(name=name)
    claimed = CronWatermark.objects.filter(
        Q(last_run_at__isnull=True) | Q(last_run_at__lte=now - interval),
        pk=watermark.pk,
    ).update(last_run_at=now)
    return bool(claimed)


def cleanup_if_due(now=None):
    """Run the money owed cleanup at most once per MONEY_OWED_CLEANUP_HOURS."""
    from .ledger import cleanup_money_owed

    interval = timedelta(hours=settings.MONEY_OWED_CLEANUP_HOURS)
    if not claim_watermark(CLEANUP_WATERMARK, interval, now=now):
        logger.debug("Money owed cleanup already ran in this window, skipping")
        return None
    return cleanup_money_owed(now=now)


def run_payouts_job():
    from .dispatcher import dispatch_payouts

    # Cleanup first so the run doesn't try to pay invalid or duplicate entries
    cleanup_if_due()
    return dispatch_payouts()


def run_reconcile_job():
    from .reconciler import reconcile_recent_sessions

    return reconcile_recent_sessions()


def run_sweep_job():
    from .sweeper import sweep_expired_commissions

    return sweep_expired_commissions()


def _run_job(job_name, func):
    close_old_connections()
    try:
        result = func()
        summary = result.as_dict() if hasattr(result, "as_dict") else result
        logger.info(f"Job '{job_name}' completed: {summary}")
    except Exception as e:
        logger.exception(f"Job '{job_name}' failed: {e}")
    finally:
        close_old_connections()


JOBS = [
    ("payout_money_owed", "Pay out money owed", run_payouts_job, "PAYOUT_INTERVAL_MINUTES"),
    ("reconcile_stripe_payments", "Reconcile Stripe checkout sessions", run_reconcile_job, "RECONCILE_INTERVAL_MINUTES"),
    ("sweep_expired_commissions", "Refund and cancel expired commissions", run_sweep_job, "EXPIRY_SWEEP_INTERVAL_MINUTES"),
]


def build_scheduler():
    scheduler = BlockingScheduler(
        jobstores={'default': MemoryJobStore()},
        executors={'default': ThreadPoolExecutor(len(JOBS))},
        job_defaults=job_defaults,
        timezone=settings.SCHEDULER_TIMEZONE,
    )
    for job_id, name, func, interval_setting in JOBS:
        scheduler.add_job(
            _run_job,
            'interval',
            minutes=getattr(settings, interval_setting),
            args=[job_id, func],
            id=job_id,
            name=name,
            replace_existing=True,
        )
    return scheduler


def start_scheduler():
    """Start the blocking scheduler. Returns when the process is interrupted."""
    scheduler = build_scheduler()
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - every {job.trigger}")
    logger.info("Settlement job scheduler started")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Settlement job scheduler stopped")
    return scheduler

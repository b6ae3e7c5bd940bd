from django.core.management.base import BaseCommand

from payments.sweeper import ERROR, REFUND_FAILED, sweep_expired_commissions


class Command(BaseCommand):
    help = 'Cancel commissions past their delivery deadline, refunding captured payments'

    def handle(self, *args, **options):
        report = sweep_expired_commissions()
        self.stdout.write(f'Checked {report.checked} in-flight commissions, {report.expired} expired')
        for outcome in report.outcomes:
            line = f'Commission {outcome.commission_id}: {outcome.kind} {outcome.detail}'
            if outcome.kind in (REFUND_FAILED, ERROR):
                self.stdout.write(self.style.ERROR(line))
            else:
                self.stdout.write(self.style.SUCCESS(line))

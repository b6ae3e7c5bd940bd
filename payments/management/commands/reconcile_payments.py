from django.conf import settings
from django.core.management.base import BaseCommand

from payments.reconciler import reconcile_recent_sessions


class Command(BaseCommand):
    help = 'Replay recent Stripe checkout sessions against local commissions and money owed'

    def add_arguments(self, parser):
        parser.add_argument(
            '--minutes', type=int, default=settings.RECONCILE_LOOKBACK_MINUTES,
            help='How far back to list checkout sessions',
        )

    def handle(self, *args, **options):
        report = reconcile_recent_sessions(options['minutes'])
        if report.aborted:
            self.stdout.write(self.style.ERROR('Could not list checkout sessions from Stripe'))
            return
        for key, value in report.as_dict().items():
            self.stdout.write(f'{key}: {value}')
        self.stdout.write(self.style.SUCCESS('Reconciliation complete'))

from django.core.management.base import BaseCommand

from payments.scheduler import start_scheduler


class Command(BaseCommand):
    help = 'Run the payout, reconciliation and expiry jobs on their schedule'

    def handle(self, *args, **options):
        self.stdout.write(self.style.SUCCESS('Starting settlement scheduler (Ctrl+C to stop)'))
        start_scheduler()

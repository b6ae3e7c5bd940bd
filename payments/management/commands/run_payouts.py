from django.core.management.base import BaseCommand

from payments.dispatcher import dispatch_payouts
from payments.scheduler import cleanup_if_due


class Command(BaseCommand):
    help = 'Pay out queued money owed to eligible payees, bounded by the available Stripe balance'

    def add_arguments(self, parser):
        parser.add_argument('--skip-cleanup', action='store_true', help='Do not run the daily money owed cleanup first')

    def handle(self, *args, **options):
        if not options['skip_cleanup']:
            cleanup_if_due()

        report = dispatch_payouts()
        if report.aborted:
            self.stdout.write(self.style.WARNING(f'Payout run skipped: {report.abort_reason}'))
            return

        self.stdout.write(f'Processed: {report.processed}')
        self.stdout.write(f'Deferred (insufficient balance): {report.deferred}')
        self.stdout.write(f'Blocked: {report.blocked}')
        self.stdout.write(f'Transferred: {report.amount_transferred}')
        style = self.style.SUCCESS if not report.failed else self.style.WARNING
        self.stdout.write(style(f'Successful: {report.succeeded}, Failed: {report.failed}'))

from django.core.management.base import BaseCommand

from payments.ledger import cleanup_money_owed


class Command(BaseCommand):
    help = 'Remove invalid and duplicate money owed entries and flag stale ones for review'

    def handle(self, *args, **options):
        report = cleanup_money_owed()
        self.stdout.write(f'Scanned {report.payees_scanned} payees')
        self.stdout.write(f'Invalid entries removed: {report.invalid_removed}')
        self.stdout.write(f'Duplicate entries removed: {report.duplicates_removed}')
        self.stdout.write(f'Stale entries flagged for review: {report.flagged_stale}')
        self.stdout.write(self.style.SUCCESS(f'Cleaned {report.payees_cleaned} payees, removed {report.value_removed}'))

from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from backoffice.models import CurrentAccount
from backoffice.services import ledger


class Command(BaseCommand):
    help = 'Replay current account ledgers and rebuild their cached balances.'

    def add_arguments(self, parser):
        parser.add_argument('--account', help='Only recalculate the account with this code.')
        parser.add_argument('--from-date', help='Replay from this date (YYYY-MM-DD).')
        parser.add_argument(
            '--verify',
            action='store_true',
            help='Run the consistency check after recalculating.',
        )

    def handle(self, *args, **options):
        from_date = None
        if options['from_date']:
            from_date = parse_date(options['from_date'])
            if from_date is None:
                raise CommandError('--from-date must be in YYYY-MM-DD format.')

        accounts = CurrentAccount.objects.order_by('code')
        if options['account']:
            accounts = accounts.filter(code=options['account'])
            if not accounts.exists():
                raise CommandError(f"Current account {options['account']} does not exist.")

        problems = 0
        for account in accounts:
            result = ledger.recalculate_account_balances(account.pk, from_date)
            self.stdout.write(
                self.style.SUCCESS(
                    f'Account {account.code} balance updated to {result.final_balance} '
                    f'({result.snapshots_changed} of {result.transactions_walked} snapshot(s) changed)'
                )
            )
            if options['verify']:
                findings = ledger.check_account_consistency(account.pk)
                problems += len(findings)
                for finding in findings:
                    self.stdout.write(self.style.WARNING(f'Account {account.code}: {finding}'))

        if options['verify'] and problems:
            raise CommandError(f'{problems} consistency problem(s) found.')

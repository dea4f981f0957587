from datetime import date
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from ..models import CurrentAccount, CurrentAccountTransaction
from . import create_account, create_invoice, create_payment, create_user


class RecalculateBalancesCommandTests(TestCase):
    def setUp(self):
        self.user = create_user('ops')
        self.account = create_account(self.user, code='SUP-A')
        create_invoice(self.user, self.account, 'INV-1', '250.00', date(2024, 1, 3))
        create_payment(self.user, self.account, '100.00', date(2024, 1, 4))
        CurrentAccountTransaction.objects.update(balance_before=0, balance_after=0)
        CurrentAccount.objects.update(current_balance=Decimal('0'))

    def test_recalculates_every_account(self):
        out = StringIO()
        call_command('recalculate_balances', stdout=out)

        self.account.refresh_from_db()
        self.assertEqual(self.account.current_balance, Decimal('150.00'))
        self.assertIn('Account SUP-A balance updated to 150.00', out.getvalue())

    def test_verify_passes_after_repair(self):
        out = StringIO()
        call_command('recalculate_balances', '--account', 'SUP-A', '--from-date', '2024-01-01', '--verify', stdout=out)
        self.assertNotIn('SUP-A:', out.getvalue())

    def test_verify_reports_missing_payment_mirror(self):
        CurrentAccountTransaction.objects.filter(payment__isnull=False).delete()
        out = StringIO()
        with self.assertRaises(CommandError):
            call_command('recalculate_balances', '--verify', stdout=out)
        self.assertIn('has no ledger transaction', out.getvalue())

    def test_unknown_account_code(self):
        with self.assertRaises(CommandError):
            call_command('recalculate_balances', '--account', 'NOPE')

    def test_bad_from_date(self):
        with self.assertRaises(CommandError):
            call_command('recalculate_balances', '--from-date', '2024/01/01')

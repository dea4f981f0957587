from datetime import date
from decimal import Decimal

from django.test import TestCase

from ..exceptions import ConsistencyError, NotFoundError
from ..models import CurrentAccount, CurrentAccountTransaction, Payment
from ..services import ledger
from . import create_account, create_invoice, create_payment, create_user


class AgingTests(TestCase):
    def setUp(self):
        self.user = create_user("aging")
        self.account = create_account(self.user)

    def test_partially_paid_invoice_ages_into_thirty_day_bucket(self):
        create_invoice(self.user, self.account, "INV-1", "1000.00", date(2024, 1, 10))
        create_payment(self.user, self.account, "400.00", date(2024, 1, 20))

        buckets = ledger.compute_aging(self.account.pk, as_of=date(2024, 2, 15))

        self.assertEqual(buckets.current, Decimal("0.00"))
        self.assertEqual(buckets.days30, Decimal("600.00"))
        self.assertEqual(buckets.days60, Decimal("0.00"))
        self.assertEqual(buckets.days90, Decimal("0.00"))

    def test_pending_payments_are_not_applied(self):
        create_invoice(self.user, self.account, "INV-1", "1000.00", date(2024, 1, 10))
        create_payment(self.user, self.account, "400.00", date(2024, 1, 20), status=Payment.PENDING)

        buckets = ledger.compute_aging(self.account.pk, as_of=date(2024, 1, 31))

        self.assertEqual(buckets.current, Decimal("1000.00"))

    def test_settled_account_has_empty_buckets(self):
        create_invoice(self.user, self.account, "INV-1", "300.00", date(2024, 1, 10))
        create_payment(self.user, self.account, "300.00", date(2024, 1, 12))

        buckets = ledger.compute_aging(self.account.pk, as_of=date(2024, 6, 1))

        self.assertEqual(buckets.as_dict()["total"], Decimal("0.00"))

    def test_credit_balance_short_circuits_to_zero(self):
        account = create_account(self.user, code="SUP-CR", opening_balance="-500.00")
        create_invoice(self.user, account, "INV-CR", "100.00", date(2024, 1, 10))

        buckets = ledger.compute_aging(account.pk, as_of=date(2024, 6, 1))

        self.assertEqual(buckets, ledger.AgingBuckets())

    def test_unknown_account(self):
        with self.assertRaises(NotFoundError):
            ledger.compute_aging(999999)


class StatementTests(TestCase):
    def setUp(self):
        self.user = create_user("statement")
        self.account = create_account(self.user, opening_balance="50.00")
        create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 1, 5))
        create_invoice(self.user, self.account, "INV-2", "200.00", date(2024, 2, 5))
        create_payment(self.user, self.account, "120.00", date(2024, 2, 10))
        create_invoice(self.user, self.account, "INV-3", "80.00", date(2024, 3, 5))

    def test_statement_for_period(self):
        statement = ledger.build_account_statement(
            self.account.pk, start_date=date(2024, 2, 1), end_date=date(2024, 2, 28)
        )

        self.assertEqual(statement.opening_balance, Decimal("150.00"))
        self.assertEqual(statement.total_debit, Decimal("200.00"))
        self.assertEqual(statement.total_credit, Decimal("120.00"))
        self.assertEqual(statement.closing_balance, Decimal("230.00"))
        self.assertEqual(
            [(line.reference_number, line.balance) for line in statement.lines],
            [("INV-2", Decimal("350.00")), ("PAY0001", Decimal("230.00"))],
        )

    def test_full_statement_closes_on_current_balance(self):
        statement = ledger.build_account_statement(self.account.pk)
        self.account.refresh_from_db()
        self.assertEqual(statement.opening_balance, Decimal("50.00"))
        self.assertEqual(statement.closing_balance, self.account.current_balance)
        self.assertEqual(len(statement.lines), 4)


class ConsistencyTests(TestCase):
    def setUp(self):
        self.user = create_user("consistency")
        self.account = create_account(self.user)
        create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 1, 5))
        self.payment = create_payment(self.user, self.account, "60.00", date(2024, 1, 6))

    def test_sound_ledger_has_no_findings(self):
        self.assertEqual(ledger.check_account_consistency(self.account.pk), [])
        ledger.assert_account_consistent(self.account.pk)

    def test_stale_balance_and_missing_mirror_are_reported(self):
        CurrentAccountTransaction.objects.filter(payment=self.payment).delete()
        CurrentAccount.objects.filter(pk=self.account.pk).update(current_balance=Decimal("999.00"))

        findings = ledger.check_account_consistency(self.account.pk)

        self.assertTrue(any("no ledger transaction" in finding for finding in findings))
        self.assertTrue(any("differs from replayed balance" in finding for finding in findings))
        with self.assertRaises(ConsistencyError) as ctx:
            ledger.assert_account_consistent(self.account.pk)
        self.assertEqual(ctx.exception.findings, findings)

    def test_mismatched_mirror_amount_is_reported(self):
        CurrentAccountTransaction.objects.filter(payment=self.payment).update(amount=Decimal("-10.00"))

        findings = ledger.check_account_consistency(self.account.pk)

        self.assertTrue(any("expected -60.00" in finding for finding in findings))

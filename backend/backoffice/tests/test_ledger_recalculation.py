from datetime import date
from decimal import Decimal

from django.test import TestCase

from ..exceptions import InvalidStateError, NotFoundError
from ..models import CurrentAccount, CurrentAccountTransaction, Invoice
from ..services import ledger
from . import create_account, create_invoice, create_payment, create_user


class RecalculateAccountBalancesTests(TestCase):
    def setUp(self):
        self.user = create_user("ledger")
        self.account = create_account(self.user, opening_balance="100.00")
        create_invoice(self.user, self.account, "INV-1", "1000.00", date(2024, 1, 10))
        create_payment(self.user, self.account, "400.00", date(2024, 1, 20))
        create_invoice(self.user, self.account, "INV-2", "250.00", date(2024, 1, 20))
        ledger.post_manual_transaction(
            self.account.pk,
            transaction_type=CurrentAccountTransaction.ADJUSTMENT,
            amount="-50.00",
            transaction_date=date(2024, 2, 1),
        )

    def ordered_entries(self):
        return ledger.canonical_order(
            CurrentAccountTransaction.objects.filter(current_account=self.account)
        )

    def assert_chained(self):
        self.account.refresh_from_db()
        entries = self.ordered_entries()
        self.assertEqual(entries[0].balance_before, self.account.opening_balance)
        for previous, current in zip(entries, entries[1:]):
            self.assertEqual(previous.balance_after, current.balance_before)
        self.assertEqual(entries[-1].balance_after, self.account.current_balance)

    def corrupt_snapshots(self, **filters):
        CurrentAccountTransaction.objects.filter(current_account=self.account, **filters).update(
            balance_before=Decimal("-1.00"), balance_after=Decimal("-1.00")
        )
        CurrentAccount.objects.filter(pk=self.account.pk).update(current_balance=Decimal("0"))

    def test_write_path_keeps_ledger_chained(self):
        self.assert_chained()
        self.assertEqual(self.account.current_balance, Decimal("900.00"))

    def test_same_day_payment_is_applied_after_the_debt(self):
        entries = self.ordered_entries()
        kinds = [(entry.transaction_date, entry.transaction_type) for entry in entries]
        self.assertEqual(
            kinds,
            [
                (date(2024, 1, 10), "DEBT"),
                (date(2024, 1, 20), "DEBT"),
                (date(2024, 1, 20), "PAYMENT"),
                (date(2024, 2, 1), "ADJUSTMENT"),
            ],
        )
        self.assertEqual(entries[2].balance_before, Decimal("1350.00"))
        self.assertEqual(entries[2].balance_after, Decimal("950.00"))

    def test_full_recalculation_repairs_corrupted_snapshots(self):
        self.corrupt_snapshots()

        result = ledger.recalculate_account_balances(self.account.pk)

        self.assertEqual(result.final_balance, Decimal("900.00"))
        self.assertEqual(result.transactions_walked, 4)
        self.assertEqual(result.snapshots_changed, 4)
        self.assertEqual(result.starting_balance, Decimal("100.00"))
        self.assert_chained()

    def test_recalculation_is_idempotent(self):
        first = ledger.recalculate_account_balances(self.account.pk)
        second = ledger.recalculate_account_balances(self.account.pk)

        self.assertEqual(first.final_balance, second.final_balance)
        self.assertEqual(second.snapshots_changed, 0)

    def test_from_date_matches_full_replay(self):
        self.corrupt_snapshots(transaction_date__gte=date(2024, 1, 20))

        result = ledger.recalculate_account_balances(self.account.pk, from_date=date(2024, 1, 20))

        self.assertEqual(result.starting_balance, Decimal("1100.00"))
        self.assertEqual(result.transactions_walked, 3)
        self.assertEqual(result.final_balance, Decimal("900.00"))
        self.assert_chained()

    def test_from_date_does_not_count_completed_payments_twice(self):
        result = ledger.recalculate_account_balances(self.account.pk, from_date=date(2024, 2, 1))
        self.assertEqual(result.starting_balance, Decimal("950.00"))
        self.assertEqual(result.final_balance, Decimal("900.00"))

    def test_unknown_account_raises_before_writing(self):
        with self.assertRaises(NotFoundError):
            ledger.recalculate_account_balances(999999)

    def test_recalculate_for_invoice_update(self):
        invoice = Invoice.objects.get(invoice_number="INV-2")
        self.corrupt_snapshots()

        result = ledger.recalculate_for_invoice_update(invoice.pk)

        self.assertEqual(result.from_date, date(2024, 1, 20))
        self.assertEqual(result.final_balance, Decimal("900.00"))

    def test_recalculate_for_invoice_without_ledger_row(self):
        draft = create_invoice(
            self.user, self.account, "INV-3", "75.00", date(2024, 3, 1), status=Invoice.DRAFT
        )
        self.assertIsNone(ledger.recalculate_for_invoice_update(draft.pk))
        with self.assertRaises(NotFoundError):
            ledger.recalculate_for_invoice_update(999999)

    def test_recalculate_for_payment_update(self):
        payment = self.account.payments.get()
        result = ledger.recalculate_for_payment_update(payment.pk)
        self.assertEqual(result.from_date, date(2024, 1, 20))
        with self.assertRaises(NotFoundError):
            ledger.recalculate_for_payment_update(999999)

    def test_recalculate_all_balances(self):
        other = create_account(self.user, code="SUP-002", opening_balance="10.00")
        create_invoice(self.user, other, "INV-9", "5.00", date(2024, 1, 1))
        self.corrupt_snapshots()

        results = ledger.recalculate_all_balances()

        self.assertEqual(
            [(r.account_id, r.final_balance) for r in results],
            [(self.account.pk, Decimal("900.00")), (other.pk, Decimal("15.00"))],
        )


class ManualTransactionTests(TestCase):
    def setUp(self):
        self.user = create_user("manual")
        self.account = create_account(self.user)

    def test_payment_type_is_rejected(self):
        with self.assertRaises(InvalidStateError):
            ledger.post_manual_transaction(
                self.account.pk,
                transaction_type=CurrentAccountTransaction.PAYMENT,
                amount="-10.00",
                transaction_date=date(2024, 1, 1),
            )
        self.assertFalse(self.account.transactions.exists())

    def test_backdated_entry_replays_later_rows(self):
        create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 2, 1))
        ledger.post_manual_transaction(
            self.account.pk,
            transaction_type=CurrentAccountTransaction.DEBT,
            amount="30.00",
            transaction_date=date(2024, 1, 1),
        )

        later = self.account.transactions.get(invoice__isnull=False)
        self.assertEqual(later.balance_before, Decimal("30.00"))
        self.assertEqual(later.balance_after, Decimal("130.00"))

    def test_delete_manual_transaction(self):
        entry = ledger.post_manual_transaction(
            self.account.pk,
            transaction_type=CurrentAccountTransaction.ADJUSTMENT,
            amount="25.00",
            transaction_date=date(2024, 1, 5),
        )
        ledger.delete_manual_transaction(entry)

        self.account.refresh_from_db()
        self.assertEqual(self.account.current_balance, Decimal("0.00"))

    def test_linked_transaction_cannot_be_deleted_directly(self):
        invoice = create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 2, 1))
        with self.assertRaises(InvalidStateError):
            ledger.delete_manual_transaction(invoice.ledger_transaction)
        self.assertTrue(CurrentAccountTransaction.objects.filter(invoice=invoice).exists())

from datetime import date
from decimal import Decimal

from django.test import TestCase

from ..models import BankAccount, CurrentAccountTransaction, Invoice, Payment
from . import create_account, create_invoice, create_payment, create_user


class InvoiceLedgerTests(TestCase):
    def setUp(self):
        self.user = create_user("invoices")
        self.account = create_account(self.user)

    def test_invoice_is_mirrored_by_a_debt(self):
        invoice = create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 1, 10))

        entry = CurrentAccountTransaction.objects.get(invoice=invoice)
        self.assertEqual(entry.transaction_type, CurrentAccountTransaction.DEBT)
        self.assertEqual(entry.amount, Decimal("100.00"))
        self.assertEqual(entry.reference_number, "INV-1")
        self.account.refresh_from_db()
        self.assertEqual(self.account.current_balance, Decimal("100.00"))
        self.assertEqual(self.account.last_activity_date, date(2024, 1, 10))

    def test_editing_amount_and_date_replays_from_earlier_date(self):
        invoice = create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 1, 10))
        create_invoice(self.user, self.account, "INV-2", "50.00", date(2024, 1, 5))

        invoice.total_amount = Decimal("150.00")
        invoice.invoice_date = date(2024, 1, 1)
        invoice.save()

        entries = list(self.account.transactions.order_by("transaction_date", "id"))
        self.assertEqual([e.reference_number for e in entries], ["INV-1", "INV-2"])
        self.assertEqual(entries[0].balance_after, Decimal("150.00"))
        self.assertEqual(entries[1].balance_after, Decimal("200.00"))
        self.account.refresh_from_db()
        self.assertEqual(self.account.current_balance, Decimal("200.00"))

    def test_cancelling_removes_the_debt(self):
        invoice = create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 1, 10))

        invoice.status = Invoice.CANCELLED
        invoice.save()

        self.assertFalse(CurrentAccountTransaction.objects.filter(invoice=invoice).exists())
        self.account.refresh_from_db()
        self.assertEqual(self.account.current_balance, Decimal("0.00"))

    def test_draft_does_not_post(self):
        create_invoice(
            self.user, self.account, "INV-1", "100.00", date(2024, 1, 10), status=Invoice.DRAFT
        )
        self.assertFalse(self.account.transactions.exists())

    def test_moving_invoice_to_other_account_replays_both(self):
        other = create_account(self.user, code="SUP-002")
        invoice = create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 1, 10))

        invoice.current_account = other
        invoice.save()

        self.account.refresh_from_db()
        other.refresh_from_db()
        self.assertEqual(self.account.current_balance, Decimal("0.00"))
        self.assertEqual(other.current_balance, Decimal("100.00"))

    def test_delete_removes_debt_and_replays(self):
        create_invoice(self.user, self.account, "INV-1", "100.00", date(2024, 1, 10))
        later = create_invoice(self.user, self.account, "INV-2", "40.00", date(2024, 1, 15))
        Invoice.objects.get(invoice_number="INV-1").delete()

        entry = CurrentAccountTransaction.objects.get(invoice=later)
        self.assertEqual(entry.balance_before, Decimal("0.00"))
        self.assertEqual(entry.balance_after, Decimal("40.00"))


class PaymentLedgerTests(TestCase):
    def setUp(self):
        self.user = create_user("payments")
        self.account = create_account(self.user)
        self.bank = BankAccount.objects.create(
            name="Operating", balance=Decimal("1000.00"), created_by=self.user
        )
        create_invoice(self.user, self.account, "INV-1", "500.00", date(2024, 1, 1))

    def test_payment_numbers_are_sequential(self):
        first = create_payment(self.user, self.account, "10.00", date(2024, 1, 2))
        second = create_payment(self.user, self.account, "10.00", date(2024, 1, 3))
        self.assertEqual(first.payment_number, "PAY0001")
        self.assertEqual(second.payment_number, "PAY0002")

    def test_completed_payment_posts_negative_amount_and_moves_bank(self):
        payment = create_payment(
            self.user, self.account, "200.00", date(2024, 1, 5), bank_account=self.bank
        )

        entry = CurrentAccountTransaction.objects.get(payment=payment)
        self.assertEqual(entry.transaction_type, CurrentAccountTransaction.PAYMENT)
        self.assertEqual(entry.amount, Decimal("-200.00"))
        self.account.refresh_from_db()
        self.bank.refresh_from_db()
        self.assertEqual(self.account.current_balance, Decimal("300.00"))
        self.assertEqual(self.bank.balance, Decimal("800.00"))

    def test_pending_payment_is_ignored_until_completed(self):
        payment = create_payment(
            self.user,
            self.account,
            "200.00",
            date(2024, 1, 5),
            status=Payment.PENDING,
            bank_account=self.bank,
        )
        self.assertFalse(CurrentAccountTransaction.objects.filter(payment=payment).exists())
        self.bank.refresh_from_db()
        self.assertEqual(self.bank.balance, Decimal("1000.00"))

        payment.status = Payment.COMPLETED
        payment.save()

        self.assertTrue(CurrentAccountTransaction.objects.filter(payment=payment).exists())
        self.bank.refresh_from_db()
        self.assertEqual(self.bank.balance, Decimal("800.00"))

    def test_editing_amount_moves_bank_by_difference(self):
        payment = create_payment(
            self.user, self.account, "200.00", date(2024, 1, 5), bank_account=self.bank
        )
        payment.amount = Decimal("250.00")
        payment.save()

        self.bank.refresh_from_db()
        self.account.refresh_from_db()
        self.assertEqual(self.bank.balance, Decimal("750.00"))
        self.assertEqual(self.account.current_balance, Decimal("250.00"))

    def test_cancelling_reverts_ledger_and_bank(self):
        payment = create_payment(
            self.user, self.account, "200.00", date(2024, 1, 5), bank_account=self.bank
        )
        payment.status = Payment.CANCELLED
        payment.save()

        self.assertFalse(CurrentAccountTransaction.objects.filter(payment=payment).exists())
        self.bank.refresh_from_db()
        self.account.refresh_from_db()
        self.assertEqual(self.bank.balance, Decimal("1000.00"))
        self.assertEqual(self.account.current_balance, Decimal("500.00"))

    def test_delete_reverts_ledger_and_bank(self):
        payment = create_payment(
            self.user, self.account, "200.00", date(2024, 1, 5), bank_account=self.bank
        )
        payment.delete()

        self.bank.refresh_from_db()
        self.account.refresh_from_db()
        self.assertEqual(self.bank.balance, Decimal("1000.00"))
        self.assertEqual(self.account.current_balance, Decimal("500.00"))
        self.assertEqual(self.account.transactions.count(), 1)

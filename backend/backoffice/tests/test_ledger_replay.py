from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase

from ..services.ledger import (
    AgingBuckets,
    age_debts,
    apply_payments_fifo,
    canonical_order,
    replay_balances,
)


def event(pk, day, amount, transaction_type="DEBT"):
    return SimpleNamespace(
        id=pk,
        transaction_date=day,
        transaction_type=transaction_type,
        amount=Decimal(amount),
    )


class CanonicalOrderTests(SimpleTestCase):
    def test_debts_sort_before_payments_on_the_same_day(self):
        payment = event(1, date(2024, 1, 10), "-50.00", "PAYMENT")
        debt = event(2, date(2024, 1, 10), "100.00")
        adjustment = event(3, date(2024, 1, 10), "5.00", "ADJUSTMENT")
        earlier = event(9, date(2024, 1, 9), "1.00")

        ordered = canonical_order([payment, adjustment, debt, earlier])

        self.assertEqual([item.id for item in ordered], [9, 2, 3, 1])

    def test_ties_fall_back_to_insertion_id(self):
        first = event(4, date(2024, 2, 1), "10.00")
        second = event(7, date(2024, 2, 1), "20.00")
        self.assertEqual(canonical_order([second, first]), [first, second])


class ReplayBalancesTests(SimpleTestCase):
    def test_snapshots_chain_from_opening_balance(self):
        events = [
            event(3, date(2024, 1, 20), "-400.00", "PAYMENT"),
            event(1, date(2024, 1, 10), "1000.00"),
            event(2, date(2024, 1, 20), "250.00"),
        ]

        snapshots, final = replay_balances(Decimal("100.00"), events)

        self.assertEqual([s.transaction_id for s in snapshots], [1, 2, 3])
        self.assertEqual(snapshots[0].balance_before, Decimal("100.00"))
        for previous, current in zip(snapshots, snapshots[1:]):
            self.assertEqual(previous.balance_after, current.balance_before)
        self.assertEqual(snapshots[-1].balance_after, final)
        self.assertEqual(final, Decimal("950.00"))

    def test_empty_ledger_returns_opening_balance(self):
        snapshots, final = replay_balances(Decimal("42.50"), [])
        self.assertEqual(snapshots, [])
        self.assertEqual(final, Decimal("42.50"))

    def test_replay_is_deterministic(self):
        events = [event(n, date(2024, 3, n % 5 + 1), str(n * 10)) for n in range(1, 9)]
        self.assertEqual(
            replay_balances(Decimal("0"), events),
            replay_balances(Decimal("0"), list(reversed(events))),
        )


class FifoAgingTests(SimpleTestCase):
    def test_payments_settle_oldest_debts_first(self):
        debts = [
            event(1, date(2024, 1, 1), "100.00"),
            event(2, date(2024, 1, 2), "50.00"),
            event(3, date(2024, 1, 3), "30.00"),
        ]

        remainders = [unpaid for _, unpaid in apply_payments_fifo(debts, Decimal("120.00"))]

        self.assertEqual(remainders, [Decimal("0.00"), Decimal("30.00"), Decimal("30.00")])

    def test_bucket_boundaries(self):
        as_of = date(2024, 6, 30)
        debts = [
            event(1, date(2024, 5, 31), "1.00"),   # 30 days
            event(2, date(2024, 5, 30), "2.00"),   # 31 days
            event(3, date(2024, 5, 1), "4.00"),    # 60 days
            event(4, date(2024, 4, 30), "8.00"),   # 61 days
            event(5, date(2024, 4, 1), "16.00"),   # 90 days
            event(6, date(2024, 3, 31), "32.00"),  # 91 days
        ]

        buckets = age_debts(debts, Decimal("0"), as_of)

        self.assertEqual(
            buckets,
            AgingBuckets(
                current=Decimal("1.00"),
                days30=Decimal("6.00"),
                days60=Decimal("24.00"),
                days90=Decimal("32.00"),
            ),
        )
        self.assertEqual(buckets.total, Decimal("63.00"))

    def test_fully_paid_debts_are_not_bucketed(self):
        debts = [event(1, date(2023, 1, 1), "500.00")]
        buckets = age_debts(debts, Decimal("500.00"), date(2024, 1, 1))
        self.assertEqual(buckets.total, Decimal("0.00"))

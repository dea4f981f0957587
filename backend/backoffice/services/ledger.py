"""Current-account ledger engine.

Balances are caches.  The authoritative state of a current account is its
list of :class:`~backoffice.models.CurrentAccountTransaction` rows, each an
immutable ``(transaction_date, transaction_type, amount)`` tuple.  Every
snapshot (``balance_before`` / ``balance_after``) and the account's
``current_balance`` can be rebuilt from that list at any time, so the
recalculation helpers below are safe to run repeatedly and are the repair
path after any interrupted write.

Completed payments are mirrored by exactly one ``PAYMENT`` transaction with
a negative amount.  Replays only ever walk transactions; payments are never
summed a second time.

All writes happen inside ``transaction.atomic()`` with a row lock taken on
the account before the ledger is read, so concurrent recalculations of the
same account are serialised by the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from django.apps import apps
from django.db import transaction
from django.db.models import DecimalField, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from ..exceptions import ConsistencyError, InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)

__all__ = [
    "AccountStatement",
    "AgingBuckets",
    "BalanceSnapshot",
    "RecalculationResult",
    "StatementLine",
    "age_debts",
    "apply_bank_account_movement",
    "apply_payments_fifo",
    "assert_account_consistent",
    "build_account_statement",
    "canonical_order",
    "check_account_consistency",
    "compute_aging",
    "delete_manual_transaction",
    "post_manual_transaction",
    "recalculate_account_balances",
    "recalculate_all_balances",
    "recalculate_for_invoice_update",
    "recalculate_for_payment_update",
    "remove_invoice_transaction",
    "remove_payment_transaction",
    "replay_balances",
    "sync_invoice_transaction",
    "sync_payment_transaction",
]

MONEY_QUANTIZER = Decimal("0.01")
ZERO = Decimal("0.00")

DEBT = "DEBT"
PAYMENT = "PAYMENT"
ADJUSTMENT = "ADJUSTMENT"

COMPLETED = "COMPLETED"


def _to_decimal(amount) -> Decimal:
    """Normalise *amount* to a Decimal with the project's rounding rules."""

    if amount in (None, "", 0):
        return ZERO
    if isinstance(amount, Decimal):
        value = amount
    else:
        value = Decimal(str(amount))
    return value.quantize(MONEY_QUANTIZER, rounding=ROUND_HALF_UP)


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def _model(name: str):
    return apps.get_model("backoffice", name)


# ---------------------------------------------------------------------------
# Pure replay
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceSnapshot:
    transaction_id: Optional[int]
    balance_before: Decimal
    balance_after: Decimal


@dataclass(frozen=True)
class RecalculationResult:
    account_id: int
    from_date: Optional[date]
    starting_balance: Decimal
    final_balance: Decimal
    transactions_walked: int
    snapshots_changed: int


@dataclass(frozen=True)
class AgingBuckets:
    """Unpaid debt split by age: 0-30, 31-60, 61-90 and 90+ days."""

    current: Decimal = ZERO
    days30: Decimal = ZERO
    days60: Decimal = ZERO
    days90: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.current + self.days30 + self.days60 + self.days90

    def as_dict(self) -> dict:
        return {
            "current": self.current,
            "days30": self.days30,
            "days60": self.days60,
            "days90": self.days90,
            "total": self.total,
        }


def sort_key(event):
    """Canonical ledger order: date, then non-payments before payments, then id."""

    kind_rank = 1 if event.transaction_type == PAYMENT else 0
    return (_as_date(event.transaction_date), kind_rank, event.id or 0)


def canonical_order(events: Iterable) -> list:
    return sorted(events, key=sort_key)


def replay_balances(opening_balance, events: Iterable) -> tuple[list[BalanceSnapshot], Decimal]:
    """Walk ``events`` in canonical order starting from ``opening_balance``.

    ``events`` may be model instances or any object exposing ``id``,
    ``transaction_date``, ``transaction_type`` and ``amount``.  Returns the
    snapshot for every event plus the final running balance.  Nothing is
    written.
    """

    running = _to_decimal(opening_balance)
    snapshots: list[BalanceSnapshot] = []
    for event in canonical_order(events):
        before = running
        running = _to_decimal(running + _to_decimal(event.amount))
        snapshots.append(BalanceSnapshot(event.id, before, running))
    return snapshots, running


def apply_payments_fifo(debts: Iterable, payments_total) -> list[tuple[object, Decimal]]:
    """Apply ``payments_total`` to ``debts`` oldest first.

    Returns ``(debt, unpaid_remainder)`` pairs in canonical order.
    """

    remaining = _to_decimal(payments_total)
    result = []
    for debt in canonical_order(debts):
        unpaid = _to_decimal(debt.amount)
        if remaining > 0 and unpaid > 0:
            applied = min(remaining, unpaid)
            remaining -= applied
            unpaid -= applied
        result.append((debt, unpaid))
    return result


def _bucket_name(age_days: int) -> str:
    if age_days <= 30:
        return "current"
    if age_days <= 60:
        return "days30"
    if age_days <= 90:
        return "days60"
    return "days90"


def age_debts(debts: Iterable, payments_total, as_of) -> AgingBuckets:
    """Bucket the unpaid part of ``debts`` by age relative to ``as_of``."""

    as_of = _as_date(as_of)
    totals = {"current": ZERO, "days30": ZERO, "days60": ZERO, "days90": ZERO}
    for debt, unpaid in apply_payments_fifo(debts, payments_total):
        if unpaid <= 0:
            continue
        age_days = (as_of - _as_date(debt.transaction_date)).days
        totals[_bucket_name(age_days)] += unpaid
    return AgingBuckets(**totals)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _sum_amounts(queryset) -> Decimal:
    total = queryset.aggregate(
        total=Coalesce(Sum("amount"), ZERO, output_field=DecimalField())
    )["total"]
    return _to_decimal(total)


def _get_account(account_id, *, lock: bool = False):
    CurrentAccount = _model("CurrentAccount")
    queryset = CurrentAccount.objects.all()
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=account_id)
    except CurrentAccount.DoesNotExist as exc:
        raise NotFoundError(f"Current account not found: {account_id}") from exc


def recalculate_account_balances(account_id, from_date=None) -> RecalculationResult:
    """Rebuild snapshots from ``from_date`` onward and the account balance.

    Without ``from_date`` the whole history is replayed from the opening
    balance.  With it, the starting balance is the opening balance plus
    every transaction dated strictly before ``from_date``.
    """

    Transaction = _model("CurrentAccountTransaction")
    from_date = _as_date(from_date)

    logger.info(
        "Recalculating balances for account %s from %s",
        account_id,
        from_date or "beginning",
    )

    with transaction.atomic():
        account = _get_account(account_id, lock=True)
        ledger_qs = Transaction.objects.filter(current_account_id=account.pk)

        starting_balance = _to_decimal(account.opening_balance)
        window = ledger_qs
        if from_date is not None:
            starting_balance = _to_decimal(
                starting_balance + _sum_amounts(ledger_qs.filter(transaction_date__lt=from_date))
            )
            window = ledger_qs.filter(transaction_date__gte=from_date)

        events = list(window)
        snapshots, final_balance = replay_balances(starting_balance, events)

        by_id = {event.pk: event for event in events}
        changed = []
        for snapshot in snapshots:
            event = by_id[snapshot.transaction_id]
            if (
                event.balance_before != snapshot.balance_before
                or event.balance_after != snapshot.balance_after
            ):
                event.balance_before = snapshot.balance_before
                event.balance_after = snapshot.balance_after
                changed.append(event)
        if changed:
            Transaction.objects.bulk_update(changed, ["balance_before", "balance_after"])

        account.current_balance = final_balance
        account.save(update_fields=["current_balance", "updated_at"])

    logger.info(
        "Balance recalculation completed for account %s: final balance %s, %d snapshot(s) changed",
        account_id,
        final_balance,
        len(changed),
    )
    return RecalculationResult(
        account_id=account.pk,
        from_date=from_date,
        starting_balance=starting_balance,
        final_balance=final_balance,
        transactions_walked=len(events),
        snapshots_changed=len(changed),
    )


def recalculate_for_invoice_update(invoice_id) -> Optional[RecalculationResult]:
    """Replay the account of ``invoice_id`` from its debt transaction's date."""

    Invoice = _model("Invoice")
    Transaction = _model("CurrentAccountTransaction")
    if not Invoice.objects.filter(pk=invoice_id).exists():
        raise NotFoundError(f"Invoice not found: {invoice_id}")

    entry = Transaction.objects.filter(invoice_id=invoice_id).first()
    if entry is None:
        return None
    return recalculate_account_balances(entry.current_account_id, entry.transaction_date)


def recalculate_for_payment_update(payment_id) -> RecalculationResult:
    """Replay the account of ``payment_id`` from the payment date."""

    Payment = _model("Payment")
    try:
        payment = Payment.objects.get(pk=payment_id)
    except Payment.DoesNotExist as exc:
        raise NotFoundError(f"Payment not found: {payment_id}") from exc
    return recalculate_account_balances(payment.current_account_id, payment.payment_date)


def recalculate_all_balances() -> list[RecalculationResult]:
    """Replay every account, each in its own atomic block."""

    CurrentAccount = _model("CurrentAccount")
    results = []
    for account_id in CurrentAccount.objects.order_by("code").values_list("pk", flat=True):
        results.append(recalculate_account_balances(account_id))
    return results


def _recalculate_positions(positions) -> list[RecalculationResult]:
    """Replay each touched account from the earliest touched date."""

    earliest: dict[int, date] = {}
    for account_id, event_date in positions:
        if not account_id:
            continue
        event_date = _as_date(event_date)
        current = earliest.get(account_id)
        if current is None or event_date < current:
            earliest[account_id] = event_date
    return [
        recalculate_account_balances(account_id, earliest[account_id])
        for account_id in sorted(earliest)
    ]


def _touch_activity(account_id, event_date) -> None:
    CurrentAccount = _model("CurrentAccount")
    CurrentAccount.objects.filter(pk=account_id).filter(
        Q(last_activity_date__isnull=True) | Q(last_activity_date__lt=event_date)
    ).update(last_activity_date=event_date)


def compute_aging(account_id, as_of=None) -> AgingBuckets:
    """FIFO aging of the account's unpaid debt as of ``as_of`` (default today)."""

    Transaction = _model("CurrentAccountTransaction")
    Payment = _model("Payment")
    as_of = _as_date(as_of) or timezone.localdate()

    account = _get_account(account_id)
    if account.current_balance <= 0:
        return AgingBuckets()

    debts = Transaction.objects.filter(current_account_id=account.pk, transaction_type=DEBT)
    payments_total = _sum_amounts(
        Payment.objects.filter(current_account_id=account.pk, status=COMPLETED)
    )
    return age_debts(debts, payments_total, as_of)


# ---------------------------------------------------------------------------
# Statement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatementLine:
    transaction_id: int
    transaction_date: date
    transaction_type: str
    description: str
    reference_number: str
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass
class AccountStatement:
    account_id: int
    start_date: Optional[date]
    end_date: Optional[date]
    opening_balance: Decimal
    closing_balance: Decimal
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO
    lines: list[StatementLine] = field(default_factory=list)


def build_account_statement(account_id, start_date=None, end_date=None) -> AccountStatement:
    """Running-balance statement for the inclusive ``start_date``..``end_date`` window."""

    Transaction = _model("CurrentAccountTransaction")
    start_date = _as_date(start_date)
    end_date = _as_date(end_date)

    account = _get_account(account_id)
    ledger_qs = Transaction.objects.filter(current_account_id=account.pk)

    opening = _to_decimal(account.opening_balance)
    period = ledger_qs
    if start_date is not None:
        opening = _to_decimal(
            opening + _sum_amounts(ledger_qs.filter(transaction_date__lt=start_date))
        )
        period = period.filter(transaction_date__gte=start_date)
    if end_date is not None:
        period = period.filter(transaction_date__lte=end_date)

    events = canonical_order(period)
    snapshots, closing = replay_balances(opening, events)

    statement = AccountStatement(
        account_id=account.pk,
        start_date=start_date,
        end_date=end_date,
        opening_balance=opening,
        closing_balance=closing,
    )
    for event, snapshot in zip(events, snapshots):
        amount = _to_decimal(event.amount)
        debit = amount if amount > 0 else ZERO
        credit = -amount if amount < 0 else ZERO
        statement.total_debit += debit
        statement.total_credit += credit
        statement.lines.append(
            StatementLine(
                transaction_id=event.pk,
                transaction_date=event.transaction_date,
                transaction_type=event.transaction_type,
                description=event.description,
                reference_number=event.reference_number,
                debit=debit,
                credit=credit,
                balance=snapshot.balance_after,
            )
        )
    return statement


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


def check_account_consistency(account_id) -> list[str]:
    """Return human readable findings; an empty list means the ledger is sound."""

    Transaction = _model("CurrentAccountTransaction")
    Payment = _model("Payment")

    account = _get_account(account_id)
    findings: list[str] = []

    mirrors = {
        entry.payment_id: entry
        for entry in Transaction.objects.filter(
            current_account_id=account.pk, payment__isnull=False
        )
    }
    for payment in Payment.objects.filter(current_account_id=account.pk, status=COMPLETED):
        entry = mirrors.get(payment.pk)
        if entry is None:
            findings.append(f"Payment {payment.payment_number} has no ledger transaction.")
        elif entry.amount != -_to_decimal(payment.amount):
            findings.append(
                f"Payment {payment.payment_number} is mirrored with {entry.amount}, "
                f"expected {-_to_decimal(payment.amount)}."
            )

    orphaned = Transaction.objects.filter(
        current_account_id=account.pk, transaction_type=PAYMENT
    ).exclude(payment__status=COMPLETED)
    for entry in orphaned:
        findings.append(f"Payment transaction {entry.pk} is not backed by a completed payment.")

    events = list(Transaction.objects.filter(current_account_id=account.pk))
    snapshots, final_balance = replay_balances(account.opening_balance, events)
    by_id = {event.pk: event for event in events}
    stale = [
        snapshot.transaction_id
        for snapshot in snapshots
        if by_id[snapshot.transaction_id].balance_before != snapshot.balance_before
        or by_id[snapshot.transaction_id].balance_after != snapshot.balance_after
    ]
    if stale:
        findings.append(f"{len(stale)} transaction snapshot(s) are stale.")
    if account.current_balance != final_balance:
        findings.append(
            f"Current balance {account.current_balance} differs from replayed balance {final_balance}."
        )

    for finding in findings:
        logger.warning("Account %s: %s", account.code, finding)
    return findings


def assert_account_consistent(account_id) -> None:
    findings = check_account_consistency(account_id)
    if findings:
        raise ConsistencyError(
            f"Current account {account_id} failed {len(findings)} consistency check(s).",
            findings,
        )


# ---------------------------------------------------------------------------
# Write path helpers used by the document models
# ---------------------------------------------------------------------------


def _adjust_balance(model_name: str, pk: Optional[int], field_name: str, delta: Decimal) -> Optional[Decimal]:
    """Adjust ``field_name`` on ``model_name`` by ``delta`` atomically.

    ``None`` is returned when no update was required (for example because
    ``pk`` or ``delta`` were falsy).
    """

    if not pk:
        return None

    if not delta:
        return None

    model = _model(model_name)

    with transaction.atomic():
        obj = model.objects.select_for_update().get(pk=pk)
        current = Decimal(getattr(obj, field_name) or 0)
        new_value = (current + delta).quantize(MONEY_QUANTIZER, rounding=ROUND_HALF_UP)
        setattr(obj, field_name, new_value)
        obj.save(update_fields=[field_name])
        return new_value


def apply_bank_account_movement(account_id: Optional[int], amount) -> Optional[Decimal]:
    """Apply a bank-account balance movement."""

    return _adjust_balance("BankAccount", account_id, "balance", _to_decimal(amount))


def sync_invoice_transaction(invoice, previous=None) -> list[RecalculationResult]:
    """Keep the DEBT transaction mirroring ``invoice`` in step with it.

    ``previous`` is the stored state of the invoice before this save, used
    to replay the old position when the date or account moved.
    """

    Transaction = _model("CurrentAccountTransaction")
    positions = []
    if previous is not None and previous.posts_to_ledger:
        positions.append((previous.current_account_id, previous.invoice_date))

    entry = Transaction.objects.select_for_update().filter(invoice_id=invoice.pk).first()
    if invoice.posts_to_ledger:
        if entry is None:
            entry = Transaction(
                invoice=invoice,
                transaction_type=DEBT,
                created_by_id=invoice.created_by_id,
            )
        entry.current_account_id = invoice.current_account_id
        entry.transaction_date = invoice.invoice_date
        entry.amount = _to_decimal(invoice.total_amount)
        entry.reference_number = invoice.invoice_number
        entry.description = (invoice.description or f"Invoice {invoice.invoice_number}")[:255]
        entry.save()
        positions.append((invoice.current_account_id, invoice.invoice_date))
        _touch_activity(invoice.current_account_id, invoice.invoice_date)
    elif entry is not None:
        positions.append((entry.current_account_id, entry.transaction_date))
        entry.delete()

    return _recalculate_positions(positions)


def remove_invoice_transaction(invoice) -> list[RecalculationResult]:
    Transaction = _model("CurrentAccountTransaction")
    entry = Transaction.objects.select_for_update().filter(invoice_id=invoice.pk).first()
    if entry is None:
        return []
    position = (entry.current_account_id, entry.transaction_date)
    entry.delete()
    return _recalculate_positions([position])


def _completed_amount(payment) -> Decimal:
    if payment is None or payment.status != COMPLETED:
        return ZERO
    return _to_decimal(payment.amount)


def sync_payment_transaction(payment, previous=None) -> list[RecalculationResult]:
    """Mirror ``payment`` as a PAYMENT transaction while it is completed.

    Also moves the bank account balance by the change in completed amount
    and replays every touched account from the earliest touched date.
    """

    Transaction = _model("CurrentAccountTransaction")
    positions = []

    old_amount = _completed_amount(previous)
    new_amount = _completed_amount(payment)
    old_bank = previous.bank_account_id if previous is not None else None
    if old_bank != payment.bank_account_id:
        if old_bank:
            apply_bank_account_movement(old_bank, old_amount)
        if payment.bank_account_id:
            apply_bank_account_movement(payment.bank_account_id, -new_amount)
    elif payment.bank_account_id:
        apply_bank_account_movement(payment.bank_account_id, -(new_amount - old_amount))

    if previous is not None and previous.status == COMPLETED:
        positions.append((previous.current_account_id, previous.payment_date))

    entry = Transaction.objects.select_for_update().filter(payment_id=payment.pk).first()
    if payment.status == COMPLETED:
        if entry is None:
            entry = Transaction(
                payment=payment,
                transaction_type=PAYMENT,
                created_by_id=payment.created_by_id,
            )
        entry.current_account_id = payment.current_account_id
        entry.transaction_date = payment.payment_date
        entry.amount = -new_amount
        entry.reference_number = payment.payment_number
        entry.description = (payment.description or f"Payment {payment.payment_number}")[:255]
        entry.save()
        positions.append((payment.current_account_id, payment.payment_date))
        _touch_activity(payment.current_account_id, payment.payment_date)
    elif entry is not None:
        positions.append((entry.current_account_id, entry.transaction_date))
        entry.delete()

    return _recalculate_positions(positions)


def remove_payment_transaction(payment) -> list[RecalculationResult]:
    Transaction = _model("CurrentAccountTransaction")
    if payment.status == COMPLETED and payment.bank_account_id:
        apply_bank_account_movement(payment.bank_account_id, payment.amount)

    entry = Transaction.objects.select_for_update().filter(payment_id=payment.pk).first()
    if entry is None:
        return []
    position = (entry.current_account_id, entry.transaction_date)
    entry.delete()
    return _recalculate_positions([position])


def post_manual_transaction(
    account_id,
    *,
    transaction_type: str,
    amount,
    transaction_date,
    description: str = "",
    reference_number: str = "",
    user=None,
):
    """Record a DEBT or ADJUSTMENT entered directly against the account."""

    Transaction = _model("CurrentAccountTransaction")
    if transaction_type not in (DEBT, ADJUSTMENT):
        raise InvalidStateError(
            "Payment transactions are created by recording a completed payment."
        )

    with transaction.atomic():
        account = _get_account(account_id, lock=True)
        entry = Transaction.objects.create(
            current_account=account,
            transaction_type=transaction_type,
            amount=_to_decimal(amount),
            transaction_date=_as_date(transaction_date),
            description=description or "",
            reference_number=reference_number or "",
            created_by=user,
        )
        _touch_activity(account.pk, entry.transaction_date)
        recalculate_account_balances(account.pk, entry.transaction_date)
    entry.refresh_from_db()
    return entry


def delete_manual_transaction(entry) -> RecalculationResult:
    """Delete a directly entered transaction and replay its account."""

    if entry.invoice_id or entry.payment_id:
        raise InvalidStateError(
            "This transaction is maintained by its invoice or payment; edit the document instead."
        )
    with transaction.atomic():
        account_id = entry.current_account_id
        transaction_date = entry.transaction_date
        entry.delete()
        return recalculate_account_balances(account_id, transaction_date)

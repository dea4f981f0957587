
from .ledger import (
    apply_bank_account_movement,
    build_account_statement,
    compute_aging,
    recalculate_account_balances,
    recalculate_all_balances,
    recalculate_for_invoice_update,
    recalculate_for_payment_update,
)

__all__ = [
    "apply_bank_account_movement",
    "build_account_statement",
    "compute_aging",
    "recalculate_account_balances",
    "recalculate_all_balances",
    "recalculate_for_invoice_update",
    "recalculate_for_payment_update",
]

"""Expose public API views for the application."""

from .activities import ActivityViewSet
from .banking import BankAccountViewSet
from .current_accounts import CurrentAccountTransactionViewSet, CurrentAccountViewSet
from .invoices import InvoiceViewSet
from .payments import PaymentViewSet
from .stock_counts import StockCountItemViewSet, StockCountViewSet
from .suppliers import SupplierViewSet
from .warehouses import MaterialViewSet, StockMovementViewSet, WarehouseViewSet

__all__ = [
    'ActivityViewSet',
    'BankAccountViewSet',
    'CurrentAccountTransactionViewSet',
    'CurrentAccountViewSet',
    'InvoiceViewSet',
    'MaterialViewSet',
    'PaymentViewSet',
    'StockCountItemViewSet',
    'StockCountViewSet',
    'StockMovementViewSet',
    'SupplierViewSet',
    'WarehouseViewSet',
]

"""URL routing for the back-office API."""

from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_nested import routers

from .views import (
    ActivityViewSet,
    BankAccountViewSet,
    CurrentAccountTransactionViewSet,
    CurrentAccountViewSet,
    InvoiceViewSet,
    MaterialViewSet,
    PaymentViewSet,
    StockCountItemViewSet,
    StockCountViewSet,
    StockMovementViewSet,
    SupplierViewSet,
    WarehouseViewSet,
)

router = DefaultRouter()
router.register(r'activities', ActivityViewSet, basename='activity')
router.register(r'suppliers', SupplierViewSet, basename='supplier')
router.register(r'bank-accounts', BankAccountViewSet, basename='bank-account')
router.register(r'current-accounts', CurrentAccountViewSet, basename='current-account')
router.register(r'invoices', InvoiceViewSet, basename='invoice')
router.register(r'payments', PaymentViewSet, basename='payment')
router.register(r'warehouses', WarehouseViewSet, basename='warehouse')
router.register(r'materials', MaterialViewSet, basename='material')
router.register(r'stock-movements', StockMovementViewSet, basename='stock-movement')
router.register(r'stock-counts', StockCountViewSet, basename='stock-count')
router.register(r'stock-count-items', StockCountItemViewSet, basename='stock-count-item')

current_accounts_router = routers.NestedSimpleRouter(router, r'current-accounts', lookup='current_account')
current_accounts_router.register(
    r'transactions',
    CurrentAccountTransactionViewSet,
    basename='current-account-transactions',
)

urlpatterns = [
    path('', include(router.urls)),
    path('', include(current_accounts_router.urls)),
]

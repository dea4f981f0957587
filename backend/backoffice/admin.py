# backend/backoffice/admin.py

from django.contrib import admin
from .models import (
    BankAccount,
    CurrentAccount,
    CurrentAccountTransaction,
    Invoice,
    Material,
    Payment,
    StockCount,
    StockCountItem,
    StockMovement,
    Supplier,
    Warehouse,
    WarehouseStock,
)


class StockCountItemInline(admin.TabularInline):
    model = StockCountItem
    extra = 0
    readonly_fields = ('system_stock', 'difference', 'counted_at')


@admin.register(StockCount)
class StockCountAdmin(admin.ModelAdmin):
    list_display = ('count_number', 'warehouse', 'status', 'cutoff_datetime')
    list_filter = ('status', 'warehouse')
    inlines = [StockCountItemInline]


@admin.register(CurrentAccountTransaction)
class CurrentAccountTransactionAdmin(admin.ModelAdmin):
    list_display = ('current_account', 'transaction_date', 'transaction_type', 'amount', 'balance_after')
    list_filter = ('transaction_type',)
    readonly_fields = ('balance_before', 'balance_after')


# Register your models here.
admin.site.register(Supplier)
admin.site.register(BankAccount)
admin.site.register(CurrentAccount)
admin.site.register(Invoice)
admin.site.register(Payment)
admin.site.register(Warehouse)
admin.site.register(Material)
admin.site.register(WarehouseStock)
admin.site.register(StockMovement)

# backend/backoffice/serializers.py
from datetime import datetime, time
from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from .models import (
    Activity,
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


class ActivitySerializer(serializers.ModelSerializer):
    user = serializers.StringRelatedField()

    class Meta:
        model = Activity
        fields = ['id', 'user', 'action_type', 'description', 'timestamp', 'object_repr']


class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = ['id', 'name', 'email', 'phone', 'address', 'tax_number', 'created_at']
        read_only_fields = ['created_by']


class BankAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = BankAccount
        fields = ['id', 'name', 'currency', 'balance', 'created_at']
        read_only_fields = ['id', 'created_at']

    def validate_currency(self, value):
        value = (value or '').upper()
        if len(value) != 3 or not value.isalpha():
            raise serializers.ValidationError('Currency code must be a 3-letter ISO code.')
        return value


# ---------------------------------------------------------------------------
# Current accounts
# ---------------------------------------------------------------------------


class CurrentAccountSerializer(serializers.ModelSerializer):
    supplier_name = serializers.CharField(source='supplier.name', read_only=True, allow_null=True)
    available_credit = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    is_over_limit = serializers.BooleanField(read_only=True)

    class Meta:
        model = CurrentAccount
        fields = [
            'id',
            'code',
            'name',
            'account_type',
            'supplier',
            'supplier_name',
            'opening_balance',
            'current_balance',
            'credit_limit',
            'available_credit',
            'is_over_limit',
            'last_activity_date',
            'is_active',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['current_balance', 'last_activity_date', 'created_at', 'updated_at']

    def validate_credit_limit(self, value):
        if value < 0:
            raise serializers.ValidationError('Credit limit cannot be negative.')
        return value

    def validate_opening_balance(self, value):
        if self.instance is not None and value != self.instance.opening_balance:
            raise serializers.ValidationError(
                'Opening balance cannot be changed once the account exists; post an adjustment instead.'
            )
        return value


class CurrentAccountTransactionSerializer(serializers.ModelSerializer):
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True, allow_null=True)
    payment_number = serializers.CharField(source='payment.payment_number', read_only=True, allow_null=True)

    class Meta:
        model = CurrentAccountTransaction
        fields = [
            'id',
            'current_account',
            'transaction_date',
            'transaction_type',
            'amount',
            'balance_before',
            'balance_after',
            'invoice',
            'invoice_number',
            'payment',
            'payment_number',
            'description',
            'reference_number',
            'created_at',
        ]
        read_only_fields = [
            'current_account',
            'balance_before',
            'balance_after',
            'invoice',
            'payment',
            'created_at',
        ]

    def validate_transaction_type(self, value):
        if value == CurrentAccountTransaction.PAYMENT:
            raise serializers.ValidationError(
                'Payment transactions are created by recording a completed payment.'
            )
        return value

    def validate_amount(self, value):
        if value == 0:
            raise serializers.ValidationError('Amount cannot be zero.')
        return value


class AgingSerializer(serializers.Serializer):
    current = serializers.DecimalField(max_digits=14, decimal_places=2)
    days30 = serializers.DecimalField(max_digits=14, decimal_places=2)
    days60 = serializers.DecimalField(max_digits=14, decimal_places=2)
    days90 = serializers.DecimalField(max_digits=14, decimal_places=2)
    total = serializers.DecimalField(max_digits=14, decimal_places=2)


class CurrentAccountDetailSerializer(CurrentAccountSerializer):
    aging = serializers.SerializerMethodField()

    class Meta(CurrentAccountSerializer.Meta):
        fields = CurrentAccountSerializer.Meta.fields + ['aging']

    def get_aging(self, obj):
        aging = self.context.get('aging')
        if aging is None:
            return None
        return AgingSerializer(aging.as_dict()).data


class StatementLineSerializer(serializers.Serializer):
    transaction_id = serializers.IntegerField()
    transaction_date = serializers.DateField()
    transaction_type = serializers.CharField()
    description = serializers.CharField()
    reference_number = serializers.CharField()
    debit = serializers.DecimalField(max_digits=14, decimal_places=2)
    credit = serializers.DecimalField(max_digits=14, decimal_places=2)
    balance = serializers.DecimalField(max_digits=14, decimal_places=2)


class AccountStatementSerializer(serializers.Serializer):
    account_id = serializers.IntegerField()
    start_date = serializers.DateField(allow_null=True)
    end_date = serializers.DateField(allow_null=True)
    opening_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    closing_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_debit = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_credit = serializers.DecimalField(max_digits=14, decimal_places=2)
    lines = StatementLineSerializer(many=True)


class StatementQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)

    def validate(self, attrs):
        start, end = attrs.get('start_date'), attrs.get('end_date')
        if start and end and start > end:
            raise serializers.ValidationError('start_date must be on or before end_date.')
        return attrs


class AgingQuerySerializer(serializers.Serializer):
    as_of = serializers.DateField(required=False)


class RecalculateSerializer(serializers.Serializer):
    from_date = serializers.DateField(required=False, allow_null=True)


class RecalculationResultSerializer(serializers.Serializer):
    account_id = serializers.IntegerField()
    from_date = serializers.DateField(allow_null=True)
    starting_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    final_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    transactions_walked = serializers.IntegerField()
    snapshots_changed = serializers.IntegerField()


# ---------------------------------------------------------------------------
# Invoices and payments
# ---------------------------------------------------------------------------


class InvoiceSerializer(serializers.ModelSerializer):
    current_account_name = serializers.CharField(source='current_account.name', read_only=True)

    class Meta:
        model = Invoice
        fields = [
            'id',
            'invoice_number',
            'current_account',
            'current_account_name',
            'invoice_date',
            'due_date',
            'total_amount',
            'status',
            'description',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['created_by', 'created_at', 'updated_at']

    def validate_total_amount(self, value):
        if value < 0:
            raise serializers.ValidationError('Total amount cannot be negative.')
        return value

    def validate(self, attrs):
        invoice_date = attrs.get('invoice_date', getattr(self.instance, 'invoice_date', None))
        due_date = attrs.get('due_date', getattr(self.instance, 'due_date', None))
        if invoice_date and due_date and due_date < invoice_date:
            raise serializers.ValidationError({'due_date': 'Due date cannot be before the invoice date.'})
        return attrs


class PaymentSerializer(serializers.ModelSerializer):
    current_account_name = serializers.CharField(source='current_account.name', read_only=True)
    bank_account_name = serializers.CharField(source='bank_account.name', read_only=True, allow_null=True)

    class Meta:
        model = Payment
        fields = [
            'id',
            'payment_number',
            'current_account',
            'current_account_name',
            'bank_account',
            'bank_account_name',
            'payment_date',
            'amount',
            'status',
            'payment_method',
            'reference_number',
            'description',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['payment_number', 'created_by', 'created_at', 'updated_at']

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError('Amount must be greater than zero.')
        return value


# ---------------------------------------------------------------------------
# Warehouses and stock
# ---------------------------------------------------------------------------


class MaterialSerializer(serializers.ModelSerializer):
    class Meta:
        model = Material
        fields = ['id', 'name', 'code', 'unit', 'is_active', 'created_at']
        read_only_fields = ['id', 'created_at']


class WarehouseStockSerializer(serializers.ModelSerializer):
    material_name = serializers.CharField(source='material.name', read_only=True)
    code = serializers.CharField(source='material.code', read_only=True, allow_null=True)

    class Meta:
        model = WarehouseStock
        fields = ['id', 'material', 'material_name', 'code', 'quantity']


class WarehouseSerializer(serializers.ModelSerializer):
    total_materials = serializers.SerializerMethodField()
    total_quantity = serializers.SerializerMethodField()

    class Meta:
        model = Warehouse
        fields = ['id', 'name', 'location', 'is_active', 'created_at', 'total_materials', 'total_quantity']
        read_only_fields = ['id', 'created_at', 'total_materials', 'total_quantity']

    def get_total_materials(self, obj):
        return obj.stocks.count()

    def get_total_quantity(self, obj):
        return sum((stock.quantity for stock in obj.stocks.all()), Decimal('0'))


class WarehouseDetailSerializer(WarehouseSerializer):
    stocks = WarehouseStockSerializer(many=True, read_only=True)

    class Meta(WarehouseSerializer.Meta):
        fields = WarehouseSerializer.Meta.fields + ['stocks']
        read_only_fields = WarehouseSerializer.Meta.read_only_fields + ['stocks']


class StockMovementSerializer(serializers.ModelSerializer):
    material_name = serializers.CharField(source='material.name', read_only=True)
    warehouse_name = serializers.CharField(source='warehouse.name', read_only=True)

    class Meta:
        model = StockMovement
        fields = [
            'id',
            'material',
            'material_name',
            'warehouse',
            'warehouse_name',
            'movement_type',
            'quantity',
            'movement_date',
            'reason',
            'created_at',
        ]
        read_only_fields = ['id', 'created_at']

    def validate(self, attrs):
        movement_type = attrs.get('movement_type')
        quantity = attrs.get('quantity')
        if quantity == 0:
            raise serializers.ValidationError({'quantity': 'Quantity cannot be zero.'})
        if movement_type not in (StockMovement.TRANSFER, StockMovement.ADJUSTMENT) and quantity < 0:
            raise serializers.ValidationError(
                {'quantity': 'Only transfers and adjustments may carry a negative quantity.'}
            )
        movement_date = attrs.get('movement_date')
        if movement_date and movement_date > timezone.now():
            raise serializers.ValidationError({'movement_date': 'Movement date cannot be in the future.'})
        return attrs


class StockCountItemSerializer(serializers.ModelSerializer):
    material_name = serializers.CharField(source='material.name', read_only=True)
    material_code = serializers.CharField(source='material.code', read_only=True, allow_null=True)
    unit = serializers.CharField(source='material.unit', read_only=True)

    class Meta:
        model = StockCountItem
        fields = [
            'id',
            'stock_count',
            'material',
            'material_name',
            'material_code',
            'unit',
            'system_stock',
            'counted_stock',
            'difference',
            'reason',
            'counted_at',
            'is_completed',
            'is_manually_added',
        ]
        read_only_fields = [
            'stock_count',
            'material',
            'system_stock',
            'difference',
            'counted_at',
            'is_completed',
            'is_manually_added',
        ]

    def validate_counted_stock(self, value):
        if value < 0:
            raise serializers.ValidationError('Counted stock cannot be negative.')
        return value


class StockCountSerializer(serializers.ModelSerializer):
    warehouse_name = serializers.CharField(source='warehouse.name', read_only=True)
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = StockCount
        fields = [
            'id',
            'count_number',
            'warehouse',
            'warehouse_name',
            'status',
            'count_date',
            'count_time',
            'cutoff_datetime',
            'notes',
            'approved_by',
            'approved_at',
            'item_count',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_item_count(self, obj):
        return obj.items.count()


class StockCountDetailSerializer(StockCountSerializer):
    items = StockCountItemSerializer(many=True, read_only=True)

    class Meta(StockCountSerializer.Meta):
        fields = StockCountSerializer.Meta.fields + ['items']
        read_only_fields = fields


def build_cutoff(day, at=None, strict=True):
    """Combine ``day`` and ``at`` (default 23:59) into the last second of that minute.

    With ``strict`` any instant after now is rejected. Otherwise only a day
    after today is rejected and a later time today is clamped to now, so a
    count can be taken for today without naming a time.
    """

    cutoff = datetime.combine(day, (at or time(23, 59)).replace(second=59, microsecond=0))
    if timezone.is_naive(cutoff):
        cutoff = timezone.make_aware(cutoff)
    now = timezone.now()
    if strict:
        if cutoff > now:
            raise serializers.ValidationError({'date': 'Count date cannot be in the future.'})
        return cutoff
    if day > timezone.localdate():
        raise serializers.ValidationError({'date': 'Count date cannot be in the future.'})
    return min(cutoff, now)


class CutoffSerializer(serializers.Serializer):
    """Validate a ``date`` (YYYY-MM-DD) and optional ``time`` (HH:MM, default 23:59)."""

    strict_cutoff = True

    date = serializers.DateField(input_formats=['%Y-%m-%d'])
    time = serializers.TimeField(input_formats=['%H:%M', '%H:%M:%S'], required=False)

    def validate(self, attrs):
        attrs['cutoff'] = build_cutoff(attrs['date'], attrs.get('time'), strict=self.strict_cutoff)
        return attrs


class StockCountCreateSerializer(CutoffSerializer):
    strict_cutoff = False

    warehouse_id = serializers.IntegerField()
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_warehouse_id(self, value):
        try:
            warehouse = Warehouse.objects.get(pk=value)
        except Warehouse.DoesNotExist as exc:
            raise serializers.ValidationError('Invalid warehouse selection.') from exc
        if not warehouse.is_active:
            raise serializers.ValidationError('Warehouse is not active.')
        return value


class HistoricalStockQuerySerializer(CutoffSerializer):
    warehouse_id = serializers.IntegerField()


class StockCountRecalculateSerializer(serializers.Serializer):
    date = serializers.DateField(input_formats=['%Y-%m-%d'], required=False)
    time = serializers.TimeField(input_formats=['%H:%M', '%H:%M:%S'], required=False)

    def validate(self, attrs):
        if 'time' in attrs and 'date' not in attrs:
            raise serializers.ValidationError({'date': 'A date is required when a time is given.'})
        if 'date' in attrs:
            attrs['cutoff'] = build_cutoff(attrs['date'], attrs.get('time'), strict=False)
        return attrs


class AddMaterialSerializer(serializers.Serializer):
    material_id = serializers.IntegerField()

    def validate_material_id(self, value):
        if not Material.objects.filter(pk=value).exists():
            raise serializers.ValidationError('Invalid material selection.')
        return value


class HistoricalStockSerializer(serializers.Serializer):
    material_id = serializers.IntegerField()
    name = serializers.CharField()
    code = serializers.CharField(allow_null=True)
    unit = serializers.CharField()
    historical_stock = serializers.DecimalField(max_digits=14, decimal_places=3)
    last_movement_date = serializers.DateTimeField(allow_null=True)


class StockCountRecalculationSerializer(serializers.Serializer):
    stock_count_id = serializers.IntegerField()
    cutoff_datetime = serializers.DateTimeField()
    items_created = serializers.IntegerField()
    manual_items_updated = serializers.IntegerField()
    preserved_entries_restored = serializers.IntegerField()
    total_historical_materials = serializers.IntegerField()

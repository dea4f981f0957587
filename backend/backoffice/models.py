# backend/backoffice/models.py
import re
from datetime import date
from decimal import Decimal

from django.contrib.auth.models import User
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.db import models, transaction
from django.utils import timezone

from .services import ledger


class Activity(models.Model):
    ACTION_TYPES = (
        ('created', 'Created'),
        ('updated', 'Updated'),
        ('deleted', 'Deleted'),
        ('recalculated', 'Recalculated'),
    )

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='activities')
    action_type = models.CharField(max_length=20, choices=ACTION_TYPES)
    description = models.CharField(max_length=255)
    timestamp = models.DateTimeField(auto_now_add=True)

    # Generic relationship to the object that was acted upon
    content_type = models.ForeignKey(ContentType, on_delete=models.CASCADE)
    object_id = models.PositiveIntegerField()
    content_object = GenericForeignKey('content_type', 'object_id')

    # Serialized snapshot kept for "deleted" actions
    object_repr = models.TextField(blank=True, null=True)

    class Meta:
        ordering = ['-timestamp']
        verbose_name_plural = 'Activities'

    def __str__(self):
        return f'{self.user.username} {self.action_type} - {self.description}'


class Supplier(models.Model):
    name = models.CharField(max_length=255)
    email = models.EmailField(max_length=254, blank=True, null=True)
    phone = models.CharField(max_length=20, blank=True, null=True)
    address = models.TextField(blank=True, null=True)
    tax_number = models.CharField(max_length=50, blank=True, null=True)
    created_by = models.ForeignKey(User, on_delete=models.CASCADE, related_name='suppliers')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class BankAccount(models.Model):
    name = models.CharField(max_length=255)
    currency = models.CharField(max_length=3, default='TRY')
    balance = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    created_by = models.ForeignKey(User, on_delete=models.CASCADE, related_name='bank_accounts')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class CurrentAccount(models.Model):
    """Running ledger kept per supplier or customer.

    ``current_balance`` is a cache rebuilt by
    :func:`backoffice.services.ledger.recalculate_account_balances`; it always
    equals ``opening_balance`` plus the sum of the account's transactions.
    """

    SUPPLIER = 'SUPPLIER'
    CUSTOMER = 'CUSTOMER'
    OTHER = 'OTHER'

    ACCOUNT_TYPE_CHOICES = [
        (SUPPLIER, 'Supplier'),
        (CUSTOMER, 'Customer'),
        (OTHER, 'Other'),
    ]

    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255)
    account_type = models.CharField(max_length=20, choices=ACCOUNT_TYPE_CHOICES, default=SUPPLIER)
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.SET_NULL,
        related_name='current_accounts',
        null=True,
        blank=True,
    )
    opening_balance = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    current_balance = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    credit_limit = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    last_activity_date = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(User, on_delete=models.CASCADE, related_name='current_accounts')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.code} - {self.name}"

    def save(self, *args, **kwargs):
        if self.pk is None:
            self.current_balance = self.opening_balance
        super().save(*args, **kwargs)

    @property
    def available_credit(self) -> Decimal:
        return Decimal(self.credit_limit or 0) - Decimal(self.current_balance or 0)

    @property
    def is_over_limit(self) -> bool:
        limit = Decimal(self.credit_limit or 0)
        return limit > 0 and Decimal(self.current_balance or 0) > limit


class Invoice(models.Model):
    """Supplier invoice; every posted invoice is mirrored by one DEBT transaction."""

    DRAFT = 'DRAFT'
    APPROVED = 'APPROVED'
    PAID = 'PAID'
    CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (DRAFT, 'Draft'),
        (APPROVED, 'Approved'),
        (PAID, 'Paid'),
        (CANCELLED, 'Cancelled'),
    ]

    invoice_number = models.CharField(max_length=50, unique=True)
    current_account = models.ForeignKey(
        CurrentAccount,
        on_delete=models.PROTECT,
        related_name='invoices',
    )
    invoice_date = models.DateField(default=date.today)
    due_date = models.DateField(null=True, blank=True)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=APPROVED)
    description = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(User, on_delete=models.CASCADE, related_name='invoices')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-invoice_date', '-id']

    def __str__(self):
        return f"Invoice {self.invoice_number}"

    @property
    def posts_to_ledger(self) -> bool:
        return self.status not in (self.DRAFT, self.CANCELLED)

    def save(self, *args, **kwargs):
        with transaction.atomic():
            previous = None
            if self.pk:
                previous = Invoice.objects.select_for_update().filter(pk=self.pk).first()
            super().save(*args, **kwargs)
            ledger.sync_invoice_transaction(self, previous)

    def delete(self, *args, **kwargs):
        with transaction.atomic():
            ledger.remove_invoice_transaction(self)
            return super().delete(*args, **kwargs)


class Payment(models.Model):
    """Cash paid toward a current account.

    Only completed payments reach the ledger, as one PAYMENT transaction
    carrying ``-amount``.
    """

    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
    ]

    PAYMENT_METHODS = [
        ('CASH', 'Cash'),
        ('BANK_TRANSFER', 'Bank Transfer'),
        ('CREDIT_CARD', 'Credit Card'),
        ('CHECK', 'Check'),
    ]

    NUMBER_PATTERN = re.compile(r'^PAY(\d+)$')

    payment_number = models.CharField(max_length=20, unique=True, blank=True)
    current_account = models.ForeignKey(
        CurrentAccount,
        on_delete=models.PROTECT,
        related_name='payments',
    )
    bank_account = models.ForeignKey(
        BankAccount,
        on_delete=models.SET_NULL,
        related_name='payments',
        null=True,
        blank=True,
    )
    payment_date = models.DateField()
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHODS, default='CASH')
    reference_number = models.CharField(max_length=100, blank=True, default='')
    description = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(User, on_delete=models.CASCADE, related_name='payments')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-payment_date', '-id']

    def __str__(self):
        return f"Payment {self.payment_number} of {self.amount}"

    @classmethod
    def next_payment_number(cls) -> str:
        next_number = 1
        for number in cls.objects.filter(payment_number__startswith='PAY').values_list(
            'payment_number', flat=True
        ):
            match = cls.NUMBER_PATTERN.match(number)
            if match:
                next_number = max(next_number, int(match.group(1)) + 1)
        return f"PAY{next_number:04d}"

    def save(self, *args, **kwargs):
        with transaction.atomic():
            if not self.payment_number:
                self.payment_number = self.next_payment_number()
            previous = None
            if self.pk:
                previous = Payment.objects.select_for_update().filter(pk=self.pk).first()
            super().save(*args, **kwargs)
            ledger.sync_payment_transaction(self, previous)

    def delete(self, *args, **kwargs):
        with transaction.atomic():
            ledger.remove_payment_transaction(self)
            return super().delete(*args, **kwargs)


class CurrentAccountTransaction(models.Model):
    """One ledger event.  ``balance_before``/``balance_after`` are caches."""

    DEBT = ledger.DEBT
    PAYMENT = ledger.PAYMENT
    ADJUSTMENT = ledger.ADJUSTMENT

    TRANSACTION_TYPE_CHOICES = [
        (DEBT, 'Debt'),
        (PAYMENT, 'Payment'),
        (ADJUSTMENT, 'Adjustment'),
    ]

    current_account = models.ForeignKey(
        CurrentAccount,
        on_delete=models.PROTECT,
        related_name='transactions',
    )
    transaction_date = models.DateField()
    transaction_type = models.CharField(max_length=20, choices=TRANSACTION_TYPE_CHOICES)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    balance_before = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    balance_after = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    invoice = models.OneToOneField(
        Invoice,
        on_delete=models.CASCADE,
        related_name='ledger_transaction',
        null=True,
        blank=True,
    )
    payment = models.OneToOneField(
        Payment,
        on_delete=models.CASCADE,
        related_name='ledger_transaction',
        null=True,
        blank=True,
    )
    description = models.CharField(max_length=255, blank=True, default='')
    reference_number = models.CharField(max_length=100, blank=True, default='')
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        related_name='ledger_transactions',
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['transaction_date', 'id']
        indexes = [
            models.Index(fields=['current_account', 'transaction_date'], name='ledger_account_date_idx'),
        ]

    def __str__(self):
        return f"{self.get_transaction_type_display()} {self.amount} on {self.transaction_date}"


class Warehouse(models.Model):
    """Physical storage location for material stock."""

    name = models.CharField(max_length=255, unique=True)
    location = models.CharField(max_length=255, blank=True, default='')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Material(models.Model):
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=50, unique=True, blank=True, null=True)
    unit = models.CharField(max_length=20, default='kg')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class WarehouseStock(models.Model):
    """Live quantity of a material stored in a specific warehouse."""

    warehouse = models.ForeignKey(Warehouse, on_delete=models.CASCADE, related_name='stocks')
    material = models.ForeignKey(Material, on_delete=models.CASCADE, related_name='warehouse_stocks')
    quantity = models.DecimalField(max_digits=14, decimal_places=3, default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ('warehouse', 'material')
        verbose_name = 'Warehouse Stock'
        verbose_name_plural = 'Warehouse Stock'

    def __str__(self):
        return f"{self.material.name} @ {self.warehouse.name}"

    @classmethod
    def adjust_stock(cls, material: Material, warehouse: Warehouse, delta) -> Decimal:
        """Adjust the quantity of ``material`` stored in ``warehouse``.

        ``delta`` may be positive or negative.  Negative balances are
        permitted; the movement log stays the source of truth.
        """

        delta = Decimal(delta or 0)

        with transaction.atomic():
            stock, _ = cls.objects.select_for_update().get_or_create(
                material=material,
                warehouse=warehouse,
                defaults={'quantity': Decimal('0')},
            )
            if delta:
                stock.quantity = Decimal(stock.quantity) + delta
                stock.save(update_fields=['quantity', 'updated_at'])
            return stock.quantity


class StockMovement(models.Model):
    IN = 'IN'
    OUT = 'OUT'
    TRANSFER = 'TRANSFER'
    ADJUSTMENT = 'ADJUSTMENT'
    PURCHASE = 'PURCHASE'
    CONSUMPTION = 'CONSUMPTION'
    PRODUCTION = 'PRODUCTION'
    WASTE = 'WASTE'

    MOVEMENT_TYPE_CHOICES = [
        (IN, 'In'),
        (OUT, 'Out'),
        (TRANSFER, 'Transfer'),
        (ADJUSTMENT, 'Adjustment'),
        (PURCHASE, 'Purchase'),
        (CONSUMPTION, 'Consumption'),
        (PRODUCTION, 'Production'),
        (WASTE, 'Waste'),
    ]

    material = models.ForeignKey(Material, on_delete=models.PROTECT, related_name='movements')
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='movements')
    movement_type = models.CharField(max_length=20, choices=MOVEMENT_TYPE_CHOICES)
    quantity = models.DecimalField(max_digits=14, decimal_places=3)
    movement_date = models.DateTimeField(default=timezone.now)
    reason = models.CharField(max_length=255, blank=True, default='')
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        related_name='stock_movements',
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['movement_date', 'id']
        indexes = [
            models.Index(fields=['warehouse', 'material', 'movement_date'], name='movement_replay_idx'),
        ]

    def __str__(self):
        return f"{self.movement_type} {self.quantity} {self.material.name} @ {self.warehouse.name}"


class StockCount(models.Model):
    PLANNING = 'PLANNING'
    IN_PROGRESS = 'IN_PROGRESS'
    PENDING_APPROVAL = 'PENDING_APPROVAL'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (PLANNING, 'Planning'),
        (IN_PROGRESS, 'In Progress'),
        (PENDING_APPROVAL, 'Pending Approval'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
    ]

    EDITABLE_STATUSES = (PLANNING, IN_PROGRESS)

    count_number = models.CharField(max_length=30, unique=True)
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='stock_counts')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PLANNING)
    count_date = models.DateField(default=date.today)
    count_time = models.TimeField(null=True, blank=True)
    cutoff_datetime = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(User, on_delete=models.CASCADE, related_name='stock_counts')
    approved_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        related_name='approved_stock_counts',
        null=True,
        blank=True,
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-count_date', '-id']

    def __str__(self):
        return f"Stock count {self.count_number}"

    @property
    def is_editable(self) -> bool:
        return self.status in self.EDITABLE_STATUSES


class StockCountItem(models.Model):
    stock_count = models.ForeignKey(StockCount, on_delete=models.CASCADE, related_name='items')
    material = models.ForeignKey(Material, on_delete=models.PROTECT, related_name='stock_count_items')
    system_stock = models.DecimalField(max_digits=14, decimal_places=3, default=0)
    counted_stock = models.DecimalField(max_digits=14, decimal_places=3, default=0)
    difference = models.DecimalField(max_digits=14, decimal_places=3, default=0)
    reason = models.CharField(max_length=255, blank=True, null=True)
    counted_at = models.DateTimeField(null=True, blank=True)
    is_completed = models.BooleanField(default=False)
    is_manually_added = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ('stock_count', 'material')
        ordering = ['material__name']

    def __str__(self):
        return f"{self.material.name} in {self.stock_count.count_number}"

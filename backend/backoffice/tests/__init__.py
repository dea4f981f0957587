from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

from django.contrib.auth.models import User

from ..models import CurrentAccount, Invoice, Material, Payment, StockMovement, Warehouse


def create_user(username: str, password: str = "pw"):
    return User.objects.create_user(username=username, password=password)


def at(year, month, day, hour=12, minute=0):
    """Aware UTC datetime for movement timestamps."""
    return datetime(year, month, day, hour, minute, tzinfo=dt_timezone.utc)


def create_account(user, code="SUP-001", opening_balance="0.00", **extra):
    return CurrentAccount.objects.create(
        code=code,
        name=extra.pop("name", f"Account {code}"),
        opening_balance=Decimal(opening_balance),
        created_by=user,
        **extra,
    )


def create_invoice(user, account, number, amount, invoice_date, **extra):
    return Invoice.objects.create(
        invoice_number=number,
        current_account=account,
        invoice_date=invoice_date,
        total_amount=Decimal(amount),
        created_by=user,
        **extra,
    )


def create_payment(user, account, amount, payment_date, status=Payment.COMPLETED, **extra):
    return Payment.objects.create(
        current_account=account,
        payment_date=payment_date,
        amount=Decimal(amount),
        status=status,
        created_by=user,
        **extra,
    )


def create_movement(material, warehouse, movement_type, quantity, movement_date):
    return StockMovement.objects.create(
        material=material,
        warehouse=warehouse,
        movement_type=movement_type,
        quantity=Decimal(quantity),
        movement_date=movement_date,
    )


def create_material(name, code=None, unit="kg"):
    return Material.objects.create(name=name, code=code, unit=unit)


def create_warehouse(name="Main Kitchen"):
    return Warehouse.objects.create(name=name)

"""Historical stock replay and stock-count maintenance.

The stock level of a material in a warehouse at any instant is the signed
sum of its movements up to that instant.  Stock counts compare that
replayed ``system_stock`` against what staff physically counted, and can
be regenerated for a new cutoff without losing counts already entered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from django.db import transaction
from django.utils import timezone
from rest_framework import serializers

from ..exceptions import InvalidStateError, NotFoundError
from ..models import Material, StockCount, StockCountItem, StockMovement, Warehouse, WarehouseStock

logger = logging.getLogger(__name__)

QUANTITY_QUANTIZER = Decimal("0.001")
ZERO = Decimal("0")

INBOUND_TYPES = frozenset({StockMovement.IN, StockMovement.PURCHASE, StockMovement.PRODUCTION})
OUTBOUND_TYPES = frozenset({StockMovement.OUT, StockMovement.CONSUMPTION, StockMovement.WASTE})
SIGNED_TYPES = frozenset({StockMovement.TRANSFER, StockMovement.ADJUSTMENT})


def signed_quantity(movement_type: str, quantity) -> Decimal:
    """Quantity as it affects stock: inbound adds, outbound subtracts."""

    quantity = Decimal(quantity or 0)
    if movement_type in INBOUND_TYPES:
        return abs(quantity)
    if movement_type in OUTBOUND_TYPES:
        return -abs(quantity)
    if movement_type in SIGNED_TYPES:
        return quantity
    raise ValueError(f"Unknown stock movement type: {movement_type}")


@dataclass(frozen=True)
class HistoricalStock:
    material_id: int
    name: str
    code: Optional[str]
    unit: str
    historical_stock: Decimal
    last_movement_date: Optional[datetime]


@dataclass(frozen=True)
class StockCountRecalculation:
    stock_count_id: int
    cutoff_datetime: datetime
    items_created: int
    manual_items_updated: int
    preserved_entries_restored: int
    total_historical_materials: int


def sum_movements(rows: Iterable[tuple]) -> dict[int, tuple[Decimal, Optional[datetime]]]:
    """Fold ``(material_id, movement_type, quantity, movement_date)`` rows.

    Rows are consumed one at a time so callers can stream them straight
    from the database.
    """

    totals: dict[int, tuple[Decimal, Optional[datetime]]] = {}
    for material_id, movement_type, quantity, movement_date in rows:
        stock, last_date = totals.get(material_id, (ZERO, None))
        stock += signed_quantity(movement_type, quantity)
        if last_date is None or movement_date > last_date:
            last_date = movement_date
        totals[material_id] = (stock, last_date)
    return totals


def _get_warehouse(warehouse_id) -> Warehouse:
    try:
        return Warehouse.objects.get(pk=warehouse_id)
    except Warehouse.DoesNotExist as exc:
        raise NotFoundError(f"Warehouse not found: {warehouse_id}") from exc


def calculate_stock_at_datetime(warehouse_id, cutoff: datetime) -> list[HistoricalStock]:
    """Materials with strictly positive stock in ``warehouse_id`` at ``cutoff``."""

    warehouse = _get_warehouse(warehouse_id)
    rows = (
        StockMovement.objects.filter(warehouse=warehouse, movement_date__lte=cutoff)
        .order_by("material_id", "movement_date", "id")
        .values_list("material_id", "movement_type", "quantity", "movement_date")
        .iterator()
    )
    totals = sum_movements(rows)

    positive = {pk: value for pk, value in totals.items() if value[0] > 0}
    materials = Material.objects.filter(pk__in=positive).order_by("name", "id")
    result = []
    for material in materials:
        stock, last_date = positive[material.pk]
        result.append(
            HistoricalStock(
                material_id=material.pk,
                name=material.name,
                code=material.code,
                unit=material.unit,
                historical_stock=stock.quantize(QUANTITY_QUANTIZER),
                last_movement_date=last_date,
            )
        )
    logger.debug(
        "Historical stock for warehouse %s at %s: %d material(s) in stock",
        warehouse.pk,
        cutoff,
        len(result),
    )
    return result


def calculate_material_stock_at_datetime(material_id, warehouse_id, cutoff: datetime) -> Decimal:
    rows = (
        StockMovement.objects.filter(
            material_id=material_id,
            warehouse_id=warehouse_id,
            movement_date__lte=cutoff,
        )
        .values_list("material_id", "movement_type", "quantity", "movement_date")
        .iterator()
    )
    stock, _ = sum_movements(rows).get(material_id, (ZERO, None))
    return stock.quantize(QUANTITY_QUANTIZER)


def record_movement(
    *,
    material: Material,
    warehouse: Warehouse,
    movement_type: str,
    quantity,
    movement_date: Optional[datetime] = None,
    reason: str = "",
    user=None,
) -> StockMovement:
    """Append a movement and move the live warehouse stock with it."""

    delta = signed_quantity(movement_type, quantity)
    with transaction.atomic():
        movement = StockMovement.objects.create(
            material=material,
            warehouse=warehouse,
            movement_type=movement_type,
            quantity=Decimal(quantity),
            movement_date=movement_date or timezone.now(),
            reason=reason or "",
            created_by=user,
        )
        WarehouseStock.adjust_stock(material, warehouse, delta)
    return movement


# ---------------------------------------------------------------------------
# Stock counts
# ---------------------------------------------------------------------------


def should_preserve(item) -> bool:
    """Whether ``item`` carries a count the user actually entered.

    A zero count is ambiguous; it only counts as entered when the item was
    completed and its difference is non-zero.
    """

    counted = Decimal(item.counted_stock or 0)
    if counted > 0:
        return True
    return counted == 0 and item.is_completed and Decimal(item.difference or 0) != 0


def collect_preserved_entries(items: Iterable) -> dict[int, dict]:
    return {
        item.material_id: {
            "counted_stock": item.counted_stock,
            "reason": item.reason,
            "is_completed": item.is_completed,
            "counted_at": item.counted_at,
        }
        for item in items
        if should_preserve(item)
    }


def _lock_count(stock_count_id) -> StockCount:
    try:
        return StockCount.objects.select_for_update().get(pk=stock_count_id)
    except StockCount.DoesNotExist as exc:
        raise NotFoundError(f"Stock count not found: {stock_count_id}") from exc


def _require_editable(stock_count: StockCount) -> None:
    if not stock_count.is_editable:
        raise InvalidStateError(
            f"Stock count {stock_count.count_number} is {stock_count.status} and cannot be changed."
        )


def _set_cutoff(stock_count: StockCount, cutoff: datetime) -> None:
    local_cutoff = timezone.localtime(cutoff) if timezone.is_aware(cutoff) else cutoff
    stock_count.cutoff_datetime = cutoff
    stock_count.count_date = local_cutoff.date()
    stock_count.count_time = local_cutoff.time().replace(microsecond=0)


def recalculate_stock_count(stock_count_id, new_cutoff: Optional[datetime] = None) -> StockCountRecalculation:
    """Regenerate auto items for a new cutoff, keeping every entered count."""

    with transaction.atomic():
        stock_count = _lock_count(stock_count_id)
        _require_editable(stock_count)

        cutoff = new_cutoff or stock_count.cutoff_datetime
        if cutoff is None:
            raise InvalidStateError(
                f"Stock count {stock_count.count_number} has no cutoff date and time."
            )

        logger.info(
            "Recalculating stock count %s for cutoff %s (was %s)",
            stock_count.count_number,
            cutoff,
            stock_count.cutoff_datetime,
        )

        if new_cutoff is not None:
            _set_cutoff(stock_count, new_cutoff)
            stock_count.save(update_fields=["cutoff_datetime", "count_date", "count_time", "updated_at"])

        auto_items = stock_count.items.filter(is_manually_added=False)
        preserved = collect_preserved_entries(auto_items)
        auto_items.delete()

        historical = calculate_stock_at_datetime(stock_count.warehouse_id, cutoff)
        snapshot = {entry.material_id: entry.historical_stock for entry in historical}

        manual_items = list(stock_count.items.filter(is_manually_added=True))
        manual_materials = {item.material_id for item in manual_items}

        new_items = []
        restored = 0
        for entry in historical:
            if entry.material_id in manual_materials:
                continue
            kept = preserved.get(entry.material_id)
            counted = Decimal(kept["counted_stock"]) if kept else ZERO
            if kept:
                restored += 1
            new_items.append(
                StockCountItem(
                    stock_count=stock_count,
                    material_id=entry.material_id,
                    system_stock=entry.historical_stock,
                    counted_stock=counted,
                    difference=counted - entry.historical_stock,
                    reason=kept["reason"] if kept else None,
                    counted_at=kept["counted_at"] if kept else None,
                    is_completed=kept["is_completed"] if kept else False,
                    is_manually_added=False,
                )
            )

        # Counts for materials that left the snapshot stay, against zero stock.
        for material_id, kept in preserved.items():
            if material_id in snapshot or material_id in manual_materials:
                continue
            counted = Decimal(kept["counted_stock"])
            restored += 1
            new_items.append(
                StockCountItem(
                    stock_count=stock_count,
                    material_id=material_id,
                    system_stock=ZERO,
                    counted_stock=counted,
                    difference=counted,
                    reason=kept["reason"],
                    counted_at=kept["counted_at"],
                    is_completed=kept["is_completed"],
                    is_manually_added=False,
                )
            )
        StockCountItem.objects.bulk_create(new_items)

        now = timezone.now()
        for item in manual_items:
            item.system_stock = snapshot.get(item.material_id, ZERO)
            item.difference = Decimal(item.counted_stock) - item.system_stock
            item.updated_at = now
        if manual_items:
            StockCountItem.objects.bulk_update(manual_items, ["system_stock", "difference", "updated_at"])

    logger.info(
        "Stock count %s recalculated: %d item(s) created, %d restored, %d manual item(s) updated",
        stock_count.count_number,
        len(new_items),
        restored,
        len(manual_items),
    )
    return StockCountRecalculation(
        stock_count_id=stock_count.pk,
        cutoff_datetime=cutoff,
        items_created=len(new_items),
        manual_items_updated=len(manual_items),
        preserved_entries_restored=restored,
        total_historical_materials=len(historical),
    )


def next_count_number(on_date=None) -> str:
    on_date = on_date or timezone.localdate()
    prefix = on_date.isoformat()
    sequence = StockCount.objects.filter(count_number__startswith=prefix).count() + 1
    number = f"{prefix}-{sequence:03d}"
    while StockCount.objects.filter(count_number=number).exists():
        sequence += 1
        number = f"{prefix}-{sequence:03d}"
    return number


def create_stock_count(warehouse: Warehouse, cutoff: datetime, user, notes: str = "") -> StockCount:
    """Open a PLANNING count seeded from the historical snapshot at ``cutoff``."""

    if cutoff > timezone.now():
        raise serializers.ValidationError({"cutoff_datetime": "Count date cannot be in the future."})

    with transaction.atomic():
        stock_count = StockCount(
            warehouse=warehouse,
            status=StockCount.PLANNING,
            notes=notes or "",
            created_by=user,
        )
        _set_cutoff(stock_count, cutoff)
        stock_count.count_number = next_count_number(stock_count.count_date)
        stock_count.save()

        historical = calculate_stock_at_datetime(warehouse.pk, cutoff)
        StockCountItem.objects.bulk_create(
            [
                StockCountItem(
                    stock_count=stock_count,
                    material_id=entry.material_id,
                    system_stock=entry.historical_stock,
                    counted_stock=ZERO,
                    difference=-entry.historical_stock,
                )
                for entry in historical
            ]
        )

    logger.info(
        "Stock count %s opened for warehouse %s with %d item(s)",
        stock_count.count_number,
        warehouse.pk,
        len(historical),
    )
    return stock_count


def add_material_to_count(stock_count: StockCount, material: Material) -> StockCountItem:
    with transaction.atomic():
        stock_count = _lock_count(stock_count.pk)
        _require_editable(stock_count)
        if stock_count.items.filter(material=material).exists():
            raise serializers.ValidationError(
                {"material_id": "This material is already part of the count."}
            )

        system_stock = ZERO
        if stock_count.cutoff_datetime:
            system_stock = max(
                ZERO,
                calculate_material_stock_at_datetime(
                    material.pk, stock_count.warehouse_id, stock_count.cutoff_datetime
                ),
            )
        return StockCountItem.objects.create(
            stock_count=stock_count,
            material=material,
            system_stock=system_stock,
            counted_stock=ZERO,
            difference=-system_stock,
            is_completed=False,
            is_manually_added=True,
        )


def record_count(item: StockCountItem, counted_stock=None, reason=None) -> StockCountItem:
    """Store what was physically counted for ``item``."""

    with transaction.atomic():
        stock_count = _lock_count(item.stock_count_id)
        _require_editable(stock_count)

        update_fields = ["updated_at"]
        if counted_stock is not None:
            item.counted_stock = Decimal(counted_stock)
            item.difference = item.counted_stock - Decimal(item.system_stock)
            item.counted_at = timezone.now()
            item.is_completed = True
            update_fields += ["counted_stock", "difference", "counted_at", "is_completed"]
        if reason is not None:
            item.reason = reason
            update_fields.append("reason")
        item.save(update_fields=update_fields)

        if counted_stock is not None and stock_count.status == StockCount.PLANNING:
            stock_count.status = StockCount.IN_PROGRESS
            stock_count.save(update_fields=["status", "updated_at"])
    return item


def submit_stock_count(stock_count: StockCount) -> StockCount:
    with transaction.atomic():
        stock_count = _lock_count(stock_count.pk)
        _require_editable(stock_count)
        stock_count.status = StockCount.PENDING_APPROVAL
        stock_count.save(update_fields=["status", "updated_at"])
    return stock_count


def approve_stock_count(stock_count: StockCount, user) -> StockCount:
    """Book the difference of every counted item as an ADJUSTMENT movement.

    Items nobody counted are left alone; their live stock is not zeroed.
    """

    with transaction.atomic():
        stock_count = _lock_count(stock_count.pk)
        if stock_count.status != StockCount.PENDING_APPROVAL:
            raise InvalidStateError("Only stock counts pending approval can be approved.")

        adjustments = 0
        counted_items = stock_count.items.select_related("material").filter(is_completed=True)
        for item in counted_items.exclude(difference=0):
            record_movement(
                material=item.material,
                warehouse=stock_count.warehouse,
                movement_type=StockMovement.ADJUSTMENT,
                quantity=item.difference,
                reason=item.reason or f"Stock count {stock_count.count_number}",
                user=user,
            )
            adjustments += 1

        stock_count.status = StockCount.COMPLETED
        stock_count.approved_by = user
        stock_count.approved_at = timezone.now()
        stock_count.save(update_fields=["status", "approved_by", "approved_at", "updated_at"])

    logger.info(
        "Stock count %s approved with %d adjustment(s)", stock_count.count_number, adjustments
    )
    return stock_count


def cancel_stock_count(stock_count: StockCount) -> StockCount:
    with transaction.atomic():
        stock_count = _lock_count(stock_count.pk)
        if stock_count.status == StockCount.COMPLETED:
            raise InvalidStateError("Completed stock counts cannot be cancelled.")
        stock_count.status = StockCount.CANCELLED
        stock_count.save(update_fields=["status", "updated_at"])
    return stock_count

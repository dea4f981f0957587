from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from ..exceptions import NotFoundError
from ..models import StockMovement, WarehouseStock
from ..services import stock
from . import at, create_material, create_movement, create_warehouse, create_user


class SignedQuantityTests(SimpleTestCase):
    def test_inbound_and_outbound_ignore_stored_sign(self):
        self.assertEqual(stock.signed_quantity("PURCHASE", Decimal("-4")), Decimal("4"))
        self.assertEqual(stock.signed_quantity("WASTE", Decimal("4")), Decimal("-4"))
        self.assertEqual(stock.signed_quantity("CONSUMPTION", Decimal("-4")), Decimal("-4"))

    def test_transfer_and_adjustment_keep_their_sign(self):
        self.assertEqual(stock.signed_quantity("TRANSFER", Decimal("-2.5")), Decimal("-2.5"))
        self.assertEqual(stock.signed_quantity("ADJUSTMENT", Decimal("3")), Decimal("3"))

    def test_unknown_type(self):
        with self.assertRaises(ValueError):
            stock.signed_quantity("GIFT", Decimal("1"))


class HistoricalStockTests(TestCase):
    def setUp(self):
        self.warehouse = create_warehouse()
        self.other_warehouse = create_warehouse("Bar")
        self.tomato = create_material("Tomato", code="TOM")
        self.flour = create_material("Flour", code="FLR")
        self.oil = create_material("Olive oil", code="OIL", unit="l")

        create_movement(self.tomato, self.warehouse, StockMovement.PURCHASE, "10", at(2024, 3, 1))
        create_movement(self.tomato, self.warehouse, StockMovement.CONSUMPTION, "4", at(2024, 3, 2))
        create_movement(self.tomato, self.warehouse, StockMovement.PURCHASE, "20", at(2024, 3, 10))
        create_movement(self.flour, self.warehouse, StockMovement.IN, "5", at(2024, 3, 1))
        create_movement(self.flour, self.warehouse, StockMovement.TRANSFER, "-2", at(2024, 3, 3))
        create_movement(self.flour, self.warehouse, StockMovement.ADJUSTMENT, "0.5", at(2024, 3, 4))
        create_movement(self.oil, self.warehouse, StockMovement.IN, "3", at(2024, 3, 1))
        create_movement(self.oil, self.warehouse, StockMovement.WASTE, "3", at(2024, 3, 2))
        create_movement(self.oil, self.other_warehouse, StockMovement.IN, "7", at(2024, 3, 1))

    def test_snapshot_sums_signed_movements_up_to_cutoff(self):
        rows = stock.calculate_stock_at_datetime(self.warehouse.pk, at(2024, 3, 5))

        self.assertEqual(
            [(row.name, row.historical_stock) for row in rows],
            [("Flour", Decimal("3.500")), ("Tomato", Decimal("6.000"))],
        )
        self.assertEqual(rows[1].last_movement_date, at(2024, 3, 2))
        self.assertEqual(rows[0].unit, "kg")

    def test_cutoff_is_inclusive(self):
        rows = stock.calculate_stock_at_datetime(self.warehouse.pk, at(2024, 3, 10))
        tomato = next(row for row in rows if row.material_id == self.tomato.pk)
        self.assertEqual(tomato.historical_stock, Decimal("26.000"))

    def test_non_positive_materials_are_dropped(self):
        rows = stock.calculate_stock_at_datetime(self.warehouse.pk, at(2024, 3, 31))
        self.assertNotIn(self.oil.pk, [row.material_id for row in rows])

    def test_nothing_before_first_movement(self):
        self.assertEqual(stock.calculate_stock_at_datetime(self.warehouse.pk, at(2024, 2, 1)), [])

    def test_single_material_query_is_unfiltered(self):
        self.assertEqual(
            stock.calculate_material_stock_at_datetime(self.oil.pk, self.warehouse.pk, at(2024, 3, 31)),
            Decimal("0.000"),
        )
        self.assertEqual(
            stock.calculate_material_stock_at_datetime(self.oil.pk, self.other_warehouse.pk, at(2024, 3, 31)),
            Decimal("7.000"),
        )

    def test_unknown_warehouse(self):
        with self.assertRaises(NotFoundError):
            stock.calculate_stock_at_datetime(999999, at(2024, 3, 5))


class RecordMovementTests(TestCase):
    def test_live_stock_follows_movements(self):
        user = create_user("storekeeper")
        warehouse = create_warehouse()
        rice = create_material("Rice")

        stock.record_movement(
            material=rice, warehouse=warehouse, movement_type=StockMovement.PURCHASE,
            quantity="12", movement_date=at(2024, 4, 1), user=user,
        )
        stock.record_movement(
            material=rice, warehouse=warehouse, movement_type=StockMovement.CONSUMPTION,
            quantity="5", movement_date=at(2024, 4, 2), user=user,
        )

        live = WarehouseStock.objects.get(warehouse=warehouse, material=rice)
        self.assertEqual(live.quantity, Decimal("7.000"))
        self.assertEqual(
            stock.calculate_material_stock_at_datetime(rice.pk, warehouse.pk, at(2024, 4, 30)),
            live.quantity,
        )

# Overview: Pytest coverage for stock holds, releases and sales.

"""
Inventory ledger tests

Covers the reserve/release/reduce arithmetic, the all-or-nothing batch
check, clamping at zero and the movement log.
"""

import pytest

from backoffice.errors import InsufficientStockError, NotFoundError, ValidationError
from backoffice.models import InventoryMovement, InventoryRecord
from backoffice.services import inventory_service

from conftest import make_stock


class TestSingleRecordOperations:
    def test_reserve_adds_to_reserved_only(self, db_session, stock):
        rec = inventory_service.reserve(stock.id, 2, reference_type="order", reference_id="o-1")
        assert (rec.quantity, rec.reserved_quantity) == (20, 2)
        assert inventory_service.get_available_quantity(stock.id) == 18

    def test_release_clamps_at_zero(self, db_session):
        rec = make_stock(db_session, quantity=10, reserved=1)
        rec = inventory_service.release(rec.id, 5)
        assert rec.reserved_quantity == 0

    def test_reduce_converts_hold(self, db_session):
        """{quantity:10, reserved:3} minus 5 held units -> {5, 0}."""
        rec = make_stock(db_session, quantity=10, reserved=3)
        rec = inventory_service.reduce(rec.id, 5, held=True)
        assert (rec.quantity, rec.reserved_quantity) == (5, 0)

    def test_reduce_unheld_respects_other_holds(self, db_session):
        rec = make_stock(db_session, quantity=10, reserved=8)
        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.reduce(rec.id, 3, held=False)
        assert exc.value.context["shortages"][0]["available"] == 2
        db_session.expire_all()
        assert db_session.get(InventoryRecord, rec.id).quantity == 10

    def test_unknown_record(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.reserve("9b2f3c1e-0000-4000-8000-000000000000", 1)

    @pytest.mark.parametrize("qty", [0, -1])
    def test_quantity_must_be_positive(self, db_session, stock, qty):
        with pytest.raises(ValidationError):
            inventory_service.reserve(stock.id, qty)


class TestBatchOperations:
    def test_reduce_many_is_all_or_nothing(self, db_session):
        plenty = make_stock(db_session, quantity=50, name="Oil")
        short = make_stock(db_session, quantity=1, name="Sugar")

        with pytest.raises(InsufficientStockError):
            inventory_service.reduce_many([(plenty.id, 5), (short.id, 2)], held=False)
        db_session.rollback()

        assert db_session.get(InventoryRecord, plenty.id).quantity == 50
        assert db_session.get(InventoryRecord, short.id).quantity == 1

    def test_lines_for_same_record_are_summed(self, db_session, stock):
        inventory_service.reserve_many([(stock.id, 2), (stock.id, 3)], reference_id="o-2")
        db_session.commit()
        assert db_session.get(InventoryRecord, stock.id).reserved_quantity == 5
        moves = inventory_service.list_movements(reference_id="o-2")
        assert [(m.movement_type, m.quantity_change) for m in moves] == [("reserved", -5)]


class TestMovementLog:
    def test_every_mutation_is_logged(self, db_session, stock):
        inventory_service.reserve(stock.id, 4, reference_type="order", reference_id="o-3")
        inventory_service.release(stock.id, 1, reference_type="order", reference_id="o-3")
        inventory_service.reduce(stock.id, 3, held=True, reference_type="order", reference_id="o-3")

        moves = inventory_service.list_movements(inventory_id=stock.id)
        assert [(m.movement_type, m.quantity_change) for m in moves] == [
            ("reserved", -4),
            ("released", 1),
            ("sold", -3),
        ]

    def test_invalid_movement_type_filter(self, db_session):
        with pytest.raises(ValidationError):
            inventory_service.list_movements(movement_type="stolen")

    def test_movement_rows_reference_the_record(self, db_session, stock):
        inventory_service.reserve(stock.id, 1)
        row = db_session.query(InventoryMovement).one()
        assert row.inventory_id == stock.id


def test_create_inventory_record_once_per_product(db_session, stock):
    with pytest.raises(ValidationError):
        inventory_service.create_inventory_record(stock.product_id, 5)

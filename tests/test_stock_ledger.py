"""Legacy (non-batched) ledger operations, reads and movement immutability."""

import random
from decimal import Decimal

import pytest

from branch_inventory.models.inventory import (
    ImmutableRecordError,
    InventoryMovement,
    MovementType,
    StockStatus,
)
from branch_inventory.services import batch_catalog, stock_ledger
from branch_inventory.services.inventory_errors import InvalidInputError, NotFoundError
from branch_inventory.services.stock_ledger import derive_status
from tests.conftest import ACTOR, BRANCH_X, BRANCH_Y, PRODUCT_A, PRODUCT_B, delivery


def _add(db, qty, product_id=PRODUCT_A, branch_id=BRANCH_X, **extra):
    data = {"branch_id": branch_id, "product_id": product_id, "quantity": qty}
    data.update(extra)
    return stock_ledger.add_stock(db, data, created_by=ACTOR)


def _reduce(db, qty, product_id=PRODUCT_A, branch_id=BRANCH_X):
    return stock_ledger.reduce_stock(
        db, {"branch_id": branch_id, "product_id": product_id, "quantity": qty}, created_by=ACTOR
    )


@pytest.mark.parametrize(
    "current,min_stock,expected",
    [
        (0, 0, StockStatus.OUT_OF_STOCK),
        (0, 5, StockStatus.OUT_OF_STOCK),
        (3, 5, StockStatus.LOW_STOCK),
        (5, 5, StockStatus.LOW_STOCK),
        (6, 5, StockStatus.IN_STOCK),
        (1, 0, StockStatus.IN_STOCK),
    ],
)
def test_derive_status(current, min_stock, expected):
    assert derive_status(current, min_stock) == expected


class TestAddReduce:
    def test_first_add_creates_record(self, db):
        st, mv = _add(db, 12, product_name="Conditioner", category="hair", min_stock=5, unit_cost="3.20")

        assert st.current_stock == 12
        assert st.status == StockStatus.IN_STOCK
        assert st.product_name == "Conditioner"
        assert st.unit_cost == Decimal("3.2000")
        assert st.last_restocked is not None
        assert st.batch_tracked is False

        assert mv.type == MovementType.STOCK_IN
        assert (mv.quantity, mv.previous_stock, mv.new_stock) == (12, 0, 12)
        assert mv.created_by == ACTOR

    def test_second_add_increments(self, db):
        _add(db, 4)
        st, mv = _add(db, 6)

        assert st.current_stock == 10
        assert (mv.previous_stock, mv.new_stock) == (4, 10)

    def test_reduce_floors_at_zero(self, db):
        _add(db, 3)
        st, mv = _reduce(db, 10)

        assert st.current_stock == 0
        assert st.status == StockStatus.OUT_OF_STOCK
        assert mv.type == MovementType.STOCK_OUT
        assert (mv.quantity, mv.previous_stock, mv.new_stock) == (3, 3, 0)

    def test_reduce_unknown_product_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            _reduce(db, 1, product_id="missing")

    @pytest.mark.parametrize("qty", [0, -1])
    def test_non_positive_quantity_rejected(self, db, qty):
        with pytest.raises(InvalidInputError):
            _add(db, qty)

    def test_current_stock_never_negative_over_random_sequence(self, db):
        rng = random.Random(20240101)
        for _ in range(40):
            if rng.random() < 0.5:
                _add(db, rng.randint(1, 8))
            else:
                try:
                    _reduce(db, rng.randint(1, 12))
                except NotFoundError:
                    continue
            st = stock_ledger.get_stock_record(db, BRANCH_X, PRODUCT_A)
            assert st.current_stock >= 0

    def test_legacy_ops_rejected_once_batch_tracked(self, db):
        batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 5}]))

        with pytest.raises(InvalidInputError):
            _add(db, 1)
        with pytest.raises(InvalidInputError):
            _reduce(db, 1)

        st = stock_ledger.get_stock_record(db, BRANCH_X, PRODUCT_A)
        assert st.current_stock == 5


class TestUpdateStock:
    def test_threshold_change_recomputes_status(self, db):
        st, _ = _add(db, 5, min_stock=1)
        assert st.status == StockStatus.IN_STOCK

        st = stock_ledger.update_stock(db, st.id, {"min_stock": 10, "location": "Shelf 2"})

        assert st.status == StockStatus.LOW_STOCK
        assert st.location == "Shelf 2"

    def test_current_stock_adjustment_is_logged(self, db):
        st, _ = _add(db, 5)
        st = stock_ledger.update_stock(db, st.id, {"current_stock": 2}, created_by=ACTOR)

        assert st.current_stock == 2
        mv = stock_ledger.get_inventory_movements(db, BRANCH_X, limit=1)[0]
        assert mv.type == MovementType.STOCK_OUT
        assert (mv.quantity, mv.previous_stock, mv.new_stock) == (3, 5, 2)

    def test_batch_tracked_current_stock_cannot_be_edited(self, db):
        batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 5}]))
        st = stock_ledger.get_stock_record(db, BRANCH_X, PRODUCT_A)

        with pytest.raises(InvalidInputError):
            stock_ledger.update_stock(db, st.id, {"current_stock": 50})

    def test_unknown_id_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            stock_ledger.update_stock(db, 999, {"min_stock": 1})


class TestReads:
    def test_branch_stocks_default_sort_is_name_case_insensitive(self, db):
        _add(db, 1, product_id="p1", product_name="banana")
        _add(db, 1, product_id="p2", product_name="Apple")
        _add(db, 1, product_id="p3", product_name="cherry")
        _add(db, 1, product_id="p4", product_name="zzz", branch_id=BRANCH_Y)

        names = [s.product_name for s in stock_ledger.get_branch_stocks(db, BRANCH_X)]
        assert names == ["Apple", "banana", "cherry"]

    def test_branch_stocks_filters_and_desc_sort(self, db):
        _add(db, 1, product_id="p1", category="hair", min_stock=5)
        _add(db, 20, product_id="p2", category="hair", min_stock=5)
        _add(db, 9, product_id="p3", category="nails")

        low = stock_ledger.get_branch_stocks(db, BRANCH_X, status=StockStatus.LOW_STOCK)
        assert [s.product_id for s in low] == ["p1"]

        hair = stock_ledger.get_branch_stocks(
            db, BRANCH_X, category="hair", order_by="current_stock", order_direction="desc"
        )
        assert [s.product_id for s in hair] == ["p2", "p1"]

    def test_unknown_sort_field_rejected(self, db):
        with pytest.raises(InvalidInputError):
            stock_ledger.get_branch_stocks(db, BRANCH_X, order_by="password")

    def test_get_stock_by_id(self, db):
        st, _ = _add(db, 2)
        assert stock_ledger.get_stock_by_id(db, st.id).product_id == PRODUCT_A
        with pytest.raises(NotFoundError):
            stock_ledger.get_stock_by_id(db, st.id + 100)

    def test_movements_newest_first_with_filters(self, db):
        _add(db, 5)
        _add(db, 5, product_id=PRODUCT_B)
        _reduce(db, 2)

        all_moves = stock_ledger.get_inventory_movements(db, BRANCH_X)
        assert [m.type for m in all_moves] == [MovementType.STOCK_OUT, MovementType.STOCK_IN, MovementType.STOCK_IN]

        only_in = stock_ledger.get_inventory_movements(db, BRANCH_X, movement_type=MovementType.STOCK_IN)
        assert len(only_in) == 2

        only_b = stock_ledger.get_inventory_movements(db, BRANCH_X, product_id=PRODUCT_B)
        assert [m.product_id for m in only_b] == [PRODUCT_B]

        assert len(stock_ledger.get_inventory_movements(db, BRANCH_X, limit=1)) == 1

    def test_stats(self, db):
        _add(db, 10, product_id="p1", unit_cost="2.50", min_stock=2)
        _add(db, 1, product_id="p2", unit_cost="4", min_stock=5)
        _add(db, 3, product_id="p3", unit_cost="1")
        _reduce(db, 3, product_id="p3")

        stats = stock_ledger.get_inventory_stats(db, BRANCH_X)

        assert stats["total_products"] == 3
        assert stats["total_value"] == Decimal("29")
        assert stats["in_stock_count"] == 1
        assert stats["low_stock_count"] == 1
        assert stats["out_of_stock_count"] == 1


class TestMovementImmutability:
    def test_update_is_blocked(self, db):
        _, mv = _add(db, 5)
        mv = db.get(InventoryMovement, mv.id)
        mv.quantity = 500

        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()

    def test_delete_is_blocked(self, db):
        _, mv = _add(db, 5)
        mv = db.get(InventoryMovement, mv.id)
        db.delete(mv)

        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()

"""Committed FIFO deductions across batches, shadow entries, ledger and movement log."""

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from branch_inventory.models.inventory import (
    BatchStatus,
    BatchStockEntry,
    MovementType,
    ProductBatch,
    UsageType,
)
from branch_inventory.services import batch_catalog, deduction_engine, stock_ledger
from branch_inventory.services.inventory_errors import (
    ConcurrentModificationError,
    InsufficientStockError,
    NoBatchesAvailableError,
    UsageTypeMismatchError,
)
from branch_inventory.services.inventory_tx import run_atomic
from tests.conftest import ACTOR, BRANCH_X, PRODUCT_A, days_from_today, delivery


def _deliver(db, *items):
    return batch_catalog.create_from_delivery(db, delivery(items=list(items))).batches


def _deduct(db, qty, usage_type=UsageType.OTC, **kw):
    return deduction_engine.deduct(
        db, branch_id=BRANCH_X, product_id=PRODUCT_A, quantity=qty,
        usage_type=usage_type, created_by=ACTOR, **kw,
    )


def _entry(db, batch_id):
    return db.query(BatchStockEntry).filter(BatchStockEntry.batch_id == batch_id).one()


def _stock_out_moves(db):
    return stock_ledger.get_inventory_movements(db, BRANCH_X, movement_type=MovementType.STOCK_OUT)


def _unique_violation(columns):
    return IntegrityError("INSERT ...", {}, Exception(f"UNIQUE constraint failed: {columns}"))


class TestDeduct:
    def test_sale_from_single_undated_batch(self, db):
        (a,) = _deliver(db, {"quantity": 20})

        res = _deduct(db, 5, reason="POS sale")

        db.refresh(a)
        assert a.remaining_quantity == 15
        assert _entry(db, a.id).real_time_stock == 15
        assert stock_ledger.get_stock_record(db, BRANCH_X, PRODUCT_A).current_stock == 15

        moves = _stock_out_moves(db)
        assert len(moves) == 1
        assert moves[0].batch_deductions == [
            {"batch_id": a.id, "batch_number": a.batch_number, "deducted": 5, "remaining": 15}
        ]
        assert moves[0].reason == "POS sale"
        assert (res.previous_stock, res.new_stock) == (20, 15)

    def test_spans_batches_in_expiry_order_and_depletes(self, db):
        later, sooner = _deliver(
            db,
            {"quantity": 5, "expiration_date": days_from_today(60)},
            {"quantity": 5, "expiration_date": days_from_today(20)},
        )

        res = _deduct(db, 7)

        assert [(d["batch_id"], d["deducted"]) for d in res.batches_used] == [(sooner.id, 5), (later.id, 2)]
        db.refresh(sooner)
        db.refresh(later)
        assert sooner.remaining_quantity == 0
        assert sooner.status == BatchStatus.DEPLETED
        assert later.remaining_quantity == 3
        assert later.status == BatchStatus.ACTIVE
        assert _entry(db, sooner.id).real_time_stock == 0
        assert stock_ledger.get_stock_record(db, BRANCH_X, PRODUCT_A).current_stock == 3

    def test_ledger_matches_active_batch_sum(self, db):
        _deliver(db, {"quantity": 8}, {"quantity": 4, "expiration_date": days_from_today(5)})
        _deduct(db, 6)
        _deduct(db, 3)

        active = (
            db.query(ProductBatch)
            .filter(ProductBatch.status == BatchStatus.ACTIVE)
            .all()
        )
        st = stock_ledger.get_stock_record(db, BRANCH_X, PRODUCT_A)
        assert st.current_stock == sum(b.remaining_quantity for b in active) == 3

    def test_usage_pools_never_cross(self, db):
        otc, salon = _deliver(
            db,
            {"quantity": 10, "usage_type": UsageType.OTC},
            {"quantity": 10, "usage_type": UsageType.SALON_USE, "expiration_date": days_from_today(3)},
        )

        _deduct(db, 4, usage_type=UsageType.SALON_USE)
        _deduct(db, 6, usage_type=UsageType.OTC)

        db.refresh(otc)
        db.refresh(salon)
        assert (otc.remaining_quantity, salon.remaining_quantity) == (4, 6)

    def test_over_request_changes_nothing(self, db):
        a, b = _deliver(db, {"quantity": 3}, {"quantity": 4})
        _deliver(db, {"quantity": 50, "usage_type": UsageType.SALON_USE})

        with pytest.raises(InsufficientStockError) as exc:
            _deduct(db, 10)

        assert exc.value.available_qty == 7
        db.expire_all()
        assert (db.get(ProductBatch, a.id).remaining_quantity, db.get(ProductBatch, b.id).remaining_quantity) == (3, 4)
        assert stock_ledger.get_stock_record(db, BRANCH_X, PRODUCT_A).current_stock == 57
        assert _stock_out_moves(db) == []

    def test_wrong_pool_reports_mismatch(self, db):
        _deliver(db, {"quantity": 5, "usage_type": UsageType.SALON_USE})
        with pytest.raises(UsageTypeMismatchError):
            _deduct(db, 1, usage_type=UsageType.OTC)

    def test_unknown_product_has_no_batches(self, db):
        with pytest.raises(NoBatchesAvailableError):
            _deduct(db, 1)


class TestSuppliedPlan:
    def test_current_plan_is_used_as_given(self, db):
        sooner, later = _deliver(
            db,
            {"quantity": 5, "expiration_date": days_from_today(10)},
            {"quantity": 5, "expiration_date": days_from_today(40)},
        )

        # deliberately not FIFO: the caller chose the later batch
        res = _deduct(db, 2, plan=[{"batch_id": later.id, "qty": 2}])

        assert res.replanned is False
        assert res.warnings == []
        assert [(d["batch_id"], d["deducted"]) for d in res.batches_used] == [(later.id, 2)]

    def test_stale_plan_is_replanned_with_warning(self, db):
        sooner, later = _deliver(
            db,
            {"quantity": 5, "expiration_date": days_from_today(10)},
            {"quantity": 5, "expiration_date": days_from_today(40)},
        )

        res = _deduct(db, 6, plan=[{"batch_id": sooner.id, "qty": 6}])

        assert res.replanned is True
        assert len(res.warnings) == 1
        assert [(d["batch_id"], d["deducted"]) for d in res.batches_used] == [(sooner.id, 5), (later.id, 1)]

    def test_plan_for_other_pool_is_stale(self, db):
        otc, salon = _deliver(
            db,
            {"quantity": 5, "usage_type": UsageType.OTC},
            {"quantity": 5, "usage_type": UsageType.SALON_USE},
        )

        res = _deduct(db, 2, usage_type=UsageType.OTC, plan=[{"batch_id": salon.id, "qty": 2}])

        assert res.replanned is True
        assert [d["batch_id"] for d in res.batches_used] == [otc.id]


class TestRunAtomic:
    def test_version_conflict_is_retried(self, db):
        calls = []

        def work():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("row changed underneath us")
            return "done"

        assert run_atomic(db, work, attempts=3) == "done"
        assert len(calls) == 3

    def test_gives_up_after_max_attempts(self, db):
        def work():
            raise StaleDataError("always stale")

        with pytest.raises(ConcurrentModificationError) as exc:
            run_atomic(db, work, attempts=2)
        assert exc.value.code == "CONCURRENT_MODIFICATION"

    def test_other_errors_propagate_without_retry(self, db):
        calls = []

        def work():
            calls.append(1)
            raise ValueError("boom")

        with pytest.raises(ValueError):
            run_atomic(db, work, attempts=3)
        assert len(calls) == 1

    def test_lost_insert_race_on_batch_number_is_retried(self, db):
        calls = []

        def work():
            calls.append(1)
            if len(calls) == 1:
                raise _unique_violation("inv_product_batches.batch_number")
            return "done"

        assert run_atomic(db, work, attempts=3) == "done"
        assert len(calls) == 2

    def test_lost_insert_race_exhausts_into_concurrent_modification(self, db):
        calls = []

        def work():
            calls.append(1)
            raise _unique_violation("inv_branch_stocks.branch_id, inv_branch_stocks.product_id")

        with pytest.raises(ConcurrentModificationError):
            run_atomic(db, work, attempts=2)
        assert len(calls) == 2

    def test_unrelated_integrity_error_is_not_retried(self, db):
        calls = []

        def work():
            calls.append(1)
            raise IntegrityError(
                "INSERT INTO inv_product_batches ...", {},
                Exception("NOT NULL constraint failed: inv_product_batches.branch_id"),
            )

        with pytest.raises(IntegrityError):
            run_atomic(db, work, attempts=3)
        assert len(calls) == 1

"""Inter-branch transfers and returns of transferred stock."""

from datetime import date
from decimal import Decimal

import pytest

from branch_inventory.models.inventory import (
    BatchSourceType,
    BatchStatus,
    ProductBatch,
    StockRecord,
    UsageType,
)
from branch_inventory.services import (
    batch_catalog,
    deduction_engine,
    expiration,
    stock_ledger,
    transfer_return,
)
from branch_inventory.services.inventory_errors import (
    InsufficientStockError,
    InvalidInputError,
    NotFoundError,
)
from branch_inventory.services.transfer_return import (
    CreateReturnBatch,
    CreateSubstituteBatch,
    RestoreOriginal,
    classify_return,
)
from tests.conftest import ACTOR, BRANCH_X, BRANCH_Y, PRODUCT_A, days_from_today, delivery


def _transfer(db, qty, **kw):
    params = dict(
        from_branch_id=BRANCH_X,
        to_branch_id=BRANCH_Y,
        product_id=PRODUCT_A,
        quantity=qty,
        usage_type=UsageType.OTC,
        transfer_id="TR-1",
    )
    params.update(kw)
    return transfer_return.transfer_stock(db, created_by=ACTOR, **params)


def _return(db, batch_id, qty, **kw):
    return transfer_return.return_stock(db, batch_id=batch_id, quantity=qty, created_by=ACTOR, **kw)


def _stock(db, branch_id):
    return stock_ledger.get_stock_record(db, branch_id, PRODUCT_A).current_stock


class TestTransferStock:
    def test_transfer_then_partial_return_restores_original(self, db):
        (a,) = batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 20}])).batches

        deduction_engine.deduct(db, branch_id=BRANCH_X, product_id=PRODUCT_A, quantity=5)

        res = _transfer(db, 8)

        (a_prime,) = res.receipt.batches
        db.refresh(a)
        assert a.remaining_quantity == 7
        assert a_prime.branch_id == BRANCH_Y
        assert a_prime.original_batch_id == a.id
        assert a_prime.remaining_quantity == 8
        assert (_stock(db, BRANCH_X), _stock(db, BRANCH_Y)) == (7, 8)

        ret = _return(db, a_prime.id, 3, return_reason="overstock")

        assert ret.restored_to == "ORIGINAL"
        db.refresh(a)
        db.refresh(a_prime)
        assert a.remaining_quantity == 10
        assert a_prime.remaining_quantity == 5
        assert (_stock(db, BRANCH_X), _stock(db, BRANCH_Y)) == (10, 5)
        assert ret.warnings == []

    def test_full_round_trip_reactivates_depleted_original(self, db):
        (a,) = batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 10}])).batches

        res = _transfer(db, 10)
        db.refresh(a)
        assert a.status == BatchStatus.DEPLETED

        (a_prime,) = res.receipt.batches
        _return(db, a_prime.id, 10)

        db.refresh(a)
        db.refresh(a_prime)
        assert (a.remaining_quantity, a.status) == (10, BatchStatus.ACTIVE)
        assert (a_prime.remaining_quantity, a_prime.status) == (0, BatchStatus.DEPLETED)

    def test_destination_batches_follow_source_breakdown(self, db):
        exp = days_from_today(15)
        sooner, later = batch_catalog.create_from_delivery(
            db,
            delivery(items=[
                {"quantity": 4, "expiration_date": exp, "unit_price": "1.50"},
                {"quantity": 10, "expiration_date": None},
            ]),
        ).batches

        res = _transfer(db, 6)

        assert [d["batch_id"] for d in res.deduction.batches_used] == [sooner.id, later.id]
        first, second = res.receipt.batches
        assert (first.original_batch_id, first.quantity, first.expiration_date) == (sooner.id, 4, exp)
        assert first.unit_cost == Decimal("1.50")
        assert (second.original_batch_id, second.quantity, second.expiration_date) == (later.id, 2, None)

    def test_destination_inherits_source_usage_when_pool_unspecified(self, db):
        batch_catalog.create_from_delivery(
            db, delivery(items=[{"quantity": 5, "usage_type": UsageType.SALON_USE}])
        )

        res = _transfer(db, 5, usage_type=None)

        assert [b.usage_type for b in res.receipt.batches] == [UsageType.SALON_USE]

    def test_same_branch_rejected(self, db):
        batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 5}]))
        with pytest.raises(InvalidInputError):
            _transfer(db, 1, to_branch_id=BRANCH_X)

    def test_insufficient_source_stock_leaves_both_branches_untouched(self, db):
        batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 5}]))

        with pytest.raises(InsufficientStockError):
            _transfer(db, 6)

        assert _stock(db, BRANCH_X) == 5
        assert stock_ledger.get_stock_record(db, BRANCH_Y, PRODUCT_A) is None
        assert batch_catalog.get_branch_batches(db, BRANCH_Y) == []


class TestReturnArms:
    def test_expired_original_gets_new_return_batch(self, db):
        (a,) = batch_catalog.create_from_delivery(
            db, delivery(items=[{"quantity": 10, "expiration_date": days_from_today(30)}])
        ).batches
        (a_prime,) = _transfer(db, 4).receipt.batches

        # original goes bad at the source branch after the transfer
        src = db.get(ProductBatch, a.id)
        src.status = BatchStatus.EXPIRED
        db.commit()

        ret = _return(db, a_prime.id, 2, return_reason="customer cancelled")

        assert ret.restored_to == "NEW_RETURN_BATCH"
        rb = ret.target_batch
        assert rb.source_type == BatchSourceType.RETURN
        assert rb.branch_id == BRANCH_X
        assert rb.from_branch_id == BRANCH_Y
        assert rb.original_batch_number == a.batch_number
        assert rb.batch_number.startswith(f"RET-{a.batch_number}-BATCH-")
        assert rb.return_reason == "customer cancelled"
        db.refresh(a)
        assert a.remaining_quantity == 6

    def test_substitute_product_gets_return_new_batch(self, db):
        batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 10}]))
        (a_prime,) = _transfer(db, 4).receipt.batches
        stock_ledger.add_stock(db, {"branch_id": BRANCH_X, "product_id": "prod-sub", "quantity": 1})

        ret = _return(
            db, a_prime.id, 3,
            is_new_product=True,
            new_product={"product_id": "prod-sub", "product_name": "Substitute", "unit_cost": "9.99"},
        )

        assert ret.restored_to == "SUBSTITUTE_BATCH"
        sb = ret.target_batch
        assert sb.source_type == BatchSourceType.RETURN_NEW
        assert (sb.product_id, sb.branch_id, sb.quantity) == ("prod-sub", BRANCH_X, 3)
        sub_stock = stock_ledger.get_stock_record(db, BRANCH_X, "prod-sub")
        assert sub_stock.current_stock == 4
        assert _stock(db, BRANCH_Y) == 1

    def test_missing_source_ledger_warns_but_commits(self, db):
        (a,) = batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 10}])).batches
        (a_prime,) = _transfer(db, 5).receipt.batches

        db.query(StockRecord).filter(StockRecord.branch_id == BRANCH_X).delete()
        db.commit()

        ret = _return(db, a_prime.id, 2)

        assert ret.restored_to == "ORIGINAL"
        assert len(ret.warnings) == 1
        db.refresh(a)
        assert a.remaining_quantity == 7
        assert _stock(db, BRANCH_Y) == 3

    def test_over_return_rejected(self, db):
        batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 10}]))
        (a_prime,) = _transfer(db, 3).receipt.batches

        with pytest.raises(InsufficientStockError) as exc:
            _return(db, a_prime.id, 4)
        assert exc.value.available_qty == 3

    def test_non_transfer_batch_rejected(self, db):
        (a,) = batch_catalog.create_from_delivery(db, delivery(items=[{"quantity": 10}])).batches
        with pytest.raises(InvalidInputError):
            _return(db, a.id, 1)

    def test_unknown_batch_not_found(self, db):
        with pytest.raises(NotFoundError):
            _return(db, 12345, 1)


class TestClassifyReturn:
    def _tb(self, **kw):
        fields = dict(
            id=10, batch_number="TR-1-BATCH-001", branch_id=BRANCH_Y, from_branch_id=BRANCH_X,
            product_id=PRODUCT_A, original_batch_id=1, original_batch_number="PO-1-BATCH-001",
        )
        fields.update(kw)
        return ProductBatch(**fields)

    def _orig(self, **kw):
        fields = dict(
            id=1, batch_number="PO-1-BATCH-001", branch_id=BRANCH_X, product_id=PRODUCT_A,
            status=BatchStatus.ACTIVE, expiration_date=None,
        )
        fields.update(kw)
        return ProductBatch(**fields)

    def test_live_original(self):
        assert classify_return(self._tb(), self._orig()) == RestoreOriginal(original_batch_id=1)

    def test_depleted_original_is_still_restorable(self):
        action = classify_return(self._tb(), self._orig(status=BatchStatus.DEPLETED))
        assert isinstance(action, RestoreOriginal)

    def test_missing_original(self):
        action = classify_return(self._tb(), None)
        assert isinstance(action, CreateReturnBatch)
        assert action.original_batch_number == "PO-1-BATCH-001"
        assert action.original_batch_id is None

    def test_past_dated_original(self):
        action = classify_return(
            self._tb(), self._orig(expiration_date=date(2024, 1, 1)), today=date(2024, 6, 1)
        )
        assert isinstance(action, CreateReturnBatch)
        assert action.cause == "original batch has expired"

    def test_original_moved_to_other_branch(self):
        action = classify_return(self._tb(), self._orig(branch_id="branch-z"))
        assert isinstance(action, CreateReturnBatch)

    def test_substitute_requires_product_id(self):
        with pytest.raises(InvalidInputError):
            classify_return(self._tb(), self._orig(), is_new_product=True, new_product={})

        action = classify_return(
            self._tb(), self._orig(), is_new_product=True,
            new_product={"product_id": "p-9", "expiration_date": "2030-01-31"},
        )
        assert action == CreateSubstituteBatch(
            product_id="p-9", product_name="", unit_cost=None, expiration_date=date(2030, 1, 31)
        )

    def test_expiry_sweep_then_return_creates_batch(self, db):
        (a,) = batch_catalog.create_from_delivery(
            db, delivery(items=[{"quantity": 10, "expiration_date": days_from_today(10)}])
        ).batches
        (a_prime,) = _transfer(db, 2).receipt.batches

        expiration.sweep(db, BRANCH_X, today=days_from_today(11))
        ret = _return(db, a_prime.id, 1)

        assert ret.restored_to == "NEW_RETURN_BATCH"

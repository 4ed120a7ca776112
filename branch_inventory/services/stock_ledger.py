# FILE: branch_inventory/services/stock_ledger.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, String
from sqlalchemy.orm import Session

from branch_inventory.models.inventory import (
    StockRecord,
    ProductBatch,
    InventoryMovement,
    StockStatus,
    BatchStatus,
    MovementType,
)
from branch_inventory.services.inventory_errors import NotFoundError, InvalidInputError
from branch_inventory.services.inventory_tx import run_atomic
from branch_inventory.utils.timezone import now_local

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "product_name", "brand", "category", "location", "supplier",
    "current_stock", "min_stock", "max_stock", "unit_cost", "status",
    "expiry_date", "last_updated", "last_restocked", "created_at",
}


def D(v, default="0") -> Decimal:
    if v is None:
        return Decimal(default)
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


def derive_status(current_stock: int, min_stock: int) -> StockStatus:
    current = int(current_stock or 0)
    if current <= 0:
        return StockStatus.OUT_OF_STOCK
    if current <= int(min_stock or 0):
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


@dataclass
class LedgerChange:
    record: StockRecord
    previous_stock: int
    new_stock: int
    created: bool = False


# -------------------------
# Record access
# -------------------------
def get_stock_record(db: Session, branch_id: str, product_id: str, *, lock: bool = False) -> Optional[StockRecord]:
    q = db.query(StockRecord).filter(
        StockRecord.branch_id == str(branch_id),
        StockRecord.product_id == str(product_id),
    )
    if lock:
        q = q.with_for_update()
    return q.first()


def lock_or_create_stock(db: Session, branch_id: str, product_id: str, **defaults) -> tuple[StockRecord, bool]:
    st = get_stock_record(db, branch_id, product_id, lock=True)
    if st:
        return st, False

    now = now_local()
    st = StockRecord(
        branch_id=str(branch_id),
        product_id=str(product_id),
        product_name=str(defaults.get("product_name") or ""),
        brand=str(defaults.get("brand") or ""),
        category=str(defaults.get("category") or ""),
        location=str(defaults.get("location") or ""),
        supplier=str(defaults.get("supplier") or ""),
        current_stock=0,
        min_stock=int(defaults.get("min_stock") or 0),
        max_stock=int(defaults.get("max_stock") or 0),
        unit_cost=D(defaults.get("unit_cost")),
        expiry_date=defaults.get("expiry_date"),
        status=StockStatus.OUT_OF_STOCK,
        last_updated=now,
    )
    db.add(st)
    db.flush()

    st = (
        db.query(StockRecord)
        .filter(StockRecord.id == st.id)
        .with_for_update()
        .one()
    )
    return st, True


def record_movement(
    db: Session,
    *,
    branch_id: str,
    product_id: str,
    movement_type: MovementType,
    quantity: int,
    previous_stock: int,
    new_stock: int,
    product_name: str = "",
    reason: str = "",
    notes: str = "",
    batch_deductions: Optional[List[Dict[str, Any]]] = None,
    created_by: str = "",
) -> InventoryMovement:
    """
    Central creator for InventoryMovement - every stock change goes through here
    so the trail stays uniform.
    """
    mv = InventoryMovement(
        branch_id=str(branch_id),
        product_id=str(product_id),
        product_name=product_name or "",
        type=movement_type,
        quantity=int(quantity),
        previous_stock=int(previous_stock),
        new_stock=int(new_stock),
        reason=reason or "",
        notes=notes or "",
        batch_deductions=list(batch_deductions or []),
        created_by=created_by or "",
    )
    db.add(mv)
    return mv


# -------------------------
# Batch-tracked ledger
# -------------------------
def active_batch_total(db: Session, branch_id: str, product_id: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(ProductBatch.remaining_quantity), 0))
        .filter(
            ProductBatch.branch_id == str(branch_id),
            ProductBatch.product_id == str(product_id),
            ProductBatch.status == BatchStatus.ACTIVE,
        )
        .scalar()
    )
    return int(total or 0)


def recompute_batch_ledger(
    db: Session,
    *,
    branch_id: str,
    product_id: str,
    product_name: str = "",
    unit_cost=None,
    create: bool = True,
    restocked: bool = False,
) -> Optional[LedgerChange]:
    """
    Rewrite current_stock as the sum of ACTIVE batch remaining quantities.

    Flushes pending batch changes first. Returns None only when the record
    is missing and `create` is False.
    """
    db.flush()

    if create:
        st, created = lock_or_create_stock(
            db, branch_id, product_id, product_name=product_name, unit_cost=unit_cost
        )
    else:
        st, created = get_stock_record(db, branch_id, product_id, lock=True), False
        if st is None:
            return None

    previous = int(st.current_stock or 0)
    new = active_batch_total(db, branch_id, product_id)

    now = now_local()
    st.batch_tracked = True
    st.current_stock = new
    st.status = derive_status(new, st.min_stock)
    st.last_updated = now
    if restocked:
        st.last_restocked = now
    if product_name and not st.product_name:
        st.product_name = product_name
    if unit_cost is not None and D(unit_cost) > 0:
        st.unit_cost = D(unit_cost)

    return LedgerChange(record=st, previous_stock=previous, new_stock=new, created=created)


# -------------------------
# Legacy (non-batched) operations
# -------------------------
def _apply_add_stock(db: Session, data: Dict[str, Any], created_by: str) -> tuple[StockRecord, InventoryMovement]:
    qty = int(data.get("quantity") or 0)
    if qty <= 0:
        raise InvalidInputError("Quantity must be greater than zero")

    defaults = {k: v for k, v in data.items() if k not in ("branch_id", "product_id")}
    st, _created = lock_or_create_stock(db, data["branch_id"], data["product_id"], **defaults)
    if st.batch_tracked:
        raise InvalidInputError(
            "Product is batch-tracked at this branch; receive it through a delivery or transfer"
        )

    previous = int(st.current_stock or 0)
    new = previous + qty
    now = now_local()

    st.current_stock = new
    st.status = derive_status(new, st.min_stock)
    st.last_updated = now
    st.last_restocked = now

    mv = record_movement(
        db,
        branch_id=st.branch_id,
        product_id=st.product_id,
        product_name=data.get("product_name") or st.product_name,
        movement_type=MovementType.STOCK_IN,
        quantity=qty,
        previous_stock=previous,
        new_stock=new,
        reason=data.get("reason") or "Stock added",
        notes=data.get("notes") or "",
        created_by=created_by,
    )
    db.flush()
    return st, mv


def add_stock(db: Session, data: Dict[str, Any], *, created_by: str = "") -> tuple[StockRecord, InventoryMovement]:
    st, mv = run_atomic(db, lambda: _apply_add_stock(db, data, created_by), label="add_stock")
    logger.info(
        "Stock added branch=%s product=%s qty=%s -> %s",
        st.branch_id, st.product_id, mv.quantity, st.current_stock,
    )
    return st, mv


def _apply_reduce_stock(db: Session, data: Dict[str, Any], created_by: str) -> tuple[StockRecord, InventoryMovement]:
    qty = int(data.get("quantity") or 0)
    if qty <= 0:
        raise InvalidInputError("Quantity must be greater than zero")

    st = get_stock_record(db, data["branch_id"], data["product_id"], lock=True)
    if not st:
        raise NotFoundError("Stock not found for this product")
    if st.batch_tracked:
        raise InvalidInputError(
            "Product is batch-tracked at this branch; use a FIFO deduction instead"
        )

    previous = int(st.current_stock or 0)
    new = max(0, previous - qty)

    st.current_stock = new
    st.status = derive_status(new, st.min_stock)
    st.last_updated = now_local()

    # applied quantity, so previous/new and quantity always agree
    mv = record_movement(
        db,
        branch_id=st.branch_id,
        product_id=st.product_id,
        product_name=data.get("product_name") or st.product_name,
        movement_type=MovementType.STOCK_OUT,
        quantity=previous - new,
        previous_stock=previous,
        new_stock=new,
        reason=data.get("reason") or "Stock reduced",
        notes=data.get("notes") or "",
        created_by=created_by,
    )
    db.flush()
    return st, mv


def reduce_stock(db: Session, data: Dict[str, Any], *, created_by: str = "") -> tuple[StockRecord, InventoryMovement]:
    st, mv = run_atomic(db, lambda: _apply_reduce_stock(db, data, created_by), label="reduce_stock")
    if mv.quantity < int(data.get("quantity") or 0):
        logger.warning(
            "Reduce floored at zero branch=%s product=%s requested=%s applied=%s",
            st.branch_id, st.product_id, data.get("quantity"), mv.quantity,
        )
    return st, mv


def _apply_update_stock(db: Session, stock_id: int, changes: Dict[str, Any], created_by: str) -> StockRecord:
    st = db.query(StockRecord).filter(StockRecord.id == int(stock_id)).with_for_update().first()
    if not st:
        raise NotFoundError("Stock not found")

    for field in ("min_stock", "max_stock", "location", "supplier", "expiry_date"):
        if field in changes and changes[field] is not None:
            setattr(st, field, changes[field])
    if changes.get("unit_cost") is not None:
        st.unit_cost = D(changes["unit_cost"])

    new_current = changes.get("current_stock")
    if new_current is not None:
        if st.batch_tracked:
            raise InvalidInputError(
                "current_stock of a batch-tracked product is derived from its batches"
            )
        new_current = int(new_current)
        if new_current < 0:
            raise InvalidInputError("current_stock cannot be negative")
        previous = int(st.current_stock or 0)
        if new_current != previous:
            st.current_stock = new_current
            record_movement(
                db,
                branch_id=st.branch_id,
                product_id=st.product_id,
                product_name=st.product_name,
                movement_type=MovementType.STOCK_IN if new_current > previous else MovementType.STOCK_OUT,
                quantity=abs(new_current - previous),
                previous_stock=previous,
                new_stock=new_current,
                reason="Stock adjusted",
                created_by=created_by,
            )

    st.status = derive_status(st.current_stock, st.min_stock)
    st.last_updated = now_local()
    db.flush()
    return st


def update_stock(db: Session, stock_id: int, changes: Dict[str, Any], *, created_by: str = "") -> StockRecord:
    return run_atomic(
        db, lambda: _apply_update_stock(db, stock_id, changes, created_by), label="update_stock"
    )


# -------------------------
# Reads
# -------------------------
def get_branch_stocks(
    db: Session,
    branch_id: str,
    *,
    status: Optional[StockStatus] = None,
    category: Optional[str] = None,
    order_by: Optional[str] = None,
    order_direction: str = "asc",
) -> List[StockRecord]:
    q = db.query(StockRecord).filter(StockRecord.branch_id == str(branch_id))
    if status:
        q = q.filter(StockRecord.status == status)
    if category:
        q = q.filter(StockRecord.category == category)

    field = order_by or "product_name"
    if field not in SORTABLE_FIELDS:
        raise InvalidInputError(f"Cannot sort stocks by '{field}'")

    col = getattr(StockRecord, field)
    col_type = StockRecord.__table__.c[field].type
    expr = func.lower(col) if isinstance(col_type, String) and field != "status" else col
    desc = str(order_direction or "asc").lower() == "desc"

    q = q.order_by(expr.desc() if desc else expr.asc(), StockRecord.id.asc())
    return q.all()


def get_stock_by_id(db: Session, stock_id: int) -> StockRecord:
    st = db.get(StockRecord, int(stock_id))
    if not st:
        raise NotFoundError("Stock not found")
    return st


def get_inventory_movements(
    db: Session,
    branch_id: str,
    *,
    movement_type: Optional[MovementType] = None,
    product_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[InventoryMovement]:
    q = db.query(InventoryMovement).filter(InventoryMovement.branch_id == str(branch_id))
    if movement_type:
        q = q.filter(InventoryMovement.type == movement_type)
    if product_id:
        q = q.filter(InventoryMovement.product_id == str(product_id))

    q = q.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
    if limit:
        q = q.limit(int(limit))
    return q.all()


def get_inventory_stats(db: Session, branch_id: str) -> Dict[str, Any]:
    stocks = get_branch_stocks(db, branch_id)

    total_value = sum((D(s.unit_cost) * int(s.current_stock or 0) for s in stocks), Decimal("0"))
    return {
        "total_products": len(stocks),
        "total_value": total_value,
        "in_stock_count": sum(1 for s in stocks if s.status == StockStatus.IN_STOCK),
        "low_stock_count": sum(1 for s in stocks if s.status == StockStatus.LOW_STOCK),
        "out_of_stock_count": sum(1 for s in stocks if s.status == StockStatus.OUT_OF_STOCK),
    }

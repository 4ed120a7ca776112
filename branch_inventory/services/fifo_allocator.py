# FILE: branch_inventory/services/fifo_allocator.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from branch_inventory.models.inventory import ProductBatch, BatchStatus, UsageType
from branch_inventory.services.batch_catalog import fifo_order_by, fifo_sort_key
from branch_inventory.services.expiration import is_effectively_expired
from branch_inventory.services.inventory_errors import (
    InvalidInputError,
    InsufficientStockError,
    NoBatchesAvailableError,
    UsageTypeMismatchError,
)
from branch_inventory.utils.timezone import today_local


@dataclass(frozen=True)
class AllocationLine:
    batch_id: int
    batch_number: str
    qty: int
    expiration_date: Optional[date]
    unit_cost: Decimal
    remaining_quantity: int
    usage_type: UsageType


@dataclass
class AllocationPlan:
    branch_id: str
    product_id: str
    requested_qty: int
    usage_type: Optional[UsageType]
    available_qty: int
    lines: List[AllocationLine] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def plan_allocation(
    batches: Iterable[ProductBatch],
    requested_qty: int,
    usage_type: Optional[UsageType],
    *,
    branch_id: str = "",
    product_id: str = "",
    today: Optional[date] = None,
) -> AllocationPlan:
    """
    FIFO plan over already-loaded batches. Never mutates anything.

    - ACTIVE batches with stock only, past-dated ones skipped
    - usage_type=None draws from every pool
    - earliest expiry first, undated last, then oldest receipt
    """
    qty = int(requested_qty or 0)
    if qty <= 0:
        raise InvalidInputError("Quantity must be greater than zero")

    day = today or today_local()
    live = [
        b for b in batches
        if b.status == BatchStatus.ACTIVE
        and int(b.remaining_quantity or 0) > 0
        and not is_effectively_expired(b, day)
    ]
    pool = [b for b in live if usage_type is None or b.usage_type == usage_type]

    if not pool:
        if live:
            other = sum(int(b.remaining_quantity) for b in live)
            raise UsageTypeMismatchError(
                f"No {usage_type.value} stock for product {product_id}; "
                f"{other} unit(s) are held for other usage",
                other_pool_qty=other,
            )
        raise NoBatchesAvailableError(f"No batches available for product {product_id}")

    pool.sort(key=fifo_sort_key)
    available = sum(int(b.remaining_quantity) for b in pool)

    if available < qty:
        raise InsufficientStockError(
            f"Insufficient stock for product {product_id}: requested {qty}, available {available}",
            available_qty=available,
        )

    lines: List[AllocationLine] = []
    remaining = qty
    for b in pool:
        if remaining <= 0:
            break
        use_qty = min(int(b.remaining_quantity), remaining)
        lines.append(
            AllocationLine(
                batch_id=b.id,
                batch_number=b.batch_number,
                qty=use_qty,
                expiration_date=b.expiration_date,
                unit_cost=b.unit_cost,
                remaining_quantity=int(b.remaining_quantity),
                usage_type=b.usage_type,
            )
        )
        remaining -= use_qty

    return AllocationPlan(
        branch_id=str(branch_id),
        product_id=str(product_id),
        requested_qty=qty,
        usage_type=usage_type,
        available_qty=available,
        lines=lines,
    )


def load_candidate_batches(db: Session, branch_id: str, product_id: str, *, lock: bool = False) -> List[ProductBatch]:
    q = (
        db.query(ProductBatch)
        .filter(
            ProductBatch.branch_id == str(branch_id),
            ProductBatch.product_id == str(product_id),
            ProductBatch.status == BatchStatus.ACTIVE,
            ProductBatch.remaining_quantity > 0,
        )
        .order_by(*fifo_order_by())
    )
    if lock:
        q = q.with_for_update()
    return q.all()


def plan_for(
    db: Session,
    branch_id: str,
    product_id: str,
    requested_qty: int,
    usage_type: Optional[UsageType],
    *,
    lock: bool = False,
) -> AllocationPlan:
    batches = load_candidate_batches(db, branch_id, product_id, lock=lock)
    return plan_allocation(
        batches, requested_qty, usage_type, branch_id=branch_id, product_id=product_id
    )


def preview_sale(
    db: Session, branch_id: str, product_id: str, requested_qty: int, usage_type: UsageType = UsageType.OTC
) -> AllocationPlan:
    return plan_for(db, branch_id, product_id, requested_qty, usage_type or UsageType.OTC)


def preview_transfer(
    db: Session, branch_id: str, product_id: str, requested_qty: int, usage_type: Optional[UsageType] = None
) -> AllocationPlan:
    return plan_for(db, branch_id, product_id, requested_qty, usage_type)

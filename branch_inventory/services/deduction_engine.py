# FILE: branch_inventory/services/deduction_engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from branch_inventory.models.inventory import (
    ProductBatch,
    InventoryMovement,
    BatchStatus,
    UsageType,
    MovementType,
)
from branch_inventory.services import activity_log
from branch_inventory.services.batch_catalog import adjust_batch_remaining, ensure_batch_tracked
from branch_inventory.services.expiration import is_effectively_expired
from branch_inventory.services.fifo_allocator import load_candidate_batches, plan_allocation
from branch_inventory.services.inventory_errors import InvalidInputError
from branch_inventory.services.inventory_tx import run_atomic
from branch_inventory.services.stock_ledger import recompute_batch_ledger, record_movement
from branch_inventory.utils.timezone import today_local

logger = logging.getLogger(__name__)


@dataclass
class DeductionResult:
    branch_id: str
    product_id: str
    quantity: int
    previous_stock: int
    new_stock: int
    batches_used: List[Dict[str, Any]]
    movement: InventoryMovement
    replanned: bool = False
    warnings: List[str] = field(default_factory=list)


def _normalize_plan(plan: Sequence[Any]) -> List[tuple[int, int]]:
    lines = []
    for line in plan:
        if isinstance(line, dict):
            batch_id, qty = line.get("batch_id"), line.get("qty")
        else:
            batch_id, qty = getattr(line, "batch_id", None), getattr(line, "qty", None)
        lines.append((int(batch_id or 0), int(qty or 0)))
    return lines


def plan_is_current(
    lines: List[tuple[int, int]],
    batches: Dict[int, ProductBatch],
    requested_qty: int,
    usage_type: Optional[UsageType],
) -> bool:
    """A caller-supplied plan still holds if every line fits a live batch of the right pool."""
    if not lines or sum(q for _, q in lines) != requested_qty:
        return False
    seen = set()
    today = today_local()
    for batch_id, qty in lines:
        b = batches.get(batch_id)
        if b is None or batch_id in seen or qty <= 0:
            return False
        if b.status != BatchStatus.ACTIVE or is_effectively_expired(b, today):
            return False
        if usage_type is not None and b.usage_type != usage_type:
            return False
        if qty > int(b.remaining_quantity or 0):
            return False
        seen.add(batch_id)
    return True


def apply_deduction(
    db: Session,
    *,
    branch_id: str,
    product_id: str,
    quantity: int,
    usage_type: Optional[UsageType] = UsageType.OTC,
    reason: str = "Stock reduced",
    notes: str = "",
    product_name: str = "",
    plan: Optional[Sequence[Any]] = None,
    created_by: str = "",
) -> DeductionResult:
    """
    One deduction inside the caller's transaction: re-read and lock the
    candidate batches, validate or compute the plan, then draw down batches,
    shadow entries and the ledger, and append exactly one movement.
    """
    qty = int(quantity or 0)
    if qty <= 0:
        raise InvalidInputError("Quantity must be greater than zero")

    ensure_batch_tracked(db, branch_id, product_id)
    candidates = load_candidate_batches(db, branch_id, product_id, lock=True)
    by_id = {b.id: b for b in candidates}

    warnings: List[str] = []
    replanned = False
    lines: List[tuple[int, int]] = []

    if plan:
        lines = _normalize_plan(plan)
        if not plan_is_current(lines, by_id, qty, usage_type):
            msg = (
                f"Supplied allocation for product {product_id} at branch {branch_id} "
                "no longer matches batch stock; re-planned by FIFO"
            )
            logger.warning(msg)
            warnings.append(msg)
            replanned = True
            lines = []

    if not lines:
        fresh = plan_allocation(
            candidates, qty, usage_type, branch_id=branch_id, product_id=product_id
        )
        lines = [(ln.batch_id, ln.qty) for ln in fresh.lines]

    batches_used: List[Dict[str, Any]] = []
    for batch_id, line_qty in lines:
        b = by_id[batch_id]
        adjust_batch_remaining(db, b, -line_qty)
        batches_used.append(
            {
                "batch_id": b.id,
                "batch_number": b.batch_number,
                "deducted": line_qty,
                "remaining": int(b.remaining_quantity),
            }
        )
        if product_name == "" and b.product_name:
            product_name = b.product_name

    change = recompute_batch_ledger(
        db, branch_id=branch_id, product_id=product_id, product_name=product_name
    )
    mv = record_movement(
        db,
        branch_id=branch_id,
        product_id=product_id,
        product_name=product_name,
        movement_type=MovementType.STOCK_OUT,
        quantity=qty,
        previous_stock=change.previous_stock,
        new_stock=change.new_stock,
        reason=reason or "Stock reduced",
        notes=notes,
        batch_deductions=batches_used,
        created_by=created_by,
    )
    db.flush()

    return DeductionResult(
        branch_id=str(branch_id),
        product_id=str(product_id),
        quantity=qty,
        previous_stock=change.previous_stock,
        new_stock=change.new_stock,
        batches_used=batches_used,
        movement=mv,
        replanned=replanned,
        warnings=warnings,
    )


def deduct(
    db: Session,
    *,
    branch_id: str,
    product_id: str,
    quantity: int,
    usage_type: Optional[UsageType] = UsageType.OTC,
    reason: str = "Stock reduced",
    notes: str = "",
    product_name: str = "",
    plan: Optional[Sequence[Any]] = None,
    created_by: str = "",
) -> DeductionResult:
    result = run_atomic(
        db,
        lambda: apply_deduction(
            db,
            branch_id=branch_id,
            product_id=product_id,
            quantity=quantity,
            usage_type=usage_type,
            reason=reason,
            notes=notes,
            product_name=product_name,
            plan=plan,
            created_by=created_by,
        ),
        label="FIFO deduction",
    )

    logger.info(
        "Deducted %s of product=%s at branch=%s from %s batch(es): %s -> %s",
        result.quantity, product_id, branch_id, len(result.batches_used),
        result.previous_stock, result.new_stock,
    )
    activity_log.record(
        db,
        user_id=created_by,
        action="STOCK_DEDUCT",
        table_name=ProductBatch.__tablename__,
        record_id=product_id,
        branch_id=branch_id,
        details={"reason": reason, "quantity": result.quantity, "batches": result.batches_used},
    )
    return result

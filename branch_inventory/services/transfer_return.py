# FILE: branch_inventory/services/transfer_return.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from branch_inventory.models.inventory import (
    ProductBatch,
    InventoryMovement,
    BatchSourceType,
    UsageType,
    MovementType,
)
from branch_inventory.services import activity_log
from branch_inventory.services.batch_catalog import (
    BatchCreationResult,
    BatchNumberSeries,
    adjust_batch_remaining,
    apply_transfer_receipt,
    create_batch,
    ensure_batch_tracked,
    get_batch,
)
from branch_inventory.services.deduction_engine import DeductionResult, apply_deduction
from branch_inventory.services.expiration import is_effectively_expired
from branch_inventory.services.inventory_errors import (
    InvalidInputError,
    InsufficientStockError,
    NotFoundError,
    ReconciliationWarning,
)
from branch_inventory.services.inventory_tx import run_atomic
from branch_inventory.services.stock_ledger import D, recompute_batch_ledger, record_movement
from branch_inventory.utils.timezone import now_local, as_date

logger = logging.getLogger(__name__)

RESTORED_ORIGINAL = "ORIGINAL"
RESTORED_NEW_RETURN_BATCH = "NEW_RETURN_BATCH"
RESTORED_SUBSTITUTE_BATCH = "SUBSTITUTE_BATCH"


# -------------------------
# Return classification
# -------------------------
@dataclass(frozen=True)
class RestoreOriginal:
    original_batch_id: int
    restored_to: str = RESTORED_ORIGINAL


@dataclass(frozen=True)
class CreateReturnBatch:
    original_batch_number: str
    original_batch_id: Optional[int]
    cause: str
    restored_to: str = RESTORED_NEW_RETURN_BATCH


@dataclass(frozen=True)
class CreateSubstituteBatch:
    product_id: str
    product_name: str
    unit_cost: Optional[Decimal]
    expiration_date: Optional[date]
    restored_to: str = RESTORED_SUBSTITUTE_BATCH


ReturnAction = Union[RestoreOriginal, CreateReturnBatch, CreateSubstituteBatch]


def classify_return(
    transfer_batch: ProductBatch,
    original: Optional[ProductBatch],
    *,
    is_new_product: bool = False,
    new_product: Optional[Dict[str, Any]] = None,
    today: Optional[date] = None,
) -> ReturnAction:
    """Decide where returned stock lands. Pure: looks at the loaded rows only."""
    if is_new_product:
        np = new_product or {}
        if not str(np.get("product_id") or "").strip():
            raise InvalidInputError("new_product.product_id is required for a substitute return")
        return CreateSubstituteBatch(
            product_id=str(np["product_id"]).strip(),
            product_name=str(np.get("product_name") or ""),
            unit_cost=D(np["unit_cost"]) if np.get("unit_cost") is not None else None,
            expiration_date=as_date(np.get("expiration_date")),
        )

    orig_number = transfer_batch.original_batch_number or (original.batch_number if original else "")

    if original is None:
        cause = "original batch not found" if (transfer_batch.original_batch_id or orig_number) else "no original batch linked"
        return CreateReturnBatch(original_batch_number=orig_number, original_batch_id=None, cause=cause)

    if original.branch_id != transfer_batch.from_branch_id:
        return CreateReturnBatch(
            original_batch_number=orig_number,
            original_batch_id=original.id,
            cause="original batch is not at the source branch",
        )

    if is_effectively_expired(original, today):
        return CreateReturnBatch(
            original_batch_number=orig_number,
            original_batch_id=original.id,
            cause="original batch has expired",
        )

    return RestoreOriginal(original_batch_id=original.id)


@dataclass
class ReturnResult:
    restored_to: str
    transfer_batch: ProductBatch
    target_batch: ProductBatch
    quantity: int
    movements: List[InventoryMovement] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _resolve_original(db: Session, tb: ProductBatch) -> Optional[ProductBatch]:
    if tb.original_batch_id:
        return get_batch(db, tb.original_batch_id, lock=True)
    if tb.original_batch_number:
        return (
            db.query(ProductBatch)
            .filter(ProductBatch.batch_number == tb.original_batch_number)
            .with_for_update()
            .first()
        )
    return None


def _ledger_side(
    db: Session,
    result: ReturnResult,
    *,
    branch_id: str,
    product_id: str,
    product_name: str,
    movement_type: MovementType,
    batch: ProductBatch,
    qty: int,
    reason: str,
    notes: str,
    created_by: str,
) -> None:
    change = recompute_batch_ledger(
        db, branch_id=branch_id, product_id=product_id, product_name=product_name, create=False
    )
    if change is None:
        w = ReconciliationWarning(
            f"No stock record for product {product_id} at branch {branch_id}; "
            "batch updated without a ledger entry",
            branch_id=branch_id,
            product_id=product_id,
        )
        logger.warning("%s", w)
        result.warnings.append(str(w))
        return

    result.movements.append(
        record_movement(
            db,
            branch_id=branch_id,
            product_id=product_id,
            product_name=product_name,
            movement_type=movement_type,
            quantity=qty,
            previous_stock=change.previous_stock,
            new_stock=change.new_stock,
            reason=reason,
            notes=notes,
            batch_deductions=[
                {
                    "batch_id": batch.id,
                    "batch_number": batch.batch_number,
                    "deducted": qty,
                    "remaining": int(batch.remaining_quantity),
                }
            ],
            created_by=created_by,
        )
    )


def apply_return(
    db: Session,
    *,
    batch_id: int,
    quantity: int,
    return_reason: str = "",
    is_new_product: bool = False,
    new_product: Optional[Dict[str, Any]] = None,
    returned_at: Optional[datetime] = None,
    created_by: str = "",
) -> ReturnResult:
    qty = int(quantity or 0)
    if qty <= 0:
        raise InvalidInputError("Quantity must be greater than zero")

    tb = get_batch(db, batch_id, lock=True)
    if tb is None:
        raise NotFoundError("Transfer batch not found")
    if not tb.from_branch_id:
        raise InvalidInputError(f"Batch {tb.batch_number} was not received from another branch")
    if qty > int(tb.remaining_quantity or 0):
        raise InsufficientStockError(
            f"Cannot return {qty}; batch {tb.batch_number} has {tb.remaining_quantity} remaining",
            available_qty=int(tb.remaining_quantity or 0),
        )

    source_branch = tb.from_branch_id
    original = _resolve_original(db, tb)
    action = classify_return(tb, original, is_new_product=is_new_product, new_product=new_product)

    adjust_batch_remaining(db, tb, -qty)

    if isinstance(action, RestoreOriginal):
        target = original
        adjust_batch_remaining(db, target, qty)
    elif isinstance(action, CreateReturnBatch):
        logger.info("Return of %s from %s creates a new batch: %s", qty, tb.batch_number, action.cause)
        ensure_batch_tracked(db, source_branch, tb.product_id)
        numbers = BatchNumberSeries(db, f"RET-{action.original_batch_number or 'BATCH'}")
        target = create_batch(
            db,
            batch_number=numbers.next(),
            product_id=tb.product_id,
            product_name=tb.product_name,
            branch_id=source_branch,
            source_type=BatchSourceType.RETURN,
            from_branch_id=tb.branch_id,
            source_transfer_id=tb.source_transfer_id,
            original_batch_id=action.original_batch_id,
            original_batch_number=action.original_batch_number,
            quantity=qty,
            unit_cost=D(tb.unit_cost),
            expiration_date=tb.expiration_date,
            received_date=returned_at,
            received_by=created_by,
            usage_type=tb.usage_type,
            return_reason=return_reason or "",
            notes=f"Returned from transfer batch {tb.batch_number} ({action.cause})",
        )
    else:
        ensure_batch_tracked(db, source_branch, action.product_id)
        numbers = BatchNumberSeries(db, f"RET-NEW-{tb.original_batch_number or 'BATCH'}")
        target = create_batch(
            db,
            batch_number=numbers.next(),
            product_id=action.product_id,
            product_name=action.product_name,
            branch_id=source_branch,
            source_type=BatchSourceType.RETURN_NEW,
            from_branch_id=tb.branch_id,
            source_transfer_id=tb.source_transfer_id,
            original_batch_id=tb.original_batch_id,
            original_batch_number=tb.original_batch_number or "",
            quantity=qty,
            unit_cost=action.unit_cost if action.unit_cost is not None else D(tb.unit_cost),
            expiration_date=action.expiration_date,
            received_date=returned_at,
            received_by=created_by,
            usage_type=tb.usage_type,
            return_reason=return_reason or "",
            notes=f"Substitute product returned for transfer batch {tb.batch_number}",
        )

    result = ReturnResult(
        restored_to=action.restored_to,
        transfer_batch=tb,
        target_batch=target,
        quantity=qty,
    )

    _ledger_side(
        db, result,
        branch_id=tb.branch_id,
        product_id=tb.product_id,
        product_name=tb.product_name,
        movement_type=MovementType.STOCK_OUT,
        batch=tb,
        qty=qty,
        reason=f"Returned to branch {source_branch}",
        notes=return_reason or "",
        created_by=created_by,
    )
    _ledger_side(
        db, result,
        branch_id=source_branch,
        product_id=target.product_id,
        product_name=target.product_name,
        movement_type=MovementType.STOCK_IN,
        batch=target,
        qty=qty,
        reason=f"Returned from branch {tb.branch_id}",
        notes=return_reason or "",
        created_by=created_by,
    )

    db.flush()
    return result


def return_stock(
    db: Session,
    *,
    batch_id: int,
    quantity: int,
    return_reason: str = "",
    is_new_product: bool = False,
    new_product: Optional[Dict[str, Any]] = None,
    returned_at: Optional[datetime] = None,
    created_by: str = "",
) -> ReturnResult:
    result = run_atomic(
        db,
        lambda: apply_return(
            db,
            batch_id=batch_id,
            quantity=quantity,
            return_reason=return_reason,
            is_new_product=is_new_product,
            new_product=new_product,
            returned_at=returned_at,
            created_by=created_by,
        ),
        label="stock return",
    )

    logger.info(
        "Returned %s from batch %s -> %s (%s)",
        result.quantity, result.transfer_batch.batch_number,
        result.target_batch.batch_number, result.restored_to,
    )
    activity_log.record(
        db,
        user_id=created_by,
        action="STOCK_RETURN",
        table_name=ProductBatch.__tablename__,
        record_id=result.transfer_batch.id,
        branch_id=result.transfer_batch.branch_id,
        details={
            "restored_to": result.restored_to,
            "quantity": result.quantity,
            "target_batch": result.target_batch.batch_number,
            "reason": return_reason,
            "warnings": result.warnings,
        },
    )
    return result


# -------------------------
# Full inter-branch transfer
# -------------------------
@dataclass
class TransferResult:
    transfer_id: str
    deduction: DeductionResult
    receipt: BatchCreationResult


def apply_transfer(
    db: Session,
    *,
    from_branch_id: str,
    to_branch_id: str,
    product_id: str,
    quantity: int,
    usage_type: Optional[UsageType] = None,
    transfer_id: Optional[str] = None,
    product_name: str = "",
    notes: str = "",
    created_by: str = "",
) -> TransferResult:
    if str(from_branch_id) == str(to_branch_id):
        raise InvalidInputError("Source and destination branch must differ")

    tid = str(transfer_id or "")
    ded = apply_deduction(
        db,
        branch_id=from_branch_id,
        product_id=product_id,
        quantity=quantity,
        usage_type=usage_type,
        reason=f"Transfer to branch {to_branch_id}",
        notes=notes or (f"Transfer {tid}" if tid else ""),
        product_name=product_name,
        created_by=created_by,
    )
    receipt = apply_transfer_receipt(
        db,
        {
            "transfer_id": tid,
            "from_branch_id": from_branch_id,
            "to_branch_id": to_branch_id,
            "received_by": created_by,
            "received_at": now_local(),
            "items": [
                {
                    "product_id": product_id,
                    "product_name": product_name or ded.movement.product_name,
                    "quantity": ded.quantity,
                    "batches": [
                        {
                            "batch_id": d["batch_id"],
                            "batch_number": d["batch_number"],
                            "quantity": d["deducted"],
                        }
                        for d in ded.batches_used
                    ],
                }
            ],
        },
        created_by,
    )
    return TransferResult(transfer_id=tid, deduction=ded, receipt=receipt)


def transfer_stock(db: Session, *, created_by: str = "", **params) -> TransferResult:
    result = run_atomic(
        db, lambda: apply_transfer(db, created_by=created_by, **params), label="branch transfer"
    )

    logger.info(
        "Transferred %s of product=%s %s -> %s into %s batch(es)",
        result.deduction.quantity, params.get("product_id"),
        params.get("from_branch_id"), params.get("to_branch_id"), len(result.receipt.batches),
    )
    activity_log.record(
        db,
        user_id=created_by,
        action="STOCK_TRANSFER",
        table_name=ProductBatch.__tablename__,
        record_id=result.transfer_id or params.get("product_id"),
        branch_id=params.get("from_branch_id"),
        details={
            "to_branch_id": params.get("to_branch_id"),
            "source_batches": result.deduction.batches_used,
            "destination_batches": [b.batch_number for b in result.receipt.batches],
        },
    )
    return result

# FILE: branch_inventory/services/batch_catalog.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from branch_inventory.core.config import settings
from branch_inventory.models.inventory import (
    ProductBatch,
    BatchStockEntry,
    InventoryMovement,
    BatchSourceType,
    BatchStatus,
    UsageType,
    MovementType,
)
from branch_inventory.services.inventory_errors import InvalidInputError
from branch_inventory.services.inventory_tx import run_atomic
from branch_inventory.services.stock_ledger import (
    D,
    get_stock_record,
    recompute_batch_ledger,
    record_movement,
)
from branch_inventory.services import activity_log
from branch_inventory.utils.timezone import now_local, as_date

logger = logging.getLogger(__name__)


@dataclass
class BatchCreationResult:
    batches: List[ProductBatch] = field(default_factory=list)
    movements: List[InventoryMovement] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)


# -------------------------
# Ordering
# -------------------------
def fifo_sort_key(batch: ProductBatch):
    """Earliest expiry first, undated last, then oldest receipt, then id."""
    exp = batch.expiration_date
    return (
        exp is None,
        exp or date.max,
        batch.received_date or datetime.min,
        batch.id or 0,
    )


def fifo_order_by():
    # MySQL has no NULLS LAST
    nulls_last = case((ProductBatch.expiration_date.is_(None), 1), else_=0)
    return (
        nulls_last.asc(),
        ProductBatch.expiration_date.asc(),
        ProductBatch.received_date.asc(),
        ProductBatch.id.asc(),
    )


# -------------------------
# Numbering
# -------------------------
class BatchNumberSeries:
    """`{prefix}-BATCH-{seq:03}`, continuing after numbers already issued under the prefix."""

    def __init__(self, db: Session, prefix: str):
        self.prefix = str(prefix)
        stem = f"{self.prefix}-BATCH-"
        self.seq = (
            db.query(ProductBatch.id)
            .filter(ProductBatch.batch_number.startswith(stem, autoescape=True))
            .count()
        )

    def next(self) -> str:
        self.seq += 1
        return f"{self.prefix}-BATCH-{self.seq:03d}"


# -------------------------
# Creation primitives
# -------------------------
def create_batch(db: Session, **fields) -> ProductBatch:
    """Insert one batch plus its shadow BatchStockEntry seeded at the received quantity."""
    qty = int(fields["quantity"])
    received = fields.pop("received_date", None) or now_local()

    b = ProductBatch(
        remaining_quantity=qty,
        received_date=received,
        status=BatchStatus.ACTIVE,
        **fields,
    )
    db.add(b)
    db.flush()

    now = now_local()
    db.add(
        BatchStockEntry(
            batch_id=b.id,
            batch_number=b.batch_number,
            product_id=b.product_id,
            branch_id=b.branch_id,
            beginning_stock=qty,
            real_time_stock=qty,
            start_period=now,
            end_period=now + timedelta(days=int(settings.BATCH_STOCK_PERIOD_DAYS)),
            week_tracking_mode="manual",
            end_stock_mode="auto",
        )
    )
    db.flush()
    return b


def adjust_batch_remaining(db: Session, batch: ProductBatch, delta: int) -> None:
    """
    Apply `delta` to a batch and the identical delta to its shadow entry.
    Negative delta = stock out. DEPLETED at zero; a positive delta revives a
    DEPLETED batch.
    """
    new_qty = int(batch.remaining_quantity or 0) + int(delta)
    if new_qty < 0:
        raise InvalidInputError(
            f"Batch {batch.batch_number} has only {batch.remaining_quantity} remaining"
        )
    batch.remaining_quantity = new_qty
    if new_qty == 0:
        batch.status = BatchStatus.DEPLETED
    elif batch.status == BatchStatus.DEPLETED:
        batch.status = BatchStatus.ACTIVE

    entry = (
        db.query(BatchStockEntry)
        .filter(BatchStockEntry.batch_id == batch.id)
        .with_for_update()
        .first()
    )
    if entry is None:
        logger.warning("Batch %s has no stock entry; creating one", batch.batch_number)
        now = now_local()
        entry = BatchStockEntry(
            batch_id=batch.id,
            batch_number=batch.batch_number,
            product_id=batch.product_id,
            branch_id=batch.branch_id,
            beginning_stock=int(batch.quantity or 0),
            real_time_stock=int(batch.remaining_quantity or 0) - int(delta),
            start_period=now,
            end_period=now + timedelta(days=int(settings.BATCH_STOCK_PERIOD_DAYS)),
        )
        db.add(entry)
    entry.real_time_stock = int(entry.real_time_stock or 0) + int(delta)


def ensure_batch_tracked(db: Session, branch_id: str, product_id: str) -> Optional[ProductBatch]:
    """
    First batch mutation on an untracked record: carry its on-hand count into
    an opening batch so no stock is lost when the ledger switches to batch sums.
    """
    st = get_stock_record(db, branch_id, product_id, lock=True)
    if st is None or st.batch_tracked:
        return None

    on_hand = int(st.current_stock or 0)
    st.batch_tracked = True
    if on_hand <= 0:
        return None

    numbers = BatchNumberSeries(db, f"OPEN-{st.product_id}")
    b = create_batch(
        db,
        batch_number=numbers.next(),
        product_id=st.product_id,
        product_name=st.product_name or "",
        branch_id=st.branch_id,
        source_type=BatchSourceType.PURCHASE,
        quantity=on_hand,
        unit_cost=D(st.unit_cost),
        expiration_date=st.expiry_date,
        usage_type=UsageType.OTC,
        notes="Opening balance carried from untracked stock",
    )
    logger.info(
        "Opening batch %s created for branch=%s product=%s qty=%s",
        b.batch_number, st.branch_id, st.product_id, on_hand,
    )
    return b


def _usage(value, default: UsageType = UsageType.OTC) -> UsageType:
    if value is None or value == "":
        return default
    if isinstance(value, UsageType):
        return value
    try:
        return UsageType(str(value).upper().replace("-", "_"))
    except ValueError:
        raise InvalidInputError(f"Unknown usage type '{value}'")


def _line_qty(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _finish_product_line(
    db: Session,
    result: BatchCreationResult,
    *,
    branch_id: str,
    product_id: str,
    product_name: str,
    unit_cost,
    qty: int,
    reason: str,
    notes: str,
    created_by: str,
) -> None:
    change = recompute_batch_ledger(
        db,
        branch_id=branch_id,
        product_id=product_id,
        product_name=product_name,
        unit_cost=unit_cost,
        restocked=True,
    )
    mv = record_movement(
        db,
        branch_id=branch_id,
        product_id=product_id,
        product_name=product_name,
        movement_type=MovementType.STOCK_IN,
        quantity=qty,
        previous_stock=change.previous_stock,
        new_stock=change.new_stock,
        reason=reason,
        notes=notes,
        created_by=created_by,
    )
    result.movements.append(mv)


# -------------------------
# Delivery (purchase order receipt)
# -------------------------
def apply_delivery(db: Session, delivery: Dict[str, Any], created_by: str = "") -> BatchCreationResult:
    branch_id = str(delivery.get("branch_id") or "").strip()
    if not branch_id:
        raise InvalidInputError("branch_id is required")

    po_id = str(delivery.get("purchase_order_id") or "").strip()
    received_by = str(delivery.get("received_by") or created_by or "")
    received_at = delivery.get("received_at") or now_local()

    result = BatchCreationResult()
    numbers = BatchNumberSeries(db, po_id or settings.DEFAULT_SOURCE_PREFIX_PO)

    for idx, item in enumerate(delivery.get("items") or []):
        product_id = str(item.get("product_id") or "").strip()
        qty = _line_qty(item.get("quantity"))
        if not product_id:
            result.skipped.append({"index": idx, "product_id": None, "reason": "missing product_id"})
            continue
        if qty <= 0:
            result.skipped.append({"index": idx, "product_id": product_id, "reason": "quantity must be > 0"})
            continue

        product_name = str(item.get("product_name") or "")
        unit_cost = D(item.get("unit_price"))

        ensure_batch_tracked(db, branch_id, product_id)
        b = create_batch(
            db,
            batch_number=numbers.next(),
            product_id=product_id,
            product_name=product_name,
            branch_id=branch_id,
            source_type=BatchSourceType.PURCHASE,
            purchase_order_id=po_id,
            quantity=qty,
            unit_cost=unit_cost,
            expiration_date=as_date(item.get("expiration_date")),
            received_date=received_at,
            received_by=received_by,
            usage_type=_usage(item.get("usage_type")),
        )
        result.batches.append(b)

        _finish_product_line(
            db, result,
            branch_id=branch_id,
            product_id=product_id,
            product_name=product_name,
            unit_cost=unit_cost,
            qty=qty,
            reason="Purchase order delivery",
            notes=f"Batch {b.batch_number}" + (f" (PO {po_id})" if po_id else ""),
            created_by=created_by,
        )

    if not result.batches:
        raise InvalidInputError("Delivery has no valid items")

    db.flush()
    return result


def create_from_delivery(db: Session, delivery: Dict[str, Any], *, created_by: str = "") -> BatchCreationResult:
    result = run_atomic(db, lambda: apply_delivery(db, delivery, created_by), label="create_from_delivery")

    for s in result.skipped:
        logger.warning("Delivery line %s skipped: %s", s["index"], s["reason"])
    logger.info(
        "Created %s batch(es) from delivery po=%s branch=%s",
        len(result.batches), delivery.get("purchase_order_id") or "-", delivery.get("branch_id"),
    )
    activity_log.record(
        db,
        user_id=created_by,
        action="BATCH_CREATE",
        table_name=ProductBatch.__tablename__,
        record_id=delivery.get("purchase_order_id") or settings.DEFAULT_SOURCE_PREFIX_PO,
        branch_id=delivery.get("branch_id"),
        details={
            "source": "delivery",
            "batches": [b.batch_number for b in result.batches],
            "skipped": result.skipped,
        },
    )
    return result


# -------------------------
# Transfer receipt (destination side)
# -------------------------
def apply_transfer_receipt(db: Session, transfer: Dict[str, Any], created_by: str = "") -> BatchCreationResult:
    to_branch = str(transfer.get("to_branch_id") or "").strip()
    if not to_branch:
        raise InvalidInputError("to_branch_id is required")

    transfer_id = str(transfer.get("transfer_id") or "").strip()
    from_branch = str(transfer.get("from_branch_id") or "").strip()
    if not from_branch:
        raise InvalidInputError("from_branch_id is required")
    if from_branch == to_branch:
        raise InvalidInputError("Source and destination branch must differ")
    received_by = str(transfer.get("received_by") or created_by or "")
    received_at = transfer.get("received_at") or now_local()

    result = BatchCreationResult()
    numbers = BatchNumberSeries(db, transfer_id or settings.DEFAULT_SOURCE_PREFIX_TRANSFER)

    for idx, item in enumerate(transfer.get("items") or []):
        product_id = str(item.get("product_id") or "").strip()
        breakdown = [sb for sb in (item.get("batches") or []) if _line_qty(sb.get("quantity")) > 0]
        qty = _line_qty(item.get("quantity")) or sum(_line_qty(sb.get("quantity")) for sb in breakdown)

        if not product_id:
            result.skipped.append({"index": idx, "product_id": None, "reason": "missing product_id"})
            continue
        if qty <= 0:
            result.skipped.append({"index": idx, "product_id": product_id, "reason": "quantity must be > 0"})
            continue

        product_name = str(item.get("product_name") or "")
        item_cost = D(item.get("unit_cost"))
        item_usage = _usage(item.get("usage_type"))

        ensure_batch_tracked(db, to_branch, product_id)
        line_batches: List[ProductBatch] = []

        common = dict(
            product_id=product_id,
            product_name=product_name,
            branch_id=to_branch,
            source_type=BatchSourceType.TRANSFER,
            source_transfer_id=transfer_id,
            from_branch_id=from_branch,
            received_date=received_at,
            received_by=received_by,
        )

        if breakdown:
            for sb in breakdown:
                src = db.get(ProductBatch, int(sb["batch_id"])) if sb.get("batch_id") else None
                if sb.get("batch_id") and src is None:
                    logger.warning(
                        "Transfer %s: source batch %s not found, keeping number only",
                        transfer_id or "-", sb.get("batch_id"),
                    )
                if src is not None and src.product_id != product_id:
                    raise InvalidInputError(
                        f"Source batch {src.batch_number} is for product {src.product_id}, not {product_id}"
                    )
                exp = as_date(sb.get("expiration_date")) if sb.get("expiration_date") else (
                    src.expiration_date if src else None
                )
                if sb.get("unit_cost") is not None:
                    cost = D(sb.get("unit_cost"))
                else:
                    cost = D(src.unit_cost) if src else item_cost
                if sb.get("usage_type"):
                    usage = _usage(sb.get("usage_type"))
                else:
                    usage = src.usage_type if src else item_usage

                line_batches.append(
                    create_batch(
                        db,
                        batch_number=numbers.next(),
                        original_batch_id=src.id if src else None,
                        original_batch_number=str(sb.get("batch_number") or (src.batch_number if src else "")),
                        quantity=_line_qty(sb.get("quantity")),
                        unit_cost=cost,
                        expiration_date=exp,
                        usage_type=usage,
                        **common,
                    )
                )
        else:
            # no breakdown: one batch, expiration unknown
            line_batches.append(
                create_batch(
                    db,
                    batch_number=numbers.next(),
                    quantity=qty,
                    unit_cost=item_cost,
                    expiration_date=None,
                    usage_type=item_usage,
                    **common,
                )
            )

        result.batches.extend(line_batches)
        _finish_product_line(
            db, result,
            branch_id=to_branch,
            product_id=product_id,
            product_name=product_name,
            unit_cost=item_cost if item_cost > 0 else None,
            qty=sum(int(b.quantity) for b in line_batches),
            reason="Transfer received",
            notes=(
                f"From branch {from_branch or '-'}"
                + (f", transfer {transfer_id}" if transfer_id else "")
                + f"; batches {', '.join(b.batch_number for b in line_batches)}"
            ),
            created_by=created_by,
        )

    if not result.batches:
        raise InvalidInputError("Transfer has no valid items")

    db.flush()
    return result


def create_from_transfer(db: Session, transfer: Dict[str, Any], *, created_by: str = "") -> BatchCreationResult:
    result = run_atomic(
        db, lambda: apply_transfer_receipt(db, transfer, created_by), label="create_from_transfer"
    )

    for s in result.skipped:
        logger.warning("Transfer line %s skipped: %s", s["index"], s["reason"])
    logger.info(
        "Created %s transfer batch(es) transfer=%s %s -> %s",
        len(result.batches), transfer.get("transfer_id") or "-",
        transfer.get("from_branch_id") or "-", transfer.get("to_branch_id"),
    )
    activity_log.record(
        db,
        user_id=created_by,
        action="BATCH_CREATE",
        table_name=ProductBatch.__tablename__,
        record_id=transfer.get("transfer_id") or settings.DEFAULT_SOURCE_PREFIX_TRANSFER,
        branch_id=transfer.get("to_branch_id"),
        details={
            "source": "transfer",
            "batches": [b.batch_number for b in result.batches],
            "skipped": result.skipped,
        },
    )
    return result


# -------------------------
# Reads
# -------------------------
def get_batch(db: Session, batch_id: int, *, lock: bool = False) -> Optional[ProductBatch]:
    q = db.query(ProductBatch).filter(ProductBatch.id == int(batch_id))
    if lock:
        q = q.with_for_update()
    return q.first()


def get_product_batches(
    db: Session,
    branch_id: str,
    product_id: str,
    *,
    status: Optional[BatchStatus] = None,
) -> List[ProductBatch]:
    q = db.query(ProductBatch).filter(
        ProductBatch.branch_id == str(branch_id),
        ProductBatch.product_id == str(product_id),
    )
    if status:
        q = q.filter(ProductBatch.status == status)
    return q.order_by(*fifo_order_by()).all()


def get_branch_batches(
    db: Session,
    branch_id: str,
    *,
    status: Optional[BatchStatus] = None,
    product_id: Optional[str] = None,
) -> List[ProductBatch]:
    q = db.query(ProductBatch).filter(ProductBatch.branch_id == str(branch_id))
    if status:
        q = q.filter(ProductBatch.status == status)
    if product_id:
        q = q.filter(ProductBatch.product_id == str(product_id))
    return q.order_by(*fifo_order_by()).all()

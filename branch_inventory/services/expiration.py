# FILE: branch_inventory/services/expiration.py
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy import or_, and_
from sqlalchemy.orm import Session

from branch_inventory.core.config import settings
from branch_inventory.models.inventory import (
    ProductBatch,
    InventoryMovement,
    BatchStatus,
    MovementType,
)
from branch_inventory.services import activity_log
from branch_inventory.services.inventory_errors import ReconciliationWarning
from branch_inventory.services.inventory_tx import run_atomic
from branch_inventory.services.stock_ledger import recompute_batch_ledger, record_movement
from branch_inventory.utils.timezone import today_local

logger = logging.getLogger(__name__)


def is_effectively_expired(batch: ProductBatch, today: Optional[date] = None) -> bool:
    """True for EXPIRED batches and for ACTIVE ones whose date has passed but were not swept yet."""
    if batch.status == BatchStatus.EXPIRED:
        return True
    exp = batch.expiration_date
    return exp is not None and exp < (today or today_local())


@dataclass
class SweepResult:
    branch_id: str
    updated_count: int = 0
    batches: List[ProductBatch] = field(default_factory=list)
    movements: List[InventoryMovement] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _apply_sweep(db: Session, branch_id: str, today: date, created_by: str) -> SweepResult:
    result = SweepResult(branch_id=str(branch_id))

    due = (
        db.query(ProductBatch)
        .filter(
            ProductBatch.branch_id == str(branch_id),
            ProductBatch.status == BatchStatus.ACTIVE,
            ProductBatch.expiration_date.isnot(None),
            ProductBatch.expiration_date < today,
        )
        .order_by(ProductBatch.product_id.asc(), ProductBatch.id.asc())
        .with_for_update()
        .all()
    )
    if not due:
        return result

    by_product: Dict[str, List[ProductBatch]] = defaultdict(list)
    for b in due:
        b.status = BatchStatus.EXPIRED
        by_product[b.product_id].append(b)
        result.batches.append(b)
    result.updated_count = len(due)

    for product_id, batches in by_product.items():
        change = recompute_batch_ledger(db, branch_id=branch_id, product_id=product_id, create=False)
        if change is None:
            w = ReconciliationWarning(
                f"No stock record for product {product_id} at branch {branch_id} while expiring batches",
                branch_id=branch_id,
                product_id=product_id,
            )
            logger.warning("%s", w)
            result.warnings.append(str(w))
            continue

        expired_qty = sum(int(b.remaining_quantity or 0) for b in batches)
        result.movements.append(
            record_movement(
                db,
                branch_id=branch_id,
                product_id=product_id,
                product_name=batches[0].product_name,
                movement_type=MovementType.STOCK_OUT,
                quantity=expired_qty,
                previous_stock=change.previous_stock,
                new_stock=change.new_stock,
                reason="Batch expired",
                notes=", ".join(b.batch_number for b in batches),
                batch_deductions=[
                    {
                        "batch_id": b.id,
                        "batch_number": b.batch_number,
                        "deducted": int(b.remaining_quantity or 0),
                        "remaining": int(b.remaining_quantity or 0),
                    }
                    for b in batches
                ],
                created_by=created_by,
            )
        )

    db.flush()
    return result


def sweep(db: Session, branch_id: str, *, today: Optional[date] = None, created_by: str = "system") -> SweepResult:
    """ACTIVE -> EXPIRED for batches dated before today. remaining_quantity is left as is."""
    day = today or today_local()
    result = run_atomic(db, lambda: _apply_sweep(db, branch_id, day, created_by), label="expiry sweep")

    if result.updated_count:
        logger.info("Expired %s batch(es) at branch=%s", result.updated_count, branch_id)
        activity_log.record(
            db,
            user_id=created_by,
            action="BATCH_EXPIRE",
            table_name=ProductBatch.__tablename__,
            record_id=str(branch_id),
            branch_id=branch_id,
            details={"batches": [b.batch_number for b in result.batches]},
        )
    return result


def get_expiring_batches(
    db: Session,
    branch_id: str,
    days_ahead: Optional[int] = None,
    *,
    today: Optional[date] = None,
) -> List[ProductBatch]:
    day = today or today_local()
    days = settings.EXPIRY_ALERT_DAYS if days_ahead is None else int(days_ahead)
    until = day + timedelta(days=days)

    return (
        db.query(ProductBatch)
        .filter(
            ProductBatch.branch_id == str(branch_id),
            ProductBatch.status == BatchStatus.ACTIVE,
            ProductBatch.remaining_quantity > 0,
            ProductBatch.expiration_date.isnot(None),
            ProductBatch.expiration_date >= day,
            ProductBatch.expiration_date <= until,
        )
        .order_by(ProductBatch.expiration_date.asc(), ProductBatch.id.asc())
        .all()
    )


def get_expired_batches(db: Session, branch_id: str, *, today: Optional[date] = None) -> List[ProductBatch]:
    day = today or today_local()
    return (
        db.query(ProductBatch)
        .filter(
            ProductBatch.branch_id == str(branch_id),
            or_(
                ProductBatch.status == BatchStatus.EXPIRED,
                and_(
                    ProductBatch.status == BatchStatus.ACTIVE,
                    ProductBatch.remaining_quantity > 0,
                    ProductBatch.expiration_date.isnot(None),
                    ProductBatch.expiration_date < day,
                ),
            ),
        )
        .order_by(ProductBatch.expiration_date.asc(), ProductBatch.id.asc())
        .all()
    )

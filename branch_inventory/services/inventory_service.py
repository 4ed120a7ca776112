# FILE: branch_inventory/services/inventory_service.py
from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from branch_inventory.models.inventory import BatchStatus, MovementType, StockStatus, UsageType
from branch_inventory.schemas.inventory import (
    AllocationPlanOut,
    BatchOut,
    ExpirySweepOut,
    InventoryStatsOut,
    MovementOut,
    ServiceResult,
    StockOut,
)
from branch_inventory.services import (
    batch_catalog,
    deduction_engine,
    expiration,
    fifo_allocator,
    stock_ledger,
    transfer_return,
)
from branch_inventory.services.inventory_errors import InventoryError

logger = logging.getLogger(__name__)


def _payload(data: Any) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data or {})


def _service_call(fn: Callable[..., ServiceResult]) -> Callable[..., ServiceResult]:
    """Domain errors become a failed ServiceResult; anything else propagates."""

    @functools.wraps(fn)
    def wrapper(self: "InventoryService", *args, **kwargs) -> ServiceResult:
        try:
            return fn(self, *args, **kwargs)
        except InventoryError as e:
            logger.info("%s rejected [%s]: %s", fn.__name__, e.code, e.message)
            return ServiceResult(
                success=False,
                message=e.message,
                code=e.code,
                available_qty=e.available_qty,
            )

    return wrapper


def _batches(rows) -> list:
    return [BatchOut.model_validate(b) for b in rows]


def _movements(rows) -> list:
    return [MovementOut.model_validate(m) for m in rows]


class InventoryService:
    """
    Entry point for callers (routes, POS, PO receiving, transfer workflow).
    Every operation returns a ServiceResult instead of raising domain errors.
    """

    def __init__(self, db: Session, actor: str = ""):
        self.db = db
        self.actor = actor or ""

    # ---------- Stock ledger ----------

    @_service_call
    def get_branch_stocks(
        self,
        branch_id: str,
        *,
        status: Optional[StockStatus] = None,
        category: Optional[str] = None,
        order_by: Optional[str] = None,
        order_direction: str = "asc",
    ) -> ServiceResult:
        rows = stock_ledger.get_branch_stocks(
            self.db, branch_id,
            status=status, category=category,
            order_by=order_by, order_direction=order_direction,
        )
        return ServiceResult(success=True, data=[StockOut.model_validate(r) for r in rows])

    @_service_call
    def get_stock_by_id(self, stock_id: int) -> ServiceResult:
        st = stock_ledger.get_stock_by_id(self.db, stock_id)
        return ServiceResult(success=True, data=StockOut.model_validate(st))

    @_service_call
    def add_stock(self, data: Any) -> ServiceResult:
        st, mv = stock_ledger.add_stock(self.db, _payload(data), created_by=self.actor)
        return ServiceResult(
            success=True,
            message="Stock added successfully",
            data={"stock": StockOut.model_validate(st), "movement": MovementOut.model_validate(mv)},
        )

    @_service_call
    def reduce_stock(self, data: Any) -> ServiceResult:
        st, mv = stock_ledger.reduce_stock(self.db, _payload(data), created_by=self.actor)
        return ServiceResult(
            success=True,
            message="Stock reduced successfully",
            data={"stock": StockOut.model_validate(st), "movement": MovementOut.model_validate(mv)},
        )

    @_service_call
    def update_stock(self, stock_id: int, changes: Any) -> ServiceResult:
        payload = changes.model_dump(exclude_unset=True) if isinstance(changes, BaseModel) else dict(changes or {})
        st = stock_ledger.update_stock(self.db, stock_id, payload, created_by=self.actor)
        return ServiceResult(success=True, message="Stock updated successfully", data=StockOut.model_validate(st))

    @_service_call
    def get_inventory_movements(
        self,
        branch_id: str,
        *,
        movement_type: Optional[MovementType] = None,
        product_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ServiceResult:
        rows = stock_ledger.get_inventory_movements(
            self.db, branch_id, movement_type=movement_type, product_id=product_id, limit=limit
        )
        return ServiceResult(success=True, data=_movements(rows))

    @_service_call
    def get_inventory_stats(self, branch_id: str) -> ServiceResult:
        stats = stock_ledger.get_inventory_stats(self.db, branch_id)
        return ServiceResult(success=True, data=InventoryStatsOut(**stats))

    # ---------- Batch catalog ----------

    @_service_call
    def get_product_batches(
        self, branch_id: str, product_id: str, *, status: Optional[BatchStatus] = None
    ) -> ServiceResult:
        rows = batch_catalog.get_product_batches(self.db, branch_id, product_id, status=status)
        return ServiceResult(success=True, data=_batches(rows))

    @_service_call
    def get_branch_batches(
        self, branch_id: str, *, status: Optional[BatchStatus] = None, product_id: Optional[str] = None
    ) -> ServiceResult:
        rows = batch_catalog.get_branch_batches(self.db, branch_id, status=status, product_id=product_id)
        return ServiceResult(success=True, data=_batches(rows))

    @_service_call
    def create_product_batches(self, delivery: Any) -> ServiceResult:
        res = batch_catalog.create_from_delivery(self.db, _payload(delivery), created_by=self.actor)
        return ServiceResult(
            success=True,
            message=f"Created {len(res.batches)} batch(es)",
            data={
                "batches": _batches(res.batches),
                "movements": _movements(res.movements),
                "skipped": res.skipped,
            },
            warnings=[f"Line {s['index']} skipped: {s['reason']}" for s in res.skipped],
        )

    @_service_call
    def create_transfer_batches(self, transfer: Any) -> ServiceResult:
        res = batch_catalog.create_from_transfer(self.db, _payload(transfer), created_by=self.actor)
        return ServiceResult(
            success=True,
            message=f"Created {len(res.batches)} transfer batch(es)",
            data={
                "batches": _batches(res.batches),
                "movements": _movements(res.movements),
                "skipped": res.skipped,
            },
            warnings=[f"Line {s['index']} skipped: {s['reason']}" for s in res.skipped],
        )

    # ---------- Allocation / deduction ----------

    @_service_call
    def get_batches_for_sale(
        self, branch_id: str, product_id: str, quantity: int, usage_type: UsageType = UsageType.OTC
    ) -> ServiceResult:
        plan = fifo_allocator.preview_sale(self.db, branch_id, product_id, quantity, usage_type)
        return ServiceResult(
            success=True,
            data=AllocationPlanOut.model_validate(plan.as_dict()),
            available_qty=plan.available_qty,
        )

    @_service_call
    def get_batches_for_transfer(
        self, branch_id: str, product_id: str, quantity: int, usage_type: Optional[UsageType] = None
    ) -> ServiceResult:
        plan = fifo_allocator.preview_transfer(self.db, branch_id, product_id, quantity, usage_type)
        return ServiceResult(
            success=True,
            data=AllocationPlanOut.model_validate(plan.as_dict()),
            available_qty=plan.available_qty,
        )

    @_service_call
    def deduct_stock_fifo(self, data: Any) -> ServiceResult:
        p = _payload(data)
        res = deduction_engine.deduct(
            self.db,
            branch_id=p["branch_id"],
            product_id=p["product_id"],
            quantity=p.get("quantity"),
            usage_type=p.get("usage_type") or UsageType.OTC,
            reason=p.get("reason") or "Stock reduced",
            notes=p.get("notes") or "",
            product_name=p.get("product_name") or "",
            plan=p.get("plan"),
            created_by=self.actor,
        )
        return ServiceResult(
            success=True,
            message=f"Deducted {res.quantity} from {len(res.batches_used)} batch(es)",
            data={
                "batches_used": res.batches_used,
                "previous_stock": res.previous_stock,
                "new_stock": res.new_stock,
                "replanned": res.replanned,
                "movement": MovementOut.model_validate(res.movement),
            },
            warnings=res.warnings,
        )

    @_service_call
    def transfer_stock(self, data: Any) -> ServiceResult:
        p = _payload(data)
        res = transfer_return.transfer_stock(
            self.db,
            created_by=self.actor,
            from_branch_id=p["from_branch_id"],
            to_branch_id=p["to_branch_id"],
            product_id=p["product_id"],
            quantity=p.get("quantity"),
            usage_type=p.get("usage_type"),
            transfer_id=p.get("transfer_id"),
            product_name=p.get("product_name") or "",
            notes=p.get("notes") or "",
        )
        return ServiceResult(
            success=True,
            message=f"Transferred {res.deduction.quantity} unit(s)",
            data={
                "transfer_id": res.transfer_id,
                "source_batches": res.deduction.batches_used,
                "destination_batches": _batches(res.receipt.batches),
                "movements": _movements([res.deduction.movement, *res.receipt.movements]),
            },
            warnings=res.deduction.warnings,
        )

    # ---------- Returns ----------

    @_service_call
    def return_stock_to_batch(self, data: Any) -> ServiceResult:
        p = _payload(data)
        res = transfer_return.return_stock(
            self.db,
            batch_id=p["batch_id"],
            quantity=p.get("quantity"),
            return_reason=p.get("return_reason") or "",
            is_new_product=bool(p.get("is_new_product")),
            new_product=p.get("new_product"),
            returned_at=p.get("returned_at"),
            created_by=self.actor,
        )
        return ServiceResult(
            success=True,
            message=f"Returned {res.quantity} unit(s) to {res.target_batch.batch_number}",
            data={
                "restored_to": res.restored_to,
                "transfer_batch": BatchOut.model_validate(res.transfer_batch),
                "target_batch": BatchOut.model_validate(res.target_batch),
                "movements": _movements(res.movements),
            },
            warnings=res.warnings,
        )

    # ---------- Expiry ----------

    @_service_call
    def update_batch_expiration_status(self, branch_id: str) -> ServiceResult:
        res = expiration.sweep(self.db, branch_id, created_by=self.actor or "system")
        return ServiceResult(
            success=True,
            message=f"Updated {res.updated_count} batches to expired status",
            data=ExpirySweepOut(branch_id=res.branch_id, updated_count=res.updated_count),
            warnings=res.warnings,
        )

    @_service_call
    def get_expiring_batches(self, branch_id: str, days_ahead: Optional[int] = None) -> ServiceResult:
        rows = expiration.get_expiring_batches(self.db, branch_id, days_ahead)
        return ServiceResult(success=True, data=_batches(rows))

    @_service_call
    def get_expired_batches(self, branch_id: str) -> ServiceResult:
        rows = expiration.get_expired_batches(self.db, branch_id)
        return ServiceResult(success=True, data=_batches(rows))

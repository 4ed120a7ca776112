# FILE: branch_inventory/api/routes_inventory_batches.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from branch_inventory.api.deps import get_inventory_service
from branch_inventory.api.response import from_result
from branch_inventory.models.inventory import BatchStatus, UsageType
from branch_inventory.schemas.inventory import (
    AllocationPreviewIn,
    DeductionIn,
    DeliveryIn,
    ReturnIn,
    TransferReceiptIn,
    TransferStockIn,
)
from branch_inventory.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/inventory", tags=["inventory-batches"])


# =========================
# BATCH LISTINGS
# =========================
@router.get("/branches/{branch_id}/batches")
def list_branch_batches(
    branch_id: str,
    status: Optional[BatchStatus] = Query(None),
    product_id: Optional[str] = Query(None),
    svc: InventoryService = Depends(get_inventory_service),
):
    return from_result(svc.get_branch_batches(branch_id, status=status, product_id=product_id))


@router.get("/branches/{branch_id}/products/{product_id}/batches")
def list_product_batches(
    branch_id: str,
    product_id: str,
    status: Optional[BatchStatus] = Query(None),
    svc: InventoryService = Depends(get_inventory_service),
):
    return from_result(svc.get_product_batches(branch_id, product_id, status=status))


# =========================
# ALLOCATION PREVIEWS
# =========================
@router.post("/allocations/sale")
def preview_sale(payload: AllocationPreviewIn, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(
        svc.get_batches_for_sale(
            payload.branch_id, payload.product_id, payload.quantity, payload.usage_type or UsageType.OTC
        )
    )


@router.post("/allocations/transfer")
def preview_transfer(payload: AllocationPreviewIn, svc: InventoryService = Depends(get_inventory_service)):
    # unlike a sale, an omitted usage type means every pool
    usage = payload.usage_type if "usage_type" in payload.model_fields_set else None
    return from_result(
        svc.get_batches_for_transfer(payload.branch_id, payload.product_id, payload.quantity, usage)
    )


# =========================
# COMMITS
# =========================
@router.post("/deductions")
def deduct_stock(payload: DeductionIn, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.deduct_stock_fifo(payload))


@router.post("/deliveries")
def receive_delivery(payload: DeliveryIn, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.create_product_batches(payload), status_code=201)


@router.post("/transfers/receive")
def receive_transfer(payload: TransferReceiptIn, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.create_transfer_batches(payload), status_code=201)


@router.post("/transfers")
def transfer_stock(payload: TransferStockIn, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.transfer_stock(payload), status_code=201)


@router.post("/returns")
def return_stock(payload: ReturnIn, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.return_stock_to_batch(payload))


# =========================
# EXPIRY
# =========================
@router.post("/branches/{branch_id}/expiry/sweep")
def sweep_expired(branch_id: str, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.update_batch_expiration_status(branch_id))


@router.get("/branches/{branch_id}/expiry/expiring")
def list_expiring(
    branch_id: str,
    days_ahead: Optional[int] = Query(None, ge=0, le=3650),
    svc: InventoryService = Depends(get_inventory_service),
):
    return from_result(svc.get_expiring_batches(branch_id, days_ahead))


@router.get("/branches/{branch_id}/expiry/expired")
def list_expired(branch_id: str, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.get_expired_batches(branch_id))

# FILE: branch_inventory/api/routes_inventory.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from branch_inventory.api.deps import get_inventory_service
from branch_inventory.api.response import from_result
from branch_inventory.models.inventory import MovementType, StockStatus
from branch_inventory.schemas.inventory import StockAddIn, StockReduceIn, StockUpdateIn
from branch_inventory.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/inventory", tags=["inventory"])


# =========================
# STOCKS
# =========================
@router.get("/branches/{branch_id}/stocks")
def list_branch_stocks(
    branch_id: str,
    status: Optional[StockStatus] = Query(None),
    category: Optional[str] = Query(None),
    order_by: Optional[str] = Query(None),
    order_direction: str = Query("asc", pattern="^(asc|desc)$"),
    svc: InventoryService = Depends(get_inventory_service),
):
    return from_result(
        svc.get_branch_stocks(
            branch_id, status=status, category=category,
            order_by=order_by, order_direction=order_direction,
        )
    )


@router.get("/stocks/{stock_id}")
def get_stock(stock_id: int, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.get_stock_by_id(stock_id))


@router.post("/stocks/add")
def add_stock(payload: StockAddIn, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.add_stock(payload), status_code=201)


@router.post("/stocks/reduce")
def reduce_stock(payload: StockReduceIn, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.reduce_stock(payload))


@router.patch("/stocks/{stock_id}")
def update_stock(
    stock_id: int,
    payload: StockUpdateIn,
    svc: InventoryService = Depends(get_inventory_service),
):
    return from_result(svc.update_stock(stock_id, payload))


# =========================
# MOVEMENTS / STATS
# =========================
@router.get("/branches/{branch_id}/movements")
def list_movements(
    branch_id: str,
    type: Optional[MovementType] = Query(None),
    product_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    svc: InventoryService = Depends(get_inventory_service),
):
    return from_result(
        svc.get_inventory_movements(branch_id, movement_type=type, product_id=product_id, limit=limit)
    )


@router.get("/branches/{branch_id}/stats")
def inventory_stats(branch_id: str, svc: InventoryService = Depends(get_inventory_service)):
    return from_result(svc.get_inventory_stats(branch_id))

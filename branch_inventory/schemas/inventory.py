# FILE: branch_inventory/schemas/inventory.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ConfigDict, condecimal

from branch_inventory.models.inventory import (
    StockStatus,
    BatchSourceType,
    UsageType,
    BatchStatus,
    MovementType,
)

Money = condecimal(max_digits=14, decimal_places=4, ge=0)


# ---------- Stock ledger ----------


class StockAddIn(BaseModel):
    branch_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)

    product_name: str = ""
    brand: str = ""
    category: str = ""
    location: str = ""
    supplier: str = ""
    min_stock: int = Field(0, ge=0)
    max_stock: int = Field(0, ge=0)
    unit_cost: Money = Decimal("0")
    expiry_date: Optional[date] = None

    reason: str = "Stock added"
    notes: str = ""


class StockReduceIn(BaseModel):
    branch_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    reason: str = "Stock reduced"
    notes: str = ""


class StockUpdateIn(BaseModel):
    current_stock: Optional[int] = Field(None, ge=0)
    min_stock: Optional[int] = Field(None, ge=0)
    max_stock: Optional[int] = Field(None, ge=0)
    unit_cost: Optional[Money] = None
    location: Optional[str] = None
    supplier: Optional[str] = None
    expiry_date: Optional[date] = None


class StockOut(BaseModel):
    id: int
    branch_id: str
    product_id: str
    product_name: str
    brand: str
    category: str
    location: str
    supplier: str
    current_stock: int
    real_time_stock: int
    min_stock: int
    max_stock: int
    unit_cost: Decimal
    status: StockStatus
    expiry_date: Optional[date] = None
    batch_tracked: bool
    last_updated: datetime
    last_restocked: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class InventoryStatsOut(BaseModel):
    total_products: int
    total_value: Decimal
    in_stock_count: int
    low_stock_count: int
    out_of_stock_count: int


# ---------- Movements ----------


class BatchDeductionOut(BaseModel):
    batch_id: int
    batch_number: str
    deducted: int
    remaining: int


class MovementOut(BaseModel):
    id: int
    branch_id: str
    product_id: str
    product_name: str
    type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    notes: str
    batch_deductions: List[BatchDeductionOut] = []
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Batches ----------


class BatchOut(BaseModel):
    id: int
    batch_number: str
    product_id: str
    product_name: str
    branch_id: str
    source_type: BatchSourceType
    purchase_order_id: str
    source_transfer_id: str
    from_branch_id: str
    original_batch_id: Optional[int] = None
    original_batch_number: str
    quantity: int
    remaining_quantity: int
    unit_cost: Decimal
    expiration_date: Optional[date] = None
    received_date: datetime
    received_by: str
    usage_type: UsageType
    status: BatchStatus
    return_reason: str
    notes: str

    model_config = ConfigDict(from_attributes=True)


class DeliveryItemIn(BaseModel):
    # loose on purpose: malformed lines are skipped by the catalog, not rejected here
    product_id: Optional[str] = None
    product_name: str = ""
    quantity: Optional[int] = None
    unit_price: Money = Decimal("0")
    expiration_date: Optional[date] = None
    usage_type: UsageType = UsageType.OTC


class DeliveryIn(BaseModel):
    purchase_order_id: Optional[str] = None
    branch_id: str = Field(..., min_length=1)
    received_by: str = ""
    received_at: Optional[datetime] = None
    items: List[DeliveryItemIn]


class SourceBatchIn(BaseModel):
    batch_id: Optional[int] = None
    batch_number: str = ""
    quantity: int = Field(..., gt=0)
    unit_cost: Optional[Money] = None
    expiration_date: Optional[date] = None
    usage_type: Optional[UsageType] = None


class TransferItemIn(BaseModel):
    product_id: Optional[str] = None
    product_name: str = ""
    quantity: Optional[int] = None
    unit_cost: Money = Decimal("0")
    usage_type: UsageType = UsageType.OTC
    batches: List[SourceBatchIn] = []


class TransferReceiptIn(BaseModel):
    transfer_id: Optional[str] = None
    from_branch_id: str = Field(..., min_length=1)
    to_branch_id: str = Field(..., min_length=1)
    received_by: str = ""
    received_at: Optional[datetime] = None
    items: List[TransferItemIn]


class TransferStockIn(BaseModel):
    transfer_id: Optional[str] = None
    from_branch_id: str = Field(..., min_length=1)
    to_branch_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    product_name: str = ""
    quantity: int = Field(..., gt=0)
    usage_type: Optional[UsageType] = None
    notes: str = ""


# ---------- Allocation / deduction ----------


class AllocationLineIn(BaseModel):
    batch_id: int
    qty: int = Field(..., gt=0)


class AllocationPreviewIn(BaseModel):
    branch_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    usage_type: Optional[UsageType] = UsageType.OTC


class AllocationLineOut(BaseModel):
    batch_id: int
    batch_number: str
    qty: int
    expiration_date: Optional[date] = None
    unit_cost: Decimal
    remaining_quantity: int
    usage_type: UsageType


class AllocationPlanOut(BaseModel):
    branch_id: str
    product_id: str
    requested_qty: int
    usage_type: Optional[UsageType] = None
    available_qty: int
    lines: List[AllocationLineOut]


class DeductionIn(BaseModel):
    branch_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    product_name: str = ""
    quantity: int = Field(..., gt=0)
    usage_type: UsageType = UsageType.OTC
    reason: str = "Stock reduced"
    notes: str = ""
    plan: Optional[List[AllocationLineIn]] = None


# ---------- Returns ----------


class NewProductIn(BaseModel):
    product_id: str = Field(..., min_length=1)
    product_name: str = ""
    unit_cost: Optional[Money] = None
    expiration_date: Optional[date] = None


class ReturnIn(BaseModel):
    batch_id: int
    quantity: int = Field(..., gt=0)
    return_reason: str = ""
    returned_at: Optional[datetime] = None
    is_new_product: bool = False
    new_product: Optional[NewProductIn] = None


class ExpirySweepOut(BaseModel):
    branch_id: str
    updated_count: int


# ---------- Facade result ----------


class ServiceResult(BaseModel):
    success: bool
    message: str = ""
    code: Optional[str] = None
    data: Any = None
    available_qty: Optional[int] = None
    warnings: List[str] = []

    model_config = ConfigDict(arbitrary_types_allowed=True)

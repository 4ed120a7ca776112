# FILE: branch_inventory/models/inventory.py
from __future__ import annotations

import enum
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric,
    ForeignKey, Text, JSON, Enum, CheckConstraint, Index, UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from branch_inventory.db.base import Base
from branch_inventory.utils.timezone import now_local

Money = Numeric(14, 4)


# -------------------------
# Enums
# -------------------------
class StockStatus(str, enum.Enum):
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class BatchSourceType(str, enum.Enum):
    PURCHASE = "PURCHASE"
    TRANSFER = "TRANSFER"
    RETURN = "RETURN"
    RETURN_NEW = "RETURN_NEW"


class UsageType(str, enum.Enum):
    OTC = "OTC"
    SALON_USE = "SALON_USE"


class BatchStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    DEPLETED = "DEPLETED"


class MovementType(str, enum.Enum):
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"


# -------------------------
# Stock ledger (per branch + product)
# -------------------------
class StockRecord(Base):
    """
    Aggregate on-hand count per (branch, product).
    For batch-tracked products current_stock mirrors the sum of ACTIVE batch
    remaining quantities and is rewritten in the same commit as the batches.
    """
    __tablename__ = "inv_branch_stocks"
    __table_args__ = (
        UniqueConstraint("branch_id", "product_id", name="uq_inv_branch_stock"),
        Index("ix_inv_branch_stock_branch_status", "branch_id", "status"),
        CheckConstraint("current_stock >= 0", name="ck_inv_branch_stock_nonneg"),
    )

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(String(64), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, index=True)

    product_name = Column(String(255), nullable=False, default="")
    brand = Column(String(255), nullable=False, default="")
    category = Column(String(255), nullable=False, default="")
    location = Column(String(255), nullable=False, default="")
    supplier = Column(String(255), nullable=False, default="")

    current_stock = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=0)
    max_stock = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Money, nullable=False, default=Decimal("0"))
    status = Column(Enum(StockStatus, name="inv_stock_status"), nullable=False, default=StockStatus.OUT_OF_STOCK)

    # legacy (non-batched) path only
    expiry_date = Column(Date, nullable=True)
    batch_tracked = Column(Boolean, nullable=False, default=False)

    version = Column(Integer, nullable=False, default=1)

    last_updated = Column(DateTime, nullable=False, default=now_local)
    last_restocked = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=now_local)
    updated_at = Column(DateTime, nullable=False, default=now_local, onupdate=now_local)

    __mapper_args__ = {"version_id_col": version}

    @property
    def real_time_stock(self) -> int:
        return int(self.current_stock or 0)


# -------------------------
# Batch catalog
# -------------------------
class ProductBatch(Base):
    """
    One discrete lot per delivered line / transferred source batch / return.
    quantity is the received amount and never changes; remaining_quantity is
    drawn down by deductions and only grows on returns.
    """
    __tablename__ = "inv_product_batches"
    __table_args__ = (
        UniqueConstraint("batch_number", name="uq_inv_product_batches_number"),
        Index("ix_inv_batch_branch_product", "branch_id", "product_id"),
        Index("ix_inv_batch_branch_status_exp", "branch_id", "status", "expiration_date"),
        CheckConstraint("remaining_quantity >= 0", name="ck_inv_batch_remaining_nonneg"),
        CheckConstraint("quantity > 0", name="ck_inv_batch_qty_pos"),
    )

    id = Column(Integer, primary_key=True, index=True)
    batch_number = Column(String(120), nullable=False, index=True)

    product_id = Column(String(64), nullable=False, index=True)
    product_name = Column(String(255), nullable=False, default="")
    branch_id = Column(String(64), nullable=False, index=True)

    source_type = Column(Enum(BatchSourceType, name="inv_batch_source_type"), nullable=False,
                         default=BatchSourceType.PURCHASE)
    purchase_order_id = Column(String(64), nullable=False, default="")
    source_transfer_id = Column(String(64), nullable=False, default="")
    from_branch_id = Column(String(64), nullable=False, default="")

    # transfer / return back-reference
    original_batch_id = Column(Integer, ForeignKey("inv_product_batches.id"), nullable=True, index=True)
    original_batch_number = Column(String(120), nullable=False, default="")

    quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    unit_cost = Column(Money, nullable=False, default=Decimal("0"))

    expiration_date = Column(Date, nullable=True)
    received_date = Column(DateTime, nullable=False, default=now_local)
    received_by = Column(String(64), nullable=False, default="")

    usage_type = Column(Enum(UsageType, name="inv_usage_type"), nullable=False, default=UsageType.OTC)
    status = Column(Enum(BatchStatus, name="inv_batch_status"), nullable=False, default=BatchStatus.ACTIVE)

    return_reason = Column(String(500), nullable=False, default="")
    notes = Column(String(1000), nullable=False, default="")

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=now_local)
    updated_at = Column(DateTime, nullable=False, default=now_local, onupdate=now_local)

    original_batch = relationship("ProductBatch", remote_side=[id])
    stock_entry = relationship("BatchStockEntry", back_populates="batch", uselist=False)

    __mapper_args__ = {"version_id_col": version}


class BatchStockEntry(Base):
    """
    Shadow live-balance row per batch, used for the weekly manual counts.
    real_time_stock moves in lockstep with ProductBatch.remaining_quantity.
    """
    __tablename__ = "inv_batch_stocks"
    __table_args__ = (
        UniqueConstraint("batch_id", name="uq_inv_batch_stocks_batch"),
        Index("ix_inv_batch_stocks_branch_product", "branch_id", "product_id"),
    )

    id = Column(Integer, primary_key=True)
    batch_id = Column(Integer, ForeignKey("inv_product_batches.id", ondelete="CASCADE"), nullable=False)
    batch_number = Column(String(120), nullable=False, default="")
    product_id = Column(String(64), nullable=False)
    branch_id = Column(String(64), nullable=False)

    beginning_stock = Column(Integer, nullable=False, default=0)
    real_time_stock = Column(Integer, nullable=False, default=0)

    start_period = Column(DateTime, nullable=False, default=now_local)
    end_period = Column(DateTime, nullable=True)
    week_tracking_mode = Column(String(20), nullable=False, default="manual")
    week_one_stock = Column(Integer, nullable=False, default=0)
    week_two_stock = Column(Integer, nullable=False, default=0)
    week_three_stock = Column(Integer, nullable=False, default=0)
    week_four_stock = Column(Integer, nullable=False, default=0)
    end_stock_mode = Column(String(20), nullable=False, default="auto")
    end_stock = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=now_local)
    updated_at = Column(DateTime, nullable=False, default=now_local, onupdate=now_local)

    batch = relationship("ProductBatch", back_populates="stock_entry")


# -------------------------
# Movement log (append-only)
# -------------------------
class InventoryMovement(Base):
    __tablename__ = "inv_movements"
    __table_args__ = (
        Index("ix_inv_movements_branch_time", "branch_id", "created_at"),
        Index("ix_inv_movements_branch_product", "branch_id", "product_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(String(64), nullable=False)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False, default="")

    type = Column(Enum(MovementType, name="inv_movement_type"), nullable=False)
    quantity = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)

    reason = Column(String(500), nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    # [{batch_id, batch_number, deducted, remaining}]
    batch_deductions = Column(JSON, nullable=False, default=list)

    created_by = Column(String(64), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=now_local)


class ImmutableRecordError(RuntimeError):
    pass


@event.listens_for(InventoryMovement, "before_update")
def _block_movement_update(mapper, connection, target):
    raise ImmutableRecordError(f"Inventory movement {target.id} is append-only and cannot be modified")


@event.listens_for(InventoryMovement, "before_delete")
def _block_movement_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Inventory movement {target.id} is append-only and cannot be deleted")

# branch_inventory/models/__init__.py
from .inventory import (
    StockRecord,
    ProductBatch,
    BatchStockEntry,
    InventoryMovement,
    StockStatus,
    BatchSourceType,
    UsageType,
    BatchStatus,
    MovementType,
)
from .audit import AuditLog

__all__ = [
    "StockRecord",
    "ProductBatch",
    "BatchStockEntry",
    "InventoryMovement",
    "StockStatus",
    "BatchSourceType",
    "UsageType",
    "BatchStatus",
    "MovementType",
    "AuditLog",
]

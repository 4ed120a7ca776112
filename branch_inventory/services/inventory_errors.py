# FILE: branch_inventory/services/inventory_errors.py
from __future__ import annotations

from typing import Optional


class InventoryError(RuntimeError):
    """Base for every domain failure. `code` is stable and safe to expose to clients."""

    code = "INVENTORY_ERROR"
    status_code = 400

    def __init__(self, message: str, *, available_qty: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.available_qty = available_qty


class NotFoundError(InventoryError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidInputError(InventoryError):
    code = "INVALID_INPUT"
    status_code = 400


class InsufficientStockError(InventoryError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, message: str, *, available_qty: int = 0):
        super().__init__(message, available_qty=int(available_qty or 0))


class NoBatchesAvailableError(InventoryError):
    code = "NO_BATCHES_AVAILABLE"
    status_code = 409

    def __init__(self, message: str = "No batches available for this product"):
        super().__init__(message, available_qty=0)


class UsageTypeMismatchError(InventoryError):
    # stock exists, but only in the other usage pool
    code = "USAGE_TYPE_MISMATCH"
    status_code = 409

    def __init__(self, message: str, *, other_pool_qty: int = 0):
        super().__init__(message, available_qty=0)
        self.other_pool_qty = int(other_pool_qty or 0)


class ConcurrentModificationError(InventoryError):
    code = "CONCURRENT_MODIFICATION"
    status_code = 409


class ReconciliationWarning(UserWarning):
    """
    Non-fatal: the batch side of a mutation committed but a ledger counterpart
    was missing. Collected into result warnings, never raised to callers.
    """

    code = "RECONCILIATION_WARNING"

    def __init__(self, message: str, *, branch_id: str = "", product_id: str = ""):
        super().__init__(message)
        self.message = message
        self.branch_id = branch_id
        self.product_id = product_id

    def __str__(self) -> str:
        return self.message

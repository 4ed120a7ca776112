# branch_inventory/api/router.py
from fastapi import APIRouter

from branch_inventory.api import (
    routes_inventory,
    routes_inventory_batches,
)

api_router = APIRouter()

# Inventory
api_router.include_router(routes_inventory.router)
api_router.include_router(routes_inventory_batches.router)

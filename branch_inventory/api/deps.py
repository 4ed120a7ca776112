# branch_inventory/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from branch_inventory.db.session import SessionLocal
from branch_inventory.services.inventory_service import InventoryService


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_actor(x_user_id: Optional[str] = Header(None)) -> str:
    # no auth at this layer; the caller's user id is only recorded as created_by
    return (x_user_id or "").strip()


def get_inventory_service(
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
) -> InventoryService:
    return InventoryService(db, actor=actor)

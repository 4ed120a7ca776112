# FILE: branch_inventory/services/activity_log.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from branch_inventory.models.audit import AuditLog

logger = logging.getLogger(__name__)


def record(
    db: Session,
    *,
    action: str,
    table_name: str,
    record_id: Any,
    user_id: Optional[str] = None,
    branch_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """
    Best-effort activity entry, written after the inventory commit.
    Never raises: a failure here is logged and dropped.
    """
    try:
        row = AuditLog(
            user_id=str(user_id) if user_id else None,
            action=str(action)[:50],
            table_name=table_name,
            record_id=str(record_id),
            branch_id=str(branch_id) if branch_id else None,
            new_values=jsonable_encoder(details) if details is not None else None,
        )
        db.add(row)
        db.commit()
        return row
    except Exception:
        db.rollback()
        logger.exception("Failed to write activity log action=%s record=%s", action, record_id)
        return None

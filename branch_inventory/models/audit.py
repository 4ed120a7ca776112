from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
)

from branch_inventory.db.base import Base
from branch_inventory.utils.timezone import now_local


class AuditLog(Base):
    """
    Activity log for inventory actions (batch creation, deductions, returns,
    sweeps). Written best-effort: a failed write never undoes stock changes.
    """
    __tablename__ = "audit_logs"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String(64), nullable=True)  # system jobs may be null
    action = Column(String(50), nullable=False)  # DEDUCT / RETURN / ...

    table_name = Column(String(255), nullable=False)
    record_id = Column(String(100), nullable=False)  # generic pk, stored as string
    branch_id = Column(String(64), nullable=True)

    new_values = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=now_local, nullable=False)

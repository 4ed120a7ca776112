# branch_inventory/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All inventory tables (stocks, batches, batch stocks, movements, audit) inherit from this."""
    pass


# Import all models so metadata is complete for create_all()
from branch_inventory.models import (  # noqa: F401,E402
    inventory,
    audit,
)

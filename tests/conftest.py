"""
Shared fixtures for inventory tests.

Every test gets its own in-memory SQLite database (StaticPool keeps the
single connection alive for the lifetime of the engine). Fixtures are
opt-in; nothing is autouse.
"""

import os

# must be set before branch_inventory.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from branch_inventory.db.base import Base
from branch_inventory.models.inventory import UsageType
from branch_inventory.services.inventory_service import InventoryService
from branch_inventory.utils.timezone import today_local

BRANCH_X = "branch-x"
BRANCH_Y = "branch-y"
PRODUCT_A = "prod-a"
PRODUCT_B = "prod-b"
ACTOR = "user-1"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """Separate connections on one SQLite file, for interleaving two sessions."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'inventory.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield sessionmaker(bind=eng, autocommit=False, autoflush=False, future=True)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def svc(db):
    return InventoryService(db, actor=ACTOR)


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient

    from branch_inventory.api.deps import get_db
    from branch_inventory.main import create_app

    app = create_app()

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c


def days_from_today(n: int):
    return today_local() + timedelta(days=n)


def delivery(branch_id=BRANCH_X, po_id="PO-1", items=None):
    """Delivery payload with sensible per-line defaults."""
    lines = []
    for it in items or []:
        line = {
            "product_id": PRODUCT_A,
            "product_name": "Shampoo",
            "quantity": 1,
            "unit_price": "10.00",
            "expiration_date": None,
            "usage_type": UsageType.OTC,
        }
        line.update(it)
        lines.append(line)
    return {
        "purchase_order_id": po_id,
        "branch_id": branch_id,
        "received_by": ACTOR,
        "items": lines,
    }

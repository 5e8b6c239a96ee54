# tests/conftest.py
from __future__ import annotations

import os
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

# point the app at sqlite before medstock.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from fastapi.testclient import TestClient  # noqa: E402

from medstock.api.deps import get_db  # noqa: E402
from medstock.db.base import Base  # noqa: E402
from medstock.db.session import make_engine, make_sessionmaker  # noqa: E402
from medstock.main import app  # noqa: E402
from medstock.models import (  # noqa: E402
    LotStatus, Medicine, Permission, Role, StockLot, Supplier, User)
from medstock.utils.jwt import create_access_token  # noqa: E402



@pytest.fixture()
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture()
def db(engine):
    sess = make_sessionmaker(engine)()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


# -------------------------
# Reference data
# -------------------------
@pytest.fixture()
def admin(db) -> User:
    u = User(name="Admin", email="admin@clinic.test", is_active=True, is_admin=True)
    db.add(u)
    db.flush()
    return u


@pytest.fixture()
def verifier(db) -> User:
    u = User(name="Verifier", email="verifier@clinic.test", is_active=True, is_admin=False)
    db.add(u)
    db.flush()
    return u


@pytest.fixture()
def supplier(db) -> Supplier:
    s = Supplier(code="SUP-01", name="PT Sehat Farma", contact_person="Rina", phone="0812")
    db.add(s)
    db.flush()
    return s


@pytest.fixture()
def medicine(db) -> Medicine:
    m = Medicine(code="AMX500", name="Amoxicillin 500mg", unit="capsule", min_stock=50)
    db.add(m)
    db.flush()
    return m


@pytest.fixture()
def other_medicine(db) -> Medicine:
    m = Medicine(code="PCT500", name="Paracetamol 500mg", unit="tablet", min_stock=0)
    db.add(m)
    db.flush()
    return m


@pytest.fixture()
def make_lot(db):
    def _make(medicine, batch, qty, expiry, *, reserved=0, cost="500", status=LotStatus.AVAILABLE):
        lot = StockLot(
            medicine_id=medicine.id,
            batch_number=batch,
            on_hand_qty=qty,
            reserved_qty=reserved,
            unit_cost=Decimal(cost),
            expiry_date=expiry,
            status=status,
        )
        db.add(lot)
        db.flush()
        return lot

    return _make


@pytest.fixture()
def line_payload(medicine):
    def _line(**kw):
        li = {
            "medicine_id": medicine.id,
            "batch_number": "B1",
            "quantity": 100,
            "unit_cost": Decimal("500"),
            "expiry_date": date(2026, 1, 1),
        }
        li.update(kw)
        return li

    return _line


# -------------------------
# HTTP
# -------------------------
@pytest.fixture()
def client(db):
    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def auth_headers():
    def _headers(user: User):
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture()
def clerk(db) -> User:
    """Store keeper: may draft receivings and look at stock, nothing else."""
    perms = []
    for code in ("clinic.receiving.view", "clinic.receiving.manage", "clinic.stock.view"):
        p = Permission(code=code, label=code, module="clinic")
        db.add(p)
        perms.append(p)
    role = Role(name="Clinic Store Keeper", permissions=perms)
    u = User(name="Clerk", email="clerk@clinic.test", is_active=True, is_admin=False, roles=[role])
    db.add(u)
    db.flush()
    return u

# FILE: medstock/services/catalog.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medstock.models.catalog import Medicine, Supplier
from medstock.services.errors import NotFoundError, ValidationError


def get_medicine(db: Session, medicine_id: Optional[int]) -> Medicine:
    m = db.get(Medicine, medicine_id) if medicine_id else None
    if not m:
        raise NotFoundError(f"Medicine {medicine_id} not found")
    return m


def get_supplier(db: Session, supplier_id: Optional[int]) -> Supplier:
    s = db.get(Supplier, supplier_id) if supplier_id else None
    if not s:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return s


def list_medicines(db: Session, q: Optional[str] = None, active_only: bool = True) -> List[Medicine]:
    query = db.query(Medicine)
    if active_only:
        query = query.filter(Medicine.is_active.is_(True))
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(Medicine.name.ilike(like), Medicine.code.ilike(like)))
    return query.order_by(Medicine.name.asc()).all()


def list_suppliers(db: Session, q: Optional[str] = None, active_only: bool = True) -> List[Supplier]:
    query = db.query(Supplier)
    if active_only:
        query = query.filter(Supplier.is_active.is_(True))
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(Supplier.name.ilike(like), Supplier.code.ilike(like)))
    return query.order_by(Supplier.name.asc()).all()


def _required(payload: Dict[str, Any], key: str) -> str:
    v = (payload.get(key) or "").strip()
    if not v:
        raise ValidationError(f"{key} is required")
    return v


def create_medicine(db: Session, payload: Dict[str, Any]) -> Medicine:
    min_stock = int(payload.get("min_stock") or 0)
    if min_stock < 0:
        raise ValidationError("min_stock cannot be negative")

    m = Medicine(
        code=_required(payload, "code"),
        name=_required(payload, "name"),
        generic_name=(payload.get("generic_name") or "").strip(),
        unit=(payload.get("unit") or "tablet").strip(),
        min_stock=min_stock,
        is_active=True,
    )
    try:
        with db.begin_nested():
            db.add(m)
            db.flush()
    except IntegrityError:
        raise ValidationError(f"Medicine code {m.code} already exists")
    return m


def create_supplier(db: Session, payload: Dict[str, Any]) -> Supplier:
    s = Supplier(
        code=_required(payload, "code"),
        name=_required(payload, "name"),
        contact_person=(payload.get("contact_person") or "").strip(),
        phone=(payload.get("phone") or "").strip(),
        is_active=True,
    )
    try:
        with db.begin_nested():
            db.add(s)
            db.flush()
    except IntegrityError:
        raise ValidationError(f"Supplier code {s.code} already exists")
    return s

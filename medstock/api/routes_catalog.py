from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from medstock.api.deps import get_db, current_user
from medstock.api.response import ok, ok_list
from medstock.core.rbac import ClinicPerm, require_any, require_perm
from medstock.models.access import User
from medstock.schemas.catalog import MedicineIn, MedicineOut, SupplierIn, SupplierOut
from medstock.services import catalog

router = APIRouter(prefix="/clinic", tags=["Clinic - Catalog"])

VIEW_CODES = (ClinicPerm.RECEIVING_VIEW, ClinicPerm.STOCK_VIEW, ClinicPerm.CATALOG_MANAGE)


@router.get("/medicines")
def list_medicines(
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
    q: Optional[str] = Query(None),
):
    require_any(me, VIEW_CODES)
    return ok_list([MedicineOut.model_validate(m) for m in catalog.list_medicines(db, q=q)])


@router.post("/medicines")
def create_medicine(payload: MedicineIn, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.CATALOG_MANAGE)

    m = catalog.create_medicine(db, payload.model_dump())
    db.commit()
    db.refresh(m)
    return ok(MedicineOut.model_validate(m), status_code=201)


@router.get("/suppliers")
def list_suppliers(
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
    q: Optional[str] = Query(None),
):
    require_any(me, VIEW_CODES)
    return ok_list([SupplierOut.model_validate(s) for s in catalog.list_suppliers(db, q=q)])


@router.post("/suppliers")
def create_supplier(payload: SupplierIn, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.CATALOG_MANAGE)

    s = catalog.create_supplier(db, payload.model_dump())
    db.commit()
    db.refresh(s)
    return ok(SupplierOut.model_validate(s), status_code=201)

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from medstock.api.deps import get_db, current_user
from medstock.api.response import ok, ok_list
from medstock.core.rbac import ClinicPerm, require_perm
from medstock.models.access import User
from medstock.schemas.stock import (
    AllocationOut,
    LotQtyIn,
    LotStatusIn,
    ReservationOut,
    ReserveIn,
)
from medstock.services import stock_alerts, stock_ledger
from medstock.utils.timezone import today as local_today

router = APIRouter(prefix="/clinic/stock", tags=["Clinic - Medicine Stock"])


@router.get("/aggregates")
def stock_aggregates(
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
    alert: Optional[str] = Query(None, description="low_stock | expiring | expired"),
    q: Optional[str] = Query(None),
    horizon_days: Optional[int] = Query(None, ge=0, le=3650),
):
    require_perm(me, ClinicPerm.STOCK_VIEW)
    rows = stock_alerts.get_stock_aggregates(db, alert=alert, q=q, horizon_days=horizon_days)
    return ok_list(rows, alert=alert or "all")


@router.get("/stats")
def stock_stats(
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
    horizon_days: Optional[int] = Query(None, ge=0, le=3650),
):
    require_perm(me, ClinicPerm.STOCK_VIEW)
    return ok(stock_alerts.get_stock_stats(db, horizon_days=horizon_days))


@router.get("/lots")
def list_lots(
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
    medicine_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None, description="available | expired | damaged | recalled"),
    alert: Optional[str] = Query(None, description="expiring | expired"),
    q: Optional[str] = Query(None),
    limit: int = Query(500, ge=1, le=2000),
):
    require_perm(me, ClinicPerm.STOCK_VIEW)

    today = local_today()
    lots = stock_ledger.list_lots(db, medicine_id=medicine_id, status=status, alert=alert, q=q, today=today, limit=limit)
    return ok_list([stock_alerts.lot_out(l, today) for l in lots], today=today)


@router.get("/lots/{lot_id:int}")
def get_lot(lot_id: int, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.STOCK_VIEW)
    return ok(stock_alerts.lot_out(stock_ledger.get_lot(db, lot_id)))


@router.post("/reserve")
def reserve_stock(payload: ReserveIn, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.STOCK_RESERVE)

    allocations = stock_ledger.reserve(
        db, payload.medicine_id, payload.quantity,
        actor_id=me.id, ref_type=payload.ref_type, ref_id=payload.ref_id,
    )
    out = ReservationOut(
        medicine_id=payload.medicine_id,
        quantity=payload.quantity,
        allocations=[
            AllocationOut(lot_id=lot.id, batch_number=lot.batch_number, expiry_date=lot.expiry_date, quantity=qty)
            for lot, qty in allocations
        ],
    )
    db.commit()
    return ok(out, status_code=201)


@router.post("/lots/{lot_id:int}/release")
def release_stock(lot_id: int, payload: LotQtyIn, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.STOCK_RESERVE)

    stock_ledger.release(db, lot_id, payload.quantity, actor_id=me.id, ref_type=payload.ref_type, ref_id=payload.ref_id)
    db.commit()
    return ok(stock_alerts.lot_out(stock_ledger.get_lot(db, lot_id)))


@router.post("/lots/{lot_id:int}/consume")
def consume_stock(lot_id: int, payload: LotQtyIn, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.STOCK_RESERVE)

    stock_ledger.consume(db, lot_id, payload.quantity, actor_id=me.id, ref_type=payload.ref_type, ref_id=payload.ref_id)
    db.commit()
    return ok(stock_alerts.lot_out(stock_ledger.get_lot(db, lot_id)))


@router.post("/lots/{lot_id:int}/status")
def adjust_lot_status(lot_id: int, payload: LotStatusIn, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.STOCK_ADJUST)

    stock_ledger.adjust_lot_status(db, lot_id, payload.status, me.id, payload.reason)
    db.commit()
    return ok(stock_alerts.lot_out(stock_ledger.get_lot(db, lot_id)))

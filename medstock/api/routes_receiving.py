from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from medstock.api.deps import get_db, current_user
from medstock.api.response import ok, ok_list
from medstock.core.rbac import ClinicPerm, require_perm
from medstock.models.access import User
from medstock.schemas.receiving import (
    ReceivingCreate,
    ReceivingHeaderUpdate,
    ReceivingLineIn,
    ReceivingOut,
    ReceivingStatsOut,
)
from medstock.services import receiving_service as svc

router = APIRouter(prefix="/clinic/receiving", tags=["Clinic - Medicine Receiving"])


def _doc_out(db: Session, document_id: int):
    return ReceivingOut.model_validate(svc.get_document(db, document_id))


@router.post("")
def create_receiving(payload: ReceivingCreate, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.RECEIVING_MANAGE)

    doc = svc.create_document(db, me.id, payload.model_dump())
    db.commit()
    return ok(_doc_out(db, doc.id), status_code=201)


@router.get("")
def list_receivings(
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
    status: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    q: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    require_perm(me, ClinicPerm.RECEIVING_VIEW)

    rows = svc.list_documents(db, status=status, date_from=date_from, date_to=date_to, q=q, limit=limit)
    return ok_list([ReceivingOut.model_validate(r) for r in rows], limit=limit)


@router.get("/stats")
def receiving_stats(db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.RECEIVING_VIEW)
    return ok(ReceivingStatsOut(**svc.receiving_stats(db)))


@router.get("/{document_id:int}")
def get_receiving(document_id: int, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.RECEIVING_VIEW)
    return ok(_doc_out(db, document_id))


@router.patch("/{document_id:int}")
def update_receiving_header(
    document_id: int,
    payload: ReceivingHeaderUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
):
    require_perm(me, ClinicPerm.RECEIVING_MANAGE)

    svc.update_document_header(db, document_id, payload.model_dump(exclude_unset=True))
    db.commit()
    return ok(_doc_out(db, document_id))


@router.post("/{document_id:int}/lines")
def add_receiving_line(
    document_id: int,
    payload: ReceivingLineIn,
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
):
    require_perm(me, ClinicPerm.RECEIVING_MANAGE)

    svc.add_line(db, document_id, payload.model_dump())
    db.commit()
    return ok(_doc_out(db, document_id), status_code=201)


@router.put("/{document_id:int}/lines/{line_id:int}")
def edit_receiving_line(
    document_id: int,
    line_id: int,
    payload: ReceivingLineIn,
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
):
    require_perm(me, ClinicPerm.RECEIVING_MANAGE)

    svc.edit_line(db, document_id, line_id, payload.model_dump())
    db.commit()
    return ok(_doc_out(db, document_id))


@router.delete("/{document_id:int}/lines/{line_id:int}")
def remove_receiving_line(
    document_id: int,
    line_id: int,
    db: Session = Depends(get_db),
    me: User = Depends(current_user),
):
    require_perm(me, ClinicPerm.RECEIVING_MANAGE)

    svc.remove_line(db, document_id, line_id)
    db.commit()
    return ok(_doc_out(db, document_id))


@router.post("/{document_id:int}/verify")
def verify_receiving(document_id: int, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.RECEIVING_VERIFY)

    svc.verify_document(db, document_id, me.id)
    db.commit()
    return ok(_doc_out(db, document_id))


@router.post("/{document_id:int}/post")
def post_receiving(document_id: int, db: Session = Depends(get_db), me: User = Depends(current_user)):
    require_perm(me, ClinicPerm.RECEIVING_POST)

    svc.post_document(db, document_id, me.id)
    db.commit()
    return ok(_doc_out(db, document_id))

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import IntegrityError

from medstock.core.config import settings
from medstock.models.catalog import Supplier
from medstock.models.receiving import ReceivingDocument, ReceivingLine, ReceivingStatus
from medstock.models.stock import LotStatus, MovementType, StockLot
from medstock.services.catalog import get_medicine, get_supplier
from medstock.services.errors import (
    ConcurrencyConflictError,
    EmptyDocumentError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from medstock.services.number_series import next_document_number
from medstock.services.stock_ledger import (
    check_lot_invariant,
    flush_or_conflict,
    positive_qty,
    record_movement,
)
from medstock.utils.timezone import now_local, today as local_today

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def d(x: Any) -> Decimal:
    if x is None or x == "":
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def _as_date(v: Any, label: str) -> Optional[date]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    try:
        return date.fromisoformat(str(v))
    except ValueError:
        raise ValidationError(f"{label} must be a date (YYYY-MM-DD)")


def _as_id(v: Any, label: str) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a numeric id")


def _opt_text(v: Any) -> Optional[str]:
    s = str(v).strip() if v is not None else ""
    return s or None


def _clean_line(db: Session, li: Dict[str, Any], label: str = "Line") -> Dict[str, Any]:
    """
    Line-level validation shared by create / add / edit.
    Missing fields are caller mistakes (ValidationError); an unknown
    medicine id is a NotFoundError.
    """
    if not li.get("medicine_id"):
        raise ValidationError(f"{label}: medicine is required")

    batch = (li.get("batch_number") or "").strip()
    if not batch:
        raise ValidationError(f"{label}: batch number is required")

    qty = positive_qty(li.get("quantity"), f"{label}: quantity")

    try:
        cost = d(li.get("unit_cost"))
    except Exception:
        raise ValidationError(f"{label}: unit cost must be a number")
    if cost < 0:
        raise ValidationError(f"{label}: unit cost cannot be negative")

    expiry = _as_date(li.get("expiry_date"), f"{label}: expiry date")
    if not expiry:
        raise ValidationError(f"{label}: expiry date is required")

    mfg = _as_date(li.get("manufacture_date"), f"{label}: manufacture date")
    if mfg and mfg > expiry:
        raise ValidationError(f"{label}: manufacture date is after expiry date")

    location = _opt_text(li.get("location"))
    if location and len(location) > 100:
        raise ValidationError(f"{label}: location is too long (max 100)")

    med = get_medicine(db, _as_id(li["medicine_id"], f"{label}: medicine_id"))

    return {
        "medicine_id": med.id,
        "batch_number": batch,
        "quantity": qty,
        "unit_cost": cost,
        "expiry_date": expiry,
        "manufacture_date": mfg,
        "location": location,
        "notes": (li.get("notes") or "").strip(),
    }


def recalc_document_totals(doc: ReceivingDocument) -> None:
    total_qty = 0
    total_amount = Decimal("0")
    for li in doc.lines or []:
        li.line_total = (d(li.unit_cost) * int(li.quantity or 0)).quantize(CENT)
        total_qty += int(li.quantity or 0)
        total_amount += li.line_total

    doc.total_items = len(doc.lines or [])
    doc.total_quantity = total_qty
    doc.total_amount = total_amount.quantize(CENT)


def _get_document_for_update(db: Session, document_id: int) -> ReceivingDocument:
    doc = (
        db.query(ReceivingDocument)
        .filter(ReceivingDocument.id == document_id)
        .with_for_update()
        .one_or_none()
    )
    if not doc:
        raise NotFoundError(f"Receiving document {document_id} not found")
    return doc


def _require_status(doc: ReceivingDocument, status: ReceivingStatus, action: str) -> None:
    if doc.status != status:
        raise InvalidStateError(
            f"Only {status.value} receiving can be {action} ({doc.document_number} is {ReceivingStatus(doc.status).value})")


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------
def create_document(db: Session, received_by_id: Optional[int], payload: Dict[str, Any]) -> ReceivingDocument:
    if not payload.get("supplier_id"):
        raise ValidationError("supplier_id is required")

    raw_lines = payload.get("lines") or []
    if not raw_lines:
        raise ValidationError("Receiving must have at least 1 line")

    rcv_date = _as_date(payload.get("receiving_date"), "receiving_date") or local_today()

    supplier = get_supplier(db, _as_id(payload["supplier_id"], "supplier_id"))
    lines = [_clean_line(db, li, f"Line {i}") for i, li in enumerate(raw_lines, start=1)]

    number = next_document_number(
        db,
        key=settings.RECEIVING_NUMBER_PREFIX,
        prefix=settings.RECEIVING_NUMBER_PREFIX,
        doc_date=rcv_date,
        pad=settings.RECEIVING_NUMBER_PAD,
    )

    doc = ReceivingDocument(
        document_number=number,
        receiving_date=rcv_date,
        supplier_id=supplier.id,
        invoice_number=_opt_text(payload.get("invoice_number")),
        po_number=_opt_text(payload.get("po_number")),
        notes=(payload.get("notes") or "").strip(),
        status=ReceivingStatus.DRAFT,
        received_by_id=received_by_id,
    )
    doc.lines = [ReceivingLine(**li) for li in lines]
    recalc_document_totals(doc)

    try:
        with db.begin_nested():
            db.add(doc)
            db.flush()
    except IntegrityError:
        raise ConcurrencyConflictError(f"Receiving number {number} is already taken, retry")

    logger.info(
        "receiving created number=%s supplier_id=%s lines=%s qty=%s amount=%s by=%s",
        doc.document_number, doc.supplier_id, doc.total_items, doc.total_quantity,
        doc.total_amount, received_by_id,
    )
    return doc


def update_document_header(db: Session, document_id: int, payload: Dict[str, Any]) -> ReceivingDocument:
    doc = _get_document_for_update(db, document_id)
    _require_status(doc, ReceivingStatus.DRAFT, "edited")

    if "receiving_date" in payload and payload["receiving_date"] is not None:
        if _as_date(payload["receiving_date"], "receiving_date") != doc.receiving_date:
            raise ValidationError("Receiving date is fixed once the document is numbered")

    if payload.get("supplier_id") is not None:
        doc.supplier_id = get_supplier(db, _as_id(payload["supplier_id"], "supplier_id")).id
    for k in ("invoice_number", "po_number"):
        if k in payload:
            setattr(doc, k, _opt_text(payload[k]))
    if "notes" in payload:
        doc.notes = (payload["notes"] or "").strip()

    flush_or_conflict(db, f"Receiving {doc.document_number}")
    return doc


def add_line(db: Session, document_id: int, line: Dict[str, Any]) -> ReceivingLine:
    doc = _get_document_for_update(db, document_id)
    _require_status(doc, ReceivingStatus.DRAFT, "edited")

    li = ReceivingLine(**_clean_line(db, line))
    doc.lines.append(li)
    recalc_document_totals(doc)
    flush_or_conflict(db, f"Receiving {doc.document_number}")
    return li


def _get_line(doc: ReceivingDocument, line_id: int) -> ReceivingLine:
    for li in doc.lines:
        if li.id == line_id:
            return li
    raise NotFoundError(f"Line {line_id} not found on {doc.document_number}")


def edit_line(db: Session, document_id: int, line_id: int, line: Dict[str, Any]) -> ReceivingLine:
    doc = _get_document_for_update(db, document_id)
    _require_status(doc, ReceivingStatus.DRAFT, "edited")

    li = _get_line(doc, line_id)
    for k, v in _clean_line(db, line).items():
        setattr(li, k, v)
    recalc_document_totals(doc)
    flush_or_conflict(db, f"Receiving {doc.document_number}")
    return li


def remove_line(db: Session, document_id: int, line_id: int) -> ReceivingDocument:
    doc = _get_document_for_update(db, document_id)
    _require_status(doc, ReceivingStatus.DRAFT, "edited")

    doc.lines.remove(_get_line(doc, line_id))
    recalc_document_totals(doc)
    flush_or_conflict(db, f"Receiving {doc.document_number}")
    return doc


# ---------------------------------------------------------------------------
# Verify / Post
# ---------------------------------------------------------------------------
def verify_document(db: Session, document_id: int, verified_by_id: Optional[int]) -> ReceivingDocument:
    doc = _get_document_for_update(db, document_id)
    _require_status(doc, ReceivingStatus.DRAFT, "verified")

    if not doc.lines:
        raise EmptyDocumentError(f"Receiving {doc.document_number} has no lines")
    if not verified_by_id:
        raise ValidationError("Verifier is required")
    if settings.REQUIRE_DISTINCT_VERIFIER and verified_by_id == doc.received_by_id:
        raise ValidationError("Receiving must be verified by someone other than the receiver")

    doc.status = ReceivingStatus.VERIFIED
    doc.verified_by_id = verified_by_id
    doc.verified_at = now_local()
    flush_or_conflict(db, f"Receiving {doc.document_number}")

    logger.info("receiving verified number=%s by=%s", doc.document_number, verified_by_id)
    return doc


def _plan_posting(
    db: Session, doc: ReceivingDocument, lines: List[ReceivingLine]
) -> Dict[Tuple[int, str], StockLot]:
    """
    Stage the posting: re-check every line and lock the lots it will touch.
    Nothing is written here.
    """
    for i, li in enumerate(lines, start=1):
        label = f"{doc.document_number} line {i}"
        if not li.medicine_id or not (li.batch_number or "").strip():
            raise ValidationError(f"{label}: medicine and batch are required")
        if int(li.quantity or 0) <= 0:
            raise ValidationError(f"{label}: quantity must be greater than 0")
        if not li.expiry_date:
            raise ValidationError(f"{label}: expiry date is required")

    med_ids = sorted({li.medicine_id for li in lines})
    existing = (
        db.query(StockLot)
        .filter(StockLot.medicine_id.in_(med_ids))
        .order_by(StockLot.id.asc())
        .with_for_update()
        .all()
    )
    wanted = {(li.medicine_id, li.batch_number) for li in lines}
    return {(l.medicine_id, l.batch_number): l for l in existing if (l.medicine_id, l.batch_number) in wanted}


def _apply_line_receipt(
    db: Session,
    doc: ReceivingDocument,
    li: ReceivingLine,
    lots: Dict[Tuple[int, str], StockLot],
    posted_by_id: Optional[int],
) -> StockLot:
    key = (li.medicine_id, li.batch_number)
    qty = int(li.quantity)
    lot = lots.get(key)

    if lot is None:
        lot = StockLot(
            medicine_id=li.medicine_id,
            batch_number=li.batch_number,
            on_hand_qty=qty,
            reserved_qty=0,
            unit_cost=d(li.unit_cost),
            expiry_date=li.expiry_date,
            manufacture_date=li.manufacture_date,
            receiving_document_id=doc.id,
            location=li.location,
            status=LotStatus.AVAILABLE,
            notes=li.notes or None,
        )
        db.add(lot)
        db.flush()
        lots[key] = lot
    else:
        if lot.expiry_date != li.expiry_date:
            logger.warning(
                "expiry mismatch on repeat receipt lot_id=%s batch=%s lot_expiry=%s line_expiry=%s (%s)",
                lot.id, lot.batch_number, lot.expiry_date, li.expiry_date, doc.document_number,
            )
        if d(lot.unit_cost) != d(li.unit_cost):
            logger.info(
                "unit cost updated lot_id=%s batch=%s %s -> %s (%s)",
                lot.id, lot.batch_number, lot.unit_cost, li.unit_cost, doc.document_number,
            )
        lot.on_hand_qty = int(lot.on_hand_qty or 0) + qty
        # last received price wins
        lot.unit_cost = d(li.unit_cost)
        if li.location:
            lot.location = li.location

    check_lot_invariant(lot)
    li.stock_lot_id = lot.id
    record_movement(
        db, lot, MovementType.RECEIVE, qty,
        ref_type="RECEIVING", ref_id=doc.id, user_id=posted_by_id,
        remark=f"Receiving {doc.document_number}" + (f" / Inv {doc.invoice_number}" if doc.invoice_number else ""),
    )
    return lot


def post_document(db: Session, document_id: int, posted_by_id: Optional[int]) -> ReceivingDocument:
    """
    verified -> posted, the only inbound write into the stock ledger.

    Every lot upsert and the status flip run in one savepoint: a failure on
    any line leaves lots, movements and the document exactly as they were.
    Re-posting is rejected by the status check, never re-applied.
    """
    doc = _get_document_for_update(db, document_id)
    _require_status(doc, ReceivingStatus.VERIFIED, "posted")

    lines = (
        db.query(ReceivingLine)
        .filter(ReceivingLine.document_id == doc.id)
        .order_by(ReceivingLine.id.asc())
        .with_for_update()
        .all()
    )
    if not lines:
        raise EmptyDocumentError(f"Receiving {doc.document_number} has no lines")

    lots = _plan_posting(db, doc, lines)

    try:
        with db.begin_nested():
            for li in lines:
                _apply_line_receipt(db, doc, li, lots, posted_by_id)

            doc.status = ReceivingStatus.POSTED
            doc.posted_by_id = posted_by_id
            doc.posted_at = now_local()
            db.flush()
    except StaleDataError:
        raise ConcurrencyConflictError(f"Receiving {document_id} or its stock changed meanwhile, retry")
    except IntegrityError:
        # another posting created the same (medicine, batch) lot first
        raise ConcurrencyConflictError(f"Stock lot for receiving {document_id} was created concurrently, retry")

    logger.info(
        "receiving posted number=%s lines=%s qty=%s by=%s",
        doc.document_number, len(lines), doc.total_quantity, posted_by_id,
    )
    return doc


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def _doc_q():
    return (
        selectinload(ReceivingDocument.supplier),
        selectinload(ReceivingDocument.received_by),
        selectinload(ReceivingDocument.verified_by),
        selectinload(ReceivingDocument.lines).selectinload(ReceivingLine.medicine),
    )


def get_document(db: Session, document_id: int) -> ReceivingDocument:
    doc = (
        db.query(ReceivingDocument)
        .options(*_doc_q())
        .filter(ReceivingDocument.id == document_id)
        .one_or_none()
    )
    if not doc:
        raise NotFoundError(f"Receiving document {document_id} not found")
    return doc


def list_documents(
    db: Session,
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    q: Optional[str] = None,
    limit: int = 100,
) -> List[ReceivingDocument]:
    query = (
        db.query(ReceivingDocument)
        .outerjoin(Supplier, Supplier.id == ReceivingDocument.supplier_id)
        .options(*_doc_q())
    )

    if status and status != "all":
        try:
            query = query.filter(ReceivingDocument.status == ReceivingStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown receiving status: {status}")

    if date_from:
        query = query.filter(ReceivingDocument.receiving_date >= date_from)
    if date_to:
        query = query.filter(ReceivingDocument.receiving_date <= date_to)

    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(
            ReceivingDocument.document_number.ilike(like),
            ReceivingDocument.invoice_number.ilike(like),
            ReceivingDocument.po_number.ilike(like),
            Supplier.name.ilike(like),
            Supplier.code.ilike(like),
        ))

    return (
        query.order_by(
            ReceivingDocument.receiving_date.desc(),
            ReceivingDocument.document_number.desc(),
        )
        .limit(limit)
        .all()
    )


def receiving_stats(db: Session) -> Dict[str, Any]:
    rows = (
        db.query(
            ReceivingDocument.status,
            func.count(ReceivingDocument.id),
            func.coalesce(func.sum(ReceivingDocument.total_amount), 0),
        )
        .group_by(ReceivingDocument.status)
        .all()
    )

    out: Dict[str, Any] = {"total": 0, "total_amount": Decimal("0.00")}
    for st in ReceivingStatus:
        out[st.value] = 0
    for st, cnt, amount in rows:
        out[ReceivingStatus(st).value] = int(cnt)
        out["total"] += int(cnt)
        out["total_amount"] += d(amount)
    out["total_amount"] = d(out["total_amount"]).quantize(CENT)
    return out

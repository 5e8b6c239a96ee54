# FILE: medstock/services/stock_ledger.py
from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from medstock.core.config import settings
from medstock.models.catalog import Medicine
from medstock.models.stock import (
    LotStatus,
    MANUAL_LOT_STATUSES,
    MovementType,
    StockLot,
    StockMovement,
)
from medstock.services.catalog import get_medicine
from medstock.services.errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    OverConsumeError,
    OverReleaseError,
    StockError,
    ValidationError,
)
from medstock.utils.timezone import today as local_today

logger = logging.getLogger(__name__)


def positive_qty(v: Any, label: str = "quantity") -> int:
    """Whole units only; 10, "10" and Decimal("10.0") are accepted."""
    if v is None or v == "" or isinstance(v, bool):
        raise ValidationError(f"{label} is required")
    try:
        n = Decimal(str(v))
    except Exception:
        raise ValidationError(f"{label} must be a whole number")
    if n != n.to_integral_value():
        raise ValidationError(f"{label} must be a whole number")
    if n <= 0:
        raise ValidationError(f"{label} must be greater than 0")
    return int(n)


def check_lot_invariant(lot: StockLot) -> None:
    on_hand = int(lot.on_hand_qty or 0)
    reserved = int(lot.reserved_qty or 0)
    if on_hand < 0 or reserved < 0 or reserved > on_hand:
        # callers validate first; reaching this is a bug, not user input
        raise StockError(
            f"Lot {lot.batch_number} would break 0 <= reserved ({reserved}) <= on hand ({on_hand})")


def record_movement(
    db: Session,
    lot: StockLot,
    movement_type: MovementType,
    quantity: int,
    *,
    ref_type: str = "",
    ref_id: Optional[int] = None,
    remark: str = "",
    user_id: Optional[int] = None,
) -> StockMovement:
    """
    Central creator for StockMovement, always use this so audit is consistent.
    """
    mv = StockMovement(
        lot_id=lot.id,
        medicine_id=lot.medicine_id,
        movement_type=movement_type.value,
        quantity=int(quantity),
        ref_type=ref_type or "",
        ref_id=ref_id,
        remark=remark or "",
        user_id=user_id,
    )
    db.add(mv)
    return mv


def flush_or_conflict(db: Session, what: str) -> None:
    try:
        db.flush()
    except StaleDataError:
        raise ConcurrencyConflictError(f"{what} was changed by another user, reload and retry")


def get_lot(db: Session, lot_id: int, *, for_update: bool = False) -> StockLot:
    q = db.query(StockLot).filter(StockLot.id == lot_id)
    if for_update:
        q = q.with_for_update()
    lot = q.one_or_none()
    if not lot:
        raise NotFoundError(f"Stock lot {lot_id} not found")
    return lot


def fefo_candidates(db: Session, medicine_id: int, today: date) -> List[StockLot]:
    """
    Lots a reservation may draw from, soonest expiry first.

    - persisted status AVAILABLE (damaged / recalled are never picked)
    - not expired as of ``today``
    - rows locked FOR UPDATE so two reservations cannot both see the same free qty
    """
    return (
        db.query(StockLot)
        .filter(
            StockLot.medicine_id == medicine_id,
            StockLot.status == LotStatus.AVAILABLE,
            StockLot.expiry_date > today,
            StockLot.on_hand_qty > StockLot.reserved_qty,
        )
        .order_by(StockLot.expiry_date.asc(), StockLot.id.asc())
        .with_for_update()
        .all()
    )


def reserve(
    db: Session,
    medicine_id: int,
    quantity: Any,
    *,
    actor_id: Optional[int] = None,
    ref_type: str = "",
    ref_id: Optional[int] = None,
    today: Optional[date] = None,
) -> List[Tuple[StockLot, int]]:
    """
    FEFO reservation across the medicine's lots.
    All-or-nothing: on shortage no lot is touched.
    Returns list of (lot, qty_reserved).
    """
    qty = positive_qty(quantity)
    med = get_medicine(db, medicine_id)
    today = today or local_today()

    lots = fefo_candidates(db, med.id, today)
    total_available = sum(l.available_qty for l in lots)
    if total_available < qty:
        raise InsufficientStockError(
            f"Insufficient stock for {med.name}: requested {qty}, available {total_available}",
            details={"medicine_id": med.id, "requested": qty, "available": total_available},
        )

    remaining = qty
    allocations: List[Tuple[StockLot, int]] = []
    for lot in lots:
        if remaining <= 0:
            break
        take = min(lot.available_qty, remaining)
        if take <= 0:
            continue
        allocations.append((lot, take))
        remaining -= take

    with db.begin_nested():
        for lot, take in allocations:
            lot.reserved_qty = int(lot.reserved_qty or 0) + take
            check_lot_invariant(lot)
            record_movement(
                db, lot, MovementType.RESERVE, take,
                ref_type=ref_type, ref_id=ref_id, user_id=actor_id,
                remark=f"FEFO reserve {take} of {qty}",
            )
        flush_or_conflict(db, f"Stock of {med.name}")

    logger.info(
        "reserved medicine_id=%s qty=%s lots=%s actor=%s",
        med.id, qty, [(l.id, q) for l, q in allocations], actor_id,
    )
    return allocations


def release(
    db: Session,
    lot_id: int,
    quantity: Any,
    *,
    actor_id: Optional[int] = None,
    ref_type: str = "",
    ref_id: Optional[int] = None,
) -> StockLot:
    qty = positive_qty(quantity)
    lot = get_lot(db, lot_id, for_update=True)

    reserved = int(lot.reserved_qty or 0)
    if qty > reserved:
        raise OverReleaseError(
            f"Cannot release {qty} from lot {lot.batch_number}: only {reserved} reserved",
            details={"lot_id": lot.id, "requested": qty, "reserved": reserved},
        )

    lot.reserved_qty = reserved - qty
    check_lot_invariant(lot)
    record_movement(db, lot, MovementType.RELEASE, qty, ref_type=ref_type, ref_id=ref_id, user_id=actor_id)
    flush_or_conflict(db, f"Lot {lot.batch_number}")
    return lot


def consume(
    db: Session,
    lot_id: int,
    quantity: Any,
    *,
    actor_id: Optional[int] = None,
    ref_type: str = "",
    ref_id: Optional[int] = None,
) -> StockLot:
    """Completes a prior reservation: stock leaves the shelf."""
    qty = positive_qty(quantity)
    lot = get_lot(db, lot_id, for_update=True)

    reserved = int(lot.reserved_qty or 0)
    if qty > reserved:
        raise OverConsumeError(
            f"Cannot consume {qty} from lot {lot.batch_number}: only {reserved} reserved",
            details={"lot_id": lot.id, "requested": qty, "reserved": reserved},
        )

    lot.on_hand_qty = int(lot.on_hand_qty or 0) - qty
    lot.reserved_qty = reserved - qty
    check_lot_invariant(lot)
    record_movement(db, lot, MovementType.CONSUME, -qty, ref_type=ref_type, ref_id=ref_id, user_id=actor_id)
    flush_or_conflict(db, f"Lot {lot.batch_number}")
    return lot


def adjust_lot_status(
    db: Session,
    lot_id: int,
    new_status: Any,
    actor_id: Optional[int],
    reason: Optional[str] = None,
) -> StockLot:
    try:
        target = LotStatus(new_status)
    except ValueError:
        raise ValidationError(f"Unknown lot status: {new_status}")

    if target not in MANUAL_LOT_STATUSES:
        raise ValidationError("Expiry is derived from the expiry date and cannot be set by hand")
    if not actor_id:
        raise ValidationError("Actor is required to change a lot status")

    lot = get_lot(db, lot_id, for_update=True)
    old = LotStatus(lot.status)
    if old == target:
        raise InvalidStateError(f"Lot {lot.batch_number} is already {target.value}")

    reason = (reason or "").strip()
    lot.status = target
    record_movement(
        db, lot, MovementType.STATUS, 0,
        ref_type="LOT_STATUS", ref_id=lot.id, user_id=actor_id,
        remark=f"{old.value} -> {target.value}" + (f": {reason}" if reason else ""),
    )
    flush_or_conflict(db, f"Lot {lot.batch_number}")

    logger.info(
        "lot status changed lot_id=%s batch=%s %s->%s actor=%s reason=%r",
        lot.id, lot.batch_number, old.value, target.value, actor_id, reason,
    )
    return lot


def list_lots(
    db: Session,
    medicine_id: Optional[int] = None,
    status: Optional[str] = None,
    alert: Optional[str] = None,
    q: Optional[str] = None,
    *,
    today: Optional[date] = None,
    horizon_days: Optional[int] = None,
    limit: int = 500,
) -> List[StockLot]:
    """
    Lot listing in FEFO order. ``status`` filters on the effective status,
    so "expired" also finds AVAILABLE lots whose expiry date has been reached.
    ``alert`` is "expiring" (1..horizon days left) or "expired"
    (expiry_date <= today, same boundary as StockLot.is_expired and FEFO).
    """
    today = today or local_today()
    horizon = settings.EXPIRY_ALERT_DAYS if horizon_days is None else horizon_days

    query = db.query(StockLot).join(Medicine, Medicine.id == StockLot.medicine_id)

    if medicine_id:
        query = query.filter(StockLot.medicine_id == medicine_id)

    if status and status != "all":
        try:
            st = LotStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown lot status: {status}")
        if st == LotStatus.EXPIRED:
            query = query.filter(or_(
                StockLot.status == LotStatus.EXPIRED,
                and_(StockLot.status == LotStatus.AVAILABLE, StockLot.expiry_date <= today),
            ))
        elif st == LotStatus.AVAILABLE:
            query = query.filter(StockLot.status == LotStatus.AVAILABLE, StockLot.expiry_date > today)
        else:
            query = query.filter(StockLot.status == st)

    if alert and alert != "all":
        if alert == "expiring":
            query = query.filter(
                StockLot.expiry_date > today,
                StockLot.expiry_date <= today + timedelta(days=horizon),
            )
        elif alert == "expired":
            query = query.filter(or_(StockLot.status == LotStatus.EXPIRED, StockLot.expiry_date <= today))
        else:
            raise ValidationError(f"Unknown lot alert filter: {alert}")

    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(
            Medicine.name.ilike(like),
            Medicine.code.ilike(like),
            StockLot.batch_number.ilike(like),
        ))

    return query.order_by(StockLot.expiry_date.asc(), StockLot.id.asc()).limit(limit).all()

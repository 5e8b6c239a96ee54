# FILE: medstock/services/stock_alerts.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from medstock.core.config import settings
from medstock.models.catalog import Medicine
from medstock.models.stock import LotStatus, StockLot
from medstock.schemas.stock import (
    AlertType,
    ExpiryTier,
    StockAggregateOut,
    StockLotOut,
    StockStatsOut,
)
from medstock.services.errors import ValidationError
from medstock.utils.timezone import today as local_today

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _d(v) -> Decimal:
    if v is None:
        return ZERO
    try:
        return Decimal(str(v))
    except Exception:
        return ZERO


def _horizon(horizon_days: Optional[int]) -> int:
    return settings.EXPIRY_ALERT_DAYS if horizon_days is None else int(horizon_days)


def expiry_tier(days: int) -> ExpiryTier:
    if days < 0:
        return ExpiryTier.EXPIRED
    if days <= 30:
        return ExpiryTier.D30
    if days <= 60:
        return ExpiryTier.D60
    if days <= 90:
        return ExpiryTier.D90
    return ExpiryTier.OK


def lot_out(lot: StockLot, today: Optional[date] = None) -> StockLotOut:
    today = today or local_today()
    days = lot.days_left(today)
    out = StockLotOut.model_validate(lot)
    out.effective_status = lot.status_on(today)
    out.days_to_expiry = days
    out.expiry_tier = expiry_tier(days)
    return out


def _lots_with_medicine(db: Session, q: Optional[str]) -> List[StockLot]:
    query = (
        db.query(StockLot)
        .join(Medicine, Medicine.id == StockLot.medicine_id)
        .filter(Medicine.is_active.is_(True))
    )
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(Medicine.name.ilike(like), Medicine.code.ilike(like)))
    return query.order_by(StockLot.expiry_date.asc(), StockLot.id.asc()).all()


def _fold(lots: List[StockLot], today: date, horizon: int) -> List[StockAggregateOut]:
    """
    One rollup per medicine seen in the ledger. Quantities, value and the
    oldest expiry come from lots that are usable today (effective status
    AVAILABLE). AVAILABLE lots whose expiry date has been reached are
    tallied separately in ``expired_quantity`` / ``expired_lot_count``.
    A medicine whose lots are all blocked still shows up, with zero quantities.
    """
    grouped: Dict[int, StockAggregateOut] = {}

    for lot in lots:
        med = lot.medicine
        agg = grouped.get(med.id)
        if agg is None:
            agg = StockAggregateOut(
                medicine_id=med.id,
                medicine_code=med.code,
                medicine_name=med.name,
                unit=med.unit,
                reorder_threshold=int(med.min_stock or 0),
            )
            grouped[med.id] = agg

        status = lot.status_on(today)
        if status == LotStatus.EXPIRED:
            agg.expired_quantity += int(lot.on_hand_qty or 0)
            agg.expired_lot_count += 1
            continue
        if status != LotStatus.AVAILABLE:
            continue

        agg.total_quantity += int(lot.on_hand_qty or 0)
        agg.reserved_quantity += int(lot.reserved_qty or 0)
        agg.available_quantity += lot.available_qty
        agg.total_value += _d(lot.on_hand_qty) * _d(lot.unit_cost)
        agg.lot_count += 1
        if agg.oldest_expiry is None or lot.expiry_date < agg.oldest_expiry:
            agg.oldest_expiry = lot.expiry_date

    for agg in grouped.values():
        agg.total_value = agg.total_value.quantize(CENT)
        agg.is_low_stock = agg.available_quantity < agg.reorder_threshold
        if agg.oldest_expiry is not None:
            days = (agg.oldest_expiry - today).days
            agg.days_to_oldest_expiry = days
            agg.expiry_tier = expiry_tier(days)
            agg.is_expiring_soon = days <= horizon

    return sorted(grouped.values(), key=lambda a: (a.medicine_name.lower(), a.medicine_id))


def get_stock_aggregates(
    db: Session,
    alert: Optional[str] = None,
    q: Optional[str] = None,
    *,
    today: Optional[date] = None,
    horizon_days: Optional[int] = None,
) -> List[StockAggregateOut]:
    today = today or local_today()
    rows = _fold(_lots_with_medicine(db, q), today, _horizon(horizon_days))

    if not alert or alert == "all":
        return rows

    try:
        kind = AlertType(alert)
    except ValueError:
        raise ValidationError(f"Unknown alert type: {alert}")

    if kind == AlertType.LOW_STOCK:
        return [a for a in rows if a.is_low_stock]
    if kind == AlertType.EXPIRING:
        return [a for a in rows if a.is_expiring_soon]
    return [a for a in rows if a.expired_lot_count > 0]


def get_stock_stats(
    db: Session,
    *,
    today: Optional[date] = None,
    horizon_days: Optional[int] = None,
) -> StockStatsOut:
    today = today or local_today()
    horizon = _horizon(horizon_days)

    lots = _lots_with_medicine(db, None)
    aggregates = _fold(lots, today, horizon)

    out = StockStatsOut(horizon_days=horizon)
    out.total_items = len(aggregates)
    out.low_stock = sum(1 for a in aggregates if a.is_low_stock)

    value = ZERO
    for lot in lots:
        status = lot.status_on(today)
        if status == LotStatus.EXPIRED:
            out.expired += 1
            continue
        if status != LotStatus.AVAILABLE:
            continue
        out.total_quantity += int(lot.on_hand_qty or 0)
        value += _d(lot.on_hand_qty) * _d(lot.unit_cost)
        if lot.days_left(today) <= horizon:
            out.expiring_soon += 1

    out.total_value = value.quantize(CENT)
    return out

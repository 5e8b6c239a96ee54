from datetime import date

import pytest

from medstock.models import LotStatus, MovementType, StockMovement
from medstock.services import stock_ledger
from medstock.services.errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    OverConsumeError,
    OverReleaseError,
    ValidationError,
)

TODAY = date(2025, 1, 15)


# -------------------------
# Reserve (FEFO)
# -------------------------
def test_reserve_takes_soonest_expiry_first(db, admin, medicine, make_lot):
    late = make_lot(medicine, "B-SEP", 100, date(2025, 9, 1))
    early = make_lot(medicine, "B-JUN", 100, date(2025, 6, 1))

    allocations = stock_ledger.reserve(db, medicine.id, 120, actor_id=admin.id, today=TODAY)

    assert [(lot.id, qty) for lot, qty in allocations] == [(early.id, 100), (late.id, 20)]
    assert early.reserved_qty == 100
    assert early.available_qty == 0
    assert late.reserved_qty == 20
    assert late.available_qty == 80
    assert early.on_hand_qty == 100 and late.on_hand_qty == 100

    moves = db.query(StockMovement).filter_by(movement_type=MovementType.RESERVE.value).all()
    assert sorted(m.quantity for m in moves) == [20, 100]


def test_reserve_shortage_changes_nothing(db, admin, medicine, make_lot):
    lot = make_lot(medicine, "B1", 150, date(2026, 1, 1))

    with pytest.raises(InsufficientStockError) as ei:
        stock_ledger.reserve(db, medicine.id, 10000, actor_id=admin.id, today=TODAY)

    assert ei.value.details == {"medicine_id": medicine.id, "requested": 10000, "available": 150}
    db.expire_all()
    assert lot.reserved_qty == 0
    assert db.query(StockMovement).count() == 0


def test_reserve_skips_unusable_lots(db, admin, medicine, make_lot):
    make_lot(medicine, "EXP", 50, date(2025, 1, 10))
    make_lot(medicine, "TODAY", 50, TODAY)
    make_lot(medicine, "DMG", 50, date(2025, 3, 1), status=LotStatus.DAMAGED)
    make_lot(medicine, "RCL", 50, date(2025, 3, 1), status=LotStatus.RECALLED)
    make_lot(medicine, "FULL", 50, date(2025, 2, 1), reserved=50)
    good = make_lot(medicine, "GOOD", 30, date(2025, 12, 1), reserved=10)

    allocations = stock_ledger.reserve(db, medicine.id, 20, today=TODAY)
    assert [(lot.id, qty) for lot, qty in allocations] == [(good.id, 20)]
    assert good.available_qty == 0

    with pytest.raises(InsufficientStockError):
        stock_ledger.reserve(db, medicine.id, 1, today=TODAY)


def test_reserve_ties_on_expiry_break_by_lot_id(db, medicine, make_lot):
    first = make_lot(medicine, "A", 10, date(2025, 6, 1))
    second = make_lot(medicine, "B", 10, date(2025, 6, 1))

    allocations = stock_ledger.reserve(db, medicine.id, 15, today=TODAY)
    assert [(lot.id, qty) for lot, qty in allocations] == [(first.id, 10), (second.id, 5)]


@pytest.mark.parametrize("qty", [0, -5, "1.5", None])
def test_reserve_rejects_bad_quantity(db, medicine, make_lot, qty):
    make_lot(medicine, "B1", 10, date(2026, 1, 1))
    with pytest.raises(ValidationError):
        stock_ledger.reserve(db, medicine.id, qty, today=TODAY)


def test_reserve_unknown_medicine(db):
    with pytest.raises(NotFoundError):
        stock_ledger.reserve(db, 4242, 1, today=TODAY)


# -------------------------
# Release / Consume
# -------------------------
def test_release_returns_reserved_to_available(db, admin, medicine, make_lot):
    lot = make_lot(medicine, "B1", 100, date(2026, 1, 1), reserved=30)

    stock_ledger.release(db, lot.id, 10, actor_id=admin.id, ref_type="RX", ref_id=9)
    assert lot.reserved_qty == 20
    assert lot.on_hand_qty == 100
    assert lot.available_qty == 80

    with pytest.raises(OverReleaseError):
        stock_ledger.release(db, lot.id, 21, actor_id=admin.id)
    assert lot.reserved_qty == 20

    mv = db.query(StockMovement).filter_by(movement_type=MovementType.RELEASE.value).one()
    assert (mv.quantity, mv.ref_type, mv.ref_id, mv.user_id) == (10, "RX", 9, admin.id)


def test_consume_takes_stock_off_the_shelf(db, admin, medicine, make_lot):
    lot = make_lot(medicine, "B1", 100, date(2026, 1, 1), reserved=30)

    stock_ledger.consume(db, lot.id, 25, actor_id=admin.id)
    assert lot.on_hand_qty == 75
    assert lot.reserved_qty == 5
    assert lot.available_qty == 70

    with pytest.raises(OverConsumeError):
        stock_ledger.consume(db, lot.id, 6, actor_id=admin.id)
    assert lot.on_hand_qty == 75

    mv = db.query(StockMovement).filter_by(movement_type=MovementType.CONSUME.value).one()
    assert mv.quantity == -25


def test_consume_without_reservation_is_rejected(db, medicine, make_lot):
    lot = make_lot(medicine, "B1", 100, date(2026, 1, 1))
    with pytest.raises(OverConsumeError):
        stock_ledger.consume(db, lot.id, 1)


def test_release_unknown_lot(db):
    with pytest.raises(NotFoundError):
        stock_ledger.release(db, 777, 1)


# -------------------------
# Status overrides
# -------------------------
def test_adjust_status_roundtrip(db, admin, medicine, make_lot):
    lot = make_lot(medicine, "B1", 100, date(2026, 1, 1))

    stock_ledger.adjust_lot_status(db, lot.id, "recalled", admin.id, "supplier recall letter 12/2025")
    assert lot.status == LotStatus.RECALLED

    with pytest.raises(InsufficientStockError):
        stock_ledger.reserve(db, medicine.id, 1, today=TODAY)

    stock_ledger.adjust_lot_status(db, lot.id, LotStatus.AVAILABLE, admin.id)
    assert lot.status == LotStatus.AVAILABLE
    assert stock_ledger.reserve(db, medicine.id, 1, today=TODAY)[0][1] == 1

    remarks = [m.remark for m in db.query(StockMovement)
               .filter_by(movement_type=MovementType.STATUS.value)
               .order_by(StockMovement.id).all()]
    assert remarks == ["available -> recalled: supplier recall letter 12/2025", "recalled -> available"]


def test_adjust_status_rules(db, admin, medicine, make_lot):
    lot = make_lot(medicine, "B1", 100, date(2026, 1, 1))

    with pytest.raises(ValidationError):
        stock_ledger.adjust_lot_status(db, lot.id, "expired", admin.id)
    with pytest.raises(ValidationError):
        stock_ledger.adjust_lot_status(db, lot.id, "lost", admin.id)
    with pytest.raises(ValidationError):
        stock_ledger.adjust_lot_status(db, lot.id, "damaged", None)
    with pytest.raises(InvalidStateError):
        stock_ledger.adjust_lot_status(db, lot.id, "available", admin.id)
    assert lot.status == LotStatus.AVAILABLE


# -------------------------
# Listing
# -------------------------
def test_list_lots_uses_effective_status(db, medicine, other_medicine, make_lot):
    past = make_lot(medicine, "OLD", 5, date(2025, 1, 1))
    soon = make_lot(medicine, "SOON", 5, date(2025, 2, 1))
    later = make_lot(other_medicine, "LATER", 5, date(2026, 1, 1))
    dmg = make_lot(other_medicine, "DMG", 5, date(2025, 8, 1), status=LotStatus.DAMAGED)

    def ids(**kw):
        return [l.id for l in stock_ledger.list_lots(db, today=TODAY, **kw)]

    assert ids() == [past.id, soon.id, dmg.id, later.id]
    assert ids(status="expired") == [past.id]
    assert ids(status="available") == [soon.id, later.id]
    assert ids(status="damaged") == [dmg.id]
    assert ids(alert="expiring") == [soon.id]
    assert ids(alert="expiring", horizon_days=200) == [soon.id, dmg.id]
    assert ids(alert="expired") == [past.id]
    assert ids(medicine_id=medicine.id) == [past.id, soon.id]
    assert ids(q="paracetamol") == [dmg.id, later.id]
    assert ids(q="soon") == [soon.id]

    with pytest.raises(ValidationError):
        ids(status="lost")
    with pytest.raises(ValidationError):
        ids(alert="low_stock")


def test_lot_expiring_today_is_expired_in_every_filter(db, medicine, make_lot):
    eod = make_lot(medicine, "EOD", 5, TODAY)
    tomorrow = make_lot(medicine, "TMR", 5, date(2025, 1, 16))

    def ids(**kw):
        return [l.id for l in stock_ledger.list_lots(db, today=TODAY, **kw)]

    assert ids(status="expired") == [eod.id]
    assert ids(alert="expired") == [eod.id]
    assert ids(status="available") == [tomorrow.id]
    assert ids(alert="expiring") == [tomorrow.id]
    assert [lot.id for lot in stock_ledger.fefo_candidates(db, medicine.id, TODAY)] == [tomorrow.id]

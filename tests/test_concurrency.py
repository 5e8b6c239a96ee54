"""
Two sessions against one file-backed SQLite database.

SQLite serialises writers, so each interleaving below commits one side
before the other writes; the stale side keeps its loaded state through
``expire_on_commit=False``, the same view a slow request would have.
"""
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from medstock.db.base import Base
from medstock.db.session import make_engine, make_sessionmaker
from medstock.models import (
    DocNumberSeries,
    LotStatus,
    Medicine,
    MovementType,
    ReceivingDocument,
    ReceivingStatus,
    StockLot,
    StockMovement,
    Supplier,
    User,
)
from medstock.services import number_series, stock_ledger
from medstock.services import receiving_service as svc
from medstock.services.errors import ConcurrencyConflictError

DAY = date(2025, 1, 15)


@pytest.fixture()
def file_engine(tmp_path):
    eng = make_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 2},
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def sessions(file_engine):
    maker = make_sessionmaker(file_engine)
    opened = []

    def _open(keep_state=False):
        s = maker(expire_on_commit=not keep_state)
        opened.append(s)
        return s

    yield _open

    for s in opened:
        s.rollback()
        s.close()


@pytest.fixture()
def seeded(sessions):
    s = sessions()
    user = User(name="Admin", email="admin@clinic.test", is_active=True, is_admin=True)
    supplier = Supplier(code="SUP-01", name="PT Sehat Farma")
    medicine = Medicine(code="AMX500", name="Amoxicillin 500mg", unit="capsule", min_stock=50)
    s.add_all([user, supplier, medicine])
    s.commit()
    return SimpleNamespace(user_id=user.id, supplier_id=supplier.id, medicine_id=medicine.id)


def _payload(ids, batch="B1", qty=100):
    return {
        "supplier_id": ids.supplier_id,
        "receiving_date": DAY,
        "lines": [{
            "medicine_id": ids.medicine_id,
            "batch_number": batch,
            "quantity": qty,
            "unit_cost": Decimal("500"),
            "expiry_date": date(2026, 1, 1),
        }],
    }


def _seed_lot(sessions, ids, qty=100, reserved=0):
    s = sessions()
    lot = StockLot(
        medicine_id=ids.medicine_id,
        batch_number="B1",
        on_hand_qty=qty,
        reserved_qty=reserved,
        unit_cost=Decimal("500"),
        expiry_date=date(2026, 1, 1),
        status=LotStatus.AVAILABLE,
    )
    s.add(lot)
    s.commit()
    return lot.id


def _verified_document(sessions, ids, qty=100):
    s = sessions()
    doc = svc.create_document(s, ids.user_id, _payload(ids, qty=qty))
    svc.verify_document(s, doc.id, ids.user_id)
    s.commit()
    return doc.id


# -------------------------
# Document numbering
# -------------------------
def test_first_of_day_race_takes_the_next_number(sessions, seeded, monkeypatch):
    a, b = sessions(), sessions()
    real_lookup = number_series._locked_series
    taken = []

    def lookup_after_other_creator(db, key, dk):
        if db is a and not taken:
            # a misses the row; b creates the day's counter and commits first
            taken.append(number_series.next_document_number(b, "RCV", "RCV", DAY))
            b.commit()
            return None
        return real_lookup(db, key, dk)

    monkeypatch.setattr(number_series, "_locked_series", lookup_after_other_creator)

    number = number_series.next_document_number(a, "RCV", "RCV", DAY)
    a.commit()

    assert taken == ["RCV-20250115-0001"]
    assert number == "RCV-20250115-0002"

    row = sessions().query(DocNumberSeries).one()
    assert row.next_seq == 3


def test_interleaved_creators_never_share_a_number(sessions, seeded):
    a, b = sessions(keep_state=True), sessions(keep_state=True)

    numbers = []
    for i, s in enumerate([a, b, a, b, b, a], start=1):
        doc = svc.create_document(s, seeded.user_id, _payload(seeded, batch=f"B{i}"))
        numbers.append(doc.document_number)
        s.commit()

    assert numbers == [f"RCV-20250115-{n:04d}" for n in range(1, 7)]
    assert sessions().query(ReceivingDocument).count() == 6


def test_taken_number_on_create_is_a_conflict(sessions, seeded, monkeypatch):
    a, b = sessions(), sessions()

    first = svc.create_document(b, seeded.user_id, _payload(seeded))
    taken = first.document_number
    b.commit()

    monkeypatch.setattr(svc, "next_document_number", lambda db, **kw: taken)

    with pytest.raises(ConcurrencyConflictError):
        svc.create_document(a, seeded.user_id, _payload(seeded, batch="B2"))
    a.rollback()

    assert sessions().query(ReceivingDocument).count() == 1


# -------------------------
# Optimistic versions
# -------------------------
def test_stale_lot_edit_is_a_conflict(sessions, seeded):
    lot_id = _seed_lot(sessions, seeded, reserved=20)

    b = sessions(keep_state=True)
    b.get(StockLot, lot_id)
    b.commit()

    a = sessions()
    stock_ledger.release(a, lot_id, 5)
    a.commit()

    with pytest.raises(ConcurrencyConflictError):
        stock_ledger.release(b, lot_id, 5)
    b.rollback()

    check = sessions()
    assert check.get(StockLot, lot_id).reserved_qty == 15
    assert check.query(StockMovement).filter_by(movement_type=MovementType.RELEASE.value).count() == 1


def test_stale_document_edit_is_a_conflict(sessions, seeded):
    s = sessions()
    doc_id = svc.create_document(s, seeded.user_id, _payload(seeded)).id
    s.commit()

    b = sessions(keep_state=True)
    b.get(ReceivingDocument, doc_id)
    b.commit()

    a = sessions()
    svc.update_document_header(a, doc_id, {"invoice_number": "INV-A"})
    a.commit()

    with pytest.raises(ConcurrencyConflictError):
        svc.update_document_header(b, doc_id, {"invoice_number": "INV-B"})
    b.rollback()

    assert sessions().get(ReceivingDocument, doc_id).invoice_number == "INV-A"


def test_post_against_changed_lot_is_a_conflict(sessions, seeded):
    lot_id = _seed_lot(sessions, seeded, qty=100)
    doc_id = _verified_document(sessions, seeded, qty=40)

    b = sessions(keep_state=True)
    b.get(ReceivingDocument, doc_id)
    b.get(StockLot, lot_id)
    b.commit()

    a = sessions()
    stock_ledger.reserve(a, seeded.medicine_id, 30, today=DAY)
    a.commit()

    with pytest.raises(ConcurrencyConflictError):
        svc.post_document(b, doc_id, seeded.user_id)
    b.rollback()

    check = sessions()
    assert check.get(ReceivingDocument, doc_id).status == ReceivingStatus.VERIFIED
    lot = check.get(StockLot, lot_id)
    assert lot.on_hand_qty == 100
    assert lot.reserved_qty == 30
    assert check.query(StockMovement).filter_by(movement_type=MovementType.RECEIVE.value).count() == 0


def test_post_racing_lot_creation_is_a_conflict(sessions, seeded, monkeypatch):
    first_id = _verified_document(sessions, seeded, qty=40)
    second_id = _verified_document(sessions, seeded, qty=60)

    b = sessions()
    svc.post_document(b, second_id, seeded.user_id)
    b.commit()

    # a planned its posting before b's lot existed
    monkeypatch.setattr(svc, "_plan_posting", lambda db, doc, lines: {})

    a = sessions()
    with pytest.raises(ConcurrencyConflictError):
        svc.post_document(a, first_id, seeded.user_id)
    a.rollback()

    check = sessions()
    assert check.get(ReceivingDocument, first_id).status == ReceivingStatus.VERIFIED
    assert check.get(ReceivingDocument, second_id).status == ReceivingStatus.POSTED
    (lot,) = check.query(StockLot).all()
    assert lot.on_hand_qty == 60

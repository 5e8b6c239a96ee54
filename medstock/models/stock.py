# FILE: medstock/models/stock.py
from __future__ import annotations

import enum
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric,
    ForeignKey, Enum, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from medstock.db.base import Base


def _enum_values(cls):
    return [m.value for m in cls]


class LotStatus(str, enum.Enum):
    AVAILABLE = "available"
    EXPIRED = "expired"
    DAMAGED = "damaged"
    RECALLED = "recalled"


# statuses an authorized user may set by hand; EXPIRED is derived from the date
MANUAL_LOT_STATUSES = (LotStatus.AVAILABLE, LotStatus.DAMAGED, LotStatus.RECALLED)


class MovementType(str, enum.Enum):
    RECEIVE = "RECEIVE"
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    CONSUME = "CONSUME"
    STATUS = "STATUS"


class StockLot(Base):
    """
    One row per (medicine, batch). Quantities are whole units.
    Expiry is never written into ``status``; see ``status_on``.
    """
    __tablename__ = "stock_lots"
    __table_args__ = (
        UniqueConstraint("medicine_id", "batch_number", name="uq_stock_lot_medicine_batch"),
        Index("ix_stock_lot_medicine_expiry", "medicine_id", "expiry_date"),
        CheckConstraint("on_hand_qty >= 0", name="ck_stock_lot_on_hand_nonneg"),
        CheckConstraint("reserved_qty >= 0", name="ck_stock_lot_reserved_nonneg"),
        CheckConstraint("reserved_qty <= on_hand_qty", name="ck_stock_lot_reserved_le_on_hand"),
    )

    id = Column(Integer, primary_key=True, index=True)
    medicine_id = Column(Integer, ForeignKey("clinic_medicines.id"), nullable=False, index=True)
    batch_number = Column(String(100), nullable=False)

    on_hand_qty = Column(Integer, nullable=False, default=0)
    reserved_qty = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))

    expiry_date = Column(Date, nullable=False, index=True)
    manufacture_date = Column(Date, nullable=True)

    receiving_document_id = Column(Integer, ForeignKey("receiving_documents.id"), nullable=True, index=True)
    location = Column(String(100), nullable=True)

    status = Column(
        Enum(LotStatus, name="stock_lot_status", values_callable=_enum_values),
        nullable=False,
        default=LotStatus.AVAILABLE,
    )
    notes = Column(String(1000), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    medicine = relationship("Medicine", back_populates="lots")
    receiving_document = relationship("ReceivingDocument")
    movements = relationship("StockMovement", back_populates="lot", order_by="StockMovement.id")

    __mapper_args__ = {"version_id_col": version}

    @property
    def available_qty(self) -> int:
        return int(self.on_hand_qty or 0) - int(self.reserved_qty or 0)

    def days_left(self, today: date) -> int:
        return (self.expiry_date - today).days

    def is_expired(self, today: date) -> bool:
        return today >= self.expiry_date

    def status_on(self, today: date) -> LotStatus:
        if self.status == LotStatus.AVAILABLE and self.is_expired(today):
            return LotStatus.EXPIRED
        return LotStatus(self.status)


class StockMovement(Base):
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movement_lot_time", "lot_id", "created_at"),
        Index("ix_stock_movement_ref", "ref_type", "ref_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    lot_id = Column(Integer, ForeignKey("stock_lots.id"), nullable=False, index=True)
    medicine_id = Column(Integer, ForeignKey("clinic_medicines.id"), nullable=False, index=True)

    movement_type = Column(String(20), nullable=False)  # MovementType value
    quantity = Column(Integer, nullable=False, default=0)

    ref_type = Column(String(50), default="")
    ref_id = Column(Integer, nullable=True)

    remark = Column(String(1000), default="")
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lot = relationship("StockLot", back_populates="movements")

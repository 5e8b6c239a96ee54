# FILE: medstock/models/receiving.py
from __future__ import annotations

import enum
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric,
    ForeignKey, Text, Enum, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from medstock.db.base import Base

Money = Numeric(14, 2)
Rate = Numeric(14, 4)


def _enum_values(cls):
    return [m.value for m in cls]


class ReceivingStatus(str, enum.Enum):
    DRAFT = "draft"
    VERIFIED = "verified"
    POSTED = "posted"


# -------------------------
# Safe number generator
# -------------------------
class DocNumberSeries(Base):
    __tablename__ = "doc_number_series"
    __table_args__ = (
        UniqueConstraint("key", "date_key", name="uq_doc_number_series_key_date"),
    )

    id = Column(Integer, primary_key=True)
    key = Column(String(30), nullable=False)         # RCV etc.
    date_key = Column(Integer, nullable=False)      # YYYYMMDD
    next_seq = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# -------------------------
# Receiving
# -------------------------
class ReceivingDocument(Base):
    __tablename__ = "receiving_documents"
    __table_args__ = (
        Index("ix_receiving_supplier_date", "supplier_id", "receiving_date"),
        Index("ix_receiving_status_date", "status", "receiving_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    document_number = Column(String(50), unique=True, nullable=False, index=True)

    receiving_date = Column(Date, nullable=False, default=date.today)
    supplier_id = Column(Integer, ForeignKey("clinic_suppliers.id"), nullable=False, index=True)

    invoice_number = Column(String(100), nullable=True)
    po_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=False, default="")

    status = Column(
        Enum(ReceivingStatus, name="receiving_status", values_callable=_enum_values),
        nullable=False,
        default=ReceivingStatus.DRAFT,
    )

    total_items = Column(Integer, nullable=False, default=0)
    total_quantity = Column(Integer, nullable=False, default=0)
    total_amount = Column(Money, nullable=False, default=Decimal("0.00"))

    received_by_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    verified_by_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    verified_at = Column(DateTime, nullable=True)
    posted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    posted_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    supplier = relationship("Supplier", back_populates="receivings")
    received_by = relationship("User", foreign_keys=[received_by_id])
    verified_by = relationship("User", foreign_keys=[verified_by_id])
    posted_by = relationship("User", foreign_keys=[posted_by_id])

    lines = relationship(
        "ReceivingLine",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="ReceivingLine.id",
    )

    __mapper_args__ = {"version_id_col": version}


class ReceivingLine(Base):
    __tablename__ = "receiving_lines"
    __table_args__ = (
        Index("ix_receiving_lines_doc_med_batch", "document_id", "medicine_id", "batch_number"),
        CheckConstraint("quantity > 0", name="ck_receiving_line_qty_pos"),
        CheckConstraint("unit_cost >= 0", name="ck_receiving_line_cost_nonneg"),
    )

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(
        Integer,
        ForeignKey("receiving_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    medicine_id = Column(Integer, ForeignKey("clinic_medicines.id"), nullable=False, index=True)
    batch_number = Column(String(100), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Rate, nullable=False, default=Decimal("0"))
    line_total = Column(Money, nullable=False, default=Decimal("0.00"))

    expiry_date = Column(Date, nullable=False)
    manufacture_date = Column(Date, nullable=True)
    # carried into the stock lot on posting
    location = Column(String(100), nullable=True)
    notes = Column(String(1000), nullable=False, default="")

    # set when the document is posted
    stock_lot_id = Column(Integer, ForeignKey("stock_lots.id"), nullable=True, index=True)

    document = relationship("ReceivingDocument", back_populates="lines")
    medicine = relationship("Medicine", back_populates="receiving_lines")
    stock_lot = relationship("StockLot")

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field

from medstock.models.receiving import ReceivingStatus
from medstock.schemas.catalog import MedicineMini, SupplierMini, UserMini


class ReceivingLineIn(BaseModel):
    # business rules (qty > 0, batch, expiry) are checked by the service
    medicine_id: Optional[int] = None
    batch_number: str = ""

    quantity: int = 0
    unit_cost: Decimal = Field(default=Decimal("0"))

    expiry_date: Optional[date] = None
    manufacture_date: Optional[date] = None

    location: Optional[str] = None
    notes: str = ""


class ReceivingCreate(BaseModel):
    supplier_id: Optional[int] = None
    receiving_date: Optional[date] = None

    invoice_number: Optional[str] = None
    po_number: Optional[str] = None
    notes: str = ""

    lines: List[ReceivingLineIn] = Field(default_factory=list)


class ReceivingHeaderUpdate(BaseModel):
    supplier_id: Optional[int] = None
    receiving_date: Optional[date] = None
    invoice_number: Optional[str] = None
    po_number: Optional[str] = None
    notes: Optional[str] = None


class ReceivingLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medicine_id: int
    batch_number: str

    quantity: int
    unit_cost: Decimal
    line_total: Decimal

    expiry_date: date
    manufacture_date: Optional[date] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    stock_lot_id: Optional[int] = None

    medicine: Optional[MedicineMini] = None


class ReceivingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    document_number: str
    receiving_date: date

    supplier_id: int
    invoice_number: Optional[str] = None
    po_number: Optional[str] = None
    notes: Optional[str] = None

    status: ReceivingStatus

    total_items: int
    total_quantity: int
    total_amount: Decimal

    received_by_id: Optional[int] = None
    verified_by_id: Optional[int] = None
    verified_at: Optional[datetime] = None
    posted_by_id: Optional[int] = None
    posted_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    supplier: Optional[SupplierMini] = None
    received_by: Optional[UserMini] = None
    verified_by: Optional[UserMini] = None
    lines: List[ReceivingLineOut] = Field(default_factory=list)


class ReceivingStatsOut(BaseModel):
    total: int = 0
    draft: int = 0
    verified: int = 0
    posted: int = 0
    total_amount: Decimal = Decimal("0.00")

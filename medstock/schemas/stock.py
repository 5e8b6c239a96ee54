# FILE: medstock/schemas/stock.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from medstock.models.stock import LotStatus
from medstock.schemas.catalog import MedicineMini


# -------------------------
# Enums
# -------------------------
class AlertType(str, Enum):
    LOW_STOCK = "low_stock"
    EXPIRING = "expiring"
    EXPIRED = "expired"


class ExpiryTier(str, Enum):
    EXPIRED = "expired"     # days < 0
    D30 = "d30"             # 0..30
    D60 = "d60"             # 31..60
    D90 = "d90"             # 61..90
    OK = "ok"               # > 90


# -------------------------
# Ledger inputs
# -------------------------
class ReserveIn(BaseModel):
    medicine_id: int
    quantity: int
    ref_type: str = ""
    ref_id: Optional[int] = None


class LotQtyIn(BaseModel):
    quantity: int
    ref_type: str = ""
    ref_id: Optional[int] = None


class LotStatusIn(BaseModel):
    status: str
    reason: Optional[str] = None


# -------------------------
# Ledger outputs
# -------------------------
class StockLotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medicine_id: int
    batch_number: str

    on_hand_qty: int
    reserved_qty: int
    available_qty: int
    unit_cost: Decimal

    expiry_date: date
    manufacture_date: Optional[date] = None
    receiving_document_id: Optional[int] = None
    location: Optional[str] = None

    status: LotStatus
    effective_status: Optional[LotStatus] = None
    days_to_expiry: Optional[int] = None
    expiry_tier: Optional[ExpiryTier] = None
    notes: Optional[str] = None

    updated_at: Optional[datetime] = None
    medicine: Optional[MedicineMini] = None


class AllocationOut(BaseModel):
    lot_id: int
    batch_number: str
    expiry_date: date
    quantity: int


class ReservationOut(BaseModel):
    medicine_id: int
    quantity: int
    allocations: List[AllocationOut] = Field(default_factory=list)


# -------------------------
# Aggregates / dashboard
# -------------------------
class StockAggregateOut(BaseModel):
    medicine_id: int
    medicine_code: str
    medicine_name: str
    unit: Optional[str] = None

    total_quantity: int = 0
    reserved_quantity: int = 0
    available_quantity: int = 0
    total_value: Decimal = Decimal("0.00")
    lot_count: int = 0
    expired_quantity: int = 0
    expired_lot_count: int = 0

    oldest_expiry: Optional[date] = None
    days_to_oldest_expiry: Optional[int] = None
    expiry_tier: Optional[ExpiryTier] = None

    reorder_threshold: int = 0
    is_low_stock: bool = False
    is_expiring_soon: bool = False


class StockStatsOut(BaseModel):
    total_items: int = 0
    total_quantity: int = 0
    total_value: Decimal = Decimal("0.00")
    expiring_soon: int = 0
    low_stock: int = 0
    expired: int = 0
    horizon_days: int = 90

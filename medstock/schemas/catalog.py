from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MedicineMini(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    code: Optional[str] = None
    unit: Optional[str] = None


class SupplierMini(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    code: Optional[str] = None


class UserMini(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str


class MedicineIn(BaseModel):
    code: str
    name: str
    generic_name: str = ""
    unit: str = "tablet"
    min_stock: int = Field(default=0, ge=0)


class MedicineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    generic_name: Optional[str] = None
    unit: Optional[str] = None
    min_stock: int
    is_active: bool


class SupplierIn(BaseModel):
    code: str
    name: str
    contact_person: str = ""
    phone: str = ""


class SupplierOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool

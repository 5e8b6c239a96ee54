# medstock/models/__init__.py
from .access import Permission, Role, User
from .catalog import Medicine, Supplier
from .receiving import DocNumberSeries, ReceivingDocument, ReceivingLine, ReceivingStatus
from .stock import LotStatus, MovementType, StockLot, StockMovement

__all__ = [
    "User",
    "Role",
    "Permission",
    "Medicine",
    "Supplier",
    "DocNumberSeries",
    "ReceivingDocument",
    "ReceivingLine",
    "ReceivingStatus",
    "LotStatus",
    "MovementType",
    "StockLot",
    "StockMovement",
]

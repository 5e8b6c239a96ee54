# FILE: medstock/services/errors.py
"""
Typed failures raised by the receiving and stock services.

Every error carries a stable ``code`` and the HTTP status the API layer
answers with. Only ``ConcurrencyConflictError`` is meant to be retried by
the caller; the services never retry on their own.
"""
from __future__ import annotations

from typing import Any, Optional


class StockError(Exception):
    code = "STOCK_ERROR"
    status_code = 400

    def __init__(self, msg: str, *, details: Optional[Any] = None):
        super().__init__(msg)
        self.msg = msg
        self.details = details


class ValidationError(StockError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidStateError(StockError):
    code = "INVALID_STATE"
    status_code = 409


class EmptyDocumentError(StockError):
    code = "EMPTY_DOCUMENT"
    status_code = 400


class InsufficientStockError(StockError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409


class OverReleaseError(StockError):
    code = "OVER_RELEASE"
    status_code = 409


class OverConsumeError(StockError):
    code = "OVER_CONSUME"
    status_code = 409


class ConcurrencyConflictError(StockError):
    code = "CONCURRENCY_CONFLICT"
    status_code = 409


class NotFoundError(StockError):
    code = "NOT_FOUND"
    status_code = 404

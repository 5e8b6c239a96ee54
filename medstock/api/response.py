# medstock/api/response.py
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from medstock.services.errors import StockError


def _send(payload: Dict[str, Any], status_code: int) -> JSONResponse:
    # Decimal / date / Enum / pydantic models -> JSON-safe
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def ok(data: Any = None, *, meta: Optional[Dict[str, Any]] = None, status_code: int = 200) -> JSONResponse:
    """``{"ok": true, "data": ..., "meta": {...}}``; meta only when given."""
    payload: Dict[str, Any] = {"ok": True, "data": data}
    if meta is not None:
        payload["meta"] = meta
    return _send(payload, status_code)


def ok_list(rows: Sequence[Any], **meta: Any) -> JSONResponse:
    """List endpoints always report how many rows came back."""
    return ok(list(rows), meta={"count": len(rows), **meta})


def err(
    msg: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """``{"ok": false, "error": {"msg", "code", "details"}}``"""
    return _send(
        {"ok": False, "error": {"msg": msg, "code": code, "details": details}},
        status_code,
    )


def stock_error(exc: StockError) -> JSONResponse:
    return err(exc.msg, status_code=exc.status_code, code=exc.code, details=exc.details)

# medstock/core/rbac.py
from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Optional, Set

from fastapi import HTTPException, status


class ClinicPerm(str, Enum):
    CATALOG_MANAGE = "clinic.catalog.manage"

    RECEIVING_VIEW = "clinic.receiving.view"
    RECEIVING_MANAGE = "clinic.receiving.manage"
    RECEIVING_VERIFY = "clinic.receiving.verify"
    RECEIVING_POST = "clinic.receiving.post"

    STOCK_VIEW = "clinic.stock.view"
    STOCK_RESERVE = "clinic.stock.reserve"
    STOCK_ADJUST = "clinic.stock.adjust"


def _code(x: Any) -> str:
    # ClinicPerm, plain str, or a Permission row
    if x is None:
        return ""
    if isinstance(x, Enum):
        return str(x.value)
    if isinstance(x, str):
        return x
    return _code(getattr(x, "code", None))


def is_admin_user(user: Any) -> bool:
    return bool(user is not None and getattr(user, "is_admin", False))


def iter_user_perm_codes(user: Any) -> Set[str]:
    """Permission codes granted through the user's roles."""
    out: Set[str] = set()
    for r in getattr(user, "roles", None) or []:
        for p in getattr(r, "permissions", None) or []:
            c = _code(p).strip()
            if c:
                out.add(c)
    return out


def has_perm(user: Any, code: Any) -> bool:
    if is_admin_user(user):
        return True
    want = _code(code).strip()
    return bool(want) and want in iter_user_perm_codes(user)


def require_perm(user: Any, code: Any) -> None:
    if not has_perm(user, code):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")


def require_any(user: Any, required: Iterable[Any], *, message: Optional[str] = None) -> None:
    """
    Raise 403 unless the user holds at least one of ``required``.
    """
    if is_admin_user(user):
        return

    wanted = {_code(x).strip() for x in required} - {""}
    if wanted & iter_user_perm_codes(user):
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=message or "You do not have permission to perform this action.",
    )

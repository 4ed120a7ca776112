# FILE: branch_inventory/api/response.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from branch_inventory.schemas.inventory import ServiceResult

# failed ServiceResult code -> HTTP status
STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "INVALID_INPUT": 400,
    "INSUFFICIENT_STOCK": 409,
    "NO_BATCHES_AVAILABLE": 409,
    "USAGE_TYPE_MISMATCH": 409,
    "CONCURRENT_MODIFICATION": 409,
}


def ok(
    data: Any = None,
    *,
    meta: Optional[Dict[str, Any]] = None,
    status_code: int = 200,
) -> JSONResponse:
    """
    Standard success wrapper:
    {
      "ok": true,
      "data": ...,
      "meta": {...} (optional)
    }
    """
    payload: Dict[str, Any] = {"ok": True, "data": data}
    if meta is not None:
        payload["meta"] = meta

    # jsonable_encoder handles datetime/date/Decimal/Enum/pydantic models
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def err(
    msg: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """
    Standard error wrapper:
    {
      "ok": false,
      "error": {
        "msg": "...",
        "code": "...",
        "details": ...
      }
    }
    """
    payload: Dict[str, Any] = {
        "ok": False,
        "error": {
            "msg": msg,
            "code": code,
            "details": details,
        },
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def from_result(result: ServiceResult, *, status_code: int = 200) -> JSONResponse:
    """Map a facade ServiceResult onto the envelope."""
    if result.success:
        meta: Dict[str, Any] = {}
        if result.message:
            meta["message"] = result.message
        if result.available_qty is not None:
            meta["available_qty"] = result.available_qty
        if result.warnings:
            meta["warnings"] = result.warnings
        return ok(result.data, meta=meta or None, status_code=status_code)

    details: Dict[str, Any] = {}
    if result.available_qty is not None:
        details["available_qty"] = result.available_qty
    if result.warnings:
        details["warnings"] = result.warnings
    return err(
        result.message or "Request failed",
        status_code=STATUS_BY_CODE.get(result.code or "", 400),
        code=result.code,
        details=details or None,
    )

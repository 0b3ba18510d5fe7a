from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def _send(payload: Dict[str, Any], status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code,
                        content=jsonable_encoder(payload))


def ok(data: Any = None,
       *,
       meta: Optional[Dict[str, Any]] = None,
       status_code: int = 200) -> JSONResponse:
    payload: Dict[str, Any] = {"ok": True, "data": data}
    if meta is not None:
        payload["meta"] = meta
    return _send(payload, status_code)


def err(msg: str,
        *,
        status_code: int,
        code: Optional[str] = None,
        details: Any = None) -> JSONResponse:
    # {"ok": false, "error": {"msg", "code", "details"}}
    return _send(
        {
            "ok": False,
            "error": {
                "msg": msg,
                "code": code,
                "details": details
            }
        }, status_code)

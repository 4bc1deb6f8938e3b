from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def ok(data=None, meta=None, status: int = 200):
    return JSONResponse(
        status_code=status,
        content=jsonable_encoder(
            {
                "ok": True,
                "data": data,
                "meta": meta or {},
            }
        ),
    )


def error(message: str, code: str = "error", status: int = 400, details: Optional[Dict[str, Any]] = None):
    content: Dict[str, Any] = {
        "ok": False,
        "error": code,
        "message": message,
    }
    if details:
        content["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status, content=content)

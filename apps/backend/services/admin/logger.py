import logging
import time
import uuid
from typing import Any, Dict

from fastapi import FastAPI, Request, Response

log = logging.getLogger("pointvest.http")

REQUEST_ID_HEADER = "X-Request-ID"

SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "x-api-key",
    "x-supabase-key",
}


def _mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {k: ("***masked***" if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}


def request_id_for(request: Request) -> str:
    """Caller-supplied X-Request-ID, or a fresh one."""
    rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return rid[:128] if rid else uuid.uuid4().hex


def log_request_response(request: Request, response: Response, start_time: float) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "request_id": getattr(request.state, "request_id", None),
        "method": request.method,
        "path": request.url.path,
        "status_code": response.status_code,
        "duration_ms": int((time.time() - start_time) * 1000),
        "client": request.client.host if request.client else None,
        "headers": _mask_headers(dict(request.headers)),
    }

    # 5xx on the order path means a member may be left mid-submission.
    if response.status_code >= 500:
        log.error(entry)
    else:
        log.info(entry)
    return entry


def install_request_logging(app: FastAPI) -> None:
    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        start = time.time()
        request.state.request_id = request_id_for(request)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        log_request_response(request, response, start)
        return response

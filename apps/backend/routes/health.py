from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_root():
    return {"ok": True}


@router.get("/orders")
async def health_orders(request: Request) -> Dict[str, Any]:
    runtime = request.app.state.orders
    checks: Dict[str, Any] = {
        "scheduler_running": bool(runtime.stages.scheduler.running),
        "merchant_directory": runtime.merchants is not None,
        "store_api_base_url": runtime.api.base_url,
    }
    return {"ok": checks["scheduler_running"], "checks": checks}

# apps/backend/main.py
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from apps.backend.routes.health import router as health_router
from apps.backend.routes.orders import router as orders_router
from apps.backend.services.admin.logger import install_request_logging
from apps.backend.services.orders.runtime import OrderRuntime, build_runtime
from apps.backend.services.settings import Settings, settings
from apps.backend.utils.envelope import error

log = logging.getLogger("pointvest.main")


def create_app(cfg: Optional[Settings] = None, runtime: Optional[OrderRuntime] = None) -> FastAPI:
    cfg = cfg or settings

    app = FastAPI(
        title="Pointvest Orders",
        version=cfg.app_version,
        description="Loyalty points to fractional brokerage order placement",
    )
    app.state.orders = runtime or build_runtime(cfg)

    # -------------------------------------------------------------------
    # Error handling (stable envelopes, no stack leaks)
    # -------------------------------------------------------------------
    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        problems = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
        return error("Invalid request body", code="invalid_request", status=422, details={"errors": problems})

    install_request_logging(app)

    # -------------------------------------------------------------------
    # Routers
    # -------------------------------------------------------------------
    app.include_router(health_router)
    app.include_router(orders_router)

    @app.get("/")
    async def root():
        return {
            "status": "Pointvest Orders Online",
            "routes": ["/health", "/orders/submit", "/orders/stages/{basket_id}"],
        }

    # -------------------------------------------------------------------
    # Startup / shutdown (broker stage scheduler + store client)
    # -------------------------------------------------------------------
    @app.on_event("startup")
    async def startup_event():
        await app.state.orders.start()
        log.info("Pointvest orders starting: broker stage scheduler online")

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.orders.stop()
        log.info("Pointvest orders stopped: pending broker stages dropped")

    return app


app = create_app()

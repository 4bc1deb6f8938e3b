import logging
from decimal import Decimal
from typing import List, Optional, Union

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from apps.backend.services.orders.errors import OrderFlowError, OrderPlacementFailed
from apps.backend.services.orders.models import Basket, BasketLine, MemberSession, WalletBalances
from apps.backend.services.orders.orchestrator import OrderOrchestrator
from apps.backend.utils.envelope import error, ok

log = logging.getLogger("pointvest.routes.orders")

router = APIRouter(prefix="/orders", tags=["orders"])


class BasketLineIn(BaseModel):
    symbol: str = ""
    shares: Decimal = Decimal("0")
    price: Decimal = Decimal("0")


class CachedWalletIn(BaseModel):
    points: Decimal = Decimal("0")
    cash_balance: Decimal = Decimal("0")
    portfolio_value: Decimal = Decimal("0")


class SubmitOrderIn(BaseModel):
    member_id: Optional[str] = Field(None, description="Member placing the order")
    merchant_id: Optional[str] = None
    broker: Optional[str] = None
    member_timezone: Optional[str] = None
    sweep_day: Optional[str] = Field(None, description="Cached merchant sweep_day, used if the directory is down")
    basket_id: Optional[str] = Field(None, description="Re-send the same id when retrying a submission")
    created_at: Optional[str] = Field(None, description="Basket finalization time; re-send it unchanged on retry")
    lines: List[BasketLineIn] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    points_used: Union[int, Decimal] = 0
    cached_wallet: Optional[CachedWalletIn] = None


def _orchestrator(request: Request) -> OrderOrchestrator:
    return request.app.state.orders.orchestrator


@router.post("/submit")
async def submit_order(request: Request, body: SubmitOrderIn):
    basket = Basket(
        member_id=body.member_id,
        lines=[BasketLine(symbol=l.symbol, shares=l.shares, price=l.price) for l in body.lines],
        total_amount=body.total_amount,
        points_used=body.points_used,
        created_at=body.created_at,
    )
    session = MemberSession(
        member_id=body.member_id,
        merchant_id=body.merchant_id,
        broker=body.broker,
        member_timezone=body.member_timezone,
        sweep_day=body.sweep_day,
        cached_balances=None
        if body.cached_wallet is None
        else WalletBalances(
            points=body.cached_wallet.points,
            cash_balance=body.cached_wallet.cash_balance,
            portfolio_value=body.cached_wallet.portfolio_value,
        ),
    )

    try:
        result = await _orchestrator(request).submit(basket, session, basket_id=body.basket_id)
    except OrderPlacementFailed as e:
        return error(
            e.message,
            code=e.code,
            status=e.status_code,
            details={"symbol": e.symbol, "basket_id": e.basket_id, "placed_order_ids": e.placed_order_ids},
        )
    except OrderFlowError as e:
        return error(e.message, code=e.code, status=e.status_code)
    except Exception as e:
        log.exception(f"[orders] unexpected submit failure: {e}")
        return error("Error placing order", code="internal_error", status=500)

    return ok(result.to_dict(), meta={"warnings": len(result.warnings)})


@router.get("/stages/{basket_id}")
async def stage_status(request: Request, basket_id: str):
    stages = request.app.state.orders.stages
    return ok(
        {
            "basket_id": basket_id,
            "pending": stages.pending_stages(basket_id),
            "outcomes": [o.to_dict() for o in stages.outcomes(basket_id)],
        }
    )


@router.post("/stages/{basket_id}/cancel")
async def cancel_stages(request: Request, basket_id: str):
    removed = request.app.state.orders.stages.cancel(basket_id)
    return ok({"basket_id": basket_id, "cancelled_jobs": removed})

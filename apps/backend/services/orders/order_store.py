from __future__ import annotations

import logging
from typing import Any, Dict

from .errors import OrderPlacementFailed, StoreRequestError
from .models import STAGE_TRANSITIONS, BrokerStage, OrderLine, PlacedOrder, can_transition
from .schemas import (
    BrokerConfirmRequest,
    BrokerConfirmResponse,
    PlaceOrderRequest,
    PlaceOrderResponse,
    as_number,
)
from .store_api import StoreApiClient

log = logging.getLogger("pointvest.orders.store")


class OrderStoreClient:
    """
    Order store adapter.

    place_order_line is on the critical path: any failure is raised as
    OrderPlacementFailed and the caller stops the submission.
    """

    def __init__(self, api: StoreApiClient) -> None:
        self.api = api

    async def place_order_line(self, line: OrderLine) -> PlacedOrder:
        request = PlaceOrderRequest(
            member_id=line.member_id,
            merchant_id=line.merchant_id,
            basket_id=line.basket_id,
            symbol=line.symbol,
            shares=as_number(line.shares),
            points_used=as_number(line.points_allocated),
            amount=as_number(line.cash_allocated),
            order_type=line.order_type,
            broker=line.broker,
            status=line.status,
            sweep_day=line.sweep_day,
        )
        try:
            # Not idempotent on the store side: only connect failures are retried.
            res = await self.api.call("place_order.php", request, PlaceOrderResponse, idempotent=False)
        except StoreRequestError as e:
            raise OrderPlacementFailed(line.symbol, e.reason, basket_id=line.basket_id)

        if not res.success:
            raise OrderPlacementFailed(
                line.symbol,
                res.error or f"Failed to place order for {line.symbol}",
                basket_id=line.basket_id,
            )

        order_id = "" if res.order_id is None else str(res.order_id)
        log.info(f"[orders] placed basket={line.basket_id} symbol={line.symbol} order_id={order_id} status={line.status}")
        return PlacedOrder(order_id=order_id, line=line)

    async def transition_basket(self, member_id: str, basket_id: str, stage: BrokerStage) -> Dict[str, Any]:
        """
        Move every line of a basket one step along pending -> placed -> confirmed.
        The store only updates rows still in the stage's from-status.
        """
        if stage not in STAGE_TRANSITIONS:
            raise ValueError(f"unknown broker stage: {stage}")
        from_status, to_status = STAGE_TRANSITIONS[stage]

        res = await self.api.call(
            "broker_confirm.php",
            BrokerConfirmRequest(member_id=member_id, basket_id=basket_id, processing_stage=stage),
            BrokerConfirmResponse,
        )
        if res.new_status and not can_transition(from_status, res.new_status):
            log.warning(
                f"[orders] store reported unexpected status '{res.new_status}' for stage={stage} basket={basket_id}"
            )

        return {
            "ok": res.success,
            "basket_id": basket_id,
            "stage": stage,
            "from_status": from_status,
            "to_status": to_status,
            "orders_updated": res.orders_updated,
            "error": res.error,
        }

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from .errors import NotificationFailed, StoreRequestError
from .models import BrokerEvent, BrokerStage, MerchantEvent
from .schemas import (
    BrokerOrderSummary,
    NotifyBrokerRequest,
    NotifyMerchantRequest,
    NotifyResponse,
    as_number,
)
from .store_api import StoreApiClient

log = logging.getLogger("pointvest.notify")


class NotificationDispatcher:
    """
    Best-effort merchant and broker notifications.

    Never raises into the order flow: every failure (network, HTTP, timeout,
    bad payload) is logged and reported as False.
    """

    def __init__(self, api: StoreApiClient, *, timeout_seconds: float = 8.0) -> None:
        self.api = api
        self.timeout_seconds = float(timeout_seconds)

    async def notify_merchant(self, event: MerchantEvent) -> bool:
        try:
            request = NotifyMerchantRequest(
                member_id=event.member_id,
                merchant_id=event.merchant_id,
                points_redeemed=as_number(event.points_redeemed),
                cash_value=as_number(event.cash_value),
                basket_id=event.basket_id,
                transaction_type=event.transaction_type,
                timestamp=event.timestamp,
            )
            return await self._send("notify_merchant.php", request, event.basket_id)
        except (NotificationFailed, ValidationError) as e:
            log.warning(f"[notify] merchant notification failed basket={event.basket_id}: {e}")
            return False
        except Exception as e:
            log.exception(f"[notify] merchant notification crashed basket={event.basket_id}: {e}")
            return False

    async def notify_broker(self, event: BrokerEvent, stage: BrokerStage) -> bool:
        try:
            request = NotifyBrokerRequest(
                event_type=event.event_type,
                member_id=event.member_id,
                merchant_id=event.merchant_id,
                broker=event.broker,
                basket_id=event.basket_id,
                amount=as_number(event.amount),
                points_used=as_number(event.points_used),
                orders=[BrokerOrderSummary(**o) for o in event.orders],
                timestamp=event.timestamp,
                processing_stage=stage,
            )
            return await self._send("notify_broker.php", request, event.basket_id)
        except (NotificationFailed, ValidationError, TypeError) as e:
            log.warning(f"[notify] broker {stage} notification failed basket={event.basket_id}: {e}")
            return False
        except Exception as e:
            log.exception(f"[notify] broker {stage} notification crashed basket={event.basket_id}: {e}")
            return False

    async def _send(self, endpoint: str, request, basket_id: Optional[str]) -> bool:
        try:
            res = await asyncio.wait_for(
                self.api.call(endpoint, request, NotifyResponse, timeout=self.timeout_seconds),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise NotificationFailed(f"{endpoint} timed out after {self.timeout_seconds}s", status_code=504)
        except StoreRequestError as e:
            raise NotificationFailed(f"{endpoint} unreachable: {e.reason}", status_code=502)

        if not res.delivered:
            log.info(f"[notify] {endpoint} not delivered basket={basket_id}: {res.error or 'no detail'}")
        return res.delivered

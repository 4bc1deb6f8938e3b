"""
Wire schemas for the store endpoints.

Every request and response crossing the boundary is validated here. Requests
are sent as JSON numbers (the store casts them), responses are parsed
leniently: unknown keys are ignored, numeric strings and nulls coerced.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


Number = Union[int, float]


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _Response(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = False
    error: Optional[str] = None

    @field_validator("success", mode="before")
    @classmethod
    def _truthy(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "ok")
        return bool(v)


# -----------------------------
# get-wallet
# -----------------------------
class GetWalletRequest(_Request):
    member_id: str


class WalletPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    points: Decimal = Decimal("0")
    cash_balance: Decimal = Decimal("0")
    portfolio_value: Decimal = Decimal("0")

    @field_validator("points", "cash_balance", "portfolio_value", mode="before")
    @classmethod
    def _null_is_zero(cls, v: Any) -> Any:
        if v is None or v == "":
            return Decimal("0")
        return v


class GetWalletResponse(_Response):
    wallet: Optional[WalletPayload] = None


# -----------------------------
# place_order
# -----------------------------
class PlaceOrderRequest(_Request):
    member_id: str
    merchant_id: Optional[str] = None
    basket_id: str
    symbol: str
    shares: Number
    points_used: Number
    amount: Number
    order_type: str = "market"
    broker: str
    status: Literal["queued", "pending"]
    sweep_day: Optional[str] = None


class PlaceOrderResponse(_Response):
    order_id: Optional[Union[int, str]] = None


# -----------------------------
# update_balances
# -----------------------------
class UpdateBalancesRequest(_Request):
    member_id: str
    points: Number
    cash_balance: Number
    portfolio_value: Number


class UpdateBalancesResponse(_Response):
    pass


# -----------------------------
# log-ledger
# -----------------------------
class LogLedgerRequest(_Request):
    member_id: str
    merchant_id: Optional[str] = None
    broker: str
    client_tx_id: str
    tx_type: str = "redeem_points"
    action: str = "redeem"
    points: Number
    note: str
    member_timezone: str


class LogLedgerResponse(_Response):
    tx_id: Optional[Union[int, str]] = None
    duplicate: bool = False


# -----------------------------
# notify_merchant / notify_broker
# -----------------------------
class NotifyMerchantRequest(_Request):
    member_id: str
    merchant_id: str
    points_redeemed: Number
    cash_value: Number
    basket_id: str
    transaction_type: str = "redeem"
    timestamp: str


class BrokerOrderSummary(BaseModel):
    order_id: Optional[str] = None
    symbol: str
    shares: Number
    amount: Number
    points_used: Number


class NotifyBrokerRequest(_Request):
    event_type: str = "order_placed"
    member_id: str
    merchant_id: Optional[str] = None
    broker: str
    basket_id: str
    amount: Number
    points_used: Number
    orders: List[BrokerOrderSummary] = Field(default_factory=list)
    timestamp: str
    processing_stage: Literal["acknowledge", "confirm"]


class NotifyResponse(_Response):
    notified: Optional[bool] = None

    @property
    def delivered(self) -> bool:
        # Sinks report either `notified` or just `success`.
        if self.notified is not None:
            return bool(self.notified)
        return self.success


# -----------------------------
# broker_confirm
# -----------------------------
class BrokerConfirmRequest(_Request):
    member_id: str
    basket_id: str
    processing_stage: Literal["acknowledge", "confirm"]


class BrokerConfirmResponse(_Response):
    orders_updated: int = 0
    new_status: Optional[str] = None


def as_number(v: Any) -> Number:
    """Decimal/int to a JSON-friendly number."""
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, int):
        return v
    return float(v)

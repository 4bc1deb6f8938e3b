"""
Order Flow Models
=================

Plain domain records shared by the allocation engine, the store clients and
the orchestrator. No DB, no HTTP.

Money is carried as Decimal end to end. Points are carried as int when the
merchant tracks whole points and as Decimal when it tracks currency-like
fractional points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Literal, Optional, Union


D = Decimal

Points = Union[int, Decimal]
OrderStatus = Literal["queued", "pending", "placed", "confirmed", "cancelled"]
ProcessingMode = Literal["immediate", "batched"]
BrokerStage = Literal["acknowledge", "confirm"]

IMMEDIATE_SWEEP_DAY = "T+1"

# Forward-only status ladder for immediate processing.
STATUS_ORDER: Dict[str, int] = {"pending": 0, "placed": 1, "confirmed": 2}
STAGE_TRANSITIONS: Dict[str, tuple] = {
    "acknowledge": ("pending", "placed"),
    "confirm": ("placed", "confirmed"),
}


def _q2(x: Decimal) -> Decimal:
    return x.quantize(D("0.01"), rounding=ROUND_HALF_UP)


def _to_decimal(v: Any, default: Decimal = D("0")) -> Decimal:
    if v is None:
        return default
    if isinstance(v, Decimal):
        return v
    try:
        return D(str(v))
    except Exception:
        return default


def _points_out(p: Points) -> Union[int, str]:
    return p if isinstance(p, int) else str(p)


def can_transition(current: str, new: str) -> bool:
    """True when `new` is strictly ahead of `current` on the status ladder."""
    if current not in STATUS_ORDER or new not in STATUS_ORDER:
        return False
    return STATUS_ORDER[new] > STATUS_ORDER[current]


@dataclass(frozen=True)
class BasketLine:
    symbol: str
    shares: Decimal = D("0")
    price: Decimal = D("0")


@dataclass(frozen=True)
class Basket:
    """
    Caller-supplied basket. Consumed once; only its derived order lines are stored.

    created_at is the basket-finalization time (ISO-8601). It feeds the ledger
    idempotency key, so a re-sent submission must carry the same value.
    """
    member_id: Optional[str]
    lines: List[BasketLine]
    total_amount: Decimal
    points_used: Points
    created_at: Optional[str] = None


@dataclass
class MemberSession:
    """
    Explicit per-member context handed to the orchestrator.

    cached_balances is a read-through cache: refreshed on every successful
    wallet read or write and only consulted when the wallet store is down.
    """
    member_id: Optional[str] = None
    merchant_id: Optional[str] = None
    broker: Optional[str] = None
    member_timezone: Optional[str] = None
    sweep_day: Optional[str] = None
    cached_balances: Optional["WalletBalances"] = None


@dataclass(frozen=True)
class WalletBalances:
    points: Decimal = D("0")
    cash_balance: Decimal = D("0")
    portfolio_value: Decimal = D("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "points": str(self.points),
            "cash_balance": str(_q2(self.cash_balance)),
            "portfolio_value": str(_q2(self.portfolio_value)),
        }


@dataclass(frozen=True)
class OrderLine:
    member_id: str
    merchant_id: Optional[str]
    basket_id: str
    symbol: str
    shares: Decimal
    points_allocated: Points
    cash_allocated: Decimal
    broker: str
    status: OrderStatus
    sweep_day: Optional[str] = None
    order_type: str = "market"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "merchant_id": self.merchant_id,
            "basket_id": self.basket_id,
            "symbol": self.symbol,
            "shares": str(self.shares),
            "points_allocated": _points_out(self.points_allocated),
            "cash_allocated": str(self.cash_allocated),
            "order_type": self.order_type,
            "broker": self.broker,
            "status": self.status,
            "sweep_day": self.sweep_day,
        }


@dataclass(frozen=True)
class PlacedOrder:
    order_id: str
    line: OrderLine


@dataclass(frozen=True)
class LedgerEntry:
    """
    Immutable redemption record. client_tx_id is the idempotency key.
    """
    client_tx_id: str
    member_id: str
    merchant_id: Optional[str]
    broker: str
    points: Points
    note: str
    member_timezone: str
    timestamp: str
    tx_type: str = "redeem_points"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_tx_id": self.client_tx_id,
            "member_id": self.member_id,
            "merchant_id": self.merchant_id,
            "broker": self.broker,
            "tx_type": self.tx_type,
            "points": _points_out(self.points),
            "note": self.note,
            "member_timezone": self.member_timezone,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class MerchantEvent:
    member_id: str
    merchant_id: str
    points_redeemed: Points
    cash_value: Decimal
    basket_id: str
    timestamp: str
    transaction_type: str = "redeem"


@dataclass(frozen=True)
class BrokerEvent:
    member_id: str
    merchant_id: Optional[str]
    broker: str
    basket_id: str
    amount: Decimal
    points_used: Points
    orders: List[Dict[str, Any]]
    timestamp: str
    event_type: str = "order_placed"


@dataclass(frozen=True)
class StageOutcome:
    basket_id: str
    stage: BrokerStage
    attempt: int
    notified: bool
    at: str
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "basket_id": self.basket_id,
            "stage": self.stage,
            "attempt": self.attempt,
            "notified": self.notified,
            "at": self.at,
            "detail": self.detail,
        }


@dataclass
class OrderConfirmation:
    """
    Caller-facing result. Fatal problems raise instead; everything here is
    either a success or a named degradation flag.
    """
    basket_id: str
    member_id: str
    merchant_id: Optional[str]
    processing_mode: ProcessingMode
    initial_status: OrderStatus
    sweep_day: Optional[str]
    order_ids: List[str]
    points_per_line: List[Points]
    cash_per_line: List[Decimal]
    balances_before: Optional[WalletBalances] = None
    balances_after: Optional[WalletBalances] = None
    wallet_updated: bool = False
    ledger_success: bool = False
    client_tx_id: Optional[str] = None
    merchant_notified: bool = False
    broker_acknowledge_dispatched: bool = False
    broker_confirm_scheduled: bool = False
    duplicate_submission: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "basket_id": self.basket_id,
            "member_id": self.member_id,
            "merchant_id": self.merchant_id,
            "processing_mode": self.processing_mode,
            "initial_status": self.initial_status,
            "sweep_day": self.sweep_day,
            "order_ids": list(self.order_ids),
            "points_per_line": [_points_out(p) for p in self.points_per_line],
            "cash_per_line": [str(c) for c in self.cash_per_line],
            "balances_before": None if self.balances_before is None else self.balances_before.to_dict(),
            "balances_after": None if self.balances_after is None else self.balances_after.to_dict(),
            "wallet_updated": self.wallet_updated,
            "ledger_success": self.ledger_success,
            "client_tx_id": self.client_tx_id,
            "merchant_notified": self.merchant_notified,
            "broker_acknowledge_dispatched": self.broker_acknowledge_dispatched,
            "broker_confirm_scheduled": self.broker_confirm_scheduled,
            "duplicate_submission": self.duplicate_submission,
            "warnings": list(self.warnings),
        }

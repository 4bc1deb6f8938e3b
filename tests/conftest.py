from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
from apscheduler.jobstores.base import JobLookupError

from apps.backend.services.orders.broker_stages import StageDispatch
from apps.backend.services.orders.errors import (
    LedgerWriteFailed,
    MerchantLookupFailed,
    OrderPlacementFailed,
    WalletUnavailable,
    WalletWriteFailed,
)
from apps.backend.services.orders.models import (
    Basket,
    BasketLine,
    BrokerEvent,
    LedgerEntry,
    MemberSession,
    MerchantEvent,
    OrderLine,
    PlacedOrder,
    WalletBalances,
)
from apps.backend.services.orders.orchestrator import OrderOrchestrator
from apps.backend.services.orders.transaction_ledger import LedgerAck

FIXED_NOW = datetime(2026, 3, 2, 14, 30, 0, tzinfo=timezone.utc)


class FakeWallet:
    def __init__(self, balances: Optional[WalletBalances] = None, *, read_fails: bool = False, write_fails: bool = False):
        self.balances = balances
        self.read_fails = read_fails
        self.write_fails = write_fails
        self.reads: List[str] = []
        self.writes: List[Dict[str, Any]] = []

    async def fetch_balances(self, member_id: str) -> WalletBalances:
        self.reads.append(member_id)
        if self.read_fails or self.balances is None:
            raise WalletUnavailable("wallet store down", status_code=503)
        return self.balances

    async def apply_delta(self, member_id, new_points, new_cash_balance, new_portfolio_value) -> WalletBalances:
        self.writes.append(
            {
                "member_id": member_id,
                "points": new_points,
                "cash_balance": new_cash_balance,
                "portfolio_value": new_portfolio_value,
            }
        )
        if self.write_fails:
            raise WalletWriteFailed("wallet store rejected update", status_code=502)
        return WalletBalances(points=new_points, cash_balance=new_cash_balance, portfolio_value=new_portfolio_value)


class FakeOrderStore:
    """In-memory order table. fail_on is a 1-based line index that fails placement."""

    def __init__(self, *, fail_on: Optional[int] = None):
        self.fail_on = fail_on
        self.rows: List[OrderLine] = []
        self.attempts = 0

    async def place_order_line(self, line: OrderLine) -> PlacedOrder:
        self.attempts += 1
        if self.fail_on is not None and self.attempts == self.fail_on:
            raise OrderPlacementFailed(line.symbol, "Server error", basket_id=line.basket_id)
        self.rows.append(line)
        return PlacedOrder(order_id=str(100 + len(self.rows)), line=line)


class FakeLedger:
    def __init__(self, *, fails: bool = False):
        self.fails = fails
        self.entries: List[LedgerEntry] = []

    async def append_entry(self, entry: LedgerEntry) -> LedgerAck:
        self.entries.append(entry)
        if self.fails:
            raise LedgerWriteFailed("ledger store down", status_code=502)
        return LedgerAck(logged=True)


class FakeNotifier:
    def __init__(self, *, merchant_ok: bool = True, broker_ok: bool = True):
        self.merchant_ok = merchant_ok
        self.broker_ok = broker_ok
        self.merchant_events: List[MerchantEvent] = []
        self.broker_calls: List[tuple] = []

    async def notify_merchant(self, event: MerchantEvent) -> bool:
        self.merchant_events.append(event)
        return self.merchant_ok

    async def notify_broker(self, event: BrokerEvent, stage: str) -> bool:
        self.broker_calls.append((event.basket_id, stage))
        return self.broker_ok


class FakeStages:
    def __init__(self, *, raises: bool = False):
        self.raises = raises
        self.dispatched: List[BrokerEvent] = []

    def dispatch(self, event: BrokerEvent) -> StageDispatch:
        if self.raises:
            raise RuntimeError("scheduler unavailable")
        self.dispatched.append(event)
        return StageDispatch(acknowledge_dispatched=True, confirm_scheduled=True, confirm_run_at=FIXED_NOW.isoformat())


class FakeMerchants:
    def __init__(self, sweep_days: Optional[Dict[str, Optional[str]]] = None, *, fails: bool = False):
        self.sweep_days = sweep_days or {}
        self.fails = fails
        self.lookups: List[str] = []

    async def get_sweep_day(self, merchant_id: str) -> Optional[str]:
        self.lookups.append(merchant_id)
        if self.fails or merchant_id not in self.sweep_days:
            raise MerchantLookupFailed("merchant directory unavailable", status_code=503)
        return self.sweep_days[merchant_id]


class FakeScheduler:
    """Stands in for AsyncIOScheduler: records jobs, runs them on demand."""

    def __init__(self):
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.added: List[Dict[str, Any]] = []
        self.running = False

    def add_job(self, func, trigger, *, run_date, args, id, replace_existing, misfire_grace_time):
        job = {"func": func, "trigger": trigger, "run_date": run_date, "args": list(args), "id": id}
        self.jobs[id] = job
        self.added.append(job)
        return job

    def remove_job(self, job_id):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False
        self.jobs.clear()

    async def run(self, job_id):
        job = self.jobs.pop(job_id)
        return await job["func"](*job["args"])


def make_basket(n: int = 2, *, total: Any = Decimal("100.00"), points: Any = 333, member_id: Optional[str] = "m-1") -> Basket:
    symbols = ["AAPL", "MSFT", "NVDA", "AMZN", "TSLA", "GOOG"]
    return Basket(
        member_id=member_id,
        lines=[BasketLine(symbol=symbols[i % len(symbols)], shares=Decimal("0.5"), price=Decimal("10")) for i in range(n)],
        total_amount=total,
        points_used=points,
    )


@pytest.fixture()
def wallet() -> FakeWallet:
    return FakeWallet(WalletBalances(points=Decimal("1000"), cash_balance=Decimal("250.00"), portfolio_value=Decimal("40.00")))


@pytest.fixture()
def order_store() -> FakeOrderStore:
    return FakeOrderStore()


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def stages() -> FakeStages:
    return FakeStages()


@pytest.fixture()
def session() -> MemberSession:
    return MemberSession(member_id="m-1", merchant_id="merch-1", broker="Alpaca", member_timezone="America/New_York")


@pytest.fixture()
def build_orchestrator(wallet, order_store, ledger, notifier, stages):
    def _build(merchants: Optional[FakeMerchants] = None, **overrides) -> OrderOrchestrator:
        kwargs = dict(
            wallet=wallet,
            orders=order_store,
            ledger=ledger,
            notifier=notifier,
            stages=stages,
            merchants=merchants,
            clock=lambda: FIXED_NOW,
            basket_ids=lambda: "basket-1772461800000-42",
        )
        kwargs.update(overrides)
        return OrderOrchestrator(**kwargs)

    return _build

"""
Order Orchestrator (Canonical Integration Layer)
================================================

Purpose:
- Turn one basket submission into order lines at the broker.
- Keep routes thin. Keep allocation and balance math in their own modules.

Sequence:
1. Validate the submission (member, non-empty basket, sane lines)
2. Allocate cash and points across lines
3. Resolve processing mode from the merchant's sweep_day
4. Persist every line (critical path; first failure aborts, no rollback)
5. Update wallet balances            (best-effort)
6. Append the redemption ledger entry (best-effort)
7. Notify the merchant               (best-effort)
8. Immediate mode only: dispatch broker acknowledge now, schedule confirm

Only steps 1, 2 and 4 can fail the submission. Everything after placement
degrades to a flag on OrderConfirmation and a logged warning.

Re-sent submissions:
- The ledger key is built from the basket's creation time (Basket.created_at,
  else the epoch-ms embedded in the basket id), never from the submit time,
  so every attempt for one basket carries the same client_tx_id.
- A basket that already completed in this process is answered from memory:
  no second placement, wallet debit or ledger row.
- A basket still in flight is rejected with SubmissionInProgress.
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set, Tuple

from .allocation import Allocation, allocate
from .broker_stages import BrokerStageScheduler
from .errors import (
    InvalidSubmission,
    LedgerWriteFailed,
    MerchantLookupFailed,
    OrderPlacementFailed,
    SubmissionInProgress,
    WalletUnavailable,
    WalletWriteFailed,
)
from .merchant_directory import MerchantDirectory, is_immediate, normalize_sweep_day
from .models import (
    D,
    Basket,
    BrokerEvent,
    MemberSession,
    MerchantEvent,
    OrderConfirmation,
    OrderLine,
    OrderStatus,
    PlacedOrder,
    WalletBalances,
    _to_decimal,
)
from .notifications import NotificationDispatcher
from .order_store import OrderStoreClient
from .transaction_ledger import TransactionLedgerClient, build_entry
from .wallet_client import WalletLedgerClient, compute_post_order_balances

log = logging.getLogger("pointvest.orders")


_BASKET_ID_RE = re.compile(r"^basket-(\d{1,15})-")


def generate_basket_id() -> str:
    return f"basket-{int(time.time() * 1000)}-{secrets.randbelow(1_000_000)}"


def basket_created_at(basket_id: str) -> Optional[str]:
    """Creation time carried by a `basket-<epoch-ms>-<n>` id, as ISO-8601 UTC."""
    m = _BASKET_ID_RE.match(basket_id or "")
    if not m:
        return None
    return datetime.fromtimestamp(int(m.group(1)) / 1000, tz=timezone.utc).isoformat()


class OrderOrchestrator:
    """
    Collaborator contract:
    - wallet.fetch_balances(member_id) -> WalletBalances           (raises WalletUnavailable)
    - wallet.apply_delta(member_id, points, cash, portfolio)      (raises WalletWriteFailed)
    - orders.place_order_line(OrderLine) -> PlacedOrder           (raises OrderPlacementFailed)
    - ledger.append_entry(LedgerEntry) -> LedgerAck               (raises LedgerWriteFailed)
    - notifier.notify_merchant(MerchantEvent) -> bool
    - merchants.get_sweep_day(merchant_id) -> Optional[str]       (raises MerchantLookupFailed)
    - stages.dispatch(BrokerEvent) -> StageDispatch
    """

    def __init__(
        self,
        *,
        wallet: WalletLedgerClient,
        orders: OrderStoreClient,
        ledger: TransactionLedgerClient,
        notifier: NotificationDispatcher,
        stages: BrokerStageScheduler,
        merchants: Optional[MerchantDirectory] = None,
        default_broker: str = "Not linked",
        default_member_timezone: str = "UTC",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        basket_ids: Callable[[], str] = generate_basket_id,
        remember_baskets: int = 1024,
    ) -> None:
        self.wallet = wallet
        self.orders = orders
        self.ledger = ledger
        self.notifier = notifier
        self.stages = stages
        self.merchants = merchants
        self.default_broker = default_broker
        self.default_member_timezone = default_member_timezone
        self.clock = clock
        self.basket_ids = basket_ids
        self.remember_baskets = max(1, int(remember_baskets))

        self._completed: "OrderedDict[Tuple[str, str], OrderConfirmation]" = OrderedDict()
        self._in_flight: Set[Tuple[str, str]] = set()

    # -----------------------------
    # Entry point
    # -----------------------------
    async def submit(
        self,
        basket: Basket,
        session: MemberSession,
        *,
        basket_id: Optional[str] = None,
    ) -> OrderConfirmation:
        member_id = self._validate(basket, session)
        allocation = allocate(basket.total_amount, basket.points_used, len(basket.lines))
        basket_id = (basket_id or "").strip() or self.basket_ids()

        key = (member_id, basket_id)
        prior = self._completed.get(key)
        if prior is not None:
            log.info(f"[orders] basket={basket_id} member={member_id} already submitted; returning prior result")
            return replace(
                prior,
                duplicate_submission=True,
                warnings=list(prior.warnings) + ["duplicate_submission: basket already completed"],
            )
        if key in self._in_flight:
            raise SubmissionInProgress(basket_id)

        self._in_flight.add(key)
        try:
            result = await self._submit_once(basket, session, allocation, member_id=member_id, basket_id=basket_id)
        finally:
            self._in_flight.discard(key)

        self._completed[key] = result
        while len(self._completed) > self.remember_baskets:
            self._completed.popitem(last=False)
        return result

    async def _submit_once(
        self,
        basket: Basket,
        session: MemberSession,
        allocation: Allocation,
        *,
        member_id: str,
        basket_id: str,
    ) -> OrderConfirmation:
        merchant_id = session.merchant_id
        broker = (session.broker or "").strip() or self.default_broker

        sweep_day = await self.resolve_sweep_day(session)
        immediate = is_immediate(sweep_day)
        initial_status: OrderStatus = "pending" if immediate else "queued"

        log.info(
            f"[orders] submit basket={basket_id} member={member_id} lines={len(basket.lines)} "
            f"amount={basket.total_amount} points={basket.points_used} mode={'immediate' if immediate else 'batched'}"
        )

        placed = await self._place_lines(
            basket,
            allocation,
            member_id=member_id,
            merchant_id=merchant_id,
            basket_id=basket_id,
            broker=broker,
            status=initial_status,
            sweep_day=sweep_day,
        )

        result = OrderConfirmation(
            basket_id=basket_id,
            member_id=member_id,
            merchant_id=merchant_id,
            processing_mode="immediate" if immediate else "batched",
            initial_status=initial_status,
            sweep_day=sweep_day,
            order_ids=[p.order_id for p in placed],
            points_per_line=list(allocation.points_per_line),
            cash_per_line=list(allocation.cash_per_line),
        )

        now = self.clock().isoformat()
        created_at = (basket.created_at or "").strip() or basket_created_at(basket_id) or now

        await self._update_wallet(result, basket, session)
        await self._append_ledger(result, basket, session, broker=broker, created_at=created_at)
        await self._notify_merchant(result, basket, created_at=now)

        if immediate:
            self._dispatch_broker_stages(result, basket, placed, broker=broker, created_at=now)

        if result.warnings:
            log.warning(f"[orders] basket={basket_id} completed with degradations: {result.warnings}")
        return result

    # -----------------------------
    # Mode
    # -----------------------------
    async def resolve_sweep_day(self, session: MemberSession) -> Optional[str]:
        """
        Merchant directory first; the session's cached value if it cannot be read.
        """
        if self.merchants is not None and session.merchant_id:
            try:
                sweep_day = await self.merchants.get_sweep_day(session.merchant_id)
                session.sweep_day = sweep_day
                return sweep_day
            except MerchantLookupFailed as e:
                log.warning(f"[orders] sweep_day lookup failed merchant={session.merchant_id}: {e.message}")
        return normalize_sweep_day(session.sweep_day)

    # -----------------------------
    # Steps
    # -----------------------------
    @staticmethod
    def _validate(basket: Basket, session: MemberSession) -> str:
        member_id = (basket.member_id or "").strip()
        if not member_id:
            raise InvalidSubmission("No member ID found. Please log in again.")
        if session.member_id and session.member_id.strip() != member_id:
            raise InvalidSubmission("Session does not belong to this member.")
        if not basket.lines:
            raise InvalidSubmission("Your basket is empty.")

        for i, line in enumerate(basket.lines):
            if not (line.symbol or "").strip():
                raise InvalidSubmission(f"Basket line {i + 1} has no symbol.")
            shares = _to_decimal(line.shares, D("-1"))
            price = _to_decimal(line.price, D("-1"))
            if not shares.is_finite() or shares < 0:
                raise InvalidSubmission(f"Basket line {line.symbol} has invalid shares.")
            if not price.is_finite() or price < 0:
                raise InvalidSubmission(f"Basket line {line.symbol} has invalid price.")
        return member_id

    async def _place_lines(
        self,
        basket: Basket,
        allocation: Allocation,
        *,
        member_id: str,
        merchant_id: Optional[str],
        basket_id: str,
        broker: str,
        status: OrderStatus,
        sweep_day: Optional[str],
    ) -> List[PlacedOrder]:
        placed: List[PlacedOrder] = []
        for i, item in enumerate(basket.lines):
            line = OrderLine(
                member_id=member_id,
                merchant_id=merchant_id,
                basket_id=basket_id,
                symbol=item.symbol.strip().upper(),
                shares=_to_decimal(item.shares),
                points_allocated=allocation.points_per_line[i],
                cash_allocated=allocation.cash_per_line[i],
                broker=broker,
                status=status,
                sweep_day=sweep_day,
            )
            try:
                placed.append(await self.orders.place_order_line(line))
            except OrderPlacementFailed as e:
                # Earlier lines stay in the order store (no compensation).
                log.error(
                    f"[orders] placement failed basket={basket_id} symbol={e.symbol} "
                    f"after {len(placed)} line(s): {e.reason}"
                )
                raise OrderPlacementFailed(
                    e.symbol,
                    e.reason,
                    basket_id=basket_id,
                    placed_order_ids=[p.order_id for p in placed],
                )
        return placed

    async def _current_balances(self, member_id: str, session: MemberSession, result: OrderConfirmation) -> Optional[WalletBalances]:
        try:
            balances = await self.wallet.fetch_balances(member_id)
            session.cached_balances = balances
            return balances
        except WalletUnavailable as e:
            log.warning(f"[orders] wallet read failed member={member_id}: {e.message}; using cached balances")
            result.warnings.append(f"wallet_read_failed: {e.message}")
            return session.cached_balances

    async def _update_wallet(self, result: OrderConfirmation, basket: Basket, session: MemberSession) -> None:
        current = await self._current_balances(result.member_id, session, result)
        if current is None:
            result.warnings.append("wallet_update_skipped: no balances available")
            log.warning(f"[orders] wallet update skipped member={result.member_id} basket={result.basket_id}")
            return

        target = compute_post_order_balances(current, basket.points_used, basket.total_amount)
        result.balances_before = current
        result.balances_after = target
        try:
            written = await self.wallet.apply_delta(
                result.member_id,
                target.points,
                target.cash_balance,
                target.portfolio_value,
            )
        except WalletWriteFailed as e:
            log.warning(f"[orders] wallet write failed member={result.member_id} basket={result.basket_id}: {e.message}")
            result.warnings.append(f"wallet_write_failed: {e.message}")
            return

        session.cached_balances = written
        result.wallet_updated = True

    async def _append_ledger(
        self,
        result: OrderConfirmation,
        basket: Basket,
        session: MemberSession,
        *,
        broker: str,
        created_at: str,
    ) -> None:
        entry = build_entry(
            member_id=result.member_id,
            merchant_id=result.merchant_id,
            broker=broker,
            basket_id=result.basket_id,
            points=basket.points_used,
            line_count=len(basket.lines),
            member_timezone=(session.member_timezone or "").strip() or self.default_member_timezone,
            created_at=created_at,
        )
        result.client_tx_id = entry.client_tx_id
        try:
            await self.ledger.append_entry(entry)
        except LedgerWriteFailed as e:
            log.warning(
                f"[orders] ledger append failed client_tx_id={entry.client_tx_id} basket={result.basket_id}: {e.message}"
            )
            result.warnings.append(f"ledger_write_failed: {e.message}")
            return
        result.ledger_success = True

    async def _notify_merchant(self, result: OrderConfirmation, basket: Basket, *, created_at: str) -> None:
        if not result.merchant_id:
            result.warnings.append("merchant_notification_skipped: no merchant_id")
            return
        event = MerchantEvent(
            member_id=result.member_id,
            merchant_id=result.merchant_id,
            points_redeemed=basket.points_used,
            cash_value=_to_decimal(basket.total_amount),
            basket_id=result.basket_id,
            timestamp=created_at,
        )
        result.merchant_notified = await self.notifier.notify_merchant(event)
        if not result.merchant_notified:
            result.warnings.append("merchant_notification_failed")

    def _dispatch_broker_stages(
        self,
        result: OrderConfirmation,
        basket: Basket,
        placed: List[PlacedOrder],
        *,
        broker: str,
        created_at: str,
    ) -> None:
        event = BrokerEvent(
            member_id=result.member_id,
            merchant_id=result.merchant_id,
            broker=broker,
            basket_id=result.basket_id,
            amount=_to_decimal(basket.total_amount),
            points_used=basket.points_used,
            orders=[
                {
                    "order_id": p.order_id or None,
                    "symbol": p.line.symbol,
                    "shares": float(p.line.shares),
                    "amount": float(p.line.cash_allocated),
                    "points_used": p.line.points_allocated
                    if isinstance(p.line.points_allocated, int)
                    else float(p.line.points_allocated),
                }
                for p in placed
            ],
            timestamp=created_at,
        )
        try:
            dispatch = self.stages.dispatch(event)
        except Exception as e:
            log.warning(f"[orders] broker stage dispatch failed basket={result.basket_id}: {e}")
            result.warnings.append(f"broker_stage_dispatch_failed: {e}")
            return

        result.broker_acknowledge_dispatched = dispatch.acknowledge_dispatched
        result.broker_confirm_scheduled = dispatch.confirm_scheduled
        if not dispatch.acknowledge_dispatched:
            result.warnings.append("broker_acknowledge_not_dispatched")
        if not dispatch.confirm_scheduled:
            result.warnings.append("broker_confirm_not_scheduled")

"""
Wallet Ledger Client
====================

Reads a member's balances from the wallet store, computes post-order balances
and requests the write. The wallet store owns concurrent-write correctness;
this client only clamps so points and cash never go below zero.
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from .errors import StoreRequestError, WalletUnavailable, WalletWriteFailed
from .models import D, WalletBalances, _q2, _to_decimal
from .schemas import (
    GetWalletRequest,
    GetWalletResponse,
    UpdateBalancesRequest,
    UpdateBalancesResponse,
    as_number,
)
from .store_api import StoreApiClient

log = logging.getLogger("pointvest.wallet")


def compute_post_order_balances(current: WalletBalances, points_used: Any, total_amount: Any) -> WalletBalances:
    """
    new_points    = max(0, round(points - points_used))
    new_cash      = max(0, round2(cash - total_amount))
    new_portfolio = round2(portfolio + total_amount)
    """
    used = _to_decimal(points_used)
    amount = _to_decimal(total_amount)

    new_points = (current.points - used).to_integral_value(rounding=ROUND_HALF_UP)
    new_cash = _q2(current.cash_balance - amount)
    new_portfolio = _q2(current.portfolio_value + amount)

    return WalletBalances(
        points=max(D("0"), new_points),
        cash_balance=max(D("0.00"), new_cash),
        portfolio_value=new_portfolio,
    )


class WalletLedgerClient:
    def __init__(self, api: StoreApiClient) -> None:
        self.api = api

    async def fetch_balances(self, member_id: str) -> WalletBalances:
        try:
            res = await self.api.call(
                "get-wallet.php",
                GetWalletRequest(member_id=member_id),
                GetWalletResponse,
            )
        except StoreRequestError as e:
            raise WalletUnavailable(f"wallet read failed: {e.reason}", status_code=503)

        if not res.success or res.wallet is None:
            raise WalletUnavailable(res.error or "wallet not returned", status_code=503)

        return WalletBalances(
            points=res.wallet.points,
            cash_balance=res.wallet.cash_balance,
            portfolio_value=res.wallet.portfolio_value,
        )

    async def apply_delta(
        self,
        member_id: str,
        new_points: Decimal,
        new_cash_balance: Decimal,
        new_portfolio_value: Decimal,
    ) -> WalletBalances:
        """Write absolute post-order balances. Returns what was written."""
        request = UpdateBalancesRequest(
            member_id=member_id,
            points=int(new_points),
            cash_balance=as_number(new_cash_balance),
            portfolio_value=as_number(new_portfolio_value),
        )
        try:
            res = await self.api.call("update_balances.php", request, UpdateBalancesResponse)
        except StoreRequestError as e:
            raise WalletWriteFailed(f"wallet write failed: {e.reason}", status_code=502)

        if not res.success:
            raise WalletWriteFailed(res.error or "wallet store rejected update", status_code=502)

        log.info(f"[wallet] balances updated member={member_id} points={int(new_points)} cash={new_cash_balance}")
        return WalletBalances(
            points=D(int(new_points)),
            cash_balance=new_cash_balance,
            portfolio_value=new_portfolio_value,
        )

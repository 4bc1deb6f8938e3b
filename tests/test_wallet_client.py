from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
import respx

from apps.backend.services.orders.errors import WalletUnavailable, WalletWriteFailed
from apps.backend.services.orders.models import WalletBalances
from apps.backend.services.orders.store_api import StoreApiClient
from apps.backend.services.orders.wallet_client import WalletLedgerClient, compute_post_order_balances

BASE = "http://store.test/api"


@pytest_asyncio.fixture()
async def api():
    client = StoreApiClient(BASE, max_retries=1, retry_backoff_seconds=0)
    yield client
    await client.aclose()


# ============================================================================
# Balance arithmetic
# ============================================================================


def test_post_order_balances_debit_points_and_cash_credit_portfolio():
    current = WalletBalances(points=Decimal("1000"), cash_balance=Decimal("250.00"), portfolio_value=Decimal("40.00"))

    after = compute_post_order_balances(current, 333, Decimal("100.00"))

    assert after.points == Decimal("667")
    assert after.cash_balance == Decimal("150.00")
    assert after.portfolio_value == Decimal("140.00")


@pytest.mark.parametrize("current_points,used", [(0, 1), (10, 11), (99, 1000), (5, Decimal("5.6"))])
def test_points_clamp_at_zero(current_points, used):
    current = WalletBalances(points=Decimal(current_points), cash_balance=Decimal("0"), portfolio_value=Decimal("0"))

    after = compute_post_order_balances(current, used, Decimal("0"))

    assert after.points == 0
    assert after.points >= 0


def test_cash_clamps_at_zero_but_portfolio_still_grows():
    current = WalletBalances(points=Decimal("50"), cash_balance=Decimal("20.00"), portfolio_value=Decimal("0"))

    after = compute_post_order_balances(current, 10, Decimal("75.50"))

    assert after.cash_balance == Decimal("0.00")
    assert after.portfolio_value == Decimal("75.50")


def test_fractional_points_round_half_up():
    current = WalletBalances(points=Decimal("100.00"), cash_balance=Decimal("0"), portfolio_value=Decimal("0"))

    assert compute_post_order_balances(current, Decimal("10.5"), 0).points == Decimal("90")
    assert compute_post_order_balances(current, Decimal("10.6"), 0).points == Decimal("89")


def test_cash_rounds_to_cents():
    current = WalletBalances(points=Decimal("0"), cash_balance=Decimal("10.00"), portfolio_value=Decimal("1.005"))

    after = compute_post_order_balances(current, 0, Decimal("3.333"))

    assert after.cash_balance == Decimal("6.67")
    assert after.portfolio_value == Decimal("4.34")


# ============================================================================
# Store round trips
# ============================================================================


@pytest.mark.asyncio()
async def test_fetch_balances_parses_wallet(api):
    with respx.mock(assert_all_called=True) as mock:
        route = mock.post(f"{BASE}/get-wallet.php").mock(
            return_value=httpx.Response(
                200,
                json={"success": True, "wallet": {"points": "1200", "cash_balance": 12.5, "portfolio_value": None}},
            )
        )
        balances = await WalletLedgerClient(api).fetch_balances("m-1")

    assert json.loads(route.calls.last.request.content) == {"member_id": "m-1"}
    assert balances == WalletBalances(points=Decimal("1200"), cash_balance=Decimal("12.5"), portfolio_value=Decimal("0"))


@pytest.mark.asyncio()
async def test_fetch_balances_unsuccessful_response_raises(api):
    with respx.mock() as mock:
        mock.post(f"{BASE}/get-wallet.php").mock(
            return_value=httpx.Response(404, json={"success": False, "error": "Member not found"})
        )
        with pytest.raises(WalletUnavailable, match="Member not found"):
            await WalletLedgerClient(api).fetch_balances("ghost")


@pytest.mark.asyncio()
async def test_fetch_balances_transport_failure_raises(api):
    with respx.mock() as mock:
        mock.post(f"{BASE}/get-wallet.php").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(WalletUnavailable):
            await WalletLedgerClient(api).fetch_balances("m-1")


@pytest.mark.asyncio()
async def test_apply_delta_sends_absolute_balances(api):
    with respx.mock() as mock:
        route = mock.post(f"{BASE}/update_balances.php").mock(return_value=httpx.Response(200, json={"success": True}))
        written = await WalletLedgerClient(api).apply_delta("m-1", Decimal("667"), Decimal("150.00"), Decimal("140.00"))

    assert json.loads(route.calls.last.request.content) == {
        "member_id": "m-1",
        "points": 667,
        "cash_balance": 150.0,
        "portfolio_value": 140.0,
    }
    assert written.points == Decimal("667")


@pytest.mark.asyncio()
async def test_apply_delta_rejection_raises(api):
    with respx.mock() as mock:
        mock.post(f"{BASE}/update_balances.php").mock(return_value=httpx.Response(500, text="boom"))
        with pytest.raises(WalletWriteFailed):
            await WalletLedgerClient(api).apply_delta("m-1", Decimal("1"), Decimal("1"), Decimal("1"))

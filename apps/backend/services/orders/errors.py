"""
Order flow error taxonomy.

Fatal (abort the submission, surfaced to the caller):
- InvalidSubmission
- InvalidAllocationInput
- OrderPlacementFailed
- SubmissionInProgress

Non-fatal (caught by the orchestrator, logged, flagged in the result):
- WalletUnavailable
- WalletWriteFailed
- LedgerWriteFailed
- NotificationFailed
- MerchantLookupFailed
"""

from __future__ import annotations

from typing import List, Optional


class OrderFlowError(Exception):
    code = "order_flow_error"

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class InvalidSubmission(OrderFlowError):
    code = "invalid_submission"


class InvalidAllocationInput(OrderFlowError):
    code = "invalid_allocation_input"


class SubmissionInProgress(OrderFlowError):
    code = "submission_in_progress"

    def __init__(self, basket_id: str):
        self.basket_id = basket_id
        super().__init__(f"Basket {basket_id} is already being submitted.", status_code=409)


class OrderPlacementFailed(OrderFlowError):
    code = "order_placement_failed"

    def __init__(
        self,
        symbol: str,
        reason: str,
        *,
        basket_id: Optional[str] = None,
        placed_order_ids: Optional[List[str]] = None,
    ):
        self.symbol = symbol
        self.reason = reason
        self.basket_id = basket_id
        # Lines written before the failure stay in the order store.
        self.placed_order_ids = list(placed_order_ids or [])
        super().__init__(f"Failed to place order for {symbol}: {reason}", status_code=502)


class WalletUnavailable(OrderFlowError):
    code = "wallet_unavailable"


class WalletWriteFailed(OrderFlowError):
    code = "wallet_write_failed"


class LedgerWriteFailed(OrderFlowError):
    code = "ledger_write_failed"


class NotificationFailed(OrderFlowError):
    code = "notification_failed"


class MerchantLookupFailed(OrderFlowError):
    code = "merchant_lookup_failed"


class StoreRequestError(Exception):
    """Transport or protocol failure talking to a store endpoint."""

    def __init__(self, endpoint: str, reason: str, status_code: Optional[int] = None):
        self.endpoint = endpoint
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{endpoint}: {reason}")

"""
Transaction Ledger Client
=========================

Appends one redemption entry per basket submission.

Idempotency:
- client_tx_id is a digest of (member_id, basket_id, created-at timestamp),
  so re-sending the same entry can never produce a second ledger row.
- The ledger store enforces uniqueness; a "duplicate" answer counts as logged.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import LedgerWriteFailed, StoreRequestError
from .models import LedgerEntry, Points
from .schemas import LogLedgerRequest, LogLedgerResponse, as_number
from .store_api import StoreApiClient

log = logging.getLogger("pointvest.ledger")


def make_client_tx_id(member_id: str, basket_id: str, created_at: str) -> str:
    digest = hashlib.sha256(f"{member_id}|{basket_id}|{created_at}".encode("utf-8")).hexdigest()
    return f"redeem-{digest[:32]}"


def build_entry(
    *,
    member_id: str,
    merchant_id: Optional[str],
    broker: str,
    basket_id: str,
    points: Points,
    line_count: int,
    member_timezone: str,
    created_at: str,
) -> LedgerEntry:
    return LedgerEntry(
        client_tx_id=make_client_tx_id(member_id, basket_id, created_at),
        member_id=member_id,
        merchant_id=merchant_id,
        broker=broker,
        points=points,
        note=f"Redeemed {points} points for {line_count} order(s) in {basket_id}",
        member_timezone=member_timezone,
        timestamp=created_at,
    )


@dataclass(frozen=True)
class LedgerAck:
    logged: bool
    duplicate: bool = False
    tx_id: Optional[str] = None


class TransactionLedgerClient:
    def __init__(self, api: StoreApiClient) -> None:
        self.api = api

    async def append_entry(self, entry: LedgerEntry) -> LedgerAck:
        request = LogLedgerRequest(
            member_id=entry.member_id,
            merchant_id=entry.merchant_id,
            broker=entry.broker,
            client_tx_id=entry.client_tx_id,
            tx_type=entry.tx_type,
            points=as_number(entry.points),
            note=entry.note,
            member_timezone=entry.member_timezone,
        )
        try:
            res = await self.api.call("log-ledger.php", request, LogLedgerResponse)
        except StoreRequestError as e:
            raise LedgerWriteFailed(f"ledger append failed: {e.reason}", status_code=502)

        if not res.success:
            raise LedgerWriteFailed(res.error or "ledger store rejected entry", status_code=502)

        if res.duplicate:
            log.info(f"[ledger] duplicate client_tx_id={entry.client_tx_id}; already logged")

        return LedgerAck(
            logged=True,
            duplicate=res.duplicate,
            tx_id=None if res.tx_id is None else str(res.tx_id),
        )

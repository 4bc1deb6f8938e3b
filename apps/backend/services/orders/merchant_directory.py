"""
Merchant Directory (Supabase Adapter)
=====================================

Resolves a merchant's sweep configuration.

Expected table (name configurable, default public.merchant):
   - merchant_id text primary key
   - sweep_day text null    -- day-of-month ("1".."31"), "T+1", or null

sweep_day null/absent or "T+1" means orders are processed immediately;
any other value means they wait for the monthly batch sweep.
"""

from __future__ import annotations

from typing import Any, Optional

from .errors import MerchantLookupFailed
from .models import IMMEDIATE_SWEEP_DAY


def normalize_sweep_day(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def is_immediate(sweep_day: Optional[str]) -> bool:
    sweep_day = normalize_sweep_day(sweep_day)
    return sweep_day is None or sweep_day.upper() == IMMEDIATE_SWEEP_DAY


class MerchantDirectory:
    def __init__(self, supabase_client: Any, *, table: str = "merchant") -> None:
        self.sb = supabase_client
        self.table = table

    async def get_sweep_day(self, merchant_id: str) -> Optional[str]:
        """
        Returns the merchant's sweep_day (None when unset).
        Raises MerchantLookupFailed when the merchant cannot be read.
        """
        if self.sb is None:
            raise MerchantLookupFailed("Supabase not configured", status_code=503)

        try:
            r = (
                self.sb.table(self.table)
                .select("sweep_day")
                .eq("merchant_id", merchant_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise MerchantLookupFailed(f"merchant lookup failed: {e}", status_code=503)

        rows = getattr(r, "data", None) or []
        if not rows or not isinstance(rows[0], dict):
            raise MerchantLookupFailed(f"merchant not found: {merchant_id}", status_code=404)

        return normalize_sweep_day(rows[0].get("sweep_day"))

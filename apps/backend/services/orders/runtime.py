from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from apps.backend.db import get_supabase
from apps.backend.services.settings import Settings

from .broker_stages import BrokerStageScheduler
from .merchant_directory import MerchantDirectory
from .notifications import NotificationDispatcher
from .orchestrator import OrderOrchestrator
from .order_store import OrderStoreClient
from .store_api import StoreApiClient
from .transaction_ledger import TransactionLedgerClient
from .wallet_client import WalletLedgerClient

log = logging.getLogger("pointvest.runtime")


@dataclass
class OrderRuntime:
    """Process-wide wiring: one store client, one scheduler, one orchestrator."""
    api: StoreApiClient
    stages: BrokerStageScheduler
    orchestrator: OrderOrchestrator
    merchants: Optional[MerchantDirectory] = None

    async def start(self) -> None:
        self.stages.start()

    async def stop(self) -> None:
        self.stages.shutdown()
        await self.api.aclose()


def build_runtime(cfg: Settings) -> OrderRuntime:
    api = StoreApiClient.from_settings(cfg)
    notifier = NotificationDispatcher(api, timeout_seconds=cfg.notify_timeout_seconds)
    order_store = OrderStoreClient(api)

    stages = BrokerStageScheduler(
        notifier,
        order_store=order_store,
        confirm_delay_seconds=cfg.broker_confirm_delay_seconds,
        max_attempts=cfg.broker_stage_max_attempts,
        backoff_seconds=cfg.broker_stage_backoff_seconds,
        confirm_fallback=cfg.broker_confirm_fallback,
        max_tracked_baskets=cfg.broker_stage_tracked_baskets,
    )

    sb = get_supabase(cfg)
    merchants = MerchantDirectory(sb, table=cfg.merchant_table) if sb is not None else None
    if merchants is None:
        log.warning("[runtime] Supabase not configured; sweep_day comes from the member session only")

    orchestrator = OrderOrchestrator(
        wallet=WalletLedgerClient(api),
        orders=order_store,
        ledger=TransactionLedgerClient(api),
        notifier=notifier,
        stages=stages,
        merchants=merchants,
        default_broker=cfg.default_broker,
        default_member_timezone=cfg.default_member_timezone,
        remember_baskets=cfg.order_dedup_baskets,
    )
    return OrderRuntime(api=api, stages=stages, orchestrator=orchestrator, merchants=merchants)

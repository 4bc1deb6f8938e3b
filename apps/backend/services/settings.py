from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def enabled(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").lower() == "true"


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration for the order placement service.

    Everything is environment driven; a local .env file is honoured for dev.
    """
    app_version: str = "0.1.0"

    # Store API (wallet / orders / ledger / notification endpoints)
    store_api_base_url: str = "http://localhost:8080/api"
    store_api_timeout_seconds: float = 10.0
    store_api_max_retries: int = 2
    store_api_retry_backoff_seconds: float = 0.5

    # Notifications
    notify_timeout_seconds: float = 8.0

    # Broker stages (acknowledge -> confirm)
    broker_confirm_delay_seconds: float = 20.0
    broker_stage_max_attempts: int = 3
    broker_stage_backoff_seconds: float = 5.0
    broker_confirm_fallback: bool = False
    broker_stage_tracked_baskets: int = 1000

    # Baskets remembered per process so a re-sent submission is answered, not replayed
    order_dedup_baskets: int = 1024

    # Supabase (merchant sweep configuration)
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    merchant_table: str = "merchant"

    # Defaults applied to a member session when the caller omits them
    default_broker: str = "Not linked"
    default_member_timezone: str = "UTC"


def load_settings() -> Settings:
    return Settings(
        app_version=os.getenv("APP_VERSION", "0.1.0"),
        store_api_base_url=os.getenv("STORE_API_BASE_URL", "http://localhost:8080/api").rstrip("/"),
        store_api_timeout_seconds=_float_env("STORE_API_TIMEOUT_SECONDS", 10.0),
        store_api_max_retries=_int_env("STORE_API_MAX_RETRIES", 2),
        store_api_retry_backoff_seconds=_float_env("STORE_API_RETRY_BACKOFF_SECONDS", 0.5),
        notify_timeout_seconds=_float_env("NOTIFY_TIMEOUT_SECONDS", 8.0),
        broker_confirm_delay_seconds=_float_env("BROKER_CONFIRM_DELAY_SECONDS", 20.0),
        broker_stage_max_attempts=_int_env("BROKER_STAGE_MAX_ATTEMPTS", 3),
        broker_stage_backoff_seconds=_float_env("BROKER_STAGE_BACKOFF_SECONDS", 5.0),
        broker_confirm_fallback=enabled("BROKER_CONFIRM_FALLBACK"),
        broker_stage_tracked_baskets=_int_env("BROKER_STAGE_TRACKED_BASKETS", 1000),
        order_dedup_baskets=_int_env("ORDER_DEDUP_BASKETS", 1024),
        supabase_url=os.getenv("SUPABASE_URL", ""),
        supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
        merchant_table=os.getenv("MERCHANT_TABLE", "merchant"),
        default_broker=os.getenv("DEFAULT_BROKER", "Not linked"),
        default_member_timezone=os.getenv("DEFAULT_MEMBER_TIMEZONE", "UTC"),
    )


settings = load_settings()

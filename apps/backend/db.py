import logging
from typing import Optional

from supabase import Client, create_client

from apps.backend.services.settings import Settings, settings as default_settings

log = logging.getLogger("pointvest.db")


def get_supabase(cfg: Optional[Settings] = None) -> Optional[Client]:
    """
    Supabase client for merchant configuration reads.
    Returns None when the service is not configured for Supabase.
    """
    cfg = cfg or default_settings
    if not (cfg.supabase_url and cfg.supabase_service_role_key):
        return None
    try:
        return create_client(cfg.supabase_url, cfg.supabase_service_role_key)
    except Exception as e:
        log.warning(f"[db] Supabase client creation failed: {e}")
        return None

from __future__ import annotations

import logging
from typing import Optional

from supabase import Client, create_client

from .errors import ConfigurationError
from .settings import S

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def supabase_client() -> Client:
    """Service-role supabase client, created on first use."""
    global _client
    if _client is None:
        if not S.supabase_url or not S.supabase_service_role_key:
            raise ConfigurationError("Supabase not configured (set SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY)")
        _client = create_client(S.supabase_url, S.supabase_service_role_key)
        logger.info("Supabase client initialized for %s", S.supabase_url)
    return _client

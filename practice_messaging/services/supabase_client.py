"""
Supabase Client
Single shared client for the hosted Postgres store
"""
import logging
from typing import Optional
from supabase import create_client, Client

from practice_messaging.config import settings

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase_client() -> Optional[Client]:
    """
    Get or create the Supabase client.

    Uses the service role key for backend operations (bypasses RLS) and
    falls back to the anon key. Returns None when Supabase is not configured
    so callers can decide how to degrade.
    """
    global _client
    if _client is not None:
        return _client

    if not settings.is_supabase_configured:
        logger.warning("Supabase not configured. Messaging features will not work.")
        return None

    if settings.SUPABASE_SERVICE_KEY:
        logger.info("Using Supabase service role key (RLS bypassed)")
    else:
        logger.warning("Using Supabase anon key - RLS must be disabled or properly configured")

    _client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_KEY)
    return _client

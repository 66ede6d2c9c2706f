"""Supabase client for the courier backend."""

import logging
from functools import lru_cache
from supabase import create_client, Client
from ..config import settings


@lru_cache()
def get_supabase_client() -> Client | None:
    """Get cached Supabase client instance.

    Returns:
        Supabase Client instance if configured, None otherwise.
        Creating the client does not test the connection; queries may still fail.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logging.info("Supabase credentials not configured; using in-memory repositories")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logging.error(f"Failed to create Supabase client: {e}")
        return None

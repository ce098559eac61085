# =============================================================================
# site_core/data/supabase_client.py
# Supabase Client Configuration for SiteCore
# =============================================================================

from __future__ import annotations
from typing import Optional

import streamlit as st

from site_core.errors import ConfigurationError
from site_core.logging import get_logger

logger = get_logger(__name__)


def get_supabase_client(url: Optional[str], key: Optional[str], timeout: float = 10.0):
    """
    Create a Supabase client whose PostgREST calls are bounded by `timeout`.

    Every remote apply made by the sync engine goes through this client, so
    the timeout is what guarantees a hung request cannot stall a sync pass.

    Raises:
        ConfigurationError: url or key missing
    """
    if not url or not key:
        raise ConfigurationError(
            "Supabase credentials not configured. Set [supabase] url/key in "
            ".streamlit/secrets.toml or SUPABASE_URL / SUPABASE_KEY.",
            config_key="supabase",
        )

    from supabase import ClientOptions, create_client

    options = ClientOptions(postgrest_client_timeout=timeout)
    client = create_client(url, key, options=options)
    logger.info("Supabase client created")
    return client


@st.cache_resource(ttl=3600)  # Cache for 1 hour, then refresh
def get_cached_supabase_client(url: str, key: str, timeout: float = 10.0):
    """Supabase client shared across Streamlit sessions."""
    return get_supabase_client(url, key, timeout)

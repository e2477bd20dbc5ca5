"""
Store configuration for the Shift OEE Tracker
=============================================
Picks the persistence backend for the CLI and dashboard.

Connection: set SUPABASE_URL and SUPABASE_KEY as environment variables
or in Streamlit secrets (.streamlit/secrets.toml or Cloud dashboard).
Without them the tracker runs on an in-memory store, which is fine for
demos and tests but forgets everything on exit.

OEE_STORE=memory|supabase forces a backend.
"""

import logging
import os

from errors import StoreError
from store import MemoryStore, SupabaseStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------
_client = None
_store = None


def _secret(name):
    value = os.environ.get(name, "")
    if value:
        return value
    try:
        import streamlit as st
        return st.secrets.get(name, "")
    except Exception:
        # No streamlit runtime or no secrets file.
        return ""


def get_client():
    """Get Supabase client. Returns None if not configured."""
    global _client
    if _client is not None:
        return _client

    url = _secret("SUPABASE_URL")
    key = _secret("SUPABASE_KEY")
    if not url or not key:
        return None

    from supabase import create_client
    _client = create_client(url, key)
    return _client


def is_connected():
    """Check if a Supabase database is configured."""
    return get_client() is not None


def get_store():
    """Return the process-wide store, creating it on first use."""
    global _store
    if _store is not None:
        return _store

    backend = os.environ.get("OEE_STORE", "").strip().lower()
    if backend not in ("", "memory", "supabase"):
        raise StoreError(f"Unknown OEE_STORE backend: {backend!r}")

    if backend == "memory":
        _store = MemoryStore()
    elif backend == "supabase":
        client = get_client()
        if client is None:
            raise StoreError("OEE_STORE=supabase but SUPABASE_URL / SUPABASE_KEY are not set")
        _store = SupabaseStore(client)
    else:
        client = get_client()
        _store = SupabaseStore(client) if client is not None else MemoryStore()

    logger.info("Using %s", type(_store).__name__)
    return _store


def reset():
    """Forget the cached client and store."""
    global _client, _store
    _client = None
    _store = None

"""Supabase connection and query helpers for the drip_* tables."""

import threading

from supabase import Client, create_client

from drip_engine.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

_client: Client | None = None
_client_lock = threading.Lock()


def get_client() -> Client:
    """Return the Supabase client singleton (thread-safe)."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
                    raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
                _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return _client


def _table(name: str):
    """Return a table query builder."""
    return get_client().table(name)


def insert(table: str, data: dict) -> dict:
    """Insert a row and return it."""
    result = _table(table).insert(data).execute()
    return result.data[0] if result.data else {}


def update(table: str, data: dict, match: dict) -> list[dict]:
    """Update rows matching conditions. Returns the updated rows.

    A None value in `match` filters on IS NULL.
    """
    q = _table(table).update(data)
    for k, v in match.items():
        q = q.is_(k, "null") if v is None else q.eq(k, v)
    result = q.execute()
    return result.data or []


def select(table: str, columns: str = "*", match: dict | None = None,
           order: str | None = None, order_desc: bool = False,
           limit: int | None = None) -> list[dict]:
    """Select rows with optional filtering, ordering and limit."""
    q = _table(table).select(columns)
    if match:
        for k, v in match.items():
            q = q.eq(k, v)
    if order:
        q = q.order(order, desc=order_desc)
    if limit:
        q = q.limit(limit)
    result = q.execute()
    return result.data or []


def select_one(table: str, columns: str = "*", match: dict | None = None) -> dict | None:
    """Select a single row."""
    rows = select(table, columns, match, limit=1)
    return rows[0] if rows else None


def log_action(action: str, entity_type: str = "", entity_id: str = "", details: str = "") -> dict:
    """Append an entry to the audit log."""
    return insert("drip_audit_log", {
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details,
    })

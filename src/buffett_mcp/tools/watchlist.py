"""Watchlist tools."""

from time import perf_counter
from typing import Any

from buffett_mcp.data.store import ResearchStore
from buffett_mcp.killchain.errors import StorageUnavailable, WatchlistConflictError
from buffett_mcp.utils.provenance import build_meta, error_response_for


async def list_watchlist(*, store: ResearchStore) -> dict[str, Any]:
    """Watchlist entries, most recently added first."""
    start_time = perf_counter()

    try:
        entries = store.list_watchlist()
    except StorageUnavailable as e:
        return error_response_for(e)

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "meta": build_meta("list_watchlist", duration_ms),
        "count": len(entries),
        "entries": entries,
    }


async def add_to_watchlist(
    ticker: str,
    company_name: str,
    *,
    store: ResearchStore,
) -> dict[str, Any]:
    """Add a ticker. Adding a ticker twice is a conflict, not an update."""
    start_time = perf_counter()

    try:
        entry = store.add_to_watchlist(ticker, company_name)
    except (ValueError, WatchlistConflictError, StorageUnavailable) as e:
        return error_response_for(e)

    duration_ms = (perf_counter() - start_time) * 1000
    return {"meta": build_meta("add_to_watchlist", duration_ms), "entry": entry}


async def remove_from_watchlist(entry_id: str, *, store: ResearchStore) -> dict[str, Any]:
    start_time = perf_counter()

    try:
        removed = store.remove_from_watchlist(entry_id)
    except StorageUnavailable as e:
        return error_response_for(e)

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "meta": build_meta("remove_from_watchlist", duration_ms),
        "id": entry_id,
        "removed": removed,
    }

"""Saved memo listing."""

from time import perf_counter
from typing import Any

from buffett_mcp.data.store import ResearchStore
from buffett_mcp.killchain.errors import StorageUnavailable
from buffett_mcp.utils.provenance import build_error_response, build_meta, error_response_for


async def list_memos(*, store: ResearchStore, limit: int = 50) -> dict[str, Any]:
    """
    Saved memos, most recent first.

    Args:
        store: Memo storage
        limit: Maximum number of memos to return (default: 50)
    """
    start_time = perf_counter()

    try:
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        memos = store.list_memos()
    except (StorageUnavailable, ValueError) as e:
        return error_response_for(e)

    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("list_memos", duration_ms),
        "count": len(memos),
        "memos": [memo.to_record() for memo in memos[:limit]],
    }


async def get_memo(memo_id: str, *, store: ResearchStore) -> dict[str, Any]:
    start_time = perf_counter()

    try:
        memo = store.get_memo(memo_id)
    except StorageUnavailable as e:
        return error_response_for(e)

    if memo is None:
        return build_error_response(
            error_type="memo_not_found",
            message=f"No memo with id '{memo_id}'",
            memo_id=memo_id,
        )

    duration_ms = (perf_counter() - start_time) * 1000
    return {"meta": build_meta("get_memo", duration_ms), "memo": memo.to_record()}

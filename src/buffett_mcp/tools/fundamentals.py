"""Fundamentals snapshot tool."""

from time import perf_counter
from typing import Any

from buffett_mcp.data.fundamentals import fetch_fundamentals_with_provenance
from buffett_mcp.utils.provenance import build_meta, build_provenance, error_response_for, utc_timestamp


async def fundamentals_snapshot(symbol: str) -> dict[str, Any]:
    """
    Get the fundamentals record a kill-chain run would use.

    Args:
        symbol: Stock ticker symbol

    Returns:
        Dict with price, valuation, profitability and business description
    """
    start_time = perf_counter()

    try:
        record, provenance = await fetch_fundamentals_with_provenance(symbol)
    except Exception as e:
        return error_response_for(e, symbol=symbol)

    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("fundamentals_snapshot", duration_ms),
        "data_provenance": {
            "fundamentals": build_provenance(as_of=utc_timestamp(), **{"source": "yfinance", **provenance}),
        },
        "symbol": record.ticker,
        "fundamentals": record.to_dict(),
    }

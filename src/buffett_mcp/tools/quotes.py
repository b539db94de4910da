"""Batch quotes and the market ticker tape."""

import asyncio
import logging
from time import perf_counter
from typing import Any

from buffett_mcp.data.yfinance_client import Quote, fetch_quote
from buffett_mcp.utils.provenance import build_error_response, build_meta, build_provenance, utc_timestamp
from buffett_mcp.utils.validators import MAX_QUOTE_SYMBOLS, normalize_symbols

logger = logging.getLogger(__name__)

UNAVAILABLE = "—"

# (label, symbol); ^TNX quotes the 10-year yield in percent
TAPE_SYMBOLS: tuple[tuple[str, str], ...] = (
    ("S&P 500", "^GSPC"),
    ("NASDAQ", "^IXIC"),
    ("DOW", "^DJI"),
    ("10Y UST", "^TNX"),
)
PERCENT_SYMBOLS = frozenset({"^TNX"})


def _round(value: float | None, digits: int = 2) -> float | None:
    return round(value, digits) if value is not None else None


async def _fetch_quotes(symbols: list[str]) -> dict[str, Quote | None]:
    results = await asyncio.gather(*(fetch_quote(s) for s in symbols), return_exceptions=True)
    quotes: dict[str, Quote | None] = {}
    for symbol, result in zip(symbols, results):
        if isinstance(result, Exception):
            logger.warning(f"quotes: {symbol} unavailable ({result})")
            quotes[symbol] = None
        else:
            quotes[symbol] = result
    return quotes


def quote_entry(symbol: str, quote: Quote | None) -> dict[str, Any]:
    """Quote as a response entry; a failed lookup becomes nulls in USD."""
    if quote is None:
        return {
            "symbol": symbol,
            "price": None,
            "change": None,
            "changePercent": None,
            "currency": "USD",
        }
    return {
        "symbol": symbol,
        "price": _round(quote.price),
        "change": _round(quote.change),
        "changePercent": _round(quote.change_percent),
        "currency": quote.currency,
    }


async def quotes(symbols: str | list[str]) -> dict[str, Any]:
    """
    Last price and day change for up to 20 tickers.

    Args:
        symbols: Comma-separated string or list of tickers

    Returns:
        Dict with one entry per ticker, in request order
    """
    start_time = perf_counter()

    normalized = normalize_symbols(symbols, limit=MAX_QUOTE_SYMBOLS)
    if not normalized:
        return build_error_response(
            error_type="invalid_request",
            message="At least one ticker is required",
        )

    fetched = await _fetch_quotes(normalized)
    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("quotes", duration_ms),
        "data_provenance": {
            "quotes": build_provenance(
                source="yfinance",
                as_of=utc_timestamp(),
                unavailable=[s for s, q in fetched.items() if q is None],
            ),
        },
        "quotes": [quote_entry(symbol, fetched[symbol]) for symbol in normalized],
    }


def format_tape_item(label: str, symbol: str, quote: Quote | None) -> dict[str, Any]:
    """
    Display strings for one ticker tape item.

    ``up`` is True when the change is non-negative or unknown.
    """
    price = quote.price if quote is not None else None
    change_percent = quote.change_percent if quote is not None else None

    if price is None:
        value = UNAVAILABLE
    elif symbol in PERCENT_SYMBOLS:
        value = f"{price:,.2f}%"
    else:
        value = f"{price:,.2f}"

    change = UNAVAILABLE if change_percent is None else f"{change_percent:+.2f}%"

    return {
        "label": label,
        "symbol": symbol,
        "value": value,
        "change": change,
        "up": change_percent is None or change_percent >= 0,
    }


async def ticker_tape() -> dict[str, Any]:
    """Major US indices and the 10-year Treasury yield."""
    start_time = perf_counter()

    fetched = await _fetch_quotes([symbol for _, symbol in TAPE_SYMBOLS])
    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("ticker_tape", duration_ms),
        "data_provenance": {
            "quotes": build_provenance(
                source="yfinance",
                as_of=utc_timestamp(),
            ),
        },
        "items": [
            format_tape_item(label, symbol, fetched[symbol]) for label, symbol in TAPE_SYMBOLS
        ],
    }

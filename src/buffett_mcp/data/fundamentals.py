"""Fundamentals retrieval: yfinance info + annual statements -> FundamentalsRecord."""

import logging
from typing import Any

import pandas as pd

from buffett_mcp.data.yfinance_client import (
    Statements,
    YFinanceIncompleteInfoError,
    YFinanceRetryError,
    fetch_info_with_provenance,
    fetch_statements,
    has_value,
)
from buffett_mcp.killchain.errors import FundamentalsNotFoundError
from buffett_mcp.killchain.models import FundamentalsRecord
from buffett_mcp.utils.sanitize import sanitize_text

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = 0.21

ROIC_ESTIMATE_NOTE = (
    "ROIC estimated from operating margin x revenue over debt + book equity - cash "
    f"(annual statements unavailable, {DEFAULT_TAX_RATE:.0%} tax rate assumed)."
)


def _safe_float(value: Any) -> float | None:
    """Convert to float or return None (NaN counts as missing)."""
    if not has_value(value):
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def latest_value(df: pd.DataFrame | None, row: str) -> float | None:
    """Most recent non-null value of a statement line item."""
    if df is None or df.empty or row not in df.index:
        return None
    series = df.loc[row]
    if isinstance(series, pd.DataFrame):  # duplicated line item
        series = series.iloc[0]
    series = series.dropna()
    if series.empty:
        return None
    return _safe_float(series.sort_index(ascending=False).iloc[0])


def compute_roic(
    info: dict[str, Any],
    statements: Statements | None,
) -> tuple[float | None, str | None]:
    """
    Return on invested capital, with a caveat note when it is only an estimate.

    Primary: NOPAT / Invested Capital from the latest annual statements, where
    NOPAT = Operating Income x (1 - tax rate). Fallback: the same ratio built from
    ``info`` fields, flagged with ``ROIC_ESTIMATE_NOTE``.

    Returns:
        Tuple of (roic, note). Both None if ROIC cannot be computed.
    """
    if statements is not None:
        operating_income = latest_value(statements.income, "Operating Income")
        invested_capital = latest_value(statements.balance, "Invested Capital")
        tax_rate = latest_value(statements.income, "Tax Rate For Calcs")
        if operating_income and invested_capital and invested_capital > 0:
            rate = tax_rate if tax_rate is not None else DEFAULT_TAX_RATE
            return operating_income * (1 - rate) / invested_capital, None

    operating_margin = _safe_float(info.get("operatingMargins"))
    revenue = _safe_float(info.get("totalRevenue"))
    book_value = _safe_float(info.get("bookValue"))
    shares = _safe_float(info.get("sharesOutstanding"))
    total_debt = _safe_float(info.get("totalDebt")) or 0.0
    total_cash = _safe_float(info.get("totalCash")) or 0.0

    if operating_margin is None or revenue is None or book_value is None or shares is None:
        return None, None

    invested_capital = total_debt + book_value * shares - total_cash
    if invested_capital <= 0:
        return None, None

    nopat = operating_margin * revenue * (1 - DEFAULT_TAX_RATE)
    return nopat / invested_capital, ROIC_ESTIMATE_NOTE


def build_fundamentals(
    symbol: str,
    info: dict[str, Any],
    statements: Statements | None = None,
) -> FundamentalsRecord:
    """
    Map a yfinance info payload (plus optional statements) to a FundamentalsRecord.

    Raises:
        FundamentalsNotFoundError: If the payload has neither a name nor a price
    """
    normalized_symbol = symbol.upper().strip()
    name = info.get("longName") or info.get("shortName")
    price = _safe_float(info.get("regularMarketPrice"))
    if price is None:
        price = _safe_float(info.get("currentPrice"))

    if not has_value(name) and price is None:
        raise FundamentalsNotFoundError(normalized_symbol, "no name or price in quote data")

    roic, roic_note = compute_roic(info, statements)

    return FundamentalsRecord(
        ticker=normalized_symbol,
        company_name=sanitize_text(name) or normalized_symbol,
        currency=info.get("currency") or "USD",
        current_price=price,
        pe_ratio=_safe_float(info.get("trailingPE")),
        forward_pe=_safe_float(info.get("forwardPE")),
        market_cap=_safe_float(info.get("marketCap")),
        fifty_two_week_low=_safe_float(info.get("fiftyTwoWeekLow")),
        fifty_two_week_high=_safe_float(info.get("fiftyTwoWeekHigh")),
        revenue=_safe_float(info.get("totalRevenue")),
        net_income=_safe_float(info.get("netIncomeToCommon")),
        profit_margin=_safe_float(info.get("profitMargins")),
        roic=roic,
        roic_note=roic_note,
        business_summary=sanitize_text(info.get("longBusinessSummary"), max_length=2000) or None,
        website=sanitize_text(info.get("website")) or None,
    )


async def fetch_fundamentals_with_provenance(
    symbol: str,
) -> tuple[FundamentalsRecord, dict[str, Any]]:
    """
    Fetch fundamentals for a ticker.

    Statements only feed ROIC; if they cannot be fetched, ROIC falls back to
    the estimate from ``info``.

    Returns:
        Tuple of (record, provenance_dict)

    Raises:
        FundamentalsNotFoundError: If the ticker is unknown
        YFinanceRetryError: If the quote provider keeps failing
    """
    normalized_symbol = symbol.upper().strip()
    if not normalized_symbol:
        raise FundamentalsNotFoundError(symbol, "ticker is required")

    try:
        info, provenance = await fetch_info_with_provenance(normalized_symbol)
    except ValueError as e:
        raise FundamentalsNotFoundError(normalized_symbol, str(e)) from e
    except YFinanceRetryError as e:
        # Unknown tickers come back as a stub payload without a quoteType
        last = e.last_error
        if isinstance(last, YFinanceIncompleteInfoError) and last.quote_type is None:
            raise FundamentalsNotFoundError(normalized_symbol) from e
        raise

    statements: Statements | None = None
    try:
        statements = await fetch_statements(normalized_symbol)
    except Exception as e:
        logger.warning(f"fetch_fundamentals({normalized_symbol}): statements unavailable ({e})")
        provenance["statements_error"] = type(e).__name__

    record = build_fundamentals(normalized_symbol, info, statements)
    provenance["roic_method"] = (
        "unavailable" if record.roic is None else ("estimated" if record.roic_note else "statements")
    )
    return record, provenance


async def fetch_fundamentals(symbol: str) -> FundamentalsRecord:
    """Fetch fundamentals for a ticker. See ``fetch_fundamentals_with_provenance``."""
    record, _ = await fetch_fundamentals_with_provenance(symbol)
    return record

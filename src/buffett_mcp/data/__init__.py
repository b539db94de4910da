"""Data layer: quote provider access, fundamentals mapping, storage."""

from buffett_mcp.data.fundamentals import (
    build_fundamentals,
    compute_roic,
    fetch_fundamentals,
    fetch_fundamentals_with_provenance,
)
from buffett_mcp.data.store import ResearchStore
from buffett_mcp.data.yfinance_client import (
    Quote,
    Statements,
    YFinanceIncompleteInfoError,
    YFinanceRetryError,
    fetch_info,
    fetch_info_with_provenance,
    fetch_quote,
    fetch_statements,
    shutdown_executor,
)

__all__ = [
    # Fundamentals
    "build_fundamentals",
    "compute_roic",
    "fetch_fundamentals",
    "fetch_fundamentals_with_provenance",
    # Storage
    "ResearchStore",
    # yfinance
    "Quote",
    "Statements",
    "YFinanceIncompleteInfoError",
    "YFinanceRetryError",
    "fetch_info",
    "fetch_info_with_provenance",
    "fetch_quote",
    "fetch_statements",
    "shutdown_executor",
]

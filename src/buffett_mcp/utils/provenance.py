"""Response metadata, provenance and error blocks shared by all tools."""

from datetime import datetime, timezone
from typing import Any

from buffett_mcp import SCHEMA_VERSION, SERVER_VERSION
from buffett_mcp.killchain.errors import (
    AnalysisError,
    FundamentalsNotFoundError,
    KillChainError,
    StorageUnavailable,
    WatchlistConflictError,
)

# First match wins; anything unlisted is reported as data_unavailable
ERROR_TYPES: tuple[tuple[type[Exception], str], ...] = (
    (FundamentalsNotFoundError, "invalid_symbol"),
    (AnalysisError, "analysis_failed"),
    (KillChainError, "invalid_transition"),
    (StorageUnavailable, "storage_unavailable"),
    (WatchlistConflictError, "conflict"),
    (ValueError, "invalid_request"),
)


def utc_timestamp() -> str:
    """Current UTC time, ISO 8601 with a Z suffix."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


def build_meta(tool: str, duration_ms: float | None = None) -> dict[str, Any]:
    """
    Build standard metadata block for responses.

    Args:
        tool: Name of the tool producing this response
        duration_ms: Execution time in milliseconds (optional)
    """
    meta: dict[str, Any] = {
        "server_version": SERVER_VERSION,
        "schema_version": SCHEMA_VERSION,
        "tool": tool,
    }
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 1)
    return meta


def build_provenance(source: str, as_of: datetime | str | None = None, **fields: Any) -> dict[str, Any]:
    """Provenance block for one data source (yfinance, anthropic)."""
    prov: dict[str, Any] = {"source": source}
    if as_of is not None:
        prov["as_of"] = as_of.isoformat() if isinstance(as_of, datetime) else as_of
    prov.update(fields)
    return prov


def build_error_response(
    error_type: str,
    message: str,
    symbol: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """
    Build standardized error response.

    Args:
        error_type: One of the ERROR_TYPES names, or run_not_found / memo_not_found
        message: Human-readable error message
        symbol: Ticker the error relates to, if any
        **extra: Additional fields (e.g., run_id, step, retryable)
    """
    response: dict[str, Any] = {
        "error": True,
        "error_type": error_type,
        "message": message,
        "meta": build_meta("error"),
    }
    if symbol is not None:
        response["symbol"] = symbol
    response.update(extra)
    return response


def error_response_for(error: Exception, symbol: str | None = None, **extra: Any) -> dict[str, Any]:
    """
    Error response for an exception raised below the tool layer.

    Analysis failures are marked retryable and carry their step; state machine
    misuse carries the exception name as ``reason``.
    """
    error_type = next(
        (name for exc_type, name in ERROR_TYPES if isinstance(error, exc_type)),
        "data_unavailable",
    )
    if isinstance(error, AnalysisError):
        extra.setdefault("step", error.step)
        extra["retryable"] = True
    if isinstance(error, (AnalysisError, KillChainError)):
        extra.setdefault("reason", type(error).__name__)
    if isinstance(error, WatchlistConflictError) and symbol is None:
        symbol = error.ticker

    message = str(error) if error_type != "data_unavailable" else f"Failed to fetch data: {error}"
    return build_error_response(error_type, message, symbol=symbol, **extra)

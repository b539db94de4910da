"""Async yfinance access: bounded concurrency, retry with backoff, singleflight."""

import asyncio
import logging
import math
import os
import random
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import pandas as pd
import yfinance as yf
from requests.exceptions import HTTPError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Bounded concurrency for yfinance calls
_max_workers = int(os.environ.get("YF_MAX_WORKERS", "4"))
_executor = ThreadPoolExecutor(max_workers=_max_workers)
_fetch_semaphore = asyncio.Semaphore(_max_workers)

# Fields a full equity payload carries and crumb-broken partial payloads lack
INFO_FUND_SENTINELS: tuple[str, ...] = (
    "totalRevenue",
    "profitMargins",
    "netIncomeToCommon",
    "operatingCashflow",
    "totalCash",
    "ebitda",
)

_TRANSIENT_PATTERNS = ("rate limit", "too many requests", "connection", "timeout", "temporary")


class YFinanceRetryError(Exception):
    """Raised when yfinance fails after all retries."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


class YFinanceIncompleteInfoError(RuntimeError):
    """
    An equity ``info`` payload without any fundamentals.

    Seen with 401 Invalid Crumb responses (transient) and with unknown tickers,
    which come back as a stub without a ``quoteType``.
    """

    def __init__(self, symbol: str, *, key_count: int, quote_type: str | None):
        super().__init__(
            f"Incomplete yfinance info for {symbol}: keys={key_count}, quoteType={quote_type}"
        )
        self.symbol = symbol
        self.key_count = key_count
        self.quote_type = quote_type


def has_value(v: Any) -> bool:
    """True unless ``v`` is None, NaN or a blank string (yfinance uses NaN for missing numerics)."""
    if v is None:
        return False
    if isinstance(v, float) and math.isnan(v):
        return False
    return not (isinstance(v, str) and not v.strip())


def is_info_incomplete(info: dict[str, Any]) -> bool:
    """
    True if an equity payload has none of the fundamentals sentinels.

    Indices and funds carry no fundamentals and are never flagged.
    """
    if not info:
        return True
    quote_type = str(info.get("quoteType") or "").upper()
    if quote_type not in ("", "EQUITY"):
        return False
    return not any(has_value(info.get(k)) for k in INFO_FUND_SENTINELS)


# ============================================================================
# RETRY
# ============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Which failures are retried, how often, and how long to back off."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds

    @classmethod
    def from_env(cls) -> "RetryPolicy":
        return cls(
            max_retries=int(os.environ.get("YF_MAX_RETRIES", "3")),
            base_delay=float(os.environ.get("YF_BASE_DELAY", "1.0")),
            max_delay=float(os.environ.get("YF_MAX_DELAY", "30.0")),
        )

    def retries_for(self, error: Exception) -> int:
        """Retry budget for ``error``; 0 means fail immediately."""
        if isinstance(error, YFinanceIncompleteInfoError):
            return min(2, self.max_retries)

        status_code = None
        if isinstance(error, HTTPError) and error.response is not None:
            status_code = error.response.status_code
        message = str(error).lower()

        if status_code == 401:
            # Invalid Crumb rarely recovers with more retries
            return min(1, self.max_retries)
        if status_code == 429 or (status_code is not None and 500 <= status_code < 600):
            return self.max_retries
        if status_code is None and ("401" in message or "invalid crumb" in message):
            return min(2, self.max_retries)
        if any(pattern in message for pattern in _TRANSIENT_PATTERNS):
            return self.max_retries
        return 0

    def backoff(self, attempt: int) -> float:
        """Exponential backoff with +/-25% jitter, capped at ``max_delay``."""
        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return min(delay + jitter, self.max_delay)


retry_policy = RetryPolicy.from_env()


@dataclass
class RetryResult(Generic[T]):
    """Result of a retried call, with what it took to get it."""

    result: T
    attempts: int
    total_backoff_seconds: float
    errors: list[str] = field(default_factory=list)

    def to_provenance(self) -> dict[str, Any]:
        prov: dict[str, Any] = {
            "source": "yfinance",
            "attempts": self.attempts,
            "total_backoff_seconds": self.total_backoff_seconds,
        }
        if self.errors:
            prov["retry_errors"] = self.errors[-3:]
        return prov


async def call_with_retry(
    operation_name: str,
    sync_func: Callable[[], T],
    policy: RetryPolicy | None = None,
) -> RetryResult[T]:
    """
    Run a blocking yfinance call in the executor, retrying transient failures.

    Holds one slot of the fetch semaphore for the whole call, backoff included.

    Raises:
        YFinanceRetryError: If the retry budget for the failure is exhausted
        Exception: Non-retryable errors propagate unchanged
    """
    policy = policy or retry_policy
    loop = asyncio.get_running_loop()
    total_backoff = 0.0
    errors: list[str] = []
    attempt = 0

    async with _fetch_semaphore:
        while True:
            try:
                result = await loop.run_in_executor(_executor, sync_func)
            except Exception as e:
                errors.append(type(e).__name__)
                budget = policy.retries_for(e)
                if budget == 0:
                    raise
                if attempt >= budget:
                    logger.warning(
                        f"{operation_name}: giving up after {attempt + 1} attempts. Last error: {e}"
                    )
                    raise YFinanceRetryError(f"Failed after {attempt + 1} attempts: {e}", last_error=e) from e

                delay = policy.backoff(attempt)
                total_backoff += delay
                logger.info(f"{operation_name}: attempt {attempt + 1} failed ({e}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                attempt += 1
            else:
                return RetryResult(
                    result=result,
                    attempts=attempt + 1,
                    total_backoff_seconds=round(total_backoff, 2),
                    errors=errors,
                )


# ============================================================================
# SINGLEFLIGHT
# ============================================================================


class SingleFlight(Generic[T]):
    """
    Concurrent calls for the same key share one in-flight task.

    The entry is removed when the task finishes, so later calls fetch fresh data.
    """

    def __init__(self, name: str):
        self.name = name
        self._tasks: dict[str, asyncio.Task[T]] = {}

    async def do(self, key: str, factory: Callable[[], Awaitable[T]]) -> tuple[T, bool]:
        """
        Run ``factory()`` for ``key``, or join the call already running.

        Returns:
            Tuple of (result, joined)
        """
        # No await between lookup and insert, so this is atomic on the event loop
        task = self._tasks.get(key)
        joined = task is not None
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        else:
            logger.debug(f"{self.name}({key}): joining in-flight call")

        # Shield so one cancelled caller does not cancel the shared call
        return await asyncio.shield(task), joined

    def _forget(self, key: str, task: "asyncio.Task[T]") -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        # Every caller may have been cancelled; mark the outcome as retrieved
        if not task.cancelled():
            task.exception()


# ============================================================================
# FETCHERS
# ============================================================================


def _load_info(symbol: str) -> dict[str, Any]:
    info = yf.Ticker(symbol).info
    if not info:
        raise ValueError(f"Invalid symbol: {symbol}")
    if is_info_incomplete(info):
        raise YFinanceIncompleteInfoError(symbol, key_count=len(info), quote_type=info.get("quoteType"))
    return info


_info_flight: SingleFlight[RetryResult[dict[str, Any]]] = SingleFlight("fetch_info")


async def fetch_info_with_provenance(symbol: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Fetch yfinance ``info`` with retry and singleflight deduplication.

    Returns:
        Tuple of (info_dict, provenance_dict)

    Raises:
        YFinanceRetryError: If all retries exhausted for retryable errors
        ValueError: If symbol is invalid
    """
    normalized_symbol = symbol.upper().strip()
    retry_result, joined = await _info_flight.do(
        normalized_symbol,
        lambda: call_with_retry(f"fetch_info({normalized_symbol})", lambda: _load_info(normalized_symbol)),
    )
    provenance = retry_result.to_provenance()
    provenance["singleflight_joined"] = joined
    return retry_result.result, provenance


async def fetch_info(symbol: str) -> dict[str, Any]:
    """Fetch yfinance ``info`` for a symbol. See ``fetch_info_with_provenance``."""
    info, _ = await fetch_info_with_provenance(symbol)
    return info


@dataclass(frozen=True)
class Statements:
    """Latest annual statements (rows = line items, columns = period end dates)."""

    income: pd.DataFrame
    balance: pd.DataFrame


def _as_frame(value: Any) -> pd.DataFrame:
    return value if isinstance(value, pd.DataFrame) else pd.DataFrame()


async def fetch_statements(symbol: str) -> Statements:
    """
    Fetch annual income statement and balance sheet.

    Empty frames are returned when yfinance has no statements for the symbol.

    Raises:
        YFinanceRetryError: If all retries exhausted for retryable errors
    """
    normalized_symbol = symbol.upper().strip()

    def _load() -> Statements:
        ticker = yf.Ticker(normalized_symbol)
        return Statements(income=_as_frame(ticker.income_stmt), balance=_as_frame(ticker.balance_sheet))

    retry_result = await call_with_retry(f"fetch_statements({normalized_symbol})", _load)
    return retry_result.result


@dataclass(frozen=True)
class Quote:
    """Last price and day change for one symbol."""

    symbol: str
    price: float | None
    previous_close: float | None
    currency: str = "USD"

    @property
    def change(self) -> float | None:
        if self.price is None or self.previous_close is None:
            return None
        return self.price - self.previous_close

    @property
    def change_percent(self) -> float | None:
        change = self.change
        if change is None or not self.previous_close:
            return None
        return change / self.previous_close * 100


def _load_quote(symbol: str) -> Quote:
    fast = yf.Ticker(symbol).fast_info
    price, previous_close = fast.last_price, fast.previous_close
    return Quote(
        symbol=symbol,
        price=float(price) if has_value(price) else None,
        previous_close=float(previous_close) if has_value(previous_close) else None,
        currency=fast.currency or "USD",
    )


_quote_flight: SingleFlight[RetryResult[Quote]] = SingleFlight("fetch_quote")


async def fetch_quote(symbol: str) -> Quote:
    """
    Fetch last price and previous close via yfinance ``fast_info``.

    Concurrent requests for the same symbol (the ticker tape polled by several
    clients) share one fetch.

    Raises:
        YFinanceRetryError: If all retries exhausted for retryable errors
    """
    normalized_symbol = symbol.upper().strip()
    retry_result, _ = await _quote_flight.do(
        normalized_symbol,
        lambda: call_with_retry(f"fetch_quote({normalized_symbol})", lambda: _load_quote(normalized_symbol)),
    )
    return retry_result.result


def shutdown_executor() -> None:
    """Cleanup on server shutdown."""
    _executor.shutdown(wait=False, cancel_futures=True)

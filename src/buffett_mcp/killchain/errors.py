"""Exception taxonomy for the kill-chain core and its collaborators."""


class AnalysisError(Exception):
    """Step analysis could not be derived. Recoverable: the caller may retry."""

    def __init__(self, message: str, step: int | None = None):
        super().__init__(message)
        self.step = step


class MalformedResponseError(AnalysisError):
    """Generated text did not parse into the shape required for the step."""

    pass


class ProviderError(AnalysisError):
    """The text-generation provider failed."""

    pass


class AnalysisTimeoutError(AnalysisError):
    """The text-generation provider did not answer in time."""

    pass


class KillChainError(Exception):
    """Invalid use of the state machine. Indicates a caller bug."""

    pass


class SequenceError(KillChainError):
    """A decision was recorded out of order."""

    pass


class NavigationError(KillChainError):
    """Navigation beyond the reachable frontier, or out of a terminal state."""

    pass


class IncompleteStateError(KillChainError):
    """A memo was requested before all four steps were decided."""

    pass


class StorageUnavailable(Exception):
    """The memo/watchlist backing store is not configured or not reachable."""

    pass


class WatchlistConflictError(Exception):
    """Ticker is already on the watchlist."""

    def __init__(self, ticker: str):
        super().__init__(f"{ticker} is already in the watchlist")
        self.ticker = ticker


class FundamentalsNotFoundError(Exception):
    """No fundamentals exist for the requested ticker."""

    def __init__(self, symbol: str, reason: str | None = None):
        message = f'Could not find data for ticker "{symbol}"'
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.symbol = symbol

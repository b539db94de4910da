"""Input validation for tool arguments."""

from buffett_mcp.killchain.models import STEP_COUNT, SUMMARY_STEP

MAX_QUOTE_SYMBOLS = 20


def normalize_symbols(symbols: str | list[str], limit: int = MAX_QUOTE_SYMBOLS) -> list[str]:
    """
    Normalize a comma-separated string or list of tickers.

    Strips whitespace, uppercases, drops empties and duplicates, keeps order,
    and caps the result at ``limit`` symbols.
    """
    if isinstance(symbols, str):
        symbols = symbols.split(",")
    normalized: list[str] = []
    for symbol in symbols:
        symbol = symbol.strip().upper()
        if symbol and symbol not in normalized:
            normalized.append(symbol)
    return normalized[:limit]


def validate_step(step: int, allow_summary: bool = False) -> int:
    """
    Check a step number from a tool call.

    Raises:
        ValueError: If ``step`` is outside 1-4 (1-5 with ``allow_summary``)
    """
    upper = SUMMARY_STEP if allow_summary else STEP_COUNT
    if not isinstance(step, int) or isinstance(step, bool) or not 1 <= step <= upper:
        raise ValueError(f"Invalid step '{step}'. Must be between 1 and {upper}")
    return step

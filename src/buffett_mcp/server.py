"""Buffett kill-chain MCP server using FastMCP."""

import json
import logging
import os

from fastmcp import FastMCP

from buffett_mcp import SCHEMA_VERSION, SERVER_VERSION
from buffett_mcp.data.store import ResearchStore
from buffett_mcp.data.yfinance_client import shutdown_executor
from buffett_mcp.killchain.models import STEP_TITLES
from buffett_mcp.llm.anthropic_client import AnthropicTextGenerator
from buffett_mcp.tools import (
    RunRegistry,
    add_to_watchlist,
    decide_step,
    finalize_run,
    fundamentals_snapshot,
    get_memo,
    go_to_step,
    list_memos,
    list_watchlist,
    quotes,
    remove_from_watchlist,
    reset_run,
    run_state,
    start_kill_chain,
    step_analysis,
    ticker_tape,
)

# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
logger = logging.getLogger(__name__)

# Create FastMCP server instance
mcp = FastMCP(
    name="buffett-analyzer",
)

# Collaborators shared by all tool calls
runs = RunRegistry()
store = ResearchStore()
generate_text = AnthropicTextGenerator()


# ============================================================================
# TOOLS: KILL CHAIN
# ============================================================================


@mcp.tool
async def start_analysis(symbol: str) -> str:
    """
    Start a Buffett kill-chain run for a stock.

    Fetches fundamentals and opens step 1 (Business Understanding).
    The four steps are: 1 Business, 2 Moat, 3 Management, 4 Valuation.

    Args:
        symbol: Stock ticker symbol (e.g., KO, AAPL)

    Returns:
        JSON with run_id, run state and the fundamentals used for every step
    """
    result = await start_kill_chain(symbol=symbol, runs=runs, generate_text=generate_text)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_step_analysis(run_id: str, step: int | None = None, wait: bool = True) -> str:
    """
    Get the AI analysis for the current step (or a reviewed step).

    Each step's analysis is generated once per run and then cached.

    Args:
        run_id: Run id from start_analysis
        step: Step number 1-4 (default: current step)
        wait: Wait for the analysis (default: true). If false, returns status
              "pending" while it is generated in the background.

    Returns:
        JSON with the step analysis, or an analysis_failed error that can be retried
    """
    result = await step_analysis(run_id=run_id, step=step, wait=wait, runs=runs)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def decide(run_id: str, decision: str, notes: str = "") -> str:
    """
    Record your decision for the active step and move to the next one.

    A fail or unsure on step 1 ends the run: the business is outside the
    circle of competence. Steps 2-4 always advance.

    Args:
        run_id: Run id from start_analysis
        decision: pass, fail or unsure
        notes: Optional notes saved with the memo

    Returns:
        JSON with the updated run state
    """
    result = await decide_step(run_id=run_id, decision=decision, notes=notes, runs=runs)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def go_to(run_id: str, step: int) -> str:
    """
    Navigate to a decided step for review, back to the active step, or to the summary (5).

    Args:
        run_id: Run id from start_analysis
        step: Step number 1-5

    Returns:
        JSON with the updated run state
    """
    result = await go_to_step(run_id=run_id, step=step, runs=runs)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def reset_analysis(run_id: str) -> str:
    """
    Start a run over from step 1, discarding decisions and cached analyses.

    Args:
        run_id: Run id from start_analysis

    Returns:
        JSON with the reset run state
    """
    result = await reset_run(run_id=run_id, runs=runs)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_run(run_id: str) -> str:
    """
    Get the state of a run, including which step analyses are ready or pending.

    Args:
        run_id: Run id from start_analysis

    Returns:
        JSON with run state and per-step analysis status
    """
    result = await run_state(run_id=run_id, runs=runs)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def finalize_memo(run_id: str, save: bool = True) -> str:
    """
    Assemble the investment memo for a run with all four steps decided.

    Args:
        run_id: Run id from start_analysis
        save: Save the memo to storage (default: true)

    Returns:
        JSON with the memo, overall verdict, and whether it was saved
    """
    result = await finalize_run(run_id=run_id, save=save, runs=runs, store=store)
    return json.dumps(result, indent=2, default=str)


# ============================================================================
# TOOLS: DATA
# ============================================================================


@mcp.tool
async def get_fundamentals(symbol: str) -> str:
    """
    Get the fundamentals a kill-chain run would use for a stock.

    Includes price, P/E, market cap, 52-week range, revenue, net income,
    profit margin, ROIC and the business description.

    Args:
        symbol: Stock ticker symbol

    Returns:
        JSON with the fundamentals record
    """
    result = await fundamentals_snapshot(symbol=symbol)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_quotes(symbols: list[str]) -> str:
    """
    Get last price and day change for up to 20 tickers.

    Args:
        symbols: List of stock ticker symbols

    Returns:
        JSON with one quote per ticker (null values when unavailable)
    """
    result = await quotes(symbols=symbols)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_ticker_tape() -> str:
    """
    Get the market ticker tape: S&P 500, NASDAQ, DOW and the 10-year Treasury yield.

    Returns:
        JSON with formatted value, signed change and direction per item
    """
    result = await ticker_tape()
    return json.dumps(result, indent=2, default=str)


# ============================================================================
# TOOLS: MEMOS & WATCHLIST
# ============================================================================


@mcp.tool
async def get_memos(limit: int = 50) -> str:
    """
    List saved memos, most recent first.

    Args:
        limit: Maximum number of memos (default: 50)

    Returns:
        JSON with saved memo records
    """
    result = await list_memos(limit=limit, store=store)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_watchlist() -> str:
    """
    List watchlist entries, most recently added first.

    Returns:
        JSON with watchlist entries
    """
    result = await list_watchlist(store=store)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def watch(ticker: str, company_name: str) -> str:
    """
    Add a stock to the watchlist.

    Args:
        ticker: Stock ticker symbol
        company_name: Company name

    Returns:
        JSON with the new entry, or a conflict error if already listed
    """
    result = await add_to_watchlist(ticker=ticker, company_name=company_name, store=store)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def unwatch(entry_id: str) -> str:
    """
    Remove a watchlist entry.

    Args:
        entry_id: Entry id from get_watchlist

    Returns:
        JSON with whether an entry was removed
    """
    result = await remove_from_watchlist(entry_id=entry_id, store=store)
    return json.dumps(result, indent=2, default=str)


# ============================================================================
# RESOURCES
# ============================================================================


@mcp.resource("memo://{memo_id}")
async def get_saved_memo(memo_id: str) -> str:
    """
    Get a saved memo as JSON.

    Args:
        memo_id: Memo id from finalize_memo or get_memos

    Returns:
        JSON memo record
    """
    result = await get_memo(memo_id=memo_id, store=store)
    return json.dumps(result, indent=2, default=str)


# ============================================================================
# PROMPTS
# ============================================================================


@mcp.prompt
def kill_chain(symbol: str) -> str:
    """Walk a stock through the four-step Buffett kill chain."""
    steps = "\n".join(f"- Step {step}: {title}" for step, title in STEP_TITLES.items())
    return f"""Run the Buffett kill chain on {symbol}.

Steps:
{steps}

1. Call start_analysis("{symbol}") and keep the run_id.
2. For each step, call get_step_analysis(run_id), present the analysis, and
   ask me for a decision (pass, fail or unsure) with optional notes.
3. Record it with decide(run_id, decision, notes).
4. If step 1 is not a pass, stop: the business is outside the circle of competence.
5. After step 4, call finalize_memo(run_id) and present the overall verdict.

Do not decide a step on my behalf."""


# ============================================================================
# MAIN
# ============================================================================


def main() -> None:
    """Run the MCP server."""
    logger.info(f"Starting Buffett Analyzer MCP Server v{SERVER_VERSION} (schema v{SCHEMA_VERSION})")
    if not store.is_configured:
        logger.warning("BUFFETT_STORE_DIR is not set; memos and the watchlist will not be saved")
    try:
        mcp.run()
    finally:
        shutdown_executor()
        store.close()


if __name__ == "__main__":
    main()

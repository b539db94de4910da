"""MCP tool functions."""

from buffett_mcp.tools.fundamentals import fundamentals_snapshot
from buffett_mcp.tools.kill_chain import (
    RunNotFoundError,
    RunRegistry,
    decide_step,
    finalize_run,
    go_to_step,
    reset_run,
    run_state,
    start_kill_chain,
    step_analysis,
)
from buffett_mcp.tools.memos import get_memo, list_memos
from buffett_mcp.tools.quotes import quotes, ticker_tape
from buffett_mcp.tools.watchlist import add_to_watchlist, list_watchlist, remove_from_watchlist

__all__ = [
    "RunNotFoundError",
    "RunRegistry",
    "add_to_watchlist",
    "decide_step",
    "finalize_run",
    "fundamentals_snapshot",
    "get_memo",
    "go_to_step",
    "list_memos",
    "list_watchlist",
    "quotes",
    "remove_from_watchlist",
    "reset_run",
    "run_state",
    "start_kill_chain",
    "step_analysis",
    "ticker_tape",
]

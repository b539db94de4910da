"""Memo assembly: freeze a fully decided run into a persistable record."""

import dataclasses

from buffett_mcp.killchain.errors import IncompleteStateError
from buffett_mcp.killchain.state import KillChainState, overall_verdict
from buffett_mcp.killchain.models import STEP_COUNT, Memo, MemoStep


def assemble(state: KillChainState) -> Memo:
    """
    Build the memo for a run with all four steps decided.

    Pairs each outcome with its cached analysis (None if the analysis was never
    derived) and copies the fundamentals so the memo does not share the live record.

    Raises:
        IncompleteStateError: If fewer than four outcomes exist
    """
    if len(state.outcomes) != STEP_COUNT:
        raise IncompleteStateError(
            f"Cannot assemble memo for {state.fundamentals.ticker}: "
            f"{len(state.outcomes)} of {STEP_COUNT} steps decided"
        )

    steps = tuple(
        MemoStep(step=step, outcome=outcome, analysis=state.analyses.get(step))
        for step, outcome in enumerate(state.outcomes, 1)
    )
    fundamentals = dataclasses.replace(state.fundamentals)

    return Memo(
        ticker=fundamentals.ticker,
        company_name=fundamentals.company_name,
        steps=steps,
        overall_verdict=overall_verdict(state.outcomes),
        fundamentals=fundamentals,
    )

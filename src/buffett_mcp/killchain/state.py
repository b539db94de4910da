"""Run snapshot and verdict, shared by the state machine and memo assembly."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

from buffett_mcp.killchain.errors import IncompleteStateError
from buffett_mcp.killchain.models import (
    STEP_COUNT,
    STEP_TITLES,
    SUMMARY_STEP,
    VERDICT_FAIL,
    VERDICT_PASS,
    FundamentalsRecord,
    StepAnalysis,
    StepOutcome,
)

Phase = Literal["active", "review", "summary", "disqualified"]


def overall_verdict(outcomes: Iterable[StepOutcome]) -> str:
    """
    Verdict for a fully decided run.

    Only an explicit pass counts; unsure is treated as not passed.

    Raises:
        IncompleteStateError: If fewer than four outcomes are given
    """
    outcomes = tuple(outcomes)
    if len(outcomes) != STEP_COUNT:
        raise IncompleteStateError(
            f"Verdict needs {STEP_COUNT} outcomes, got {len(outcomes)}"
        )
    return VERDICT_PASS if all(o.passed is True for o in outcomes) else VERDICT_FAIL


@dataclass(frozen=True)
class KillChainState:
    """Point-in-time snapshot of a run."""

    run_id: str
    current_step: int
    phase: Phase
    outcomes: tuple[StepOutcome, ...]
    analyses: dict[int, StepAnalysis]
    fundamentals: FundamentalsRecord
    generation: int = 0

    @property
    def reachable_steps(self) -> list[int]:
        if self.phase == "disqualified":
            return []
        return list(range(1, min(len(self.outcomes) + 1, SUMMARY_STEP) + 1))

    @property
    def overall_verdict(self) -> str | None:
        if self.phase == "disqualified":
            return VERDICT_FAIL
        if len(self.outcomes) == STEP_COUNT:
            return overall_verdict(self.outcomes)
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "symbol": self.fundamentals.ticker,
            "company_name": self.fundamentals.company_name,
            "current_step": self.current_step,
            "step_title": STEP_TITLES.get(self.current_step, "Summary"),
            "phase": self.phase,
            "reachable_steps": self.reachable_steps,
            "outcomes": [
                {"step": i, **outcome.to_dict()} for i, outcome in enumerate(self.outcomes, 1)
            ],
            "analyses": {str(step): a.to_dict() for step, a in sorted(self.analyses.items())},
            "overall_verdict": self.overall_verdict,
        }

"""Kill-chain state machine: ordered steps, review navigation, analysis cache."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal

from buffett_mcp.killchain.derivation import TextGenerator, derive_analysis
from buffett_mcp.killchain.errors import AnalysisError, NavigationError, SequenceError
from buffett_mcp.killchain.ledger import OutcomeLedger
from buffett_mcp.killchain.memo import assemble
from buffett_mcp.killchain.models import (
    STEP_COUNT,
    SUMMARY_STEP,
    FundamentalsRecord,
    Memo,
    StepAnalysis,
    StepOutcome,
)
from buffett_mcp.killchain.state import KillChainState, Phase

logger = logging.getLogger(__name__)

AnalysisState = Literal["ready", "pending", "error", "idle"]


@dataclass(frozen=True)
class AnalysisStatus:
    """Derivation status for one step: ready, pending (in flight), error or idle."""

    step: int
    state: AnalysisState
    analysis: StepAnalysis | None = None
    error: AnalysisError | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"step": self.step, "status": self.state}
        if self.analysis is not None:
            result["analysis"] = self.analysis.to_dict()
        if self.error is not None:
            result["error"] = str(self.error)
            result["error_type"] = type(self.error).__name__
            result["retryable"] = True
        return result


def _consume_exception(task: asyncio.Task[Any]) -> None:
    # Failures are recorded in the run; keep asyncio from warning about unretrieved errors
    if not task.cancelled():
        task.exception()


class KillChain:
    """
    One run of the four-step kill chain over a fixed fundamentals record.

    Steps are decided strictly in order. Earlier steps can be revisited for
    review but not re-decided. A fail or unsure on step 1 disqualifies the run;
    only ``reset`` leaves that state. Steps 2-4 never short-circuit.

    Each step's analysis is derived at most once per run and cached. Concurrent
    requests for a step share one in-flight derivation. Results that land after a
    ``reset`` belong to a stale generation and are dropped.
    """

    def __init__(
        self,
        fundamentals: FundamentalsRecord,
        generate_text: TextGenerator,
        timeout: float | None = None,
        run_id: str | None = None,
    ):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._fundamentals = fundamentals
        self._generate_text = generate_text
        self._timeout = timeout

        self._ledger = OutcomeLedger()
        self._current_step = 1
        self._disqualified = False
        self._generation = 0

        self._analyses: dict[int, StepAnalysis] = {}
        self._errors: dict[int, AnalysisError] = {}
        self._in_flight: dict[int, asyncio.Task[StepAnalysis]] = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def fundamentals(self) -> FundamentalsRecord:
        return self._fundamentals

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def outcomes(self) -> tuple[StepOutcome, ...]:
        return self._ledger.snapshot()

    @property
    def phase(self) -> Phase:
        if self._disqualified:
            return "disqualified"
        if self._current_step == SUMMARY_STEP:
            return "summary"
        if self._current_step == len(self._ledger) + 1:
            return "active"
        return "review"

    @property
    def frontier(self) -> int:
        """Furthest step the user may navigate to, or derive an analysis for."""
        if self._disqualified:
            return 1
        return min(len(self._ledger) + 1, SUMMARY_STEP)

    @property
    def state(self) -> KillChainState:
        return KillChainState(
            run_id=self.run_id,
            current_step=self._current_step,
            phase=self.phase,
            outcomes=self._ledger.snapshot(),
            analyses=dict(self._analyses),
            fundamentals=self._fundamentals,
            generation=self._generation,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def decide(self, outcome: StepOutcome) -> KillChainState:
        """
        Record the decision for the active step and advance.

        Raises:
            SequenceError: If the current step is not the active, undecided step
        """
        if self._disqualified:
            raise SequenceError("Run was disqualified at step 1; reset to start over")
        if self._current_step != len(self._ledger) + 1 or self._current_step > STEP_COUNT:
            raise SequenceError(
                f"Step {self._current_step} is not the active step "
                f"({len(self._ledger)} of {STEP_COUNT} decided)"
            )

        step = self._ledger.record(outcome)
        logger.info(f"KillChain({self._fundamentals.ticker}): step {step} -> {outcome.label}")

        if step == 1 and outcome.passed is not True:
            self._disqualified = True
            logger.info(f"KillChain({self._fundamentals.ticker}): disqualified at step 1")
            return self.state

        self._current_step = step + 1
        return self.state

    def go_to(self, step: int) -> KillChainState:
        """
        Move to ``step`` for review, or back to the active step.

        Raises:
            NavigationError: If the run is disqualified or ``step`` is beyond the frontier
        """
        if self._disqualified:
            raise NavigationError("Run was disqualified at step 1; only reset is allowed")
        if not 1 <= step <= self.frontier:
            raise NavigationError(f"Step {step} is not reachable (frontier is {self.frontier})")
        self._current_step = step
        return self.state

    def reset(self) -> KillChainState:
        """Back to step 1 with no decisions and no cached analyses."""
        self._generation += 1
        self._ledger.clear()
        self._analyses.clear()
        self._errors.clear()
        # In-flight tasks keep running; their results are dropped by generation check
        self._in_flight.clear()
        self._current_step = 1
        self._disqualified = False
        logger.info(f"KillChain({self._fundamentals.ticker}): reset (generation {self._generation})")
        return self.state

    def finalize(self) -> Memo:
        """
        Assemble the memo for a fully decided run.

        Raises:
            IncompleteStateError: If fewer than four steps are decided
        """
        return assemble(self.state)

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    def analysis_status(self, step: int) -> AnalysisStatus:
        """Status of a step's analysis, without triggering anything."""
        if step in self._analyses:
            return AnalysisStatus(step=step, state="ready", analysis=self._analyses[step])
        if step in self._in_flight:
            return AnalysisStatus(step=step, state="pending")
        if step in self._errors:
            return AnalysisStatus(step=step, state="error", error=self._errors[step])
        return AnalysisStatus(step=step, state="idle")

    def request_analysis(self, step: int | None = None) -> AnalysisStatus:
        """
        Start (or join) derivation for ``step`` without waiting.

        Must be called from a running event loop.
        """
        step = self._analysis_step(step)
        if step not in self._analyses:
            self._ensure_task(step)
        return self.analysis_status(step)

    async def get_active_analysis(self) -> StepAnalysis:
        """Analysis for the current step, deriving it on first use."""
        return await self.analysis_for(self._analysis_step(None))

    async def analysis_for(self, step: int) -> StepAnalysis:
        """
        Analysis for ``step``, deriving it if not cached.

        Raises:
            AnalysisError: If derivation fails (not cached; calling again retries)
        """
        step = self._analysis_step(step)
        cached = self._analyses.get(step)
        if cached is not None:
            return cached
        task = self._ensure_task(step)
        # Shield: a caller giving up must not cancel the shared derivation
        return await asyncio.shield(task)

    def _analysis_step(self, step: int | None) -> int:
        if step is None:
            step = self._current_step
        if not 1 <= step <= STEP_COUNT:
            raise SequenceError(f"Step {step} has no analysis")
        if step > self.frontier:
            raise NavigationError(f"Step {step} is not reachable (frontier is {self.frontier})")
        return step

    def _ensure_task(self, step: int) -> asyncio.Task[StepAnalysis]:
        # No await between lookup and insert, so this is atomic on the event loop
        task = self._in_flight.get(step)
        if task is None:
            task = asyncio.create_task(self._derive(step, self._generation))
            task.add_done_callback(_consume_exception)
            self._in_flight[step] = task
            logger.debug(f"KillChain({self._fundamentals.ticker}): derivation started for step {step}")
        else:
            logger.debug(f"KillChain({self._fundamentals.ticker}): joining derivation for step {step}")
        return task

    async def _derive(self, step: int, generation: int) -> StepAnalysis:
        task = asyncio.current_task()
        try:
            analysis = await derive_analysis(
                step, self._fundamentals, self._generate_text, timeout=self._timeout
            )
        except AnalysisError as e:
            if generation == self._generation:
                self._errors[step] = e
            raise
        else:
            if generation == self._generation:
                self._analyses[step] = analysis
                self._errors.pop(step, None)
            else:
                logger.info(
                    f"KillChain({self._fundamentals.ticker}): dropping step {step} analysis "
                    f"from stale generation {generation}"
                )
            return analysis
        finally:
            if self._in_flight.get(step) is task:
                self._in_flight.pop(step, None)


def start_run(
    fundamentals: FundamentalsRecord,
    generate_text: TextGenerator,
    timeout: float | None = None,
) -> KillChain:
    """Start a run at step 1 with an empty ledger."""
    return KillChain(fundamentals, generate_text, timeout=timeout)

"""Tests for the kill-chain state machine and its analysis cache."""

import asyncio

import pytest

from buffett_mcp.killchain.errors import (
    IncompleteStateError,
    NavigationError,
    ProviderError,
    SequenceError,
)
from buffett_mcp.killchain.machine import KillChain, start_run
from buffett_mcp.killchain.models import (
    VERDICT_FAIL,
    VERDICT_PASS,
    BusinessAnalysis,
    FundamentalsRecord,
    StepOutcome,
    ValuationAnalysis,
)
from buffett_mcp.killchain.state import overall_verdict

PASS = StepOutcome(True)
FAIL = StepOutcome(False)
UNSURE = StepOutcome(None)


async def _settle() -> None:
    """Let scheduled tasks run up to their next suspension point."""
    for _ in range(3):
        await asyncio.sleep(0)


class TestOverallVerdict:
    """Tests for the verdict rule."""

    def test_all_pass(self) -> None:
        assert overall_verdict([PASS] * 4) == VERDICT_PASS

    def test_unsure_counts_as_not_passed(self) -> None:
        assert overall_verdict([PASS, PASS, UNSURE, PASS]) == VERDICT_FAIL

    def test_any_fail(self) -> None:
        assert overall_verdict([PASS, PASS, PASS, FAIL]) == VERDICT_FAIL

    def test_requires_four(self) -> None:
        with pytest.raises(IncompleteStateError):
            overall_verdict([PASS] * 3)


class TestDecide:
    """Tests for recording decisions."""

    def test_initial_state(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = start_run(ko_fundamentals, fake_generator)
        state = chain.state
        assert state.current_step == 1
        assert state.phase == "active"
        assert state.outcomes == ()
        assert state.analyses == {}
        assert state.reachable_steps == [1]
        assert state.overall_verdict is None

    def test_pass_advances(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        state = chain.decide(PASS)
        assert state.current_step == 2
        assert state.phase == "active"
        assert state.outcomes == (PASS,)

    def test_later_failures_do_not_stop_the_run(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        """Only step 1 short-circuits."""
        chain = KillChain(ko_fundamentals, fake_generator)
        chain.decide(PASS)
        chain.decide(FAIL)
        chain.decide(UNSURE)
        state = chain.decide(FAIL)
        assert state.current_step == 5
        assert state.phase == "summary"
        assert state.overall_verdict == VERDICT_FAIL

    def test_decide_in_summary_rejected(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        for _ in range(4):
            chain.decide(PASS)
        with pytest.raises(SequenceError):
            chain.decide(PASS)
        assert len(chain.outcomes) == 4

    def test_decide_while_reviewing_rejected(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        """Review is read-only: decided steps cannot be re-decided."""
        chain = KillChain(ko_fundamentals, fake_generator)
        chain.decide(PASS)
        chain.decide(PASS)
        chain.go_to(1)
        assert chain.phase == "review"
        with pytest.raises(SequenceError):
            chain.decide(FAIL)
        assert chain.outcomes == (PASS, PASS)


class TestDisqualification:
    """A fail or unsure on step 1 ends the run."""

    @pytest.mark.parametrize("outcome", [FAIL, UNSURE])
    def test_step1_not_passed(self, outcome: StepOutcome, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        state = chain.decide(outcome)
        assert state.phase == "disqualified"
        assert state.current_step == 1
        assert state.outcomes == (outcome,)
        assert state.overall_verdict == VERDICT_FAIL
        assert state.reachable_steps == []

    def test_only_reset_leaves(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        chain.decide(FAIL)

        with pytest.raises(SequenceError):
            chain.decide(PASS)
        for step in (1, 2, 5):
            with pytest.raises(NavigationError):
                chain.go_to(step)

        state = chain.reset()
        assert state.phase == "active"
        assert state.current_step == 1
        assert state.outcomes == ()

    def test_no_memo(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        chain.decide(UNSURE)
        with pytest.raises(IncompleteStateError):
            chain.finalize()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", [FAIL, UNSURE])
    async def test_no_analysis_past_step1(
        self, outcome: StepOutcome, ko_fundamentals: FundamentalsRecord, fake_generator
    ) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        chain.decide(outcome)

        with pytest.raises(NavigationError):
            await chain.analysis_for(2)
        with pytest.raises(NavigationError):
            chain.request_analysis(2)
        assert fake_generator.calls == []
        assert chain.analysis_status(2).state == "idle"
        assert chain.state.analyses == {}

    @pytest.mark.asyncio
    async def test_step1_analysis_still_reviewable(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        chain.decide(FAIL)
        analysis = await chain.analysis_for(1)
        assert isinstance(analysis, BusinessAnalysis)
        assert fake_generator.calls == [1]


class TestGoTo:
    """Tests for review navigation."""

    def test_review_and_return(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        chain.decide(PASS)
        chain.decide(FAIL)

        state = chain.go_to(1)
        assert state.current_step == 1
        assert state.phase == "review"
        assert state.outcomes == (PASS, FAIL)

        state = chain.go_to(3)
        assert state.phase == "active"

    @pytest.mark.parametrize("step", [0, 3, 5, 6])
    def test_beyond_frontier(self, step: int, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        chain.decide(PASS)
        with pytest.raises(NavigationError):
            chain.go_to(step)
        assert chain.current_step == 2

    def test_summary_reachable_when_complete(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        for _ in range(4):
            chain.decide(PASS)
        chain.go_to(2)
        state = chain.go_to(5)
        assert state.phase == "summary"
        assert state.reachable_steps == [1, 2, 3, 4, 5]


class TestAnalysisCache:
    """Analyses are derived at most once per step per run."""

    @pytest.mark.asyncio
    async def test_cached_across_revisits(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)

        first = await chain.get_active_analysis()
        chain.decide(PASS)
        chain.go_to(1)
        again = await chain.get_active_analysis()

        assert first is again
        assert fake_generator.calls_for(1) == 1
        assert chain.analysis_status(1).state == "ready"

    @pytest.mark.asyncio
    async def test_concurrent_requests_coalesce(self, ko_fundamentals: FundamentalsRecord, held_generator) -> None:
        chain = KillChain(ko_fundamentals, held_generator)

        first = asyncio.create_task(chain.analysis_for(1))
        second = asyncio.create_task(chain.analysis_for(1))
        await _settle()
        assert chain.request_analysis(1).state == "pending"

        held_generator.release.set()
        a, b = await asyncio.gather(first, second)

        assert a == b
        assert held_generator.calls_for(1) == 1

    @pytest.mark.asyncio
    async def test_request_analysis_does_not_block(self, ko_fundamentals: FundamentalsRecord, held_generator) -> None:
        chain = KillChain(ko_fundamentals, held_generator)

        status = chain.request_analysis()
        assert status.state == "pending"
        assert status.to_dict() == {"step": 1, "status": "pending"}

        held_generator.release.set()
        analysis = await chain.analysis_for(1)
        assert isinstance(analysis, BusinessAnalysis)
        assert chain.request_analysis().state == "ready"
        assert held_generator.calls_for(1) == 1

    @pytest.mark.asyncio
    async def test_navigating_away_keeps_derivation(self, ko_fundamentals: FundamentalsRecord, held_generator) -> None:
        """A caller giving up does not cancel the shared derivation."""
        chain = KillChain(ko_fundamentals, held_generator)

        waiter = asyncio.create_task(chain.analysis_for(1))
        await _settle()
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        held_generator.release.set()
        await chain.analysis_for(1)
        assert held_generator.calls_for(1) == 1
        assert chain.analysis_status(1).state == "ready"

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, ko_fundamentals: FundamentalsRecord, make_generator, canned_json) -> None:
        generator = make_generator(responses={1: ProviderError("overloaded")})
        chain = KillChain(ko_fundamentals, generator)

        with pytest.raises(ProviderError):
            await chain.get_active_analysis()
        status = chain.analysis_status(1)
        assert status.state == "error"
        assert status.to_dict()["retryable"] is True

        generator.responses[1] = canned_json[1]
        analysis = await chain.get_active_analysis()
        assert isinstance(analysis, BusinessAnalysis)
        assert generator.calls_for(1) == 2
        assert chain.analysis_status(1).state == "ready"

    @pytest.mark.asyncio
    async def test_result_after_reset_discarded(self, ko_fundamentals: FundamentalsRecord, held_generator) -> None:
        chain = KillChain(ko_fundamentals, held_generator)

        waiter = asyncio.create_task(chain.analysis_for(1))
        await _settle()
        chain.reset()
        held_generator.release.set()
        await waiter

        assert chain.analysis_status(1).state == "idle"
        assert chain.state.analyses == {}

        await chain.analysis_for(1)
        assert held_generator.calls_for(1) == 2

    @pytest.mark.asyncio
    async def test_reset_discards_cached_analyses(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        await chain.get_active_analysis()
        chain.reset()
        assert chain.state.analyses == {}
        await chain.get_active_analysis()
        assert fake_generator.calls_for(1) == 2

    @pytest.mark.asyncio
    async def test_no_analysis_beyond_frontier(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        with pytest.raises(NavigationError):
            await chain.analysis_for(2)
        assert fake_generator.calls == []

    @pytest.mark.asyncio
    async def test_no_analysis_for_summary(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator)
        for _ in range(4):
            chain.decide(PASS)
        with pytest.raises(SequenceError):
            await chain.get_active_analysis()


class TestEndToEnd:
    """Full runs over Coca-Cola fundamentals."""

    @pytest.mark.asyncio
    async def test_all_pass(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = start_run(ko_fundamentals, fake_generator)

        for _ in range(4):
            await chain.get_active_analysis()
            chain.decide(StepOutcome(True, "looks good"))

        state = chain.state
        assert state.phase == "summary"
        assert state.overall_verdict == VERDICT_PASS
        assert sorted(state.analyses) == [1, 2, 3, 4]
        assert fake_generator.calls == [1, 2, 3, 4]

        memo = chain.finalize()
        assert memo.overall_verdict == VERDICT_PASS
        assert memo.ticker == "KO"
        assert [s.outcome.passed for s in memo.steps] == [True] * 4
        assert isinstance(memo.steps[3].analysis, ValuationAnalysis)

    @pytest.mark.asyncio
    async def test_valuation_fail(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = start_run(ko_fundamentals, fake_generator)
        for outcome in (PASS, PASS, PASS, FAIL):
            await chain.get_active_analysis()
            chain.decide(outcome)

        assert chain.finalize().overall_verdict == VERDICT_FAIL

    @pytest.mark.asyncio
    async def test_disqualified_at_step_one(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = start_run(ko_fundamentals, fake_generator)
        await chain.get_active_analysis()
        state = chain.decide(StepOutcome(False, "too complex for me"))

        assert state.phase == "disqualified"
        assert state.overall_verdict == VERDICT_FAIL
        assert fake_generator.calls == [1]

    def test_state_to_dict(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        chain = KillChain(ko_fundamentals, fake_generator, run_id="run1")
        chain.decide(StepOutcome(True, "clear"))
        data = chain.state.to_dict()
        assert data["run_id"] == "run1"
        assert data["symbol"] == "KO"
        assert data["current_step"] == 2
        assert data["reachable_steps"] == [1, 2]
        assert data["outcomes"] == [{"step": 1, "passed": True, "decision": "pass", "notes": "clear"}]
        assert data["overall_verdict"] is None

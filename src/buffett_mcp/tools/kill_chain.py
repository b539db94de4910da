"""Kill-chain run tools: start, analyze, decide, navigate, reset, finalize."""

import logging
from collections import OrderedDict
from time import perf_counter
from typing import Any

from buffett_mcp.data.fundamentals import fetch_fundamentals_with_provenance
from buffett_mcp.data.store import ResearchStore
from buffett_mcp.killchain.derivation import TextGenerator
from buffett_mcp.killchain.errors import AnalysisError, KillChainError, StorageUnavailable
from buffett_mcp.killchain.machine import KillChain
from buffett_mcp.killchain.models import STEP_COUNT, StepOutcome
from buffett_mcp.utils.provenance import (
    build_error_response,
    build_meta,
    build_provenance,
    error_response_for,
    utc_timestamp,
)
from buffett_mcp.utils.validators import validate_step

logger = logging.getLogger(__name__)

MAX_RUNS = 100


class RunNotFoundError(KeyError):
    """No run with that id (never started, or evicted)."""

    def __init__(self, run_id: str):
        super().__init__(run_id)
        self.run_id = run_id

    def __str__(self) -> str:
        return f"No kill-chain run with id '{self.run_id}'"


class RunRegistry:
    """In-memory runs by id. Oldest runs are evicted past ``max_runs``."""

    def __init__(self, max_runs: int = MAX_RUNS):
        self._runs: OrderedDict[str, KillChain] = OrderedDict()
        self._max_runs = max_runs

    def add(self, run: KillChain) -> KillChain:
        self._runs[run.run_id] = run
        while len(self._runs) > self._max_runs:
            evicted, _ = self._runs.popitem(last=False)
            logger.info(f"RunRegistry: evicted run {evicted}")
        return run

    def get(self, run_id: str) -> KillChain:
        try:
            return self._runs[run_id]
        except KeyError:
            raise RunNotFoundError(run_id) from None

    def __len__(self) -> int:
        return len(self._runs)


def _run_response(tool: str, run: KillChain, start_time: float, **extra: Any) -> dict[str, Any]:
    duration_ms = (perf_counter() - start_time) * 1000
    response: dict[str, Any] = {"meta": build_meta(tool, duration_ms), "run": run.state.to_dict()}
    response.update(extra)
    return response


def _run_error(run_id: str, error: Exception) -> dict[str, Any]:
    if isinstance(error, RunNotFoundError):
        return build_error_response(error_type="run_not_found", message=str(error), run_id=run_id)
    return error_response_for(error, run_id=run_id)


async def start_kill_chain(
    symbol: str,
    *,
    runs: RunRegistry,
    generate_text: TextGenerator,
    timeout: float | None = None,
) -> dict[str, Any]:
    """
    Fetch fundamentals and start a run at step 1.

    A failed lookup starts nothing and leaves existing runs untouched.
    """
    start_time = perf_counter()

    try:
        record, provenance = await fetch_fundamentals_with_provenance(symbol)
    except Exception as e:
        return error_response_for(e, symbol=symbol)

    run = runs.add(KillChain(record, generate_text, timeout=timeout))
    logger.info(f"start_kill_chain({record.ticker}): run {run.run_id}")

    return _run_response(
        "start_kill_chain",
        run,
        start_time,
        data_provenance={
            "fundamentals": build_provenance(as_of=utc_timestamp(), **{"source": "yfinance", **provenance}),
        },
        fundamentals=record.to_dict(),
    )


async def step_analysis(
    run_id: str,
    *,
    runs: RunRegistry,
    step: int | None = None,
    wait: bool = True,
) -> dict[str, Any]:
    """
    Analysis for the current step (or ``step``), deriving it on first request.

    With ``wait=False`` the derivation is started in the background and the
    current status (ready / pending / error) is returned immediately.
    """
    start_time = perf_counter()

    try:
        run = runs.get(run_id)
        if step is not None:
            validate_step(step)
        if not wait:
            status = run.request_analysis(step)
            return _run_response("step_analysis", run, start_time, analysis=status.to_dict())
        target = step if step is not None else run.current_step
        await run.analysis_for(target)
    except (RunNotFoundError, AnalysisError, KillChainError, ValueError) as e:
        return _run_error(run_id, e)

    status = run.analysis_status(target)
    return _run_response(
        "step_analysis",
        run,
        start_time,
        analysis=status.to_dict(),
        data_provenance={"analysis": build_provenance(source="anthropic")},
    )


async def decide_step(
    run_id: str,
    decision: str,
    notes: str = "",
    *,
    runs: RunRegistry,
) -> dict[str, Any]:
    """Record pass / fail / unsure for the active step and advance."""
    start_time = perf_counter()

    try:
        run = runs.get(run_id)
        run.decide(StepOutcome.from_label(decision, notes=notes))
    except (RunNotFoundError, KillChainError, ValueError) as e:
        return _run_error(run_id, e)

    return _run_response("decide_step", run, start_time)


async def go_to_step(run_id: str, step: int, *, runs: RunRegistry) -> dict[str, Any]:
    """Navigate to a decided step for review, the active step, or the summary."""
    start_time = perf_counter()

    try:
        run = runs.get(run_id)
        run.go_to(validate_step(step, allow_summary=True))
    except (RunNotFoundError, KillChainError, ValueError) as e:
        return _run_error(run_id, e)

    return _run_response("go_to_step", run, start_time)


async def reset_run(run_id: str, *, runs: RunRegistry) -> dict[str, Any]:
    """Discard all decisions and analyses; back to step 1."""
    start_time = perf_counter()

    try:
        run = runs.get(run_id)
    except RunNotFoundError as e:
        return _run_error(run_id, e)

    run.reset()
    return _run_response("reset_run", run, start_time)


async def run_state(run_id: str, *, runs: RunRegistry) -> dict[str, Any]:
    """Current state of a run, including per-step analysis status."""
    start_time = perf_counter()

    try:
        run = runs.get(run_id)
    except RunNotFoundError as e:
        return _run_error(run_id, e)

    statuses = [run.analysis_status(step).to_dict() for step in range(1, STEP_COUNT + 1)]
    return _run_response("run_state", run, start_time, analysis_status=statuses)


async def finalize_run(
    run_id: str,
    *,
    runs: RunRegistry,
    store: ResearchStore,
    save: bool = True,
) -> dict[str, Any]:
    """
    Assemble the memo for a fully decided run and hand it to storage.

    Storage failures do not undo the run: the memo is still returned, with
    ``saved: false`` and a warning.
    """
    start_time = perf_counter()

    try:
        run = runs.get(run_id)
        memo = run.finalize()
    except (RunNotFoundError, KillChainError) as e:
        return _run_error(run_id, e)

    memo_id: str | None = None
    storage_warning: str | None = None
    if save:
        try:
            memo_id = store.save_memo(memo)
        except StorageUnavailable as e:
            logger.warning(f"finalize_run({run_id}): memo not saved ({e})")
            storage_warning = str(e)

    record = memo.to_record()
    record["id"] = memo_id
    response = _run_response(
        "finalize_run",
        run,
        start_time,
        memo=record,
        saved=memo_id is not None,
    )
    if storage_warning is not None:
        response["storage_warning"] = storage_warning
    return response

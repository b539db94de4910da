"""Step analysis derivation: prompt, generate, strip fences, parse, validate."""

import asyncio
import json
import logging
import os
import re
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from buffett_mcp.killchain.errors import (
    AnalysisError,
    AnalysisTimeoutError,
    MalformedResponseError,
    ProviderError,
)
from buffett_mcp.killchain.models import FundamentalsRecord, StepAnalysis, analysis_model_for
from buffett_mcp.killchain.prompts import SYSTEM_PERSONA, build_step_prompt

logger = logging.getLogger(__name__)

# (system_persona, prompt) -> raw text
TextGenerator = Callable[[str, str], Awaitable[str]]

DEFAULT_TIMEOUT = float(os.environ.get("ANALYSIS_TIMEOUT", "60"))  # seconds

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapping the whole response, if present."""
    text = text.strip()
    text = _FENCE_OPEN.sub("", text)
    text = _FENCE_CLOSE.sub("", text)
    return text.strip()


def parse_analysis(step: int, raw_text: str) -> StepAnalysis:
    """
    Parse generated text into the analysis shape for ``step``.

    No partial recovery: any missing or invalid field fails the whole parse.

    Raises:
        MalformedResponseError: If the text is not a JSON object of the right shape
    """
    model = analysis_model_for(step)
    text = strip_code_fences(raw_text)

    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Step {step} response is not valid JSON: {e}", step=step) from e

    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Step {step} response must be a JSON object, got {type(data).__name__}", step=step
        )

    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise MalformedResponseError(
            f"Step {step} response failed validation ({', '.join(problems)})", step=step
        ) from e


async def derive_analysis(
    step: int,
    fundamentals: FundamentalsRecord,
    generate_text: TextGenerator,
    timeout: float | None = None,
) -> StepAnalysis:
    """
    Derive the analysis for one kill-chain step.

    Performs exactly one generation call. Retrying is the caller's decision.

    Args:
        step: Kill-chain step (1-4)
        fundamentals: Fundamentals for the run
        generate_text: Text-generation collaborator
        timeout: Seconds to wait for the collaborator (default: ANALYSIS_TIMEOUT)

    Returns:
        The validated analysis for ``step``

    Raises:
        AnalysisTimeoutError: If the collaborator did not answer in time
        ProviderError: If the collaborator failed
        MalformedResponseError: If the answer did not fit the step's shape
    """
    analysis_model_for(step)  # reject bad step numbers before calling out
    prompt = build_step_prompt(step, fundamentals)
    effective_timeout = timeout if timeout is not None else DEFAULT_TIMEOUT

    logger.debug(f"derive_analysis({fundamentals.ticker}, step={step}): generating")
    try:
        raw_text = await asyncio.wait_for(
            generate_text(SYSTEM_PERSONA, prompt),
            timeout=effective_timeout,
        )
    except asyncio.TimeoutError as e:
        logger.warning(
            f"derive_analysis({fundamentals.ticker}, step={step}): "
            f"timed out after {effective_timeout:.0f}s"
        )
        raise AnalysisTimeoutError(
            f"Step {step} analysis timed out after {effective_timeout:.0f}s", step=step
        ) from e
    except AnalysisError as e:
        if e.step is None:
            e.step = step
        raise
    except Exception as e:
        logger.warning(f"derive_analysis({fundamentals.ticker}, step={step}): provider failed ({e})")
        raise ProviderError(f"Step {step} analysis failed: {e}", step=step) from e

    try:
        return parse_analysis(step, raw_text)
    except MalformedResponseError as e:
        logger.warning(f"derive_analysis({fundamentals.ticker}, step={step}): {e}")
        raise

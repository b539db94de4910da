"""Pytest configuration and fixtures."""

import asyncio
import json
from typing import Any

import pytest

from buffett_mcp.killchain.models import FundamentalsRecord

# Canned model output per step, keyed the way the model is asked to answer
CANNED_RESPONSES: dict[int, dict[str, Any]] = {
    1: {
        "characteristics": ["Brand-Led", "Asset-Light", "Global Reach"],
        "summary": "Coca-Cola sells drink concentrate to bottlers. Bottlers make and ship the drinks.",
        "verdict": "simple",
    },
    2: {
        "moatType": "Brand",
        "moatRating": "strong",
        "evidence": "A 23% net margin on sugar water is pricing power.",
        "threats": "Shifting tastes away from sugary drinks.",
    },
    3: {
        "grade": "B",
        "summary": "Steady dividends and sensible buybacks.",
        "concerns": "None apparent",
    },
    4: {
        "verdict": "fairly valued",
        "reasoning": "Earnings yield is close to the Treasury yield.",
        "marginOfSafety": "low",
        "keyMetric": "P/E of 25 for mid-single-digit growth.",
    },
}


class FakeTextGenerator:
    """
    Stand-in for the text-generation collaborator.

    Answers each prompt with the canned JSON for the step named on its first
    line, counts calls per step, and can be told to hold answers until released.
    """

    def __init__(
        self,
        responses: dict[int, Any] | None = None,
        hold: bool = False,
    ):
        self.responses = responses or {
            step: json.dumps(payload) for step, payload in CANNED_RESPONSES.items()
        }
        self.calls: list[int] = []
        self.prompts: list[str] = []
        self.personas: list[str] = []
        self.release = asyncio.Event()
        if not hold:
            self.release.set()

    @staticmethod
    def step_of(prompt: str) -> int:
        # "Kill chain step N: ..."
        return int(prompt.split("\n", 1)[0].split("step ", 1)[1].split(":", 1)[0])

    def calls_for(self, step: int) -> int:
        return self.calls.count(step)

    async def __call__(self, system_persona: str, prompt: str) -> str:
        step = self.step_of(prompt)
        self.calls.append(step)
        self.prompts.append(prompt)
        self.personas.append(system_persona)
        await self.release.wait()
        response = self.responses[step]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def ko_fundamentals() -> FundamentalsRecord:
    """Coca-Cola fundamentals snapshot."""
    return FundamentalsRecord(
        ticker="KO",
        company_name="The Coca-Cola Company",
        currency="USD",
        current_price=62.5,
        pe_ratio=25.1,
        forward_pe=22.3,
        market_cap=270_000_000_000.0,
        fifty_two_week_low=57.9,
        fifty_two_week_high=73.5,
        revenue=45_750_000_000.0,
        net_income=10_700_000_000.0,
        profit_margin=0.23,
        roic=0.18,
        business_summary="The Coca-Cola Company manufactures and sells nonalcoholic beverages worldwide.",
        website="https://www.coca-colacompany.com",
    )


@pytest.fixture
def sparse_fundamentals() -> FundamentalsRecord:
    """Fundamentals with most fields absent."""
    return FundamentalsRecord(ticker="xyz", company_name="")


@pytest.fixture
def fake_generator() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest.fixture
def held_generator() -> FakeTextGenerator:
    """Generator that does not answer until ``release`` is set."""
    return FakeTextGenerator(hold=True)


@pytest.fixture
def make_generator() -> type[FakeTextGenerator]:
    """Factory for generators with custom responses (str or Exception per step)."""
    return FakeTextGenerator


@pytest.fixture
def canned_json() -> dict[int, str]:
    return {step: json.dumps(payload) for step, payload in CANNED_RESPONSES.items()}

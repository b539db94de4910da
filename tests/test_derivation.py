"""Tests for analysis derivation: fence stripping, parsing, collaborator failures."""

import asyncio
import json

import pytest

from buffett_mcp.killchain.derivation import derive_analysis, parse_analysis, strip_code_fences
from buffett_mcp.killchain.errors import (
    AnalysisError,
    AnalysisTimeoutError,
    MalformedResponseError,
    ProviderError,
)
from buffett_mcp.killchain.models import (
    BusinessAnalysis,
    FundamentalsRecord,
    ManagementAnalysis,
    MoatAnalysis,
    ValuationAnalysis,
)
from buffett_mcp.killchain.prompts import SYSTEM_PERSONA


class TestStripCodeFences:
    """Tests for strip_code_fences."""

    def test_json_fence(self) -> None:
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self) -> None:
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_uppercase_language_tag(self) -> None:
        assert strip_code_fences('```JSON\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self) -> None:
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


class TestParseAnalysis:
    """Tests for parse_analysis."""

    def test_fenced_step1(self, canned_json: dict[int, str]) -> None:
        analysis = parse_analysis(1, f"```json\n{canned_json[1]}\n```")
        assert isinstance(analysis, BusinessAnalysis)
        assert analysis.verdict == "simple"

    def test_each_step_gets_its_shape(self, canned_json: dict[int, str]) -> None:
        assert isinstance(parse_analysis(2, canned_json[2]), MoatAnalysis)
        assert isinstance(parse_analysis(3, canned_json[3]), ManagementAnalysis)
        assert isinstance(parse_analysis(4, canned_json[4]), ValuationAnalysis)

    def test_not_json(self) -> None:
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_analysis(1, "I think this business is simple.")
        assert exc_info.value.step == 1

    def test_json_array_rejected(self) -> None:
        with pytest.raises(MalformedResponseError, match="JSON object"):
            parse_analysis(1, '["Brand-Led"]')

    def test_missing_field_names_location(self) -> None:
        """No partial recovery: a missing field fails the whole parse."""
        raw = json.dumps({"characteristics": ["Brand-Led"], "summary": "Sells drinks."})
        with pytest.raises(MalformedResponseError, match="verdict"):
            parse_analysis(1, raw)

    def test_wrong_step_shape(self, canned_json: dict[int, str]) -> None:
        """A valid step 1 answer is malformed for step 4."""
        with pytest.raises(MalformedResponseError):
            parse_analysis(4, canned_json[1])

    def test_malformed_is_analysis_error(self) -> None:
        with pytest.raises(AnalysisError):
            parse_analysis(2, "{}")


class TestDeriveAnalysis:
    """Tests for derive_analysis."""

    @pytest.mark.asyncio
    async def test_single_call_with_persona(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        analysis = await derive_analysis(1, ko_fundamentals, fake_generator)

        assert isinstance(analysis, BusinessAnalysis)
        assert fake_generator.calls == [1]
        assert fake_generator.personas == [SYSTEM_PERSONA]
        assert "The Coca-Cola Company" in fake_generator.prompts[0]

    @pytest.mark.asyncio
    async def test_deterministic_output(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        first = await derive_analysis(2, ko_fundamentals, fake_generator)
        second = await derive_analysis(2, ko_fundamentals, fake_generator)
        assert first == second

    @pytest.mark.asyncio
    async def test_malformed_response(self, ko_fundamentals: FundamentalsRecord, make_generator) -> None:
        generator = make_generator(responses={1: "Sorry, I cannot help with that."})
        with pytest.raises(MalformedResponseError):
            await derive_analysis(1, ko_fundamentals, generator)
        assert generator.calls == [1]  # no retry

    @pytest.mark.asyncio
    async def test_provider_failure_wrapped(self, ko_fundamentals: FundamentalsRecord, make_generator) -> None:
        generator = make_generator(responses={3: ConnectionError("reset by peer")})
        with pytest.raises(ProviderError) as exc_info:
            await derive_analysis(3, ko_fundamentals, generator)
        assert exc_info.value.step == 3
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_provider_error_passes_through(self, ko_fundamentals: FundamentalsRecord, make_generator) -> None:
        """ProviderError from the collaborator keeps its message and gets the step."""
        generator = make_generator(responses={2: ProviderError("ANTHROPIC_API_KEY is not set")})
        with pytest.raises(ProviderError, match="ANTHROPIC_API_KEY") as exc_info:
            await derive_analysis(2, ko_fundamentals, generator)
        assert exc_info.value.step == 2

    @pytest.mark.asyncio
    async def test_timeout(self, ko_fundamentals: FundamentalsRecord, held_generator) -> None:
        with pytest.raises(AnalysisTimeoutError) as exc_info:
            await derive_analysis(4, ko_fundamentals, held_generator, timeout=0.01)
        assert exc_info.value.step == 4

    @pytest.mark.asyncio
    async def test_invalid_step_never_calls_out(self, ko_fundamentals: FundamentalsRecord, fake_generator) -> None:
        with pytest.raises(ValueError):
            await derive_analysis(5, ko_fundamentals, fake_generator)
        assert fake_generator.calls == []

"""Tests for the Anthropic text generator."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import pytest

from buffett_mcp.killchain.errors import ProviderError
from buffett_mcp.llm.anthropic_client import DEFAULT_MODEL, AnthropicTextGenerator


def _client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.messages.create = create
    return client


def _message(*texts: str, stop_reason: str = "end_turn") -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=t) for t in texts],
        stop_reason=stop_reason,
    )


class TestAnthropicTextGenerator:
    """Tests for AnthropicTextGenerator."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_MODEL", raising=False)
        monkeypatch.delenv("ANTHROPIC_MAX_TOKENS", raising=False)
        generator = AnthropicTextGenerator(api_key="test")
        assert generator.model == DEFAULT_MODEL
        assert generator.max_tokens == 1024

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")
        monkeypatch.setenv("ANTHROPIC_MAX_TOKENS", "2048")
        generator = AnthropicTextGenerator(api_key="test")
        assert generator.model == "claude-sonnet-4-5"
        assert generator.max_tokens == 2048

    @pytest.mark.asyncio
    async def test_sends_persona_and_prompt(self) -> None:
        create = AsyncMock(return_value=_message('{"verdict": ', '"simple"}'))
        generator = AnthropicTextGenerator(api_key="test", model="m", max_tokens=10, client=_client(create))

        text = await generator("persona", "prompt")

        assert text == '{"verdict": "simple"}'
        create.assert_awaited_once_with(
            model="m",
            max_tokens=10,
            system="persona",
            messages=[{"role": "user", "content": "prompt"}],
        )

    @pytest.mark.asyncio
    async def test_missing_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A server without credentials reports the problem per request."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        generator = AnthropicTextGenerator()
        with pytest.raises(ProviderError, match="ANTHROPIC_API_KEY"):
            await generator("persona", "prompt")

    @pytest.mark.asyncio
    async def test_sdk_error_wrapped(self) -> None:
        create = AsyncMock(side_effect=anthropic.AnthropicError("boom"))
        generator = AnthropicTextGenerator(api_key="test", client=_client(create))
        with pytest.raises(ProviderError, match="boom"):
            await generator("persona", "prompt")

    @pytest.mark.asyncio
    async def test_empty_response(self) -> None:
        create = AsyncMock(return_value=_message(stop_reason="max_tokens"))
        generator = AnthropicTextGenerator(api_key="test", client=_client(create))
        with pytest.raises(ProviderError, match="max_tokens"):
            await generator("persona", "prompt")

"""Anthropic text generation for step analyses."""

import logging
import os

import anthropic

from buffett_mcp.killchain.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-haiku-4-5-20251001"


class AnthropicTextGenerator:
    """
    ``(system_persona, prompt) -> text`` backed by the Anthropic Messages API.

    The client is created on first call, so a server can start without
    credentials and report the problem per request instead.

    Args:
        api_key: Anthropic API key (default: ANTHROPIC_API_KEY)
        model: Model id (default: ANTHROPIC_MODEL or DEFAULT_MODEL)
        max_tokens: Response token cap (default: ANTHROPIC_MAX_TOKENS or 1024)
        client: Pre-built async client, mainly for tests
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.model = model or os.environ.get("ANTHROPIC_MODEL", DEFAULT_MODEL)
        self.max_tokens = max_tokens or int(os.environ.get("ANTHROPIC_MAX_TOKENS", "1024"))
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self._api_key:
                raise ProviderError("ANTHROPIC_API_KEY is not set")
            # Retries are the caller's policy
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, max_retries=0)
        return self._client

    async def __call__(self, system_persona: str, prompt: str) -> str:
        client = self._get_client()
        try:
            message = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_persona,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            logger.warning(f"Anthropic API error (status {e.status_code}): {e.message}")
            raise ProviderError(f"Anthropic API error (status {e.status_code}): {e.message}") from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(f"Anthropic API connection failed: {e}") from e
        except anthropic.AnthropicError as e:
            raise ProviderError(f"Unexpected Anthropic error: {e}") from e

        text = "".join(block.text for block in message.content if block.type == "text")
        if not text:
            raise ProviderError(f"Anthropic returned no text (stop_reason={message.stop_reason})")
        return text

"""Text-generation collaborators."""

from buffett_mcp.llm.anthropic_client import AnthropicTextGenerator

__all__ = ["AnthropicTextGenerator"]

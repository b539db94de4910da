"""Text sanitization utilities."""

import re


def sanitize_text(text: str | None, max_length: int = 500) -> str | None:
    """
    Sanitize untrusted provider text (names, descriptions, URLs).

    Control characters become spaces, runs of whitespace collapse, and text
    longer than ``max_length`` is truncated with "...".

    Args:
        text: Text to sanitize (may be None)
        max_length: Maximum length before truncation

    Returns:
        Sanitized text, or None for None / non-string input
    """
    if not isinstance(text, str):
        return None

    # Control characters (\x00-\x1f, \x7f-\x9f) would garble prompts; keep word breaks
    text = re.sub(r"[\x00-\x1f\x7f-\x9f]", " ", text)
    text = re.sub(r"\s+", " ", text).strip()

    if len(text) > max_length:
        text = text[:max_length].rstrip() + "..."

    return text

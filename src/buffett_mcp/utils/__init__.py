"""Utility modules."""

from buffett_mcp.utils.provenance import (
    build_error_response,
    build_meta,
    build_provenance,
    error_response_for,
    utc_timestamp,
)
from buffett_mcp.utils.sanitize import sanitize_text
from buffett_mcp.utils.validators import normalize_symbols, validate_step

__all__ = [
    "build_error_response",
    "build_meta",
    "build_provenance",
    "error_response_for",
    "utc_timestamp",
    "sanitize_text",
    "normalize_symbols",
    "validate_step",
]

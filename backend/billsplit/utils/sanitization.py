"""
Input sanitization utilities for API payloads.
Used from Pydantic validators on names, titles, emails and colors.
"""

import re
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
_WHITESPACE_RUN = re.compile(r"\s+")
_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


def sanitize_string(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    # Remove control characters, then trim and collapse inner whitespace
    value = _CONTROL_CHARS.sub(" ", value)
    value = _WHITESPACE_RUN.sub(" ", value).strip()
    # Escape HTML
    value = value.replace("<", "&lt;").replace(">", "&gt;")
    return value


def normalize_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip().lower()


def is_valid_email(value: str) -> bool:
    local, sep, domain = value.partition("@")
    return bool(sep and local and domain and "@" not in domain and " " not in value)


def normalize_color(value: Optional[str]) -> Optional[str]:
    """Return ``#RRGGBB`` in upper case, or raise ``ValueError``."""
    if value is None or value == "":
        return None
    value = value.strip()
    if not value.startswith("#"):
        value = f"#{value}"
    if not _HEX_COLOR.match(value):
        raise ValueError("color must be a hex value like #FF6B6B")
    return value.upper()

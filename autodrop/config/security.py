"""
Input hygiene and credential helpers.
Sanitises text sent to agents and validates/masks provider API keys.
"""

import re
from typing import Optional

from autodrop.config.settings import settings

_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]*>")

# Expected key prefixes per provider
API_KEY_PREFIXES = {
    "gemini": "AIza",
    "openai": "sk-",
    "anthropic": "sk-ant-",
}


def sanitize_input(text: str, max_chars: Optional[int] = None) -> str:
    """
    Remove script blocks and markup from user text and cap its length.

    Args:
        text: Raw message text
        max_chars: Length cap (defaults to settings.max_input_chars)

    Returns:
        Cleaned text, possibly empty
    """
    limit = max_chars if max_chars is not None else settings.max_input_chars
    cleaned = _SCRIPT_BLOCK.sub("", text)
    cleaned = _HTML_TAG.sub("", cleaned)
    return cleaned.strip()[:limit]


def mask_api_key(key: Optional[str]) -> str:
    """Show only the first 8 characters of a stored key"""
    if not key:
        return ""
    return f"{key[:8]}..."


def validate_api_key_format(provider: str, key: str) -> bool:
    """
    Check a provider key against its known prefix.

    Unknown providers are rejected.
    """
    prefix = API_KEY_PREFIXES.get(provider)
    if prefix is None:
        return False
    return key.startswith(prefix)
